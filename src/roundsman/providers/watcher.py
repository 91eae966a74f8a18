"""Watch command runner.

A project's ``watch`` command (a test watcher, a build, a deploy wait...)
runs through the shell in the project directory. Every non-empty output
line is surfaced as ``[watch] ...`` or ``[watch stderr] ...``; the exit is
classified as stopped, ready (exit 0) or failed.
"""

import asyncio
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from roundsman.core.config.models import DEFAULT_STREAM_PREVIEW_CHARS
from roundsman.providers.process import ManagedProcess, pump_stream, signal_name
from roundsman.providers.stream import StreamFramer, preview_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatchOutcome:
    """How a watcher ended.

    Attributes:
        returncode: Exit status, None if it never started; negative for a
            signal on POSIX.
        stopped: A stop was requested before the exit.
        reason: The recorded stop reason.

    """

    returncode: int | None
    stopped: bool = False
    reason: str = ""

    @property
    def ready(self) -> bool:
        return not self.stopped and self.returncode == 0

    @property
    def signal_name(self) -> str:
        return signal_name(self.returncode)

    def describe_exit(self) -> str:
        """``exit=<code|?>[ signal=<name>]`` for a failed watcher."""
        sig = self.signal_name
        code = "?" if self.returncode is None or sig else str(self.returncode)
        return f"exit={code}" + (f" signal={sig}" if sig else "")


class WatchRun(ManagedProcess):
    """One running watch command."""

    def __init__(
        self,
        label: str,
        command: str,
        cwd: Path,
        emit: Callable[[str], None],
        preview_chars: int = DEFAULT_STREAM_PREVIEW_CHARS,
    ) -> None:
        super().__init__(f"watch:{label}")
        self.command = command
        self.cwd = cwd
        self._emit = emit
        self._preview_chars = preview_chars
        self._out_framer = StreamFramer()
        self._err_framer = StreamFramer()

    def _line(self, tag: str) -> Callable[[str], None]:
        def handle(line: str) -> None:
            msg = preview_text(line, self._preview_chars)
            if msg:
                self._emit(f"{tag} {msg}")

        return handle

    async def run(self) -> WatchOutcome:
        on_out = self._line("[watch]")
        on_err = self._line("[watch stderr]")
        try:
            # Own process group so a stop reaches the shell's children too
            process = await asyncio.create_subprocess_shell(
                self.command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=sys.platform != "win32",
            )
        except OSError as e:
            logger.warning("Watcher %s could not start: %s", self.label, e)
            self._emit(f"[watch stderr] {e}")
            return WatchOutcome(returncode=None)

        self._attached(process, own_group=sys.platform != "win32")
        try:
            await asyncio.gather(
                pump_stream(process.stdout, self._out_framer, on_out),
                pump_stream(process.stderr, self._err_framer, on_err),
            )
            returncode = await process.wait()
        except BaseException:
            self.kill()
            raise

        for line in self._out_framer.flush():
            on_out(line)
        for line in self._err_framer.flush():
            on_err(line)

        logger.debug("Watcher %s exited with %s", self.label, returncode)
        return WatchOutcome(
            returncode=returncode,
            stopped=bool(self.stop_reason),
            reason=self.stop_reason,
        )

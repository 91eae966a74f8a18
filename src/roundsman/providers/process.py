"""Shared supervision for background child processes.

An agent turn and a watcher are both a child process whose stdout/stderr
are read incrementally and whose termination may be requested at any time,
even before the process has finished spawning. Termination is a request:
the outcome is only known once the exit has been observed.
"""

import asyncio
import codecs
import contextlib
import logging
import os
import signal
from collections.abc import Callable

from roundsman.providers.stream import StreamFramer

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024
DEFAULT_SIGTERM_WAIT = 3.0  # seconds between SIGTERM and SIGKILL on shutdown


def signal_name(returncode: int | None) -> str:
    """Name of the signal that ended a process, empty if it exited."""
    if returncode is None or returncode >= 0:
        return ""
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"signal {-returncode}"


class ManagedProcess:
    """Child process with an idempotent, reason-carrying stop request.

    Attributes:
        label: Name used in log messages.
        process: The child once spawned.
        stop_reason: Reason recorded by the first request_stop() call.

    """

    def __init__(self, label: str) -> None:
        self.label = label
        self.process: asyncio.subprocess.Process | None = None
        self.stop_reason = ""
        self._own_group = False

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def request_stop(self, reason: str) -> bool:
        """Record reason and terminate the child, once.

        A request that arrives before the child exists is honoured right
        after spawn.

        Returns:
            True if this call issued the stop, False if one was already
            pending.

        """
        if self.stop_reason:
            return False
        self.stop_reason = reason or "stopped"
        logger.debug("Stop requested for %s: %s", self.label, self.stop_reason)
        self._signal(signal.SIGTERM)
        return True

    def kill(self) -> None:
        """Force-kill the child without recording a reason."""
        self._signal(signal.SIGKILL)

    def _signal(self, sig: signal.Signals) -> None:
        process = self.process
        if process is None or process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            if self._own_group:
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)

    def _attached(self, process: asyncio.subprocess.Process, own_group: bool = False) -> None:
        self.process = process
        self._own_group = own_group
        if self.stop_reason:
            self._signal(signal.SIGTERM)

    async def terminate_and_wait(self, grace: float = DEFAULT_SIGTERM_WAIT) -> None:
        """SIGTERM, then SIGKILL if the child outlives grace seconds."""
        process = self.process
        if process is None or process.returncode is not None:
            return
        self._signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(process.wait(), timeout=grace)
        except TimeoutError:
            logger.warning("Sending SIGKILL to %s (PID %d)", self.label, process.pid)
            self.kill()


async def pump_stream(
    stream: asyncio.StreamReader | None,
    framer: StreamFramer,
    on_line: Callable[[str], None],
    sink: list[str] | None = None,
) -> None:
    """Read stream to EOF, handing each completed line to on_line.

    Args:
        stream: Child stdout or stderr.
        framer: Line framer for this stream; flushed by the caller.
        on_line: Called once per non-blank line, in emission order.
        sink: Optional list collecting the raw decoded text.

    """
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if sink is not None:
            sink.append(text)
        for line in framer.feed(text):
            on_line(line)
    tail = decoder.decode(b"", final=True)
    if tail:
        if sink is not None:
            sink.append(tail)
        for line in framer.feed(tail):
            on_line(line)

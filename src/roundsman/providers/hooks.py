"""Project hooks and shell passthrough.

A hook value is either empty (inactive), ``!<command>`` (run through the
shell in the project directory) or any other text (dispatched to the agent
as an instruction, exactly like ``/work``).
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from roundsman.core.marker import HookSet
from roundsman.providers.stream import preview_text

logger = logging.getLogger(__name__)

SHELL_PREFIX = "!"


class HookKind(StrEnum):
    NONE = "none"
    SHELL = "shell"
    PROMPT = "prompt"


@dataclass(frozen=True)
class HookAction:
    kind: HookKind
    value: str = ""


@dataclass(frozen=True)
class HookResult:
    """Outcome of a shell hook.

    Attributes:
        returncode: Exit status, None if the shell could not be started.
        error: Start failure description.

    """

    returncode: int | None
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error and self.returncode == 0


def resolve_hook_action(hooks: HookSet, name: str) -> HookAction:
    """Classify the hook registered under name.

    Examples:
        >>> resolve_hook_action(HookSet(afterWatchSuccess="!make test"), "afterWatchSuccess")
        HookAction(kind=<HookKind.SHELL: 'shell'>, value='make test')
        >>> resolve_hook_action(HookSet(), "afterVisit").kind
        <HookKind.NONE: 'none'>

    """
    raw = hooks.get(name).strip()
    if not raw:
        return HookAction(HookKind.NONE)
    if raw.startswith(SHELL_PREFIX):
        command = raw[len(SHELL_PREFIX) :].strip()
        if not command:
            return HookAction(HookKind.NONE)
        return HookAction(HookKind.SHELL, command)
    return HookAction(HookKind.PROMPT, raw)


async def run_shell_hook(
    name: str,
    command: str,
    cwd: Path,
    emit: Callable[[str], None],
) -> HookResult:
    """Run a shell hook to completion and surface its output.

    stdout lines are emitted as ``[hook NAME] ...`` and stderr lines as
    ``[hook NAME stderr] ...``, after the process has exited.
    """
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        out, err = await process.communicate()
    except OSError as e:
        logger.warning("Hook %s failed to start in %s: %s", name, cwd, e)
        return HookResult(returncode=None, error=str(e) or "shell hook failed")

    for tag, data in ((f"[hook {name}]", out), (f"[hook {name} stderr]", err)):
        for line in data.decode("utf-8", errors="replace").strip().split("\n"):
            msg = preview_text(line)
            if msg:
                emit(f"{tag} {msg}")

    if process.returncode != 0:
        logger.warning("Hook %s exited with %s in %s", name, process.returncode, cwd)
    return HookResult(returncode=process.returncode)


async def run_passthrough(command: str, cwd: Path) -> int | None:
    """Run a user shell command attached to the terminal.

    Returns:
        Exit status.

    Raises:
        OSError: If the shell cannot be started.

    """
    process = await asyncio.create_subprocess_shell(command, cwd=cwd)
    return await process.wait()

"""Agent command-line assembly.

The assembled prompt travels as the final positional argument. On POSIX,
execve() rejects argument lists beyond ARG_MAX, so very large prompts are
written to a temp file and substituted by /bin/sh instead.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import tempfile

logger = logging.getLogger(__name__)

IS_POSIX = sys.platform != "win32"

# Well below the smallest common ARG_MAX (128KB)
TEMP_FILE_THRESHOLD = 100_000


def build_agent_command(
    executable: str,
    args: list[str],
    prompt: str,
) -> tuple[list[str], str | None]:
    """Build the argv used to spawn the agent.

    Args:
        executable: Agent binary name or path.
        args: Flags that precede the prompt.
        prompt: Prompt text, always passed last.

    Returns:
        Tuple of (argv, temp_file_path). temp_file_path is None unless the
        prompt was spilled to disk; the caller removes it with
        cleanup_temp_file() once the process has exited.

    Examples:
        >>> build_agent_command("claude", ["-p"], "hi")
        (['claude', '-p', 'hi'], None)

    """
    if IS_POSIX and len(prompt) > TEMP_FILE_THRESHOLD:
        return _build_shell_command(executable, args, prompt)
    return [executable, *args, prompt], None


def _build_shell_command(
    executable: str,
    args: list[str],
    prompt: str,
) -> tuple[list[str], str]:
    prompt_fd, prompt_file_path = tempfile.mkstemp(suffix=".txt", prefix="roundsman_prompt_")
    try:
        os.write(prompt_fd, prompt.encode("utf-8"))
    finally:
        os.close(prompt_fd)

    logger.debug("Prompt of %d chars spilled to %s", len(prompt), prompt_file_path)
    parts = [shell_quote(executable), *(shell_quote(arg) for arg in args)]
    shell_cmd = " ".join(parts) + f' "$(cat {shell_quote(prompt_file_path)})"'
    # exec so signals reach the agent rather than the wrapper shell
    return ["/bin/sh", "-c", f"exec {shell_cmd}"], prompt_file_path


def shell_quote(arg: str) -> str:
    """Quote an argument for /bin/sh using single quotes."""
    if arg and all(c.isalnum() or c in "_-./=" for c in arg):
        return arg
    return "'" + arg.replace("'", "'\\''") + "'"


def cleanup_temp_file(temp_file_path: str | None) -> None:
    """Remove a prompt file created by build_agent_command()."""
    if temp_file_path is None:
        return
    with contextlib.suppress(OSError):
        os.unlink(temp_file_path)

"""Interactive round-robin loop.

Presents the next idle project, reads one line, dispatches it and repeats
until the user quits, stdin closes, or every project is dropped.
"""

import asyncio
import contextlib
import logging
import signal
import sys
import threading

from rich.console import Console
from rich.text import Text

from roundsman.manager.project_context import ProjectContext, ProjectState
from roundsman.manager.scheduler import Scheduler, rotate_queue
from roundsman.providers.hooks import run_passthrough
from roundsman.repl.commands import (
    CommandOutcome,
    make_context,
    parse_action,
    parse_bang_input,
    run_command,
)

logger = logging.getLogger(__name__)

PROMPT = "> "
PROMPT_STYLE = "green"


class ConsoleReader:
    """Reads lines on a daemon thread so the event loop keeps running.

    A thread blocked in input() never delays process exit, unlike the
    default executor.
    """

    def __init__(self, console: Console, color: bool = True) -> None:
        self.console = console
        self.color = color

    def _prompt(self, prompt: str) -> Text:
        return Text(prompt, style=PROMPT_STYLE if self.color else "")

    async def read(self, prompt: str = PROMPT) -> str | None:
        """Prompt and read one line.

        Returns:
            The line, or None once stdin is closed.

        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str | None] = loop.create_future()

        def resolve(value: str | None, error: BaseException | None) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(value)

        def worker() -> None:
            value: str | None = None
            error: BaseException | None = None
            try:
                value = self.console.input(self._prompt(prompt))
            except EOFError:
                value = None
            except Exception as e:
                error = e
            # The loop may already be closed on shutdown
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(resolve, value, error)

        threading.Thread(target=worker, name="roundsman-input", daemon=True).start()
        return await future


async def run_shell_passthrough(scheduler: Scheduler, project: ProjectContext, command: str) -> None:
    """Run ``!command`` in the project directory, attached to the terminal."""
    display = scheduler.display
    display.log(f"-> shell ({project.name}): {command}")
    try:
        returncode = await run_passthrough(command, project.project_root)
    except OSError as e:
        display.log(f"-> shell error: {e}")
        return
    if returncode:
        display.log(f"-> shell exit {returncode}")


async def _present(scheduler: Scheduler, reader: ConsoleReader) -> None:
    display = scheduler.display
    visited: ProjectContext | None = None
    while True:
        project = await scheduler.next_project()
        if project is None:
            display.log("All projects dropped or done. Exiting.")
            return

        if project is not visited:
            visited = project
            await scheduler.run_hook(project, "beforeVisit")

        display.log()
        display.project_compact(project)
        line = await reader.read(PROMPT)
        if line is None:
            logger.debug("stdin closed")
            return

        bang = parse_bang_input(line)
        if bang is not None:
            if not bang:
                display.log("-> usage: !<shell command>")
            else:
                await run_shell_passthrough(scheduler, project, bang)
            continue

        ctx = make_context(scheduler, project, parse_action(line), reader.read)
        outcome = await run_command(ctx)
        if outcome == CommandOutcome.QUIT:
            return
        if outcome == CommandOutcome.UNKNOWN:
            display.log("-> unknown command, try /help")
            continue
        if outcome in (CommandOutcome.NEXT, CommandOutcome.SHIFTED):
            if outcome == CommandOutcome.NEXT:
                rotate_queue(scheduler.queue, project)
            if project.state != ProjectState.DROPPED:
                await scheduler.run_hook(project, "afterVisit")
            visited = None


async def run_repl(scheduler: Scheduler, reader: ConsoleReader) -> float:
    """Drive the interactive loop until quit, EOF or all projects drop.

    Child processes are stopped on the way out, including when the loop is
    cancelled (Ctrl-C, SIGTERM).

    Returns:
        Total cost of all turns of the run.

    """
    display = scheduler.display
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    if sys.platform != "win32" and task is not None:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)

    display.log("repl:")
    display.help()
    try:
        await _present(scheduler, reader)
    finally:
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGTERM)
        await scheduler.shutdown()
        display.log(f"Total cost: ${scheduler.total_cost:.4f}")
    return scheduler.total_cost

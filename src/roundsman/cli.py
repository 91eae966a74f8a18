"""Command-line entry point.

Usage:
    roundsman [path]              scan and start the round-robin REPL
    roundsman add [dir]           create a project marker
    roundsman init [dir]          create a marker, asking for prompt/todos
    roundsman list [path]         scan only
    roundsman [path] --dry-run    scan only
    roundsman [path] --json       scan only, machine-readable
"""

import asyncio
import logging
from pathlib import Path

import typer
from rich.console import Console

from roundsman.cli_utils import (
    EXIT_ERROR,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
    _setup_logging,
    color_enabled,
    make_console,
)
from roundsman.core.async_utils import run_async_with_timeout
from roundsman.core.config import load_global_config
from roundsman.core.discovery import ScanReport, resolve_scan_roots, scan_project_dirs
from roundsman.core.exceptions import MarkerError
from roundsman.core.marker import MARKER_FILENAMES, create_marker, parse_todo_input
from roundsman.manager.registry import find_duplicate_repo_branches, load_projects
from roundsman.manager.scheduler import Scheduler
from roundsman.repl.display import Display, RenderConfig
from roundsman.repl.loop import ConsoleReader, run_repl

logger = logging.getLogger(__name__)

SUBCOMMANDS = ("add", "init", "list")

app = typer.Typer(
    name="roundsman",
    help=(
        "Round-robin orchestrator for coding-agent sessions across many projects. "
        f"Scans path (default: your home directory) for directories containing one of: "
        f"{', '.join(MARKER_FILENAMES)}."
    ),
    add_completion=False,
)

err_console = Console(stderr=True, highlight=False)


def _ask(console: Console, prompt: str) -> str | None:
    try:
        return console.input(prompt).strip()
    except EOFError:
        return None


def _fail(message: str) -> typer.Exit:
    err_console.print(f"Error: {message}", markup=False, soft_wrap=True)
    return typer.Exit(code=EXIT_ERROR)


def _create(console: Console, directory: str | None, interactive: bool) -> None:
    prompt = ""
    todos: list[str] = []
    if interactive:
        prompt = _ask(console, "project prompt (optional) > ") or ""
        todos = parse_todo_input(_ask(console, "initial todos (comma-separated, optional) > ") or "")
    try:
        path = create_marker(Path(directory or "."), prompt=prompt, todos=todos)
    except (MarkerError, OSError) as e:
        raise _fail(str(e)) from None
    console.print(f"Created {path}", markup=False)


@app.command()
def main_command(
    target: str | None = typer.Argument(
        None,
        help="add | init | list, or the path to scan",
        show_default=False,
    ),
    path: str | None = typer.Argument(
        None,
        help="Directory for add/init/list",
        show_default=False,
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Scan and list projects without starting the REPL",
    ),
    as_json: bool = typer.Option(
        False,
        "--json",
        help="Print the scan result as JSON (implies --dry-run)",
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Disable colored output",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable debug logging on stderr",
    ),
) -> None:
    """Scan for projects and rotate through them one turn at a time.

    Examples:
        roundsman ~/code
        roundsman add ~/code/api
        roundsman list --json

    """
    _setup_logging(verbose=verbose)
    color = color_enabled(no_color)
    console = make_console(color)

    command = ""
    path_arg = target or ""
    if target in SUBCOMMANDS:
        command, path_arg = target, path or ""
    elif path:
        raise _fail(f"unexpected argument: {path}")

    if command == "add":
        _create(console, path_arg, interactive=False)
        raise typer.Exit(code=EXIT_SUCCESS)
    if command == "init":
        _create(console, path_arg, interactive=True)
        raise typer.Exit(code=EXIT_SUCCESS)

    loaded = load_global_config()
    config = loaded.config
    display = Display(
        console,
        RenderConfig(
            color=color,
            show_full_path=config.ui.show_full_path,
            preview_chars=config.ui.preview_chars,
        ),
    )
    if loaded.error:
        display.log(f"warning: invalid global config {loaded.path}: {loaded.error} (using defaults)")

    roots = resolve_scan_roots(path_arg, config)
    report = ScanReport(roots=roots, dirs=scan_project_dirs(roots, config))

    if command == "list" or dry_run or as_json:
        display.scan_output(report, as_json=as_json)
        if dry_run and not as_json:
            display.log("Dry run complete.")
        raise typer.Exit(code=EXIT_SUCCESS)

    display.scan_output(report)
    if not report.dirs:
        raise typer.Exit(code=EXIT_SUCCESS)

    projects = load_projects(report.dirs, config, notify=display.log)
    if not projects:
        display.log("All projects locked or invalid.")
        raise typer.Exit(code=EXIT_SUCCESS)
    display.duplicate_warnings(find_duplicate_repo_branches(projects))
    display.startup_config(config, roots, projects)

    ready = _ask(console, "press enter to start (or q to quit) > ")
    if ready is None or ready.lower() in ("q", "quit"):
        raise typer.Exit(code=EXIT_SUCCESS)

    scheduler = Scheduler(projects, config, display)
    reader = ConsoleReader(console, color=color)
    try:
        run_async_with_timeout(run_repl(scheduler, reader), on_interrupt=scheduler.terminate_all)
    except KeyboardInterrupt:
        raise typer.Exit(code=EXIT_INTERRUPTED) from None
    except asyncio.CancelledError:
        logger.debug("Terminated")
    raise typer.Exit(code=EXIT_SUCCESS)


def main() -> None:
    """Console-script entry point."""
    app()


if __name__ == "__main__":
    main()

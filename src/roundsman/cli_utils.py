"""Shared CLI helpers: exit codes, logging setup, console construction."""

import logging
import os
import sys

from rich.console import Console

EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def _setup_logging(verbose: bool = False) -> None:
    """Send diagnostics to stderr; WARNING by default, DEBUG when verbose."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        stream=sys.stderr,
        force=True,
    )


def color_enabled(no_color: bool = False, stream: object = None) -> bool:
    """Color only on a TTY, and never with NO_COLOR or --no-color."""
    out = stream if stream is not None else sys.stdout
    isatty = getattr(out, "isatty", None)
    return bool(isatty and isatty()) and not os.environ.get("NO_COLOR") and not no_color


def make_console(color: bool) -> Console:
    """Console for all program output; styles are dropped when color is off."""
    return Console(no_color=not color, highlight=False, soft_wrap=True)

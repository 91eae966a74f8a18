"""Terminal rendering for the orchestrator.

Two kinds of lines are written:

    [R] orchestrator message
    [api     ] > [step] bash {"cmd":"ls -la"}

Orchestrator lines carry a dim ``[R]`` prefix. Project lines carry the
project name clipped/padded to eight columns, colored by a stable hash of
the project directory so interleaved output from several projects stays
distinguishable. Everything is built as rich Text (never markup), so agent
output containing brackets is printed literally.
"""

import json
import zlib
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.text import Text

from roundsman.core.config import GlobalConfig
from roundsman.core.config.models import DEFAULT_PREVIEW_CHARS
from roundsman.core.discovery import ScanReport
from roundsman.core.marker import MARKER_FILENAMES
from roundsman.core.prompt import stringify_meta
from roundsman.manager.project_context import LoopGoal, ProjectContext, ProjectState

if TYPE_CHECKING:
    from roundsman.manager.registry import DuplicateGroup
    from roundsman.providers.claude_cli import TurnOutcome

ORCHESTRATOR_STYLE = "dim bright_black"
PROJECT_COLORS = (
    "red",
    "green",
    "yellow",
    "blue",
    "magenta",
    "cyan",
    "bright_red",
    "bright_green",
    "bright_yellow",
    "bright_blue",
    "bright_magenta",
    "bright_cyan",
)
STATE_ICONS = {
    ProjectState.WORKING: "⚙",
    ProjectState.IDLE: "·",
    ProjectState.SNOOZED: "~",
    ProjectState.WATCHING: "⌛",
    ProjectState.DROPPED: "✗",
}
REPL_COMMANDS = (
    "/work /workwait /watch /broadcast /macro /skip /loop /stop /kill /loops /usage "
    "/model /snooze /drop /fresh /view /log /activity /revert /status /help /quit"
)
DEFAULT_ACTIVITY_ROWS = 30


@dataclass(frozen=True)
class RenderConfig:
    """Immutable rendering options passed to Display.

    Attributes:
        color: Emit styles (False for pipes, NO_COLOR or --no-color).
        show_full_path: Include the project directory in labels.
        preview_chars: Characters of a result shown on completion.

    """

    color: bool = True
    show_full_path: bool = True
    preview_chars: int = DEFAULT_PREVIEW_CHARS


def format_duration_short(seconds: float) -> str:
    """Round a duration up to its largest whole unit.

    Examples:
        >>> format_duration_short(30)
        '30s'
        >>> format_duration_short(90)
        '2m'
        >>> format_duration_short(2 * 86400)
        '2d'

    """
    s = max(1, -(-int(seconds * 1000) // 1000))
    if s < 60:
        return f"{s}s"
    m = -(-s // 60)
    if m < 60:
        return f"{m}m"
    h = -(-m // 60)
    if h < 24:
        return f"{h}h"
    return f"{-(-h // 24)}d"


def project_color(project_root: Path) -> str:
    return PROJECT_COLORS[zlib.crc32(str(project_root).encode("utf-8")) % len(PROJECT_COLORS)]


class Display:
    """All terminal output of a run.

    Args:
        console: Destination console.
        render: Rendering options.

    """

    def __init__(self, console: Console, render: RenderConfig) -> None:
        self.console = console
        self.render = render

    # -- primitives --------------------------------------------------------

    def _style(self, style: str) -> str:
        return style if self.render.color else ""

    def _print(self, text: Text) -> None:
        self.console.print(text, soft_wrap=True, highlight=False)

    def log(self, message: str = "") -> None:
        """Print an orchestrator message, one ``[R]`` line per line."""
        if not message:
            self._print(Text(""))
            return
        for line in message.split("\n"):
            text = Text("[R]", style=self._style(ORCHESTRATOR_STYLE))
            text.append(f" {line}")
            self._print(text)

    def agent(self, project: ProjectContext, message: str = "") -> None:
        """Print project-tagged lines."""
        style = self._style(project_color(project.project_root))
        for line in message.split("\n"):
            text = Text(f"[{project.short_tag}]", style=style)
            text.append(" ")
            text.append(">", style=style)
            text.append(f" {line}")
            self._print(text)

    def label(self, project: ProjectContext) -> str:
        return project.label(self.render.show_full_path)

    # -- streamed output ---------------------------------------------------

    def progress(self, project: ProjectContext, message: str) -> None:
        """Route an agent progress line through the hold policy."""
        if project.record_progress(message):
            self.agent(project, message)

    def activity_line(self, project: ProjectContext, message: str) -> None:
        """Record and print a watcher/hook line (never held)."""
        if not message:
            return
        project.push_activity(message)
        self.agent(project, message)

    def flush_pending(self, project: ProjectContext) -> int:
        """Print lines held while the agent waited for input.

        Returns:
            Number of lines flushed.

        """
        held = project.drain_pending()
        if held:
            self.agent(project, f"[buffered] {len(held)} message(s) while waiting for user input")
            for line in held:
                self.agent(project, line)
        return len(held)

    def turn_done(self, project: ProjectContext, outcome: "TurnOutcome") -> None:
        if outcome.stopped:
            self.log(f"[stopped] {self.label(project)}")
            self.agent(project, outcome.result)
            project.push_activity(f"[stopped] {outcome.result}")
            return
        preview = outcome.result[: self.render.preview_chars].replace("\n", " ") or "(empty result)"
        self.log(f"[done] {self.label(project)} (${outcome.cost:.4f})")
        self.agent(project, preview)
        project.push_activity(f"[done] ${outcome.cost:.4f} {preview}")

    # -- project views -----------------------------------------------------

    def project_compact(self, project: ProjectContext) -> None:
        doing = f" doing: {project.marker.doing[0]}" if project.marker.doing else ""
        self.log(f"{project.tag} t{project.session.turn}{doing}")

    def project_detail(self, project: ProjectContext) -> None:
        marker = project.marker
        self.log(f"project: {project.tag} ({project.project_root})")
        if marker.prompt:
            self.log(f"context: {marker.prompt}")
        for name, items in (("todos", marker.todos), ("doing", marker.doing), ("done", marker.done)):
            if items:
                self.log(f"{name}: {' | '.join(items)}")
        if marker.session.summary:
            self.log(f"summary: {marker.session.summary}")
        self.log(f"turn: {marker.session.turn}")
        for key, value in marker.metadata.items():
            self.log(f"{key}: {stringify_meta(value)}")

    def last_result(self, project: ProjectContext) -> None:
        history = project.session.history
        if not history:
            self.log("(no turns yet)")
            return
        last = history[-1]
        self.log(f"result: {self.label(project)}")
        self.log(f"turn {project.session.turn} at {last.at}")
        self.log(f"input: {last.input or '(none)'}")
        self.log(f"cost: ${last.cost:.4f} | agent turns: {last.turns}")
        self.agent(project, last.result or "(empty result)")

    def history_log(self, project: ProjectContext) -> None:
        history = project.session.history
        if not history:
            self.log("(no turns yet)")
            return
        self.log(f"log: {self.label(project)}")
        for i, record in enumerate(history, start=1):
            preview = record.result[:80].replace("\n", " ")
            self.log(f"{i}. {record.at}  ${record.cost:.4f}  {record.turns}t")
            self.log(f"in: {record.input or '(none)'}")
            self.agent(project, preview or "(empty result)")

    # -- overviews ---------------------------------------------------------

    def status(
        self,
        projects: Sequence[ProjectContext],
        now: float,
        include_dropped: bool = False,
    ) -> None:
        self.log("status:")
        for p in projects:
            if p.state == ProjectState.DROPPED and not include_dropped:
                continue
            loop = f" loop {p.loop.done}/{p.loop.max}" if p.loop else ""
            snooze = ""
            if p.state == ProjectState.SNOOZED:
                snooze = f" {format_duration_short(p.snooze_until - now)}"
            self.log(f"{STATE_ICONS[p.state]} {p.tag:<30} {p.state}{snooze}{loop}")

    def activity(self, projects: Sequence[ProjectContext], limit: int = DEFAULT_ACTIVITY_ROWS) -> None:
        rows = sorted(
            ((entry.at, i, entry.message, p) for p in projects for i, entry in enumerate(p.activity)),
            key=lambda row: (row[0], row[1]),
        )
        tail = rows[-limit:]
        if not tail:
            self.log("activity: no agent output yet")
            return
        self.log(f"activity: last {len(tail)} event(s)")
        for at, _, message, project in tail:
            self.log(f"{at[11:19]} {project.tag} {message}")

    def usage(self, projects: Sequence[ProjectContext], total_cost: float) -> None:
        self.log(f"usage: total ${total_cost:.4f}")
        for p in projects:
            self.log(f"{p.name:<30} ${p.usage:.4f}  {len(p.session.history)} turns")

    def loops(self, projects: Sequence[ProjectContext]) -> None:
        active = [(p, p.loop) for p in projects if p.loop is not None]
        if not active:
            self.log("(no active loops)")
            return
        self.log("loops:")
        for p, loop in active:
            self.log(f"{p.tag}: {describe_loop(loop)}")

    def help(self) -> None:
        self.log(REPL_COMMANDS)

    # -- startup -----------------------------------------------------------

    def startup_config(
        self,
        config: GlobalConfig,
        roots: Sequence[Path],
        projects: Sequence[ProjectContext],
    ) -> None:
        git_count = sum(1 for p in projects if p.git_enabled)
        cp = config.checkpoint
        self.log("config:")
        self.log(f"roots: {' | '.join(str(r) for r in roots)}")
        self.log(f"maxDepth: {config.max_depth} | maxHistory: {config.max_history}")
        self.log(f"model: {config.default_model or '(cli default)'}")
        self.log(f"permission: {config.default_permission_mode}")
        self.log(f"checkpoints: {'on' if cp.enabled else 'off'} (git: {git_count}/{len(projects)})")
        self.log(f"autoInitGit: {'on' if cp.auto_init_git else 'off'}")
        self.log("round-robin:")
        for p in projects:
            self.log(f"- {p.tag} ({p.project_root})")

    def duplicate_warnings(self, groups: Sequence["DuplicateGroup"]) -> None:
        if not groups:
            return
        self.log("warning: multiple projects share the same repo+branch:")
        for group in groups:
            self.log(f"{group.repo_name}@{group.branch}")
            for p in group.projects:
                self.log(f"- {p.project_root}")
        self.log("consider separate branches/worktrees to avoid overlap.")

    def scan_output(self, report: ScanReport, as_json: bool = False) -> None:
        if as_json:
            self.console.print(
                json.dumps(report.to_dict(), indent=2), soft_wrap=True, markup=False, emoji=False, highlight=False
            )
            return
        for root in report.roots:
            self.log(f"Scanning {root} for {' | '.join(MARKER_FILENAMES)}...")
        if not report.dirs:
            self.no_projects(report.roots)
            return
        self.log(f"Found {report.count} project(s):")
        for directory in report.dirs:
            self.log(f"- {directory}")

    def no_projects(self, roots: Sequence[Path]) -> None:
        self.log("No projects found.")
        if not roots:
            return
        example = roots[0]
        self.log("Try:")
        self.log(f"roundsman add {example / 'my-project'}")
        self.log(f"roundsman {example}")


def describe_loop(loop: LoopGoal) -> str:
    return f'{loop.done}/{loop.max} "{loop.goal}"'

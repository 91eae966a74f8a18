"""Interactive command dispatch.

Input grammar, per line read at the project prompt:

    (empty)         -> /work (asks for the instruction)
    /cmd args       -> command
    !cmd            -> shell passthrough in the project directory
    anything else   -> /work <text>

Every handler returns a CommandOutcome telling the REPL loop what to do
with the rotation queue afterwards.
"""

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from roundsman.core.marker import save_marker
from roundsman.manager.project_context import ProjectContext
from roundsman.manager.registry import MatchKind, find_project
from roundsman.manager.scheduler import (
    Scheduler,
    collect_broadcast_targets,
    drop_project,
    kill_project,
    skip_rounds,
    snooze_project,
    stop_loop,
)
from roundsman.repl.display import DEFAULT_ACTIVITY_ROWS, format_duration_short

logger = logging.getLogger(__name__)


class CommandOutcome(StrEnum):
    """What the REPL loop does after a command."""

    STAY = "stay"  # present the same project again
    NEXT = "next"  # rotate the current project to the tail
    SHIFTED = "shifted"  # queue already reordered by the handler
    QUIT = "quit"
    UNKNOWN = "unknown"


ALIASES = {
    "q": "quit",
    "s": "drop",
    "w": "work",
    "ww": "workwait",
    "m": "macro",
    "f": "fresh",
    "clear": "fresh",
    "v": "view",
    "l": "log",
    "a": "activity",
    "r": "revert",
    "cost": "usage",
}

_LOOP_RE = re.compile(r"^loop\s+(\d+)\s+(.+)$", re.IGNORECASE | re.DOTALL)
_DURATION_RE = re.compile(r"^(\d+)\s*([smhd]?)$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}

# Selectors addressing the presented project
_CURRENT_SELECTORS = ("", "current", "this")

ReadLine = Callable[[str], Awaitable[str | None]]


# -- parsing -----------------------------------------------------------------


def parse_action(text: str) -> str:
    """Normalize raw input to ``cmd [args]``.

    Examples:
        >>> parse_action("")
        'work'
        >>> parse_action("/skip 2")
        'skip 2'
        >>> parse_action("fix the tests")
        'work fix the tests'

    """
    raw = text.strip()
    if not raw:
        return "work"
    if raw.startswith("/"):
        return raw[1:]
    return f"work {raw}"


def parse_bang_input(text: str) -> str | None:
    """Return the shell command of ``!cmd`` input, None for other input."""
    raw = text.strip()
    if not raw.startswith("!"):
        return None
    return raw[1:].strip()


def parse_command(action: str) -> tuple[str, str]:
    """Split an action into a lower-cased command name and its argument."""
    s = action.strip()
    name, _, arg = s.partition(" ")
    return name.lower(), arg.strip()


def parse_loop_command(action: str) -> tuple[int, str] | None:
    """Parse ``loop <n> <goal>``; None unless n >= 1 and goal is non-empty."""
    m = _LOOP_RE.match(action.strip())
    if not m:
        return None
    max_runs = int(m.group(1))
    goal = m.group(2).strip()
    if max_runs < 1 or not goal:
        return None
    return max_runs, goal


def parse_duration(text: str) -> int:
    """Parse ``<n>[s|m|h|d]`` (default unit: minutes) into seconds.

    Returns:
        Seconds, or 0 when the input is not a positive duration.

    Examples:
        >>> parse_duration("5")
        300
        >>> parse_duration("30s")
        30
        >>> parse_duration("2x")
        0

    """
    m = _DURATION_RE.match(text.strip().lower())
    if not m:
        return 0
    n = int(m.group(1))
    if n <= 0:
        return 0
    return n * _UNIT_SECONDS[m.group(2) or "m"]


def _parse_positive(raw: str, default: int) -> int | None:
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value >= 1 else None


# -- context -----------------------------------------------------------------


@dataclass
class CommandContext:
    """Everything a handler needs.

    Attributes:
        scheduler: Owner of projects, queue and background work.
        project: The presented project.
        cmd: Command name or alias, lower-cased.
        arg: Argument text after the command name.
        action_raw: The whole normalized action (``loop 3 fix it``).
        read_line: Prompt for a follow-up line; None on EOF.

    """

    scheduler: Scheduler
    project: ProjectContext
    cmd: str
    arg: str
    action_raw: str
    read_line: ReadLine

    def log(self, message: str = "") -> None:
        self.scheduler.display.log(message)


async def _ask_input(ctx: CommandContext) -> str:
    if ctx.arg:
        return ctx.arg
    line = await ctx.read_line("> ")
    return (line or "").strip()


def _save_project(ctx: CommandContext) -> bool:
    try:
        save_marker(ctx.project.marker_path, ctx.project.marker)
    except OSError as e:
        logger.warning("Cannot save %s: %s", ctx.project.marker_path, e)
        ctx.log(f"-> save failed: {e}")
        return False
    return True


def _scoped(
    ctx: CommandContext,
    apply: Callable[[ProjectContext], bool],
    missing: str,
    missing_all: str,
) -> CommandOutcome:
    """Apply a transition to the current project, all projects or a selector."""
    sel = ctx.arg.strip()
    if sel.lower() in _CURRENT_SELECTORS:
        if not apply(ctx.project):
            ctx.log(f"-> {missing} {ctx.project.name}")
        return CommandOutcome.STAY
    if sel.lower() == "all":
        count = sum(1 for p in ctx.scheduler.projects if apply(p))
        if not count:
            ctx.log(f"-> {missing_all}")
        return CommandOutcome.STAY
    found = find_project(ctx.scheduler.projects, sel)
    if found.kind == MatchKind.NONE:
        ctx.log(f'-> no project matched "{sel}"')
    elif found.kind == MatchKind.MANY:
        ctx.log(f'-> ambiguous project "{sel}": {", ".join(p.name for p in found.matches)}')
    elif not apply(found.matches[0]):
        ctx.log(f"-> {missing} {found.matches[0].name}")
    return CommandOutcome.STAY


# -- handlers ----------------------------------------------------------------


async def cmd_quit(ctx: CommandContext) -> CommandOutcome:
    return CommandOutcome.QUIT


async def cmd_status(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.status(ctx.scheduler.projects, ctx.scheduler.clock(), include_dropped=True)
    return CommandOutcome.STAY


async def cmd_loops(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.loops(ctx.scheduler.projects)
    return CommandOutcome.STAY


async def cmd_usage(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.usage(ctx.scheduler.projects, ctx.scheduler.total_cost)
    return CommandOutcome.STAY


async def cmd_activity(ctx: CommandContext) -> CommandOutcome:
    limit = _parse_positive(ctx.arg, DEFAULT_ACTIVITY_ROWS)
    if limit is None:
        ctx.log("-> usage: /activity [n>=1]")
        return CommandOutcome.STAY
    ctx.scheduler.display.activity(ctx.scheduler.projects, limit)
    return CommandOutcome.STAY


async def cmd_help(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.help()
    return CommandOutcome.STAY


async def cmd_model(ctx: CommandContext) -> CommandOutcome:
    scheduler = ctx.scheduler
    name = ctx.arg.strip()
    if not name:
        ctx.log(f"-> model: {scheduler.model or '(default cli model)'}")
    elif name.lower() == "none":
        scheduler.model = ""
        ctx.log("-> cleared runtime model override")
    else:
        scheduler.model = name
        ctx.log(f"-> runtime model set to {name}")
    return CommandOutcome.STAY


async def cmd_stop(ctx: CommandContext) -> CommandOutcome:
    queue = ctx.scheduler.queue
    return _scoped(
        ctx,
        lambda p: stop_loop(p, queue, "requested"),
        "no active loop for",
        "no active loops to stop",
    )


async def cmd_kill(ctx: CommandContext) -> CommandOutcome:
    queue = ctx.scheduler.queue
    return _scoped(
        ctx,
        lambda p: kill_project(p, queue, "requested"),
        "no running agent for",
        "no running agents to kill",
    )


async def cmd_drop(ctx: CommandContext) -> CommandOutcome:
    drop_project(ctx.project, ctx.scheduler.queue)
    ctx.log(f"-> dropped {ctx.project.name}")
    return CommandOutcome.NEXT


async def cmd_macro(ctx: CommandContext) -> CommandOutcome:
    """``/macro [list|save|rm|show|run] ...``; a bare name runs the macro."""
    macros = ctx.project.marker.macros
    raw = ctx.arg.strip()
    sub_raw, _, rest = raw.partition(" ")
    rest = rest.strip()
    sub = sub_raw.lower()

    if not raw or sub in ("list", "ls"):
        if not macros:
            ctx.log("(no macros)")
            return CommandOutcome.STAY
        ctx.log("macros:")
        for name in sorted(macros):
            ctx.log(f"- {name}")
        return CommandOutcome.STAY

    if sub in ("save", "set", "add"):
        name, _, text = rest.partition(" ")
        name, text = name.strip(), text.strip()
        if not name or not text:
            ctx.log("-> usage: /macro save <name> <prompt>")
            return CommandOutcome.STAY
        macros[name] = text
        if _save_project(ctx):
            ctx.log(f'-> saved macro "{name}"')
        return CommandOutcome.STAY

    if sub in ("rm", "del", "delete"):
        if not rest:
            ctx.log("-> usage: /macro rm <name>")
            return CommandOutcome.STAY
        if rest not in macros:
            ctx.log(f'-> macro not found: "{rest}"')
            return CommandOutcome.STAY
        del macros[rest]
        if _save_project(ctx):
            ctx.log(f'-> removed macro "{rest}"')
        return CommandOutcome.STAY

    if sub == "show":
        if not rest:
            ctx.log("-> usage: /macro show <name>")
            return CommandOutcome.STAY
        body = macros.get(rest)
        if not body:
            ctx.log(f'-> macro not found: "{rest}"')
            return CommandOutcome.STAY
        ctx.log(f"macro {rest}:")
        ctx.log(body)
        return CommandOutcome.STAY

    if sub == "run":
        name, _, extra = rest.partition(" ")
    else:
        name, extra = sub_raw, rest
    name, extra = name.strip(), extra.strip()
    if not name:
        ctx.log("-> usage: /macro run <name> [extra instruction]")
        return CommandOutcome.STAY
    body = macros.get(name)
    if not body:
        ctx.log(f'-> macro not found: "{name}"')
        return CommandOutcome.STAY
    instruction = f"{body}\n\nAdditional instruction: {extra}" if extra else body
    if ctx.scheduler.start_turn(ctx.project, instruction) is None:
        return CommandOutcome.STAY
    ctx.log(f'-> starting agent for {ctx.project.name} with macro "{name}"...')
    return CommandOutcome.NEXT


async def cmd_skip(ctx: CommandContext) -> CommandOutcome:
    rounds = _parse_positive(ctx.arg, 1)
    if rounds is None:
        ctx.log("-> usage: /skip [rounds>=1]")
        return CommandOutcome.STAY
    moved = skip_rounds(ctx.scheduler.queue, ctx.project, rounds)
    if not moved:
        ctx.log("-> no other idle projects to skip")
        return CommandOutcome.STAY
    ctx.log(f"-> skipped {ctx.project.name} for {moved} round{'' if moved == 1 else 's'}")
    return CommandOutcome.SHIFTED


async def cmd_snooze(ctx: CommandContext) -> CommandOutcome:
    seconds = parse_duration(ctx.arg)
    if not seconds:
        ctx.log("-> usage: /snooze <n>[s|m|h|d] (default unit: minutes)")
        return CommandOutcome.STAY
    snooze_project(ctx.project, ctx.scheduler.queue, ctx.scheduler.clock() + seconds)
    ctx.log(f"-> snoozed {ctx.project.name} for {format_duration_short(seconds)}")
    return CommandOutcome.NEXT


async def cmd_fresh(ctx: CommandContext) -> CommandOutcome:
    stop_loop(ctx.project, ctx.scheduler.queue, "session reset")
    try:
        await ctx.scheduler.reset_session(ctx.project)
    except OSError as e:
        logger.warning("Cannot save %s: %s", ctx.project.marker_path, e)
        ctx.log(f"-> save failed: {e}")
    ctx.log(f"-> reset session for {ctx.project.name} (new sessionId, history cleared)")
    return CommandOutcome.STAY


async def cmd_view(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.project_detail(ctx.project)
    ctx.scheduler.display.last_result(ctx.project)
    return CommandOutcome.STAY


async def cmd_log(ctx: CommandContext) -> CommandOutcome:
    ctx.scheduler.display.history_log(ctx.project)
    return CommandOutcome.STAY


async def cmd_revert(ctx: CommandContext) -> CommandOutcome:
    if not ctx.project.git_enabled:
        ctx.log("-> revert failed: not a git worktree")
        return CommandOutcome.STAY
    error = await ctx.scheduler.revert_last_turn(ctx.project)
    if error:
        ctx.log(f"-> revert failed: {error}")
    else:
        ctx.log(f"-> reverted last turn for {ctx.project.name}")
    return CommandOutcome.STAY


async def cmd_loop(ctx: CommandContext) -> CommandOutcome:
    parsed = parse_loop_command(ctx.action_raw)
    if parsed is None:
        ctx.log("-> usage: /loop <n> <goal>")
        return CommandOutcome.STAY
    max_runs, goal = parsed
    if ctx.scheduler.start_loop(ctx.project, max_runs, goal) is None:
        return CommandOutcome.STAY
    ctx.log(f'-> starting loop {ctx.project.name}: 1/{max_runs} "{goal}"')
    return CommandOutcome.NEXT


async def cmd_work(ctx: CommandContext) -> CommandOutcome:
    instruction = await _ask_input(ctx)
    if not instruction:
        ctx.log("-> no input, skipping")
        return CommandOutcome.STAY
    if ctx.scheduler.start_turn(ctx.project, instruction) is None:
        return CommandOutcome.STAY
    ctx.log(f"-> starting agent for {ctx.project.name}...")
    return CommandOutcome.NEXT


async def cmd_workwait(ctx: CommandContext) -> CommandOutcome:
    """Like /work, but block the prompt until the turn has finished."""
    instruction = await _ask_input(ctx)
    if not instruction:
        ctx.log("-> no input, skipping")
        return CommandOutcome.STAY
    task = ctx.scheduler.start_turn(ctx.project, instruction)
    if task is None:
        return CommandOutcome.STAY
    ctx.log(f"-> starting agent for {ctx.project.name} (waiting)...")
    await task
    return CommandOutcome.NEXT


async def cmd_broadcast(ctx: CommandContext) -> CommandOutcome:
    instruction = await _ask_input(ctx)
    if not instruction:
        ctx.log("-> no input, skipping")
        return CommandOutcome.STAY
    targets = collect_broadcast_targets(ctx.scheduler.projects)
    if not targets:
        ctx.log("-> no idle projects to broadcast to")
        return CommandOutcome.STAY
    ctx.log(f"-> broadcasting to {len(targets)} project(s)...")
    for p in targets:
        if ctx.scheduler.start_turn(p, instruction) is not None:
            ctx.log(f"-> starting agent for {p.name}...")
    return CommandOutcome.STAY


async def cmd_watch(ctx: CommandContext) -> CommandOutcome:
    project = ctx.project
    if project.watcher is not None:
        ctx.log(f"-> already watching {project.name}")
        return CommandOutcome.STAY
    if not project.marker.watch:
        ctx.log(f"-> no watch defined for {project.name}")
        return CommandOutcome.STAY
    if ctx.scheduler.start_watch(project) is None:
        ctx.log(f"-> failed to start watcher for {project.name}")
        return CommandOutcome.STAY
    ctx.log(f"-> starting watcher for {project.name}...")
    return CommandOutcome.NEXT


Handler = Callable[[CommandContext], Awaitable[CommandOutcome]]

COMMANDS: dict[str, Handler] = {
    "quit": cmd_quit,
    "status": cmd_status,
    "loops": cmd_loops,
    "usage": cmd_usage,
    "activity": cmd_activity,
    "help": cmd_help,
    "model": cmd_model,
    "stop": cmd_stop,
    "kill": cmd_kill,
    "drop": cmd_drop,
    "macro": cmd_macro,
    "skip": cmd_skip,
    "snooze": cmd_snooze,
    "fresh": cmd_fresh,
    "view": cmd_view,
    "log": cmd_log,
    "revert": cmd_revert,
    "loop": cmd_loop,
    "work": cmd_work,
    "workwait": cmd_workwait,
    "broadcast": cmd_broadcast,
    "watch": cmd_watch,
}


def resolve_command(name: str) -> str:
    return ALIASES.get(name, name)


async def run_command(ctx: CommandContext) -> CommandOutcome:
    """Dispatch ctx.cmd (alias or full name) to its handler."""
    handler = COMMANDS.get(resolve_command(ctx.cmd))
    if handler is None:
        return CommandOutcome.UNKNOWN
    return await handler(ctx)


def make_context(
    scheduler: Scheduler,
    project: ProjectContext,
    action: str,
    read_line: ReadLine,
) -> CommandContext:
    """Build the context for a normalized action (see parse_action)."""
    cmd, arg = parse_command(action)
    return CommandContext(
        scheduler=scheduler,
        project=project,
        cmd=cmd,
        arg=arg,
        action_raw=action,
        read_line=read_line,
    )


__all__ = [
    "ALIASES",
    "COMMANDS",
    "CommandContext",
    "CommandOutcome",
    "make_context",
    "parse_action",
    "parse_bang_input",
    "parse_command",
    "parse_duration",
    "parse_loop_command",
    "run_command",
]

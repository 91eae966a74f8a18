"""Round-robin scheduler.

Projects rotate through a queue. Leaving ``idle`` (a turn, a watch, a
snooze, a drop) takes a project out of the queue; coming back to ``idle``
appends it to the tail, so the project idle the longest surfaces first.

State changes go through the named transition functions below
(stop_loop, kill_project, stop_watcher, drop_project, snooze_project,
refresh_snoozed). They return whether anything changed and never raise.

Background work (agent turns, watchers, hooks) runs as asyncio tasks on
the same loop as the interactive prompt. Completions wake the prompt
through IdleWaiter when it is blocked with no idle project.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine, Sequence
from functools import partial
from typing import TYPE_CHECKING, Any

from roundsman.core.checkpoint import checkpoint, revert_last_checkpoint
from roundsman.core.config import GlobalConfig
from roundsman.core.exceptions import MarkerError
from roundsman.core.marker import ERROR_PREFIX, load_marker, now_iso, save_marker
from roundsman.providers.claude_cli import AgentTurn, TurnOutcome
from roundsman.providers.hooks import HookKind, resolve_hook_action, run_shell_hook
from roundsman.providers.process import ManagedProcess
from roundsman.providers.watcher import WatchOutcome, WatchRun

from .project_context import LoopGoal, ProjectContext, ProjectState

if TYPE_CHECKING:
    from roundsman.repl.display import Display

logger = logging.getLogger(__name__)

# Hooks that only run in shell form
VISIT_HOOKS = ("beforeVisit", "afterVisit")
WATCH_SUCCESS_HOOK = "afterWatchSuccess"

ACTIVE_STATES = frozenset(
    {ProjectState.IDLE, ProjectState.WORKING, ProjectState.WATCHING, ProjectState.SNOOZED}
)

DEFAULT_SHUTDOWN_GRACE = 3.0


# -- queue helpers -----------------------------------------------------------


def requeue(queue: list[ProjectContext], project: ProjectContext) -> bool:
    """Append project to the rotation tail unless already queued."""
    if project in queue:
        return False
    queue.append(project)
    return True


def dequeue(queue: list[ProjectContext], project: ProjectContext) -> bool:
    if project not in queue:
        return False
    queue.remove(project)
    return True


def rotate_queue(queue: list[ProjectContext], project: ProjectContext) -> bool:
    """Move project to the rotation tail."""
    if project not in queue:
        return False
    queue.remove(project)
    queue.append(project)
    return True


def skip_rounds(queue: list[ProjectContext], project: ProjectContext, rounds: int = 1) -> int:
    """Move project behind the n-th other idle project.

    Args:
        queue: Rotation queue (reordered in place).
        project: Project to move.
        rounds: How many idle projects to let through first.

    Returns:
        Steps actually moved, clamped to the number of other idle
        projects; 0 when there is none (order unchanged apart from project
        going to the tail) or project is not queued.

    Example:
        >>> # idle [a, b, c]
        >>> skip_rounds(queue, a, 1)
        1
        >>> # now [b, a, c]

    """
    n = rounds if rounds > 0 else 1
    if project not in queue:
        return 0
    queue.remove(project)
    idle = [p for p in queue if p.is_idle]
    if not idle:
        queue.append(project)
        return 0
    steps = min(n, len(idle))
    anchor = queue.index(idle[steps - 1])
    queue.insert(anchor + 1, project)
    return steps


def collect_broadcast_targets(projects: Sequence[ProjectContext]) -> list[ProjectContext]:
    """Idle projects that can take a new turn right now."""
    return [p for p in projects if p.is_idle and p.agent is None and p.watcher is None]


# -- transitions -------------------------------------------------------------


def _stoppable(handle: ManagedProcess | None) -> bool:
    return handle is not None and not handle.stop_reason


def stop_loop(project: ProjectContext, queue: list[ProjectContext], reason: str = "loop stop") -> bool:
    """Tear down an active loop and stop its running turn.

    Returns:
        False when no loop was active (nothing changes).

    """
    if project.loop is None:
        return False
    project.loop = None
    if _stoppable(project.agent):
        project.agent.request_stop(reason)
        if project.state == ProjectState.WORKING:
            project.set_idle()
    if project.is_idle:
        requeue(queue, project)
    logger.debug("Loop stopped for %s: %s", project.name, reason)
    return True


def stop_watcher(project: ProjectContext, reason: str = "stopped") -> bool:
    """Request the running watcher to stop; the exit handler reports it."""
    if not _stoppable(project.watcher):
        return False
    return project.watcher.request_stop(reason)


def kill_project(project: ProjectContext, queue: list[ProjectContext], reason: str = "killed") -> bool:
    """Stop the running agent turn and watcher, if any.

    The project returns to idle at once. Its handles stay attached until
    the exits are processed, so no new turn starts on it meanwhile.

    Returns:
        False when nothing was running.

    """
    killed = False
    if _stoppable(project.agent):
        project.loop = None
        project.agent.request_stop(reason)
        killed = True
    if stop_watcher(project, reason):
        killed = True
    if not killed:
        return False
    if project.state != ProjectState.DROPPED:
        project.set_idle()
        requeue(queue, project)
    return True


def drop_project(project: ProjectContext, queue: list[ProjectContext]) -> bool:
    """Remove project from the run for good."""
    if project.state == ProjectState.DROPPED:
        return False
    stop_loop(project, queue, "dropped")
    if _stoppable(project.agent):
        project.agent.request_stop("dropped")
    stop_watcher(project, "dropped")
    project.set_dropped()
    dequeue(queue, project)
    return True


def snooze_project(
    project: ProjectContext,
    queue: list[ProjectContext],
    until: float,
) -> bool:
    """Take project out of rotation until the monotonic time ``until``."""
    if project.state == ProjectState.DROPPED:
        return False
    stop_loop(project, queue, "snoozed")
    if _stoppable(project.agent):
        project.agent.request_stop("snoozed")
    stop_watcher(project, "snoozed")
    project.set_snoozed(until)
    dequeue(queue, project)
    return True


def refresh_snoozed(
    projects: Sequence[ProjectContext],
    queue: list[ProjectContext],
    now: float,
) -> list[ProjectContext]:
    """Wake every snoozed project whose deadline has passed.

    Returns:
        Projects woken by this call.

    """
    woke = []
    for p in projects:
        if p.state != ProjectState.SNOOZED or not p.snooze_until or p.snooze_until > now:
            continue
        p.set_idle()
        requeue(queue, p)
        woke.append(p)
    return woke


def next_snooze_delay(projects: Sequence[ProjectContext], now: float) -> float | None:
    """Seconds until the earliest snooze expires, None if nobody snoozes."""
    delays = [
        max(0.0, p.snooze_until - now)
        for p in projects
        if p.state == ProjectState.SNOOZED and p.snooze_until
    ]
    return min(delays) if delays else None


# -- waiter ------------------------------------------------------------------


class IdleWaiter:
    """Single-slot wake-up for the blocked prompt.

    At most one waiter is registered at a time. notify() wakes it once;
    notifying with nobody waiting does nothing.
    """

    def __init__(self) -> None:
        self._future: asyncio.Future[None] | None = None

    @property
    def waiting(self) -> bool:
        return self._future is not None and not self._future.done()

    async def wait(self, timeout: float | None = None) -> bool:
        """Block until notified or timeout seconds pass.

        Returns:
            True if woken by notify().

        """
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._future = future
        try:
            done, _ = await asyncio.wait({future}, timeout=timeout)
            return future in done
        finally:
            if self._future is future:
                self._future = None
            if not future.done():
                future.cancel()

    def notify(self) -> bool:
        future = self._future
        if future is None or future.done():
            return False
        future.set_result(None)
        self._future = None
        return True


# -- scheduler ---------------------------------------------------------------


class Scheduler:
    """Owns the projects, the rotation queue and all background tasks.

    Attributes:
        projects: Every loaded project, in discovery order.
        queue: Rotation order; holds idle projects only.
        display: Terminal output.
        config: Global configuration.
        model: Runtime model override for new turns.
        total_cost: Sum of the costs of every completed turn this run.
        waiter: Wakes next_project() on completions.

    """

    def __init__(
        self,
        projects: Sequence[ProjectContext],
        config: GlobalConfig,
        display: "Display",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.projects = list(projects)
        self.queue: list[ProjectContext] = list(projects)
        self.config = config
        self.display = display
        self.clock = clock
        self.model = config.default_model
        self.total_cost = 0.0
        self.waiter = IdleWaiter()
        self._tasks: set[asyncio.Task[Any]] = set()

    # -- task bookkeeping --------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)
            self.waiter.notify()

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    # -- selection ---------------------------------------------------------

    def has_active(self) -> bool:
        return any(p.state in ACTIVE_STATES for p in self.projects)

    def first_idle(self) -> ProjectContext | None:
        return next((p for p in self.queue if p.is_idle), None)

    async def next_project(self) -> ProjectContext | None:
        """Return the next idle project in rotation order.

        Wakes expired snoozes first. Blocks, without polling, while nothing
        is idle: until a completion notifies or the earliest snooze expires.

        Returns:
            The project to present, or None once every project is dropped.

        """
        while True:
            now = self.clock()
            refresh_snoozed(self.projects, self.queue, now)
            if not self.has_active():
                return None
            project = self.first_idle()
            if project is not None:
                return project
            self.display.status(self.projects, now)
            self.display.log("No active idle projects. Waiting...")
            await self.waiter.wait(next_snooze_delay(self.projects, now))

    # -- agent turns -------------------------------------------------------

    def start_turn(
        self,
        project: ProjectContext,
        instruction: str,
        user_initiated: bool = True,
    ) -> asyncio.Task[TurnOutcome] | None:
        """Dispatch an agent turn in the background.

        User-initiated turns first flush output held during a previous
        input wait.

        Returns:
            The task resolving to the turn outcome, or None if the project
            cannot take a turn right now.

        """
        if project.agent is not None:
            self.display.log(f"-> {project.name} is still stopping its last turn; try again shortly")
            return None
        if project.watcher is not None:
            self.display.log(f"-> {project.name} is still stopping its watcher; try again shortly")
            return None
        if project.state == ProjectState.DROPPED:
            return None
        if user_initiated:
            self.display.flush_pending(project)
        turn = AgentTurn(
            project,
            instruction,
            self.config,
            emit=partial(self.display.progress, project),
            model=self.model,
        )
        project.agent = turn
        project.set_working()
        dequeue(self.queue, project)
        return self._spawn(self._drive_turn(project, turn), name=f"agent:{project.name}")

    async def _drive_turn(self, project: ProjectContext, turn: AgentTurn) -> TurnOutcome:
        try:
            outcome = await turn.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Agent turn for %s failed", project.name)
            outcome = TurnOutcome(result=f"{ERROR_PREFIX} {e}")
        await self.on_agent_done(project, turn, outcome)
        return outcome

    async def on_agent_done(
        self,
        project: ProjectContext,
        turn: AgentTurn,
        outcome: TurnOutcome,
    ) -> None:
        """Process a finished turn: report, continue a loop or requeue."""
        if project.agent is turn:
            project.agent = None
        self.total_cost += outcome.cost
        if project.state == ProjectState.WORKING:
            project.set_idle()
        self.display.turn_done(project, outcome)

        if outcome.stopped:
            project.loop = None
        elif project.loop is not None and project.is_idle:
            if self._continue_loop(project, project.loop, outcome):
                return

        if project.is_idle:
            requeue(self.queue, project)
        self.waiter.notify()

    def _continue_loop(self, project: ProjectContext, loop: LoopGoal, outcome: TurnOutcome) -> bool:
        loop.done += 1
        if outcome.is_error:
            err = outcome.result[:120].replace("\n", " ")
            self.display.log(f"[loop stop] {project.name} at {loop.done}/{loop.max}: {err}")
            project.loop = None
            return False
        if loop.done < loop.max:
            self.display.log(f"[loop] {project.name} {loop.done + 1}/{loop.max}")
            return self.start_turn(project, loop.goal, user_initiated=False) is not None
        self.display.log(f"[loop done] {project.name} {loop.done}/{loop.max}")
        project.loop = None
        return False

    def start_loop(self, project: ProjectContext, max_runs: int, goal: str) -> asyncio.Task[TurnOutcome] | None:
        project.loop = LoopGoal(max=max_runs, goal=goal)
        task = self.start_turn(project, goal, user_initiated=True)
        if task is None:
            project.loop = None
        return task

    # -- watchers ----------------------------------------------------------

    def start_watch(self, project: ProjectContext) -> asyncio.Task[WatchOutcome] | None:
        """Run the project's watch command in the background.

        Returns:
            The watch task, or None if there is no command or the project
            still has a watcher or agent attached.

        """
        command = project.marker.watch
        if not command or project.watcher is not None or project.agent is not None:
            return None
        run = WatchRun(
            project.name,
            command,
            project.project_root,
            emit=partial(self.display.activity_line, project),
            preview_chars=self.config.ui.stream_preview_chars,
        )
        project.watcher = run
        project.set_watching()
        dequeue(self.queue, project)
        return self._spawn(self._drive_watch(project, run), name=f"watch:{project.name}")

    async def _drive_watch(self, project: ProjectContext, run: WatchRun) -> WatchOutcome:
        try:
            outcome = await run.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Watcher for %s failed", project.name)
            outcome = WatchOutcome(returncode=None)
        await self.on_watch_done(project, run, outcome)
        return outcome

    async def on_watch_done(self, project: ProjectContext, run: WatchRun, outcome: WatchOutcome) -> None:
        """Report a watcher exit and fire afterWatchSuccess on a clean exit."""
        if project.watcher is run:
            project.watcher = None
        label = self.display.label(project)
        if outcome.stopped:
            message = f"[watch stopped] {label}"
        elif outcome.ready:
            message = f"[watch ready] {label} exit=0"
        else:
            message = f"[watch exit] {label} {outcome.describe_exit()}"
        self.display.log(message)
        project.push_activity(message)

        if project.state == ProjectState.WATCHING:
            project.set_idle()
            if outcome.ready and await self.run_hook(project, WATCH_SUCCESS_HOOK):
                self.waiter.notify()
                return

        if project.is_idle:
            requeue(self.queue, project)
        self.waiter.notify()

    # -- hooks -------------------------------------------------------------

    async def run_hook(self, project: ProjectContext, name: str) -> bool:
        """Run a project hook.

        Returns:
            True if the hook started an agent turn.

        """
        action = resolve_hook_action(project.marker.hooks, name)
        if action.kind == HookKind.NONE:
            return False

        if action.kind == HookKind.SHELL:
            self.display.log(f"-> hook {name} ({project.name}) shell: {action.value}")
            result = await run_shell_hook(
                name,
                action.value,
                project.project_root,
                emit=partial(self.display.activity_line, project),
            )
            if result.error:
                self.display.log(f"-> hook {name} error ({project.name}): {result.error}")
                project.push_activity(f"[hook {name} error] {result.error}")
            elif result.returncode != 0:
                self.display.log(f"-> hook {name} exit {result.returncode} ({project.name})")
                project.push_activity(f"[hook {name} exit] {result.returncode}")
            return False

        if name in VISIT_HOOKS:
            self.display.log(f"-> hook {name} ({project.name}) ignored: visit hooks must be shell commands (!cmd)")
            return False

        self.display.log(f"-> hook {name} ({project.name}) prompt")
        return self.start_turn(project, action.value, user_initiated=True) is not None

    # -- session -----------------------------------------------------------

    async def reset_session(self, project: ProjectContext) -> None:
        """Start a new conversation for project and persist it."""
        cp = self.config.checkpoint
        if cp.enabled and cp.pre_turn and project.git_enabled:
            await asyncio.to_thread(checkpoint, project.project_root, f"roundsman pre-reset {now_iso()}")
        project.session.reset()
        save_marker(project.marker_path, project.marker)

    async def revert_last_turn(self, project: ProjectContext) -> str:
        """Revert the last checkpoint commit and pop one history record.

        Returns:
            Empty string on success, else why nothing was reverted.

        """
        error = await asyncio.to_thread(revert_last_checkpoint, project.project_root)
        if error:
            return error
        project.session.pop_last()
        try:
            fresh = load_marker(project.marker_path, self.config.max_history)
        except MarkerError as e:
            logger.warning("Failed to reload %s: %s", project.marker_path, e)
        else:
            project.marker.todos = fresh.todos
            project.marker.doing = fresh.doing
            project.marker.done = fresh.done
        save_marker(project.marker_path, project.marker)
        return ""

    # -- shutdown ----------------------------------------------------------

    def handles(self) -> list[ManagedProcess]:
        found: list[ManagedProcess] = []
        for p in self.projects:
            if p.agent is not None:
                found.append(p.agent)
            if p.watcher is not None:
                found.append(p.watcher)
        return found

    def terminate_all(self) -> None:
        """Ask every child process to stop, without waiting."""
        for handle in self.handles():
            handle.request_stop("shutdown")

    async def shutdown(self, grace: float = DEFAULT_SHUTDOWN_GRACE) -> None:
        """Stop every child process and wait for the background tasks."""
        for p in self.projects:
            p.loop = None
        handles = self.handles()
        for handle in handles:
            handle.request_stop("shutdown")
        if handles:
            await asyncio.gather(*(h.terminate_and_wait(grace) for h in handles))
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=grace)
            for task in pending:
                task.cancel()

"""ProjectContext: in-memory state of one managed project.

Holds the project's identity, its loaded marker, the handles of at most one
agent turn and one watcher, the loop descriptor, snooze deadline, the
activity ring buffer and the held-output buffer used while an agent waits
for user input.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

from roundsman.core.marker import ERROR_PREFIX, ProjectMarker, Session, now_iso

if TYPE_CHECKING:
    from roundsman.providers.claude_cli import AgentTurn
    from roundsman.providers.watcher import WatchRun

logger = logging.getLogger(__name__)

MAX_ACTIVITY = 400
MAX_PENDING = 200
TAG_WIDTH = 8


class ProjectState(StrEnum):
    """Scheduling state of a project.

    Valid transitions:
        IDLE -> WORKING (turn started)
        IDLE -> WATCHING (watcher started)
        IDLE -> SNOOZED (snooze)
        IDLE -> DROPPED (drop, terminal for the run)
        WORKING/WATCHING/SNOOZED -> IDLE (completion, stop, kill, wake)
        WORKING/WATCHING/SNOOZED -> DROPPED (drop)
    """

    IDLE = "idle"
    WORKING = "working"
    WATCHING = "watching"
    SNOOZED = "snoozed"
    DROPPED = "dropped"


@dataclass
class LoopGoal:
    """Auto-repeat descriptor: re-dispatch goal until done reaches max."""

    max: int
    goal: str
    done: int = 0


@dataclass(frozen=True)
class ActivityEntry:
    at: str
    message: str


@dataclass(eq=False)
class ProjectContext:
    """State for one discovered project.

    Instances compare by identity so they can sit in the rotation queue
    and in sets.

    Attributes:
        project_root: Absolute project directory.
        display_name: Directory basename, used in prompts and tags.
        marker_path: Marker file the session is persisted to.
        marker: Loaded and normalized marker.
        git_enabled: Whether the directory is inside a git worktree.
        repo_root: Worktree top level (empty outside git).
        repo_name: Basename of repo_root.
        branch: Current branch name.
        state: Scheduling state.
        agent: Running agent turn, kept until its exit is processed.
        watcher: Running watcher, kept until its exit is processed.
        loop: Active auto-repeat descriptor.
        snooze_until: Monotonic wake deadline while SNOOZED.
        hold_stream: Divert progress lines into pending_stream.
        pending_stream: Lines held while the agent waited for input.
        activity: Recent timestamped output of any kind.

    """

    project_root: Path
    display_name: str
    marker_path: Path
    marker: ProjectMarker
    git_enabled: bool = False
    repo_root: str = ""
    repo_name: str = ""
    branch: str = ""
    state: ProjectState = ProjectState.IDLE
    agent: "AgentTurn | None" = None
    watcher: "WatchRun | None" = None
    loop: LoopGoal | None = None
    snooze_until: float = 0.0
    hold_stream: bool = False
    pending_stream: deque[str] = field(default_factory=lambda: deque(maxlen=MAX_PENDING))
    activity: deque[ActivityEntry] = field(default_factory=lambda: deque(maxlen=MAX_ACTIVITY))

    @property
    def name(self) -> str:
        return self.display_name

    @property
    def session(self) -> Session:
        return self.marker.session

    @property
    def tag(self) -> str:
        """``repo@branch`` when known, else the display name."""
        if not self.repo_name or not self.branch:
            return self.display_name
        return f"{self.repo_name}@{self.branch}"

    @property
    def short_tag(self) -> str:
        """Display name clipped and padded to the fixed tag width."""
        return self.display_name[:TAG_WIDTH].ljust(TAG_WIDTH)

    def label(self, show_full_path: bool = True) -> str:
        if not show_full_path:
            return self.tag
        return f"{self.tag} ({self.project_root})"

    @property
    def usage(self) -> float:
        return self.session.total_cost()

    # -- output ------------------------------------------------------------

    def push_activity(self, message: str) -> None:
        if message:
            self.activity.append(ActivityEntry(at=now_iso(), message=message))

    def record_progress(self, message: str) -> bool:
        """Record a progress line.

        The line always lands in the activity log. While hold_stream is set
        it is also queued in pending_stream.

        Returns:
            True if the caller should print the line now.

        """
        if not message:
            return False
        self.push_activity(message)
        if self.hold_stream:
            self.pending_stream.append(message)
            return False
        return True

    def drain_pending(self) -> list[str]:
        """Take the held lines and resume live output."""
        held = list(self.pending_stream)
        self.pending_stream.clear()
        self.hold_stream = False
        return held

    # -- state transitions -------------------------------------------------

    def set_working(self) -> None:
        logger.debug("Project %s: %s -> working", self.name, self.state)
        self.state = ProjectState.WORKING

    def set_watching(self) -> None:
        logger.debug("Project %s: %s -> watching", self.name, self.state)
        self.state = ProjectState.WATCHING

    def set_idle(self) -> None:
        logger.debug("Project %s: %s -> idle", self.name, self.state)
        self.state = ProjectState.IDLE
        self.snooze_until = 0.0

    def set_snoozed(self, until: float) -> None:
        logger.debug("Project %s: %s -> snoozed", self.name, self.state)
        self.state = ProjectState.SNOOZED
        self.snooze_until = until

    def set_dropped(self) -> None:
        logger.debug("Project %s: %s -> dropped", self.name, self.state)
        self.state = ProjectState.DROPPED
        self.snooze_until = 0.0

    @property
    def is_idle(self) -> bool:
        return self.state == ProjectState.IDLE


def is_error_result(result: str) -> bool:
    return result.startswith(ERROR_PREFIX)

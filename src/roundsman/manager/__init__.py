"""Project state and round-robin scheduling.

This module provides:
- ProjectContext, the in-memory state of one managed project
- load_project/load_projects for turning scanned directories into projects
- find_project for resolving ``/stop`` and ``/kill`` selectors
- Scheduler with the named state transitions used by the commands

Example:
    >>> from roundsman.manager import ProjectState, skip_rounds
    >>> ProjectState.IDLE
    <ProjectState.IDLE: 'idle'>

"""

from .project_context import ActivityEntry, LoopGoal, ProjectContext, ProjectState
from .registry import (
    DuplicateGroup,
    MatchKind,
    SelectorMatch,
    find_duplicate_repo_branches,
    find_project,
    load_project,
    load_projects,
)
from .scheduler import (
    IdleWaiter,
    Scheduler,
    collect_broadcast_targets,
    drop_project,
    kill_project,
    refresh_snoozed,
    rotate_queue,
    skip_rounds,
    snooze_project,
    stop_loop,
    stop_watcher,
)

__all__ = [
    "ActivityEntry",
    "DuplicateGroup",
    "IdleWaiter",
    "LoopGoal",
    "MatchKind",
    "ProjectContext",
    "ProjectState",
    "Scheduler",
    "SelectorMatch",
    "collect_broadcast_targets",
    "drop_project",
    "find_duplicate_repo_branches",
    "find_project",
    "kill_project",
    "load_project",
    "load_projects",
    "refresh_snoozed",
    "rotate_queue",
    "skip_rounds",
    "snooze_project",
    "stop_loop",
    "stop_watcher",
]

"""Project loading and lookup.

Turns discovered directories into ProjectContext instances, with:
- Marker validation (broken markers skip one project, never the run)
- Lock exclusion
- Git metadata, optional ``git init`` and the load-time backup checkpoint
- Session id assignment on first contact
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from roundsman.core.checkpoint import checkpoint, git_meta, init_repo
from roundsman.core.config import GlobalConfig
from roundsman.core.exceptions import MarkerError
from roundsman.core.marker import find_marker, load_marker, now_iso, save_marker

from .project_context import ProjectContext

logger = logging.getLogger(__name__)


def load_project(
    directory: Path,
    config: GlobalConfig,
    notify: Callable[[str], None] | None = None,
) -> ProjectContext | None:
    """Load one project directory.

    Args:
        directory: Directory holding a marker file.
        config: Global configuration.
        notify: Receives user-facing notes (skips, git init, warnings).

    Returns:
        The project, or None if it has no valid marker or is locked.

    """
    say = notify or (lambda _msg: None)
    marker_path = find_marker(directory)
    if marker_path is None:
        return None

    try:
        marker = load_marker(marker_path, config.max_history)
    except MarkerError as e:
        logger.warning("Skipping %s: %s", directory, e)
        say(f"  [error] invalid {marker_path}: {e}")
        return None

    if marker.lock:
        say(f"  [skip] {directory} (locked)")
        return None

    meta = git_meta(directory)
    if not meta.enabled and config.checkpoint.auto_init_git and init_repo(directory):
        meta = git_meta(directory)
        if meta.enabled:
            say(f"  [git init] {directory}")

    if config.checkpoint.enabled and not meta.enabled:
        say(f"  [warn] git checkpoints disabled for {directory} (not in a git worktree)")
    if config.checkpoint.enabled and meta.enabled:
        checkpoint(directory, f"roundsman backup {now_iso()}")

    marker.session.ensure_id()
    try:
        save_marker(marker_path, marker)
    except OSError as e:
        logger.warning("Cannot save %s: %s", marker_path, e)

    return ProjectContext(
        project_root=directory,
        display_name=directory.name,
        marker_path=marker_path,
        marker=marker,
        git_enabled=meta.enabled,
        repo_root=meta.repo_root,
        repo_name=meta.repo_name,
        branch=meta.branch,
    )


def load_projects(
    dirs: Sequence[Path],
    config: GlobalConfig,
    notify: Callable[[str], None] | None = None,
) -> list[ProjectContext]:
    """Load every directory, skipping the ones that fail."""
    projects = []
    for directory in dirs:
        project = load_project(directory, config, notify)
        if project is not None:
            projects.append(project)
    logger.debug("Loaded %d of %d project(s)", len(projects), len(dirs))
    return projects


@dataclass
class DuplicateGroup:
    """Projects that share one repository worktree and branch."""

    repo_root: str
    repo_name: str
    branch: str
    projects: list[ProjectContext] = field(default_factory=list)


def find_duplicate_repo_branches(projects: Sequence[ProjectContext]) -> list[DuplicateGroup]:
    groups: dict[tuple[str, str], DuplicateGroup] = {}
    for p in projects:
        if not p.git_enabled or not p.repo_root or not p.branch:
            continue
        key = (p.repo_root, p.branch)
        group = groups.setdefault(key, DuplicateGroup(p.repo_root, p.repo_name, p.branch))
        group.projects.append(p)
    return [g for g in groups.values() if len(g.projects) > 1]


class MatchKind(StrEnum):
    NONE = "none"
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class SelectorMatch:
    kind: MatchKind
    matches: tuple[ProjectContext, ...] = ()


def find_project(projects: Sequence[ProjectContext], selector: str) -> SelectorMatch:
    """Resolve a project selector.

    A unique exact name match wins; otherwise a unique case-insensitive
    substring of name, tag or directory. Several exact or partial matches
    are reported as ambiguous.
    """
    q = selector.strip().lower()
    if not q:
        return SelectorMatch(MatchKind.NONE)
    exact = tuple(p for p in projects if p.name.lower() == q)
    if len(exact) == 1:
        return SelectorMatch(MatchKind.ONE, exact)
    partial = tuple(
        p
        for p in projects
        if q in p.name.lower() or q in p.tag.lower() or q in str(p.project_root).lower()
    )
    if len(partial) == 1:
        return SelectorMatch(MatchKind.ONE, partial)
    if len(exact) > 1:
        return SelectorMatch(MatchKind.MANY, exact)
    if len(partial) > 1:
        return SelectorMatch(MatchKind.MANY, partial)
    return SelectorMatch(MatchKind.NONE)

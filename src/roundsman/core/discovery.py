"""Project discovery: find directories that carry a marker file."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from roundsman.core.config import GlobalConfig
from roundsman.core.marker import MARKER_FILENAMES, find_marker

logger = logging.getLogger(__name__)


def is_worktree_internal(path: Path) -> bool:
    """Check whether path lies under a ``.git/worktrees`` directory."""
    parts = path.resolve().parts
    return any(a == ".git" and b == "worktrees" for a, b in zip(parts, parts[1:], strict=False))


def find_project_dirs(
    root: Path,
    max_depth: int,
    ignore_dirs: set[str] | frozenset[str] = frozenset(),
) -> list[Path]:
    """Walk root depth-first and collect directories holding a marker.

    Hidden directories and names in ignore_dirs are never descended into.
    Directories are visited in name order, parents before children.

    Args:
        root: Directory to start from (depth 0).
        max_depth: Deepest level that is still inspected.
        ignore_dirs: Directory names to skip.

    Returns:
        Project directories in visit order.

    """
    found: list[Path] = []
    # Stack of (path, depth); children pushed in reverse for name order
    stack: list[tuple[Path, int]] = [(root, 0)]

    while stack:
        directory, depth = stack.pop()
        if depth > max_depth or is_worktree_internal(directory):
            continue
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            logger.debug("Cannot scan directory %s: %s", directory, e)
            continue

        children: list[Path] = []
        has_marker = False
        for entry in entries:
            try:
                if entry.name in MARKER_FILENAMES and entry.is_file():
                    has_marker = True
                elif (
                    entry.is_dir(follow_symlinks=False)
                    and not entry.name.startswith(".")
                    and entry.name not in ignore_dirs
                ):
                    children.append(Path(entry.path))
            except OSError as e:
                logger.debug("Error processing entry %s: %s", entry.path, e)

        if has_marker:
            found.append(directory)
        stack.extend((child, depth + 1) for child in reversed(children))

    return found


def resolve_scan_roots(path_arg: str, config: GlobalConfig) -> list[Path]:
    """Pick the roots to scan: explicit path, configured roots, or home."""
    if path_arg:
        return [Path(path_arg).resolve()]
    if config.scan_roots:
        return [Path(r) for r in config.scan_roots]
    return [Path.home()]


def scan_project_dirs(roots: list[Path], config: GlobalConfig) -> list[Path]:
    """Scan every root and merge results, dropping duplicates."""
    ignore = set(config.ignore_dirs)
    seen: dict[Path, None] = {}
    for root in roots:
        for directory in find_project_dirs(root, config.max_depth, ignore):
            seen.setdefault(directory, None)
    return list(seen)


@dataclass
class ScanReport:
    """Scan-only result, as printed by ``--json``."""

    roots: list[Path]
    dirs: list[Path] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.dirs)

    def to_dict(self) -> dict[str, Any]:
        projects = []
        for directory in self.dirs:
            marker = find_marker(directory)
            projects.append({"dir": str(directory), "marker": str(marker) if marker else ""})
        return {"roots": [str(r) for r in self.roots], "count": self.count, "projects": projects}

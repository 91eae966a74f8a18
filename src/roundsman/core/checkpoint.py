"""Git checkpoint commits.

Checkpoints are ordinary commits scoped to the project directory, made with
the external ``git`` command. Failures never propagate: a project outside a
worktree, or a git binary that is missing, simply gets no checkpoint.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Commit subjects that /revert is allowed to undo
REVERTIBLE_MARKERS = ("roundsman turn", "roundsman pre-turn")


@dataclass(frozen=True)
class GitResult:
    ok: bool
    stdout: str = ""
    stderr: str = ""


@dataclass(frozen=True)
class GitMeta:
    """Repository facts for a project directory.

    Attributes:
        enabled: True when the directory is inside a git worktree.
        repo_root: Worktree top-level directory.
        repo_name: Basename of repo_root.
        branch: Current branch, ``(detached)`` for a detached HEAD.

    """

    enabled: bool = False
    repo_root: str = ""
    repo_name: str = ""
    branch: str = ""


def git(args: list[str], cwd: Path) -> GitResult:
    """Run git synchronously and capture its output."""
    try:
        proc = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
            check=False,
        )
    except OSError as e:
        logger.debug("git %s failed in %s: %s", " ".join(args), cwd, e)
        return GitResult(ok=False, stderr=str(e))
    return GitResult(ok=proc.returncode == 0, stdout=proc.stdout, stderr=proc.stderr)


def git_meta(directory: Path) -> GitMeta:
    root = git(["rev-parse", "--show-toplevel"], directory)
    repo_root = root.stdout.strip()
    if not root.ok or not repo_root:
        return GitMeta()
    branch = git(["branch", "--show-current"], directory)
    name = branch.stdout.strip() if branch.ok else ""
    return GitMeta(
        enabled=True,
        repo_root=repo_root,
        repo_name=Path(repo_root).name,
        branch=name or "(detached)",
    )


def init_repo(directory: Path) -> bool:
    """Run ``git init`` in directory."""
    result = git(["init"], directory)
    if not result.ok:
        logger.warning("git init failed in %s: %s", directory, result.stderr.strip())
    return result.ok


def checkpoint(directory: Path, message: str) -> bool:
    """Commit pending changes under directory, if any.

    Only paths inside the project directory are staged and committed, so a
    project that is a subdirectory of a larger repository never commits its
    siblings' changes.

    Args:
        directory: Project directory.
        message: Commit message.

    Returns:
        True if a commit was created.

    """
    root = git(["rev-parse", "--show-toplevel"], directory)
    repo_root = root.stdout.strip()
    if not root.ok or not repo_root:
        return False

    top = Path(repo_root)
    rel = os.path.relpath(directory.resolve(), top.resolve())
    scope = [] if rel == "." else ["--", rel]

    # Pathspecs are relative to the worktree root
    status = git(["status", "--porcelain", *scope], top)
    if not status.ok or not status.stdout.strip():
        return False
    if not git(["add", "-A", *scope], top).ok:
        return False
    commit = git(["commit", "-m", message, *scope], top)
    if not commit.ok:
        logger.warning("Checkpoint commit failed in %s: %s", directory, commit.stderr.strip())
        return False
    logger.debug("Checkpoint in %s: %s", directory, message)
    return True


def revert_last_checkpoint(directory: Path) -> str:
    """Revert HEAD if it is a roundsman turn checkpoint.

    Returns:
        Empty string on success, otherwise a description of why nothing
        was reverted.

    """
    last = git(["log", "--oneline", "-1"], directory)
    subject = last.stdout.strip()
    if not last.ok or not subject:
        return "no commits to revert"
    if not any(marker in subject for marker in REVERTIBLE_MARKERS):
        return f"last commit is not a roundsman turn: {subject}"

    reverted = git(["revert", "HEAD", "--no-edit"], directory)
    if not reverted.ok:
        return f"revert failed: {reverted.stderr.strip()[:200]}"
    return ""

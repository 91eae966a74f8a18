"""Tests for roundsman.core.discovery module."""

from pathlib import Path

from roundsman.core.config import GlobalConfig
from roundsman.core.discovery import (
    ScanReport,
    find_project_dirs,
    is_worktree_internal,
    resolve_scan_roots,
    scan_project_dirs,
)


def _mark(directory: Path, name: str = "roundsman.json") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / name).write_text("{}")
    return directory


class TestFindProjectDirs:
    """Tests for the recursive marker scan."""

    def test_finds_nested_projects_in_name_order(self, tmp_path: Path) -> None:
        b = _mark(tmp_path / "b")
        a = _mark(tmp_path / "a")
        a_sub = _mark(tmp_path / "a" / "sub", name="roundsman")

        assert find_project_dirs(tmp_path, 10) == [a, a_sub, b]

    def test_root_itself_can_be_a_project(self, tmp_path: Path) -> None:
        _mark(tmp_path, name=".roundsman")

        assert find_project_dirs(tmp_path, 10) == [tmp_path]

    def test_skips_hidden_and_ignored(self, tmp_path: Path) -> None:
        _mark(tmp_path / ".cache" / "p")
        _mark(tmp_path / "node_modules" / "pkg")
        keep = _mark(tmp_path / "app")

        assert find_project_dirs(tmp_path, 10, {"node_modules"}) == [keep]

    def test_respects_max_depth(self, tmp_path: Path) -> None:
        shallow = _mark(tmp_path / "one")
        _mark(tmp_path / "one" / "two" / "three")

        assert find_project_dirs(tmp_path, 1) == [shallow]

    def test_depth_zero_checks_root_only(self, tmp_path: Path) -> None:
        _mark(tmp_path / "child")

        assert find_project_dirs(tmp_path, 0) == []

    def test_missing_root(self, tmp_path: Path) -> None:
        assert find_project_dirs(tmp_path / "nope", 10) == []

    def test_directory_named_like_marker_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / "roundsman").mkdir()

        assert find_project_dirs(tmp_path, 10) == []


class TestWorktreeInternal:
    """Tests for is_worktree_internal()."""

    def test_detects_git_worktrees(self, tmp_path: Path) -> None:
        assert is_worktree_internal(tmp_path / ".git" / "worktrees" / "feature")

    def test_regular_path(self, tmp_path: Path) -> None:
        assert not is_worktree_internal(tmp_path / "git" / "worktrees")


class TestScanRoots:
    """Tests for root resolution and merged scans."""

    def test_explicit_path_wins(self, tmp_path: Path) -> None:
        config = GlobalConfig.model_validate({"scanRoots": ["/elsewhere"]})

        assert resolve_scan_roots(str(tmp_path), config) == [tmp_path.resolve()]

    def test_configured_roots(self) -> None:
        config = GlobalConfig.model_validate({"scanRoots": ["/a", "/b"]})

        assert resolve_scan_roots("", config) == [Path("/a"), Path("/b")]

    def test_home_default(self) -> None:
        assert resolve_scan_roots("", GlobalConfig()) == [Path.home()]

    def test_overlapping_roots_deduplicate(self, tmp_path: Path) -> None:
        project = _mark(tmp_path / "x" / "p")

        dirs = scan_project_dirs([tmp_path, tmp_path / "x"], GlobalConfig())

        assert dirs == [project]


class TestScanReport:
    """Tests for the scan-only report."""

    def test_to_dict(self, tmp_path: Path) -> None:
        project = _mark(tmp_path / "p", name="roundsman")

        report = ScanReport(roots=[tmp_path], dirs=[project])

        assert report.count == 1
        assert report.to_dict() == {
            "roots": [str(tmp_path)],
            "count": 1,
            "projects": [{"dir": str(project), "marker": str(project / "roundsman")}],
        }

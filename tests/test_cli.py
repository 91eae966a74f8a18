"""Tests for the roundsman command line (roundsman.cli)."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from roundsman.cli import app
from roundsman.cli_utils import EXIT_ERROR, EXIT_SUCCESS, color_enabled
from roundsman.core.marker import load_marker

from tests.conftest import write_marker

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the global config lookup at an empty directory."""
    config_home = tmp_path / "xdg"
    config_home.mkdir()
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("NO_COLOR", "1")
    return config_home


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "code"
    write_marker(root / "api", {"prompt": "api"})
    write_marker(root / "web", name="roundsman")
    return root


class TestAdd:
    """Tests for `roundsman add`."""

    def test_creates_marker(self, tmp_path: Path) -> None:
        target = tmp_path / "new-project"

        result = runner.invoke(app, ["add", str(target)])

        assert result.exit_code == EXIT_SUCCESS
        marker = target / "roundsman.json"
        assert f"Created {marker}" in result.output
        assert json.loads(marker.read_text())["todos"] == []

    def test_existing_marker_fails(self, tmp_path: Path) -> None:
        target = tmp_path / "p"
        write_marker(target)

        result = runner.invoke(app, ["add", str(target)])

        assert result.exit_code == EXIT_ERROR
        assert "Error: project marker already exists" in result.output

    def test_file_target_fails(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        target.write_text("x")

        result = runner.invoke(app, ["add", str(target)])

        assert result.exit_code == EXIT_ERROR
        assert "Error: not a directory" in result.output


class TestInit:
    """Tests for `roundsman init`."""

    def test_asks_for_prompt_and_todos(self, tmp_path: Path) -> None:
        target = tmp_path / "svc"

        result = runner.invoke(app, ["init", str(target)], input="billing service\nwrite tests, ship ,\n")

        assert result.exit_code == EXIT_SUCCESS
        marker = load_marker(target / "roundsman.json")
        assert marker.prompt == "billing service"
        assert marker.todos == ["write tests", "ship"]


class TestScanOnly:
    """Tests for list, --dry-run and --json."""

    def test_list(self, workspace: Path) -> None:
        result = runner.invoke(app, ["list", str(workspace)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Found 2 project(s):" in result.output
        assert str(workspace / "api") in result.output

    def test_json(self, workspace: Path) -> None:
        result = runner.invoke(app, [str(workspace), "--json"])

        assert result.exit_code == EXIT_SUCCESS
        report = json.loads(result.output)
        assert report["count"] == 2
        assert [p["marker"] for p in report["projects"]] == [
            str(workspace / "api" / "roundsman.json"),
            str(workspace / "web" / "roundsman"),
        ]

    def test_dry_run(self, workspace: Path) -> None:
        result = runner.invoke(app, [str(workspace), "--dry-run"])

        assert result.exit_code == EXIT_SUCCESS
        assert "Dry run complete." in result.output

    def test_empty_scan(self, tmp_path: Path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()

        result = runner.invoke(app, [str(empty)])

        assert result.exit_code == EXIT_SUCCESS
        assert "No projects found." in result.output
        assert f"roundsman add {empty / 'my-project'}" in result.output

    def test_unexpected_argument(self, workspace: Path) -> None:
        result = runner.invoke(app, [str(workspace), "extra"])

        assert result.exit_code == EXIT_ERROR
        assert "Error: unexpected argument: extra" in result.output

    def test_invalid_config_falls_back(self, workspace: Path, isolated_config: Path) -> None:
        config_dir = isolated_config / "roundsman"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("scanRoots: [\n")

        result = runner.invoke(app, ["list", str(workspace)])

        assert result.exit_code == EXIT_SUCCESS
        assert "warning: invalid global config" in result.output
        assert "Found 2 project(s):" in result.output


class TestStartup:
    """Tests for the path up to the REPL."""

    def test_quit_at_start_prompt(self, workspace: Path) -> None:
        result = runner.invoke(app, [str(workspace)], input="q\n")

        assert result.exit_code == EXIT_SUCCESS
        assert "round-robin:" in result.output
        assert load_marker(workspace / "api" / "roundsman.json").session.session_id

    def test_all_locked(self, tmp_path: Path) -> None:
        root = tmp_path / "code"
        write_marker(root / "api", {"lock": True})

        result = runner.invoke(app, [str(root)])

        assert result.exit_code == EXIT_SUCCESS
        assert "(locked)" in result.output
        assert "All projects locked or invalid." in result.output


class TestColorEnabled:
    """Tests for color_enabled()."""

    class _Tty:
        def isatty(self) -> bool:
            return True

    def test_tty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)

        assert color_enabled(stream=self._Tty()) is True
        assert color_enabled(no_color=True, stream=self._Tty()) is False

    def test_no_color_env(self) -> None:
        assert color_enabled(stream=self._Tty()) is False

    def test_pipe(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("NO_COLOR", raising=False)

        assert color_enabled(stream=object()) is False

"""Pytest configuration and fixtures for roundsman tests."""

import io
import json
import stat
import sys
import textwrap
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from rich.console import Console

from roundsman.core.config import GlobalConfig
from roundsman.core.marker import load_marker
from roundsman.manager.project_context import ProjectContext
from roundsman.repl.display import Display, RenderConfig


class CapturedDisplay(Display):
    """Display writing to an in-memory console."""

    def __init__(self) -> None:
        console = Console(file=io.StringIO(), width=400, color_system=None, force_terminal=False)
        super().__init__(console, RenderConfig(color=False, show_full_path=False))

    @property
    def text(self) -> str:
        return self.console.file.getvalue()

    @property
    def lines(self) -> list[str]:
        return self.text.splitlines()


@pytest.fixture
def display() -> CapturedDisplay:
    """Display capturing all output."""
    return CapturedDisplay()


@pytest.fixture
def config() -> GlobalConfig:
    """Default config with checkpoints off."""
    return GlobalConfig()


def write_marker(directory: Path, document: dict[str, Any] | None = None, name: str = "roundsman.json") -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(json.dumps(document or {}), encoding="utf-8")
    return path


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[..., ProjectContext]:
    """Factory creating a project directory with a marker and its context."""

    def factory(name: str, document: dict[str, Any] | None = None, **fields: Any) -> ProjectContext:
        directory = tmp_path / name
        path = write_marker(directory, document)
        marker = load_marker(path)
        marker.session.ensure_id()
        return ProjectContext(
            project_root=directory,
            display_name=name,
            marker_path=path,
            marker=marker,
            **fields,
        )

    return factory


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script run by the current interpreter."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def fake_agent(tmp_path: Path) -> Callable[[str], GlobalConfig]:
    """Factory writing a fake agent script and returning a config that uses it.

    The script body sees ``sys.argv`` exactly as the real agent would: the
    flags followed by the prompt.
    """

    def factory(body: str, **overrides: Any) -> GlobalConfig:
        script = write_script(tmp_path / "fake_agent.py", body)
        return GlobalConfig.model_validate({"claudeBin": str(script), **overrides})

    return factory

"""Tests for roundsman.core.config (global configuration).

Every field must fall back to its default independently, and an unreadable
file must never prevent startup.
"""

from pathlib import Path

import pytest

from roundsman.core.config import (
    GlobalConfig,
    load_global_config,
    parse_global_config,
    read_config_document,
    resolve_config_dir,
    resolve_global_config_path,
)
from roundsman.core.exceptions import ConfigError


class TestParseGlobalConfig:
    """Tests for field normalization."""

    def test_defaults(self) -> None:
        config = parse_global_config(None)

        assert config.scan_roots == []
        assert config.ignore_dirs == ["node_modules"]
        assert config.max_depth == 10
        assert config.max_history == 20
        assert config.default_model == ""
        assert config.default_permission_mode == "acceptEdits"
        assert config.agent_bin == "claude"
        assert config.checkpoint.enabled is False
        assert config.checkpoint.pre_turn is True
        assert config.checkpoint.post_turn is True
        assert config.checkpoint.auto_init_git is False
        assert config.ui.show_full_path is True
        assert config.ui.preview_chars == 200
        assert config.ui.stream_preview_chars == 240

    def test_valid_values(self) -> None:
        config = parse_global_config(
            {
                "scanRoots": ["/srv/code"],
                "ignoreDirs": ["vendor", "dist"],
                "maxDepth": 0,
                "maxHistory": 5,
                "defaultModel": "  sonnet  ",
                "apiKeyEnvVar": "MY_KEY",
                "defaultPermissionMode": "plan",
                "checkpoint": {"enabled": True, "preTurn": False, "autoInitGit": True},
                "claudeBin": "/opt/agent",
                "ui": {"showFullPath": False, "previewChars": 80, "streamPreviewChars": 100},
            }
        )

        assert config.scan_roots == ["/srv/code"]
        assert config.ignore_dirs == ["vendor", "dist"]
        assert config.max_depth == 0
        assert config.max_history == 5
        assert config.default_model == "sonnet"
        assert config.api_key_env_var == "MY_KEY"
        assert config.default_permission_mode == "plan"
        assert config.checkpoint.enabled is True
        assert config.checkpoint.pre_turn is False
        assert config.checkpoint.post_turn is True
        assert config.checkpoint.auto_init_git is True
        assert config.agent_bin == "/opt/agent"
        assert config.ui.show_full_path is False
        assert config.ui.preview_chars == 80
        assert config.ui.stream_preview_chars == 100

    def test_each_bad_field_falls_back_alone(self) -> None:
        config = parse_global_config(
            {
                "scanRoots": "not-a-list",
                "maxDepth": -2,
                "maxHistory": 0,
                "defaultModel": 12,
                "checkpoint": "on",
                "claudeBin": "",
                "ui": {"previewChars": "wide"},
                "defaultPermissionMode": "bypassPermissions",
            }
        )

        assert config.scan_roots == []
        assert config.max_depth == 10
        assert config.max_history == 20
        assert config.default_model == ""
        assert config.checkpoint.enabled is False
        assert config.agent_bin == "claude"
        assert config.ui.preview_chars == 200
        assert config.default_permission_mode == "bypassPermissions"

    def test_only_literal_true_enables_checkpoints(self) -> None:
        assert parse_global_config({"checkpoint": {"enabled": "true"}}).checkpoint.enabled is False

    def test_home_expansion(self) -> None:
        config = parse_global_config({"scanRoots": ["~/code", "~"]})

        assert config.scan_roots == [str(Path.home() / "code"), str(Path.home())]

    def test_config_is_frozen(self) -> None:
        config = GlobalConfig()

        with pytest.raises(Exception):
            config.max_depth = 3  # type: ignore[misc]


class TestConfigPaths:
    """Tests for config file resolution."""

    def test_xdg_config_home(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        assert resolve_config_dir() == tmp_path / "roundsman"
        assert resolve_global_config_path() == tmp_path / "roundsman" / "config.json"

    def test_existing_yaml_wins(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        config_dir = tmp_path / "roundsman"
        config_dir.mkdir()
        (config_dir / "config.yaml").write_text("maxDepth: 3\n")
        (config_dir / "config.json").write_text("{}")

        assert resolve_global_config_path() == config_dir / "config.yaml"

    def test_home_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)

        assert resolve_config_dir() == Path.home() / ".roundsman"


class TestLoadGlobalConfig:
    """Tests for load_global_config()."""

    def test_missing_file(self, tmp_path: Path) -> None:
        loaded = load_global_config(tmp_path / "config.json")

        assert loaded.exists is False
        assert loaded.error == ""
        assert loaded.config == GlobalConfig()

    def test_yaml_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("maxDepth: 4\nui:\n  previewChars: 50\n")

        loaded = load_global_config(path)

        assert loaded.exists is True
        assert loaded.config.max_depth == 4
        assert loaded.config.ui.preview_chars == 50

    def test_json_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text('{"maxHistory": 7, "claudeBin": "agent"}')

        loaded = load_global_config(path)

        assert loaded.config.max_history == 7
        assert loaded.config.agent_bin == "agent"

    def test_broken_file_uses_defaults(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text('{"maxDepth": [1,')

        loaded = load_global_config(path)

        assert loaded.error
        assert loaded.config == GlobalConfig()

    def test_non_mapping_document(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        assert load_global_config(path).config == GlobalConfig()

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("")

        loaded = load_global_config(path)

        assert loaded.error == ""
        assert loaded.config == GlobalConfig()

    def test_read_config_document_raises_config_error(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("a: [\n")

        with pytest.raises(ConfigError):
            read_config_document(path)

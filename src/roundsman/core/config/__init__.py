"""Global configuration loading.

Resolves the user-wide config file, parses it with PyYAML (which also
accepts plain JSON) and normalizes it into a GlobalConfig. A broken file
never prevents startup: it is reported and defaults are used instead.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from roundsman.core.config.models import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_HISTORY,
    CheckpointConfig,
    GlobalConfig,
    UIConfig,
    expand_home,
)
from roundsman.core.exceptions import ConfigError

__all__ = [
    "CONFIG_FILENAMES",
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_HISTORY",
    "CheckpointConfig",
    "GlobalConfig",
    "LoadedConfig",
    "UIConfig",
    "expand_home",
    "load_global_config",
    "parse_global_config",
    "read_config_document",
    "resolve_config_dir",
    "resolve_global_config_path",
]

logger = logging.getLogger(__name__)

# Checked in order; the first existing file wins
CONFIG_FILENAMES = ("config.yaml", "config.yml", "config.json")


@dataclass(frozen=True)
class LoadedConfig:
    """Result of loading the global config file.

    Attributes:
        config: Normalized configuration (defaults when unreadable).
        path: File that was (or would be) read.
        exists: Whether the file exists on disk.
        error: Parse error description, empty when the file was valid.

    """

    config: GlobalConfig
    path: Path
    exists: bool
    error: str = ""


def resolve_config_dir() -> Path:
    """Return the directory holding the global config file."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "roundsman"
    return Path.home() / ".roundsman"


def resolve_global_config_path() -> Path:
    """Return the config file to read, preferring existing files."""
    config_dir = resolve_config_dir()
    for name in CONFIG_FILENAMES:
        candidate = config_dir / name
        if candidate.is_file():
            return candidate
    return config_dir / "config.json"


def parse_global_config(raw: Any) -> GlobalConfig:
    """Normalize a decoded config document.

    Args:
        raw: Decoded YAML/JSON value; anything but a mapping yields defaults.

    Returns:
        GlobalConfig with every malformed field replaced by its default.

    """
    if not isinstance(raw, dict):
        return GlobalConfig()
    return GlobalConfig.model_validate(raw)


def _describe_yaml_error(err: yaml.YAMLError) -> str:
    mark = getattr(err, "problem_mark", None)
    problem = getattr(err, "problem", None) or str(err)
    if mark is None:
        return str(problem)
    return f"{problem} (line {mark.line + 1}, col {mark.column + 1})"


def read_config_document(path: Path) -> Any:
    """Read and decode a config file.

    Returns:
        Decoded document, None for an empty file.

    Raises:
        ConfigError: If the file cannot be read or is not valid YAML/JSON.

    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    if not text.strip():
        return None
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(_describe_yaml_error(e)) from e


def load_global_config(path: Path | None = None) -> LoadedConfig:
    """Load the global config file.

    Args:
        path: Explicit file to read. Defaults to resolve_global_config_path().

    Returns:
        LoadedConfig; read and parse failures are logged and reported via
        ``error`` with defaults in ``config``.

    """
    config_path = path or resolve_global_config_path()
    if not config_path.is_file():
        return LoadedConfig(config=GlobalConfig(), path=config_path, exists=False)

    try:
        raw = read_config_document(config_path)
    except ConfigError as e:
        logger.warning("Invalid global config %s: %s", config_path, e)
        return LoadedConfig(config=GlobalConfig(), path=config_path, exists=True, error=str(e))

    return LoadedConfig(config=parse_global_config(raw), path=config_path, exists=True)

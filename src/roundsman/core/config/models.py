"""Global configuration models.

Every field falls back to its default independently when the stored value
is missing or malformed, so one bad key never prevents startup.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_MAX_DEPTH = 10
DEFAULT_MAX_HISTORY = 20
DEFAULT_PERMISSION_MODE = "acceptEdits"
DEFAULT_AGENT_BIN = "claude"
DEFAULT_PREVIEW_CHARS = 200
DEFAULT_STREAM_PREVIEW_CHARS = 240


def _positive_int(value: Any, default: int, *, allow_zero: bool = False) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    if value < 0 or (value == 0 and not allow_zero):
        return default
    return value


def expand_home(value: str) -> str:
    """Expand a leading ``~`` the way a shell would."""
    if value == "~":
        return str(Path.home())
    if value.startswith("~/"):
        return str(Path.home() / value[2:])
    return value


class CheckpointConfig(BaseModel):
    """Git checkpoint options.

    Attributes:
        enabled: Master switch for checkpoint commits.
        pre_turn: Commit pending changes before each agent turn.
        post_turn: Commit the agent's changes after each turn.
        auto_init_git: Run ``git init`` in projects outside a worktree.

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = False
    pre_turn: bool = Field(default=True, alias="preTurn")
    post_turn: bool = Field(default=True, alias="postTurn")
    auto_init_git: bool = Field(default=False, alias="autoInitGit")

    @field_validator("enabled", "auto_init_git", mode="before")
    @classmethod
    def opt_in(cls, v: Any) -> bool:
        """Only a literal true enables an opt-in flag."""
        return v is True

    @field_validator("pre_turn", "post_turn", mode="before")
    @classmethod
    def opt_out(cls, v: Any) -> bool:
        """Only a literal false disables an opt-out flag."""
        return v is not False


class UIConfig(BaseModel):
    """Display options."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    show_full_path: bool = Field(default=True, alias="showFullPath")
    preview_chars: int = Field(default=DEFAULT_PREVIEW_CHARS, alias="previewChars")
    stream_preview_chars: int = Field(
        default=DEFAULT_STREAM_PREVIEW_CHARS, alias="streamPreviewChars"
    )

    @field_validator("show_full_path", mode="before")
    @classmethod
    def opt_out(cls, v: Any) -> bool:
        return v is not False

    @field_validator("preview_chars", mode="before")
    @classmethod
    def coerce_preview(cls, v: Any) -> int:
        return _positive_int(v, DEFAULT_PREVIEW_CHARS)

    @field_validator("stream_preview_chars", mode="before")
    @classmethod
    def coerce_stream_preview(cls, v: Any) -> int:
        return _positive_int(v, DEFAULT_STREAM_PREVIEW_CHARS)


class GlobalConfig(BaseModel):
    """User-wide roundsman configuration.

    Attributes:
        scan_roots: Directories scanned when no path is given.
        ignore_dirs: Directory names never descended into.
        max_depth: Maximum recursion depth for marker discovery.
        max_history: Turn records retained per project session.
        default_model: Model passed to the agent unless overridden.
        api_key_env_var: Env var whose value is forwarded as the agent key.
        default_permission_mode: Agent permission mode flag value.
        checkpoint: Git checkpoint options.
        agent_bin: Agent executable name or path.
        ui: Display options.

    Example:
        >>> GlobalConfig.model_validate({"maxDepth": -1}).max_depth
        10

    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    scan_roots: list[str] = Field(default_factory=list, alias="scanRoots")
    ignore_dirs: list[str] = Field(
        default_factory=lambda: ["node_modules"], alias="ignoreDirs"
    )
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, alias="maxDepth")
    max_history: int = Field(default=DEFAULT_MAX_HISTORY, alias="maxHistory")
    default_model: str = Field(default="", alias="defaultModel")
    api_key_env_var: str = Field(default="", alias="apiKeyEnvVar")
    default_permission_mode: str = Field(
        default=DEFAULT_PERMISSION_MODE, alias="defaultPermissionMode"
    )
    checkpoint: CheckpointConfig = Field(default_factory=CheckpointConfig)
    agent_bin: str = Field(default=DEFAULT_AGENT_BIN, alias="claudeBin")
    ui: UIConfig = Field(default_factory=UIConfig)

    @field_validator("scan_roots", mode="before")
    @classmethod
    def coerce_roots(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [expand_home(str(x)) for x in v if str(x)]

    @field_validator("ignore_dirs", mode="before")
    @classmethod
    def coerce_ignores(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            return []
        return [str(x) for x in v if str(x)]

    @field_validator("max_depth", mode="before")
    @classmethod
    def coerce_depth(cls, v: Any) -> int:
        return _positive_int(v, DEFAULT_MAX_DEPTH, allow_zero=True)

    @field_validator("max_history", mode="before")
    @classmethod
    def coerce_history(cls, v: Any) -> int:
        return _positive_int(v, DEFAULT_MAX_HISTORY)

    @field_validator("default_model", "api_key_env_var", mode="before")
    @classmethod
    def coerce_trimmed(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("default_permission_mode", mode="before")
    @classmethod
    def coerce_permission(cls, v: Any) -> str:
        return v if isinstance(v, str) and v else DEFAULT_PERMISSION_MODE

    @field_validator("agent_bin", mode="before")
    @classmethod
    def coerce_agent_bin(cls, v: Any) -> str:
        return v if isinstance(v, str) and v else DEFAULT_AGENT_BIN

    @field_validator("checkpoint", "ui", mode="before")
    @classmethod
    def coerce_section(cls, v: Any) -> dict[str, Any] | BaseModel:
        if isinstance(v, BaseModel):
            return v
        return v if isinstance(v, dict) else {}

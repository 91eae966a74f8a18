"""Exception hierarchy for roundsman.

All errors raised by roundsman derive from RoundsmanError so callers can
contain per-project failures with a single except clause.
"""

__all__ = [
    "AgentError",
    "ConfigError",
    "MarkerError",
    "RoundsmanError",
]


class RoundsmanError(Exception):
    """Base class for all roundsman errors."""


class ConfigError(RoundsmanError):
    """Global configuration could not be read."""


class MarkerError(RoundsmanError):
    """Project marker file is unreadable or structurally invalid.

    Attributes:
        path: Marker file path (as string) the error refers to.

    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class AgentError(RoundsmanError):
    """Agent subprocess could not be started or supervised."""

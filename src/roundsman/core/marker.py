"""Project marker file model and persistence.

A marker file (``roundsman.json``, ``roundsman`` or ``.roundsman``) marks a
directory as a managed project. Its known keys are modelled as typed
fields; every other top-level key is kept verbatim as open metadata
(pydantic ``extra="allow"``) and written back unchanged.

The ``session`` block carries conversation continuity:

    {
      "sessionId": "0b6f...",
      "turn": 3,
      "summary": "Added the login form",
      "history": [{"at": "...", "result": "...", "cost": 0.01,
                   "turns": 4, "input": "add login"}]
    }
"""

import json
import logging
import os
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

from roundsman.core.config.models import DEFAULT_MAX_HISTORY
from roundsman.core.exceptions import MarkerError

logger = logging.getLogger(__name__)

MARKER_FILENAMES = ("roundsman.json", "roundsman", ".roundsman")

RESERVED_KEYS = frozenset(
    {"prompt", "todos", "doing", "done", "lock", "session", "macros", "watch", "hooks"}
)

# Results starting with this prefix are failed turns
ERROR_PREFIX = "error:"

MAX_RESULT_CHARS = 2000
MAX_SUMMARY_CHARS = 500


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string with millis."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_list(value: Any) -> list[str]:
    """Coerce a work-item field into a list of strings.

    Examples:
        >>> normalize_list("one")
        ['one']
        >>> normalize_list(None)
        []
        >>> normalize_list(["x", 2])
        ['x', '2']

    """
    if isinstance(value, list):
        return [_js_str(x) for x in value]
    if value is None or value == "":
        return []
    return [_js_str(value)]


def _js_str(value: Any) -> str:
    # JSON-native rendering so true/null round-trip as written
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


class TurnRecord(BaseModel):
    """One completed agent turn. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    at: str = Field(default_factory=now_iso)
    result: str = ""
    cost: float = 0.0
    turns: int = 0
    input: str = ""

    @field_validator("at", mode="before")
    @classmethod
    def coerce_at(cls, v: Any) -> str:
        return v if isinstance(v, str) else now_iso()

    @field_validator("result", "input", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("cost", mode="before")
    @classmethod
    def coerce_cost(cls, v: Any) -> float:
        return float(v) if _is_number(v) else 0.0

    @field_validator("turns", mode="before")
    @classmethod
    def coerce_turns(cls, v: Any) -> int:
        return int(v) if _is_number(v) else 0

    @property
    def is_error(self) -> bool:
        return self.result.startswith(ERROR_PREFIX)


class Session(BaseModel):
    """Persisted conversation state of one project.

    Attributes:
        session_id: Continuity token handed to the agent.
        turn: Count of completed turns, never decreases except on reset.
        summary: Most recent successful result (truncated).
        history: Most recent turn records, oldest first.

    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(default="", alias="sessionId")
    turn: int = 0
    summary: str = ""
    history: list[TurnRecord] = Field(default_factory=list)

    @field_validator("session_id", "summary", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("turn", mode="before")
    @classmethod
    def coerce_turn(cls, v: Any) -> int:
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            return 0
        return v

    @field_validator("history", mode="before")
    @classmethod
    def coerce_history(cls, v: Any, info: ValidationInfo) -> list[Any]:
        items = [h for h in v if isinstance(h, dict | TurnRecord)] if isinstance(v, list) else []
        max_history = (info.context or {}).get("max_history", DEFAULT_MAX_HISTORY)
        return items[-max_history:]

    @classmethod
    def normalize(cls, raw: Any, max_history: int = DEFAULT_MAX_HISTORY) -> "Session":
        """Build a Session from an untrusted decoded value."""
        data = raw if isinstance(raw, dict) else {}
        return cls.model_validate(data, context={"max_history": max_history})

    def ensure_id(self) -> bool:
        """Assign a continuity token on first contact.

        Returns:
            True if a new token was generated.

        """
        if self.session_id:
            return False
        self.session_id = str(uuid.uuid4())
        return True

    def reset(self) -> None:
        """Start a new conversation: fresh token, empty history."""
        self.session_id = str(uuid.uuid4())
        self.turn = 0
        self.summary = ""
        self.history = []

    def append(self, record: TurnRecord, max_history: int = DEFAULT_MAX_HISTORY) -> None:
        """Append a turn record, evicting the oldest beyond max_history."""
        self.history = [*self.history, record][-max_history:]

    def pop_last(self) -> TurnRecord | None:
        """Remove the newest record and recompute the summary from the rest."""
        if not self.history:
            return None
        last = self.history[-1]
        self.history = self.history[:-1]
        prev = self.history[-1] if self.history else None
        self.summary = prev.result[:MAX_SUMMARY_CHARS] if prev else ""
        return last

    def has_successful_turn(self) -> bool:
        """Check whether any retained turn produced a non-error result."""
        return any(h.result and not h.is_error for h in self.history)

    def total_cost(self) -> float:
        return sum(h.cost for h in self.history)


class HookSet(BaseModel):
    """Named lifecycle hook actions (see roundsman.providers.hooks)."""

    model_config = ConfigDict(populate_by_name=True)

    before_visit: str = Field(default="", alias="beforeVisit")
    after_visit: str = Field(default="", alias="afterVisit")
    after_watch_success: str = Field(default="", alias="afterWatchSuccess")

    @field_validator("before_visit", "after_visit", "after_watch_success", mode="before")
    @classmethod
    def coerce_action(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    def get(self, name: str) -> str:
        """Look up a hook by its marker key (e.g. ``afterWatchSuccess``)."""
        field = next(
            (f for f, info in type(self).model_fields.items() if info.alias == name or f == name),
            None,
        )
        return getattr(self, field) if field else ""


class ProjectMarker(BaseModel):
    """Contents of a project marker file.

    Known keys are typed; unknown keys land in ``metadata`` and are both
    displayed and rendered into the agent prompt.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    lock: bool = False
    prompt: str = ""
    todos: list[str] = Field(default_factory=list)
    doing: list[str] = Field(default_factory=list)
    done: list[str] = Field(default_factory=list)
    macros: dict[str, str] = Field(default_factory=dict)
    watch: str = ""
    hooks: HookSet = Field(default_factory=HookSet)
    session: Session = Field(default_factory=Session)

    @field_validator("lock", mode="before")
    @classmethod
    def coerce_lock(cls, v: Any) -> bool:
        return v is True

    @field_validator("prompt", mode="before")
    @classmethod
    def coerce_prompt(cls, v: Any) -> str:
        return _text(v)

    @field_validator("todos", "doing", "done", mode="before")
    @classmethod
    def coerce_items(cls, v: Any) -> list[str]:
        return normalize_list(v)

    @field_validator("macros", mode="before")
    @classmethod
    def coerce_macros(cls, v: Any) -> dict[str, str]:
        if not isinstance(v, dict):
            return {}
        out: dict[str, str] = {}
        for key, body in v.items():
            name = str(key).strip()
            text = body.strip() if isinstance(body, str) else ""
            if name and text:
                out[name] = text
        return out

    @field_validator("watch", mode="before")
    @classmethod
    def coerce_watch(cls, v: Any) -> str:
        return v.strip() if isinstance(v, str) else ""

    @field_validator("hooks", "session", mode="before")
    @classmethod
    def coerce_block(cls, v: Any) -> Any:
        if isinstance(v, BaseModel):
            return v
        return v if isinstance(v, dict) else {}

    @classmethod
    def normalize(cls, raw: Any, max_history: int = DEFAULT_MAX_HISTORY) -> "ProjectMarker":
        """Build a marker from an untrusted decoded value."""
        data = raw if isinstance(raw, dict) else {}
        return cls.model_validate(data, context={"max_history": max_history})

    @property
    def metadata(self) -> dict[str, Any]:
        """Top-level keys outside the reserved set, in file order."""
        extra = self.model_extra or {}
        return {k: v for k, v in extra.items() if k not in RESERVED_KEYS}

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape."""
        return self.model_dump(mode="json", by_alias=True)


def find_marker(directory: Path) -> Path | None:
    """Return the marker file inside directory, if any."""
    for name in MARKER_FILENAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def load_marker(path: Path, max_history: int = DEFAULT_MAX_HISTORY) -> ProjectMarker:
    """Read and normalize a marker file.

    An empty file is a valid marker with all defaults.

    Raises:
        MarkerError: If the file cannot be read, is not valid JSON or its
            top-level value is not an object.

    """
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise MarkerError(f"cannot read {path}: {e}", str(path)) from e
    if not text:
        return ProjectMarker.normalize({}, max_history)
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise MarkerError(f"{e.msg} (line {e.lineno}, col {e.colno})", str(path)) from e
    if not isinstance(raw, dict):
        raise MarkerError("top-level value must be an object", str(path))
    return ProjectMarker.normalize(raw, max_history)


def save_marker(path: Path, marker: ProjectMarker) -> None:
    """Write the marker atomically (temp file, then rename)."""
    write_json_atomic(path, marker.to_document())


def write_json_atomic(path: Path, document: dict[str, Any]) -> None:
    tmp = path.with_name(f"{path.name}.tmp-{os.getpid()}")
    tmp.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    os.replace(tmp, path)


def build_marker_seed(prompt: str = "", todos: list[str] | None = None) -> dict[str, Any]:
    """Return the document written for a newly added project."""
    items = [t.strip() for t in normalize_list(todos or []) if t.strip()]
    return {
        "prompt": prompt.strip(),
        "todos": items,
        "doing": [],
        "done": [],
        "macros": {},
        "watch": "",
        "hooks": HookSet().model_dump(by_alias=True),
    }


def create_marker(directory: Path, prompt: str = "", todos: list[str] | None = None) -> Path:
    """Create ``roundsman.json`` in directory, creating the directory if needed.

    Returns:
        Path of the written marker.

    Raises:
        MarkerError: If the target is not a directory or already has a marker.

    """
    target = directory.resolve()
    if target.exists() and not target.is_dir():
        raise MarkerError(f"not a directory: {target}", str(target))
    try:
        target.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MarkerError(f"cannot create {target}: {e}", str(target)) from e
    existing = find_marker(target)
    if existing is not None:
        raise MarkerError(f"project marker already exists: {existing}", str(existing))
    path = target / MARKER_FILENAMES[0]
    write_json_atomic(path, build_marker_seed(prompt, todos))
    logger.info("Created project marker %s", path)
    return path


def parse_todo_input(text: str) -> list[str]:
    """Split comma-separated todos typed at the init prompt."""
    return [x.strip() for x in text.split(",") if x.strip()]

"""Agent event-stream parsing.

The agent CLI writes one JSON event per line on stdout. This module turns
raw chunks into lines (StreamFramer), lines into events (decode_event),
events into one-line progress messages (to_progress_line) and tracks the
usage fields that arrive along the way (StreamState).

Example stream:
    {"type":"system","subtype":"init","session_id":"..."}
    {"type":"tool_use","name":"bash","input":{"cmd":"ls -la"}}
    {"type":"tool_result","content":[{"text":"ok"}]}
    {"type":"result","result":"done","total_cost_usd":0.01,"num_turns":2}
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from roundsman.core.config.models import DEFAULT_STREAM_PREVIEW_CHARS as STREAM_PREVIEW_CHARS
from roundsman.core.prompt import stringify_meta

logger = logging.getLogger(__name__)

WAIT_PHRASES = (
    "waiting for user input",
    "awaiting user input",
    "user input required",
)

_WHITESPACE = re.compile(r"\s+")


class StreamFramer:
    """Reassemble newline-terminated lines from arbitrary chunks.

    Lines are stripped; blank lines are skipped. The trailing partial line
    is carried across feed() calls until a newline or flush() completes it.

    Example:
        >>> framer = StreamFramer()
        >>> framer.feed('{"a":1}\\n{"b":')
        ['{"a":1}']
        >>> framer.feed("2}\\n")
        ['{"b":2}']

    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[str]:
        """Consume a chunk and return every line it completed."""
        data = self._buffer + chunk
        *complete, self._buffer = data.split("\n")
        return [line.strip() for line in complete if line.strip()]

    def flush(self) -> list[str]:
        """Return the unterminated remainder (if any) and reset."""
        tail = self._buffer.strip()
        self._buffer = ""
        return [tail] if tail else []


def decode_event(line: str) -> dict[str, Any] | None:
    """Decode one stream line; None for malformed or non-object records."""
    try:
        value = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Dropping malformed stream record: %.80s", line)
        return None
    return value if isinstance(value, dict) else None


def unwrap_event(event: Any) -> dict[str, Any] | None:
    """Return the inner event of a ``{"event": {...}}`` envelope."""
    if not isinstance(event, dict):
        return None
    inner = event.get("event")
    if isinstance(inner, dict):
        return inner
    return event


def extract_text(value: Any) -> str:
    """Pull human-readable text out of an event or content fragment.

    Strings are returned as is, lists are joined with spaces and mappings
    are searched for ``text``, ``output``, ``result`` and ``message``
    before descending into ``delta`` and ``content``.
    """
    if not value:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return " ".join(t for t in (extract_text(v) for v in value) if t)
    if not isinstance(value, dict):
        return str(value)

    for key in ("text", "output", "result", "message"):
        candidate = value.get(key)
        if isinstance(candidate, str) and candidate:
            return candidate
    if value.get("delta"):
        return extract_text(value["delta"])
    if value.get("content"):
        return extract_text(value["content"])
    if isinstance(value.get("message"), dict):
        return extract_text(value["message"])
    return ""


def preview_text(value: Any, max_chars: int = STREAM_PREVIEW_CHARS) -> str:
    """Collapse whitespace and truncate to max_chars with ``...``."""
    text = _WHITESPACE.sub(" ", str(value or "")).strip()
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 3] + "..."


def _step_line(name: Any, tool_input: Any, max_chars: int) -> str:
    label = str(name or "tool")
    detail = preview_text(stringify_meta(tool_input or ""), max_chars)
    return f"[step] {label} {detail}" if detail else f"[step] {label}"


def to_progress_line(event: Any, max_chars: int = STREAM_PREVIEW_CHARS) -> str:
    """Classify an event into a single progress line.

    Returns:
        One of ``[step] ...``, ``[output] ...``, ``[agent] ...``,
        ``[error] ...`` or ``[system] ...``; empty string when the event
        has nothing to show.

    """
    e = unwrap_event(event)
    if e is None:
        return ""
    kind = e.get("type")

    block = e.get("content_block")
    if kind == "content_block_start" and isinstance(block, dict) and block.get("type") == "tool_use":
        return _step_line(block.get("name"), block.get("input"), max_chars)

    if kind == "tool_use":
        return _step_line(e.get("name"), e.get("input"), max_chars)

    if kind == "tool_result":
        out = preview_text(extract_text(e), max_chars)
        return f"[output] {out}" if out else "[output]"

    if kind == "assistant" or (kind == "message" and e.get("role") == "assistant"):
        out = preview_text(extract_text(e), max_chars)
        return f"[agent] {out}" if out else ""

    if kind == "error":
        out = preview_text(extract_text(e) or stringify_meta(e.get("error") or ""), max_chars)
        return f"[error] {out or 'agent error'}"

    if kind == "system":
        out = preview_text(extract_text(e), max_chars)
        return f"[system] {out}" if out else ""

    return ""


def is_input_wait_text(text: str) -> bool:
    """Check plain text for one of the known wait phrases."""
    lowered = text.lower()
    return any(phrase in lowered for phrase in WAIT_PHRASES)


def is_input_wait_event(event: Any) -> bool:
    """Check whether an event signals the agent is blocked on a human.

    Example:
        >>> is_input_wait_event({"type": "assistant", "text": "Waiting for user input to continue"})
        True
        >>> is_input_wait_event({"type": "assistant", "text": "continuing work"})
        False

    """
    e = unwrap_event(event)
    if e is None:
        return False
    kind = e.get("type")
    kind = kind.lower() if isinstance(kind, str) else ""
    if "input" in kind and any(w in kind for w in ("wait", "request", "required")):
        return True
    text = extract_text(e)
    return bool(text) and is_input_wait_text(text)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


@dataclass
class StreamState:
    """Usage fields observed on the stream; each overwrites, last wins.

    Attributes:
        seen: Whether any well-formed event was applied.
        result: Last ``result`` string.
        cost: Last ``total_cost_usd``.
        turns: Last ``num_turns``.
        session_id: Last non-empty ``session_id``.

    """

    seen: bool = False
    result: str = ""
    cost: float = 0.0
    turns: int = 0
    session_id: str = ""

    def apply(self, event: Any) -> None:
        e = unwrap_event(event)
        if e is None:
            return
        self.seen = True
        if isinstance(e.get("result"), str):
            self.result = e["result"]
        if _is_number(e.get("total_cost_usd")):
            self.cost = float(e["total_cost_usd"])
        if _is_number(e.get("num_turns")):
            self.turns = int(e["num_turns"])
        session_id = e.get("session_id")
        if isinstance(session_id, str) and session_id:
            self.session_id = session_id

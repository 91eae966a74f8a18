"""Agent prompt assembly."""

import json
from typing import Any

from roundsman.core.marker import ProjectMarker

ORIENTATION = "You are an agent managed by roundsman, a multi-project orchestrator."
CLOSING = (
    "Work on the task. When done, provide a concise summary of what you did.",
    "Update the project marker file todos/doing/done arrays if the task state changed.",
)


def stringify_meta(value: Any) -> str:
    """Render a metadata value on one line.

    Lists are joined with ``, ``, mappings become compact JSON and
    everything else uses its JSON-style text form.
    """
    if isinstance(value, list):
        return ", ".join(stringify_meta_item(v) for v in value)
    if isinstance(value, dict):
        return compact_json(value)
    return stringify_meta_item(value)


def stringify_meta_item(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, dict | list):
        return compact_json(value)
    return str(value)


def compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _items_line(label: str, items: list[str]) -> str:
    return f"{label}: {' | '.join(items) if items else '(none)'}"


def build_prompt(marker: ProjectMarker, instruction: str) -> str:
    """Assemble the prompt for one agent turn.

    Sections appear in a fixed order: orientation, project context,
    work items, session summary, metadata, the user's instruction and the
    closing instructions. Reserved marker keys never appear under
    ``Metadata:``.

    Args:
        marker: Current project marker.
        instruction: The user's literal instruction (may be empty).

    Returns:
        Prompt text passed as the agent's final argument.

    """
    parts = [ORIENTATION, ""]

    if marker.prompt:
        parts += [f"Project context: {marker.prompt}", ""]

    parts.append(_items_line("Todos", marker.todos))
    parts.append(_items_line("Doing", marker.doing))
    parts.append(_items_line("Done", marker.done))

    if marker.session.summary:
        parts += ["", f"Session so far: {marker.session.summary}"]

    meta = marker.metadata
    if meta:
        parts += ["", "Metadata:"]
        parts += [f"  {key}: {stringify_meta(value)}" for key, value in meta.items()]

    if instruction:
        parts += ["", f"User instruction: {instruction}"]

    parts.append("")
    parts.extend(CLOSING)
    return "\n".join(parts)

"""Tests for roundsman.core.marker module.

Covers:
- Work-item and session normalization
- Marker loading (valid, empty, broken) and atomic saving
- Metadata separation from reserved keys
- Marker creation for ``roundsman add`` / ``init``
"""

import json
from pathlib import Path

import pytest

from roundsman.core.exceptions import MarkerError
from roundsman.core.marker import (
    MARKER_FILENAMES,
    RESERVED_KEYS,
    ProjectMarker,
    Session,
    TurnRecord,
    build_marker_seed,
    create_marker,
    find_marker,
    load_marker,
    normalize_list,
    parse_todo_input,
    save_marker,
)


class TestNormalizeList:
    """Tests for work-item list coercion."""

    def test_scalar_string_becomes_single_item(self) -> None:
        assert normalize_list("ship it") == ["ship it"]

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_become_empty_list(self, value: object) -> None:
        assert normalize_list(value) == []

    def test_list_items_are_stringified(self) -> None:
        assert normalize_list(["a", 2, True, None]) == ["a", "2", "true", "null"]

    def test_number_scalar(self) -> None:
        assert normalize_list(3) == ["3"]


class TestSessionNormalize:
    """Tests for Session.normalize()."""

    def test_negative_turn_and_long_history(self) -> None:
        """Turn -3 with 30 records keeps turn 0 and the newest 20 records."""
        raw = {"turn": -3, "history": [{"result": f"r{i}"} for i in range(30)]}

        session = Session.normalize(raw)

        assert session.turn == 0
        assert len(session.history) == 20
        assert [h.result for h in session.history] == [f"r{i}" for i in range(10, 30)]

    def test_custom_max_history(self) -> None:
        raw = {"history": [{"result": str(i)} for i in range(5)]}

        session = Session.normalize(raw, max_history=2)

        assert [h.result for h in session.history] == ["3", "4"]

    def test_non_dict_yields_defaults(self) -> None:
        session = Session.normalize(["not", "a", "session"])

        assert session.session_id == ""
        assert session.turn == 0
        assert session.history == []

    def test_malformed_fields_are_defaulted(self) -> None:
        raw = {
            "sessionId": 42,
            "turn": "7",
            "summary": None,
            "history": [{"result": "ok", "cost": "x", "turns": True}, "junk", 5],
        }

        session = Session.normalize(raw)

        assert session.session_id == ""
        assert session.turn == 0
        assert session.summary == ""
        assert len(session.history) == 1
        assert session.history[0].cost == 0.0
        assert session.history[0].turns == 0

    def test_boolean_turn_is_rejected(self) -> None:
        assert Session.normalize({"turn": True}).turn == 0


class TestSessionMutation:
    """Tests for Session helpers used by turns, /fresh and /revert."""

    def test_ensure_id_generates_once(self) -> None:
        session = Session()

        assert session.ensure_id() is True
        first = session.session_id
        assert session.ensure_id() is False
        assert session.session_id == first

    def test_reset_clears_history_and_changes_id(self) -> None:
        session = Session(sessionId="old", turn=4, summary="s", history=[TurnRecord(result="x")])

        session.reset()

        assert session.session_id and session.session_id != "old"
        assert session.turn == 0
        assert session.summary == ""
        assert session.history == []

    def test_append_evicts_oldest(self) -> None:
        session = Session()
        for i in range(4):
            session.append(TurnRecord(result=str(i)), max_history=3)

        assert [h.result for h in session.history] == ["1", "2", "3"]

    def test_pop_last_recomputes_summary(self) -> None:
        session = Session(
            summary="second",
            turn=2,
            history=[TurnRecord(result="first"), TurnRecord(result="second")],
        )

        popped = session.pop_last()

        assert popped is not None and popped.result == "second"
        assert session.summary == "first"
        assert session.turn == 2

    def test_pop_last_empty(self) -> None:
        assert Session().pop_last() is None

    def test_has_successful_turn(self) -> None:
        failed = Session(history=[TurnRecord(result="error: exit 1: boom")])
        mixed = Session(history=[TurnRecord(result="error: x"), TurnRecord(result="done")])

        assert failed.has_successful_turn() is False
        assert mixed.has_successful_turn() is True
        assert Session().has_successful_turn() is False

    def test_total_cost(self) -> None:
        session = Session(history=[TurnRecord(cost=0.25), TurnRecord(cost=0.5)])

        assert session.total_cost() == pytest.approx(0.75)


class TestProjectMarker:
    """Tests for ProjectMarker normalization and metadata."""

    def test_defaults_for_empty_document(self) -> None:
        marker = ProjectMarker.normalize({})

        assert marker.lock is False
        assert marker.todos == [] and marker.doing == [] and marker.done == []
        assert marker.macros == {}
        assert marker.watch == ""
        assert marker.metadata == {}

    def test_macros_are_trimmed_and_filtered(self) -> None:
        marker = ProjectMarker.normalize({"macros": {"quick": "  do thing  ", "bad": 3, "": "x"}})

        assert marker.macros == {"quick": "do thing"}

    def test_only_literal_true_locks(self) -> None:
        assert ProjectMarker.normalize({"lock": True}).lock is True
        assert ProjectMarker.normalize({"lock": "yes"}).lock is False
        assert ProjectMarker.normalize({"lock": 1}).lock is False

    def test_metadata_excludes_reserved_keys(self) -> None:
        document = {key: None for key in RESERVED_KEYS}
        document.update({"team": "infra", "tags": ["cli", "ops"]})

        marker = ProjectMarker.normalize(document)

        assert marker.metadata == {"team": "infra", "tags": ["cli", "ops"]}

    def test_hooks_accept_marker_keys(self) -> None:
        marker = ProjectMarker.normalize({"hooks": {"afterWatchSuccess": " !make test ", "beforeVisit": 5}})

        assert marker.hooks.get("afterWatchSuccess") == "!make test"
        assert marker.hooks.get("beforeVisit") == ""
        assert marker.hooks.get("unknownHook") == ""

    def test_to_document_uses_marker_keys(self) -> None:
        marker = ProjectMarker.normalize({"team": "infra", "session": {"sessionId": "abc"}})

        document = marker.to_document()

        assert document["session"]["sessionId"] == "abc"
        assert document["hooks"] == {"beforeVisit": "", "afterVisit": "", "afterWatchSuccess": ""}
        assert document["team"] == "infra"


class TestLoadSave:
    """Tests for marker file persistence."""

    def test_find_marker_checks_all_names(self, tmp_path: Path) -> None:
        (tmp_path / ".roundsman").write_text("{}")

        assert find_marker(tmp_path) == tmp_path / ".roundsman"

    def test_find_marker_prefers_json(self, tmp_path: Path) -> None:
        for name in MARKER_FILENAMES:
            (tmp_path / name).write_text("{}")

        assert find_marker(tmp_path) == tmp_path / "roundsman.json"

    def test_find_marker_missing(self, tmp_path: Path) -> None:
        assert find_marker(tmp_path) is None

    def test_empty_file_is_valid(self, tmp_path: Path) -> None:
        path = tmp_path / "roundsman"
        path.write_text("  \n")

        assert load_marker(path).todos == []

    def test_invalid_json_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "roundsman.json"
        path.write_text('{"todos": [')

        with pytest.raises(MarkerError) as exc_info:
            load_marker(path)
        assert "line 1" in str(exc_info.value)

    def test_non_object_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "roundsman.json"
        path.write_text("[1, 2]")

        with pytest.raises(MarkerError, match="top-level value must be an object"):
            load_marker(path)

    def test_save_then_load_is_stable(self, tmp_path: Path) -> None:
        path = tmp_path / "roundsman.json"
        path.write_text(
            json.dumps(
                {
                    "prompt": "api server",
                    "todos": "one",
                    "owner": {"name": "sam"},
                    "session": {"turn": 2, "history": [{"result": "ok", "cost": 0.1}]},
                }
            )
        )
        first = load_marker(path)

        save_marker(path, first)
        second = load_marker(path)

        assert second.to_document() == first.to_document()
        assert second.todos == ["one"]
        assert second.metadata == {"owner": {"name": "sam"}}

    def test_save_writes_trailing_newline_and_no_temp(self, tmp_path: Path) -> None:
        path = tmp_path / "roundsman.json"
        save_marker(path, ProjectMarker())

        assert path.read_text(encoding="utf-8").endswith("}\n")
        assert [p.name for p in tmp_path.iterdir()] == ["roundsman.json"]


class TestCreateMarker:
    """Tests for create_marker() and the init helpers."""

    def test_creates_missing_directory(self, tmp_path: Path) -> None:
        target = tmp_path / "new" / "project"

        path = create_marker(target)

        assert path == target.resolve() / "roundsman.json"
        document = json.loads(path.read_text())
        assert document["todos"] == []
        assert document["hooks"]["afterWatchSuccess"] == ""

    def test_seed_with_prompt_and_todos(self, tmp_path: Path) -> None:
        path = create_marker(tmp_path, prompt=" web app ", todos=["a", " ", "b"])

        document = json.loads(path.read_text())
        assert document["prompt"] == "web app"
        assert document["todos"] == ["a", "b"]

    def test_refuses_existing_marker(self, tmp_path: Path) -> None:
        (tmp_path / "roundsman").write_text("{}")

        with pytest.raises(MarkerError, match="already exists"):
            create_marker(tmp_path)

    def test_refuses_file_target(self, tmp_path: Path) -> None:
        target = tmp_path / "file.txt"
        target.write_text("x")

        with pytest.raises(MarkerError, match="not a directory"):
            create_marker(target)

    def test_parse_todo_input(self) -> None:
        assert parse_todo_input(" a, b ,, c ") == ["a", "b", "c"]
        assert parse_todo_input("") == []

    def test_build_marker_seed_keys(self) -> None:
        seed = build_marker_seed()

        assert set(seed) == {"prompt", "todos", "doing", "done", "macros", "watch", "hooks"}

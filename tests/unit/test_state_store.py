"""Unit tests for conversation state persistence."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from workflow_engine.errors import PersistenceError
from workflow_engine.session.store import (
    ConversationState,
    InMemoryStateStore,
    JsonFileStateStore,
)


def _state(**overrides: object) -> ConversationState:
    data: dict[str, object] = {
        "conversation_id": "feature/login-1.2",
        "current_state": "plan",
        "workflow_name": "epcc",
        "actor_role": "architect",
        "metadata": {"tracker.epic_id": "proj-1.2", "tracker.phase.plan": "proj-1.2.3"},
        "plan_file_path": "/work/.vibe/development-plan.md",
    }
    data.update(overrides)
    return ConversationState.model_validate(data)


def test_json_store_roundtrip_preserves_all_fields(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path / "conversations")
    original = _state()

    store.put(original)
    loaded = store.get(original.conversation_id)

    assert loaded == original


def test_unknown_conversation_is_none(tmp_path: Path) -> None:
    assert JsonFileStateStore(tmp_path).get("nope") is None


def test_ids_with_separators_stay_inside_directory(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path / "conversations")
    store.put(_state(conversation_id="../escape/attempt"))

    files = list((tmp_path / "conversations").glob("*.json"))
    assert len(files) == 1
    assert store.list_conversations() == ["../escape/attempt"]
    assert not (tmp_path / "escape").exists()


def test_put_replaces_previous_version(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path)
    store.put(_state(current_state="plan"))
    store.put(_state(current_state="code"))

    loaded = store.get("feature/login-1.2")
    assert loaded is not None
    assert loaded.current_state == "code"
    assert not list(tmp_path.glob(".*.tmp.*"))


def test_corrupt_file_is_a_persistence_error(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path)
    store.path_for("broken").write_text("{not json", encoding="utf-8")

    with pytest.raises(PersistenceError) as excinfo:
        store.get("broken")
    assert excinfo.value.committed is False


def test_write_failure_is_a_persistence_error(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")
    store = JsonFileStateStore(blocker / "conversations")

    with pytest.raises(PersistenceError) as excinfo:
        store.put(_state(current_state="code"))
    assert excinfo.value.to_state == "code"


def test_file_is_plain_json(tmp_path: Path) -> None:
    store = JsonFileStateStore(tmp_path)
    store.put(_state())

    raw = json.loads(store.path_for("feature/login-1.2").read_text(encoding="utf-8"))
    assert raw["current_state"] == "plan"
    assert raw["metadata"]["tracker.phase.plan"] == "proj-1.2.3"


def test_in_memory_store_roundtrip() -> None:
    store = InMemoryStateStore()
    state = _state()
    store.put(state)

    assert store.get(state.conversation_id) == state
    assert store.get("other") is None
    assert store.list_conversations() == [state.conversation_id]

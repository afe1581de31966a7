"""Conversation state persistence.

The core only reads and writes `ConversationState` through the `StateStore` protocol;
retention and cleanup are host concerns, so stores expose no delete.

`JsonFileStateStore` keeps one JSON file per conversation. Writes are atomic (temp file +
`os.replace`) and guarded by a per-file `FileLock`, so a crash or a second process never
observes a half-written state.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from filelock import FileLock, Timeout
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from workflow_engine.errors import PersistenceError

logger = logging.getLogger(__name__)


def utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class ConversationState(BaseModel):
    """Persisted state of one conversation."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str = Field(min_length=1)
    current_state: str
    workflow_name: str
    actor_role: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    plan_file_path: str | None = None
    created_at: str = Field(default_factory=utc_iso_now)
    updated_at: str = Field(default_factory=utc_iso_now)


class StateStore(Protocol):
    def get(self, conversation_id: str) -> ConversationState | None:
        """Return the stored state, or None if the conversation is unknown.

        Raises:
            PersistenceError: the backing storage could not be read.
        """
        ...

    def put(self, state: ConversationState) -> None:
        """Store `state`, replacing any previous version atomically.

        Raises:
            PersistenceError: the write did not happen.
        """
        ...


class InMemoryStateStore:
    """Process-local store. Useful for tests and embedding hosts."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, ConversationState] = {}

    def get(self, conversation_id: str) -> ConversationState | None:
        with self._lock:
            return self._states.get(conversation_id)

    def put(self, state: ConversationState) -> None:
        with self._lock:
            self._states[state.conversation_id] = state

    def list_conversations(self) -> list[str]:
        with self._lock:
            return sorted(self._states)


class JsonFileStateStore:
    """One JSON document per conversation under `directory`."""

    def __init__(self, directory: Path, *, lock_timeout_seconds: float = 10.0) -> None:
        self._directory = Path(directory)
        self._lock_timeout = lock_timeout_seconds

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, conversation_id: str) -> Path:
        # Percent-encoding keeps arbitrary ids (slashes, dots) inside the directory.
        return self._directory / f"{quote(conversation_id, safe='')}.json"

    def _lock_for(self, path: Path) -> FileLock:
        return FileLock(str(path.with_suffix(".json.lock")), timeout=self._lock_timeout)

    def get(self, conversation_id: str) -> ConversationState | None:
        path = self.path_for(conversation_id)
        if not path.exists():
            return None
        try:
            with self._lock_for(path):
                raw = json.loads(path.read_text(encoding="utf-8"))
            return ConversationState.model_validate(raw)
        except Timeout as e:
            raise PersistenceError(
                f"Timed out waiting for the state lock of {conversation_id!r}",
                conversation_id=conversation_id,
            ) from e
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            logger.error(
                "Failed to read conversation state",
                extra={"conversation_id": conversation_id, "path": str(path), "error": str(e)},
            )
            raise PersistenceError(
                f"Could not read state for conversation {conversation_id!r}: {e}",
                conversation_id=conversation_id,
            ) from e

    def put(self, state: ConversationState) -> None:
        path = self.path_for(state.conversation_id)
        payload = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            with self._lock_for(path):
                _atomic_write(path, payload)
        except Timeout as e:
            raise PersistenceError(
                f"Timed out waiting for the state lock of {state.conversation_id!r}",
                conversation_id=state.conversation_id,
                to_state=state.current_state,
            ) from e
        except OSError as e:
            logger.error(
                "Failed to write conversation state",
                extra={"conversation_id": state.conversation_id, "path": str(path)},
            )
            raise PersistenceError(
                f"Could not write state for conversation {state.conversation_id!r}: {e}",
                conversation_id=state.conversation_id,
                to_state=state.current_state,
            ) from e
        logger.debug(
            "Conversation state saved",
            extra={"conversation_id": state.conversation_id, "state": state.current_state},
        )

    def list_conversations(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(unquote(p.stem) for p in self._directory.glob("*.json"))


def _atomic_write(path: Path, payload: str) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.tmp.")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise

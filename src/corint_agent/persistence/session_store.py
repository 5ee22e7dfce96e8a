"""
persistence/session_store.py: On-Disk Session Store

One JSON file per session under a base directory, plus a
`last-session.txt` pointer naming the most recently saved session so a
shell can resume without being told an id.

File format:
    {
      "session_id": "...",
      "created_at": 1718000000.0,
      "updated_at": 1718000042.5,
      "conversation_history": [{"role": "user", "content": "...", "timestamp": ...}],
      "working_memory": {...},
      "checkpoints": [
        {"id": "...", "timestamp": ..., "conversation_history": [...], "working_memory": {...}}
      ]
    }

Working-memory values that are not JSON-serialisable are stored as str().
"""

from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

from corint_agent.agent.checkpoints import Checkpoint
from corint_agent.agent.session import HistoryEntry, SessionContext
from corint_agent.exceptions import SessionStoreError
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_SESSIONS_DIR = "~/.corint/sessions"
LAST_SESSION_FILE = "last-session.txt"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:\-]+$")


# ─────────────────────────────────────────────────────────────────────────────
# Records
# ─────────────────────────────────────────────────────────────────────────────


class StoredMessage(BaseModel):
    role: str
    content: str
    timestamp: float


class StoredCheckpoint(BaseModel):
    id: str
    timestamp: float
    conversation_history: list[StoredMessage] = Field(default_factory=list)
    working_memory: dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    session_id: str
    created_at: float
    updated_at: float
    conversation_history: list[StoredMessage] = Field(default_factory=list)
    working_memory: dict[str, Any] = Field(default_factory=dict)
    checkpoints: list[StoredCheckpoint] = Field(default_factory=list)


class SessionSummary(BaseModel):
    session_id: str
    created_at: float
    updated_at: float
    message_count: int


# ─────────────────────────────────────────────────────────────────────────────
# Store
# ─────────────────────────────────────────────────────────────────────────────


class SessionStore:
    """
    Usage:
        store = SessionStore("~/.corint/sessions")
        state = store.load_session("s1") or store.create_state("s1")
        store.update_state_from_context(state, context, checkpoints)
        store.save_session(state)
    """

    def __init__(self, base_dir: str | Path = DEFAULT_SESSIONS_DIR):
        self.base_dir = Path(base_dir).expanduser()

    # ── Files ─────────────────────────────────────────────────────────────────

    def list_sessions(self) -> list[SessionSummary]:
        """Summaries of every readable session, most recently updated first."""
        if not self.base_dir.exists():
            return []

        summaries: list[SessionSummary] = []
        for path in self.base_dir.glob("*.json"):
            try:
                state = self._read(path)
            except SessionStoreError as e:
                log.warning("session_store.unreadable", path=str(path), error=str(e))
                continue
            summaries.append(SessionSummary(
                session_id=state.session_id,
                created_at=state.created_at,
                updated_at=state.updated_at,
                message_count=len(state.conversation_history),
            ))
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def load_session(self, session_id: str) -> Optional[SessionState]:
        """Return the stored state, or None when no file exists for the id."""
        path = self._path(session_id)
        if not path.exists():
            return None
        return self._read(path)

    def save_session(self, state: SessionState) -> SessionState:
        """Stamp updated_at, write the file, and point last-session at it."""
        state.updated_at = time.time()
        path = self._path(state.session_id)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(".json.tmp")
            tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise SessionStoreError(f"Could not write session {state.session_id}: {e}") from e

        self.set_last_session_id(state.session_id)
        log.debug("session_store.saved", session_id=state.session_id, path=str(path))
        return state

    def delete_session(self, session_id: str) -> bool:
        """Remove the session file. Returns True if it existed."""
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise SessionStoreError(f"Could not delete session {session_id}: {e}") from e

        if self.get_last_session_id() == session_id:
            (self.base_dir / LAST_SESSION_FILE).unlink(missing_ok=True)
        log.info("session_store.deleted", session_id=session_id)
        return True

    def get_last_session_id(self) -> Optional[str]:
        pointer = self.base_dir / LAST_SESSION_FILE
        try:
            value = pointer.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SessionStoreError(f"Could not read {pointer}: {e}") from e
        return value or None

    def set_last_session_id(self, session_id: str) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            (self.base_dir / LAST_SESSION_FILE).write_text(session_id, encoding="utf-8")
        except OSError as e:
            raise SessionStoreError(f"Could not record last session: {e}") from e

    # ── State <-> context ─────────────────────────────────────────────────────

    @staticmethod
    def create_state(session_id: str) -> SessionState:
        now = time.time()
        return SessionState(session_id=session_id, created_at=now, updated_at=now)

    @staticmethod
    def update_state_from_context(
        state: SessionState,
        context: SessionContext,
        checkpoints: Optional[list[Checkpoint]] = None,
    ) -> SessionState:
        state.conversation_history = _to_stored_history(context.conversation_history)
        state.working_memory = _serialisable_memory(context.working_memory)
        if checkpoints is not None:
            state.checkpoints = [
                StoredCheckpoint(
                    id=cp.id,
                    timestamp=cp.timestamp,
                    conversation_history=_to_stored_history(cp.conversation_history),
                    working_memory=_serialisable_memory(cp.working_memory),
                )
                for cp in checkpoints
            ]
        return state

    @staticmethod
    def apply_state(context: SessionContext, state: SessionState) -> SessionContext:
        """Overwrite history and working memory from state. Clears the active plan."""
        context.conversation_history = [
            HistoryEntry(role=m.role, content=m.content, timestamp=m.timestamp)
            for m in state.conversation_history
        ]
        context.working_memory.clear()
        context.working_memory.update(state.working_memory)
        context.current_plan = None
        return context

    @staticmethod
    def checkpoints_from_state(state: SessionState) -> list[Checkpoint]:
        return [
            Checkpoint(
                id=cp.id,
                timestamp=cp.timestamp,
                conversation_history=[
                    HistoryEntry(role=m.role, content=m.content, timestamp=m.timestamp)
                    for m in cp.conversation_history
                ],
                working_memory=dict(cp.working_memory),
            )
            for cp in state.checkpoints
        ]

    # ── Private ───────────────────────────────────────────────────────────────

    def _path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id or ""):
            raise SessionStoreError(f"Invalid session id: {session_id!r}")
        return self.base_dir / f"{session_id}.json"

    def _read(self, path: Path) -> SessionState:
        try:
            return SessionState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise SessionStoreError(f"Could not read session file {path.name}: {e}") from e


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def ensure_serializable(value: Any) -> Any:
    """JSON round-trip the value; fall back to its str() when that fails."""
    try:
        return json.loads(json.dumps(value))
    except (TypeError, ValueError):
        return str(value)


def _serialisable_memory(memory: dict[str, Any]) -> dict[str, Any]:
    return {str(key): ensure_serializable(value) for key, value in memory.items()}


def _to_stored_history(history: list[HistoryEntry]) -> list[StoredMessage]:
    return [
        StoredMessage(role=e.role, content=e.content, timestamp=e.timestamp)
        for e in history
    ]

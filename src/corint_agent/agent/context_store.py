"""
agent/context_store.py: Context Store

Owns every live SessionContext, keyed by session id. The orchestrator holds
one instance and passes it to whatever needs session state.
"""

from __future__ import annotations

from typing import Any, Optional

from corint_agent.agent.session import HistoryEntry, SessionContext
from corint_agent.exceptions import SessionNotFoundError
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)


class ContextStore:

    def __init__(self):
        self._sessions: dict[str, SessionContext] = {}

    def create_session(self, session_id: str, user_id: Optional[str] = None) -> SessionContext:
        """Create (or replace) the context for a session id."""
        context = SessionContext(session_id=session_id, user_id=user_id)
        self._sessions[session_id] = context
        log.debug("context_store.created", session_id=session_id, user_id=user_id)
        return context

    def get_session(self, session_id: str) -> Optional[SessionContext]:
        return self._sessions.get(session_id)

    def require_session(self, session_id: str) -> SessionContext:
        context = self._sessions.get(session_id)
        if context is None:
            raise SessionNotFoundError(session_id)
        return context

    def delete_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            log.debug("context_store.deleted", session_id=session_id)

    def list_sessions(self) -> list[str]:
        return list(self._sessions)

    # ── History ───────────────────────────────────────────────────────────────

    def add_message(self, session_id: str, role: str, content: str) -> HistoryEntry:
        return self.require_session(session_id).add_message(role, content)

    def get_conversation_history(
        self, session_id: str, limit: Optional[int] = None
    ) -> list[HistoryEntry]:
        context = self._sessions.get(session_id)
        if context is None:
            return []
        return context.recent_history(limit)

    # ── Working memory ────────────────────────────────────────────────────────

    def set_working_memory(self, session_id: str, key: str, value: Any) -> None:
        self.require_session(session_id).working_memory[key] = value

    def get_working_memory(self, session_id: str, key: str) -> Any:
        context = self._sessions.get(session_id)
        if context is None:
            return None
        return context.working_memory.get(key)

    def clear_working_memory(self, session_id: str) -> None:
        context = self._sessions.get(session_id)
        if context is not None:
            context.working_memory.clear()

    def clear_history(self, session_id: str) -> None:
        context = self._sessions.get(session_id)
        if context is not None:
            context.conversation_history.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

from corint_agent.persistence.session_store import (
    SessionState,
    SessionStore,
    SessionSummary,
    StoredCheckpoint,
    StoredMessage,
    ensure_serializable,
)

__all__ = [
    "SessionStore",
    "SessionState",
    "SessionSummary",
    "StoredCheckpoint",
    "StoredMessage",
    "ensure_serializable",
]

"""
exceptions.py: Corint Agent Unified Error Hierarchy

All corint_agent-specific exceptions live here. Every layer of the stack
raises typed subclasses of CorintError, never bare Exception.

Import from here, not from individual modules:
    from corint_agent.exceptions import SessionNotFoundError, LLMError

Hierarchy:
    CorintError
    ├── AgentError
    │   ├── SessionNotFoundError
    │   ├── UninitializedSessionError
    │   ├── PlanError
    │   └── TaskExecutionError
    ├── ToolError
    │   ├── ToolNotFoundError
    │   ├── ToolValidationError
    │   ├── ToolTimeoutError
    │   └── ToolExecutionError
    ├── PersistenceError
    │   └── SessionStoreError
    ├── ConfigError
    └── LLMError
        ├── LLMConnectionError
        ├── LLMRateLimitError
        ├── LLMContextError
        └── LLMInvalidRequestError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class CorintError(Exception):
    """Base class for all corint_agent exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Agent layer
# ─────────────────────────────────────────────────────────────────────────────

class AgentError(CorintError):
    """Base for agent orchestration errors."""


class SessionNotFoundError(AgentError):
    """No live context exists for the requested session id."""

    def __init__(self, session_id: str, message: str = "") -> None:
        self.session_id = session_id
        super().__init__(message or f"Session {session_id} not found")


class UninitializedSessionError(AgentError):
    """The cost controller has no metrics for the session (init_session not called)."""

    def __init__(self, session_id: str, message: str = "") -> None:
        self.session_id = session_id
        super().__init__(
            message or f"Session {session_id} not initialized in CostController"
        )


class PlanError(AgentError):
    """A plan operation was requested with invalid arguments."""


class TaskExecutionError(AgentError):
    """A single task attempt produced no usable result."""


# ─────────────────────────────────────────────────────────────────────────────
# Tool layer
# ─────────────────────────────────────────────────────────────────────────────

class ToolError(CorintError):
    """Base for all tool-related errors."""


class ToolNotFoundError(ToolError):
    """Requested tool is not registered in the ToolRegistry."""


class ToolValidationError(ToolError):
    """Tool arguments failed validation against the tool's parameters model."""


class ToolTimeoutError(ToolError):
    """Tool execution exceeded the configured timeout."""


class ToolExecutionError(ToolError):
    """The tool handler raised while executing."""


# ─────────────────────────────────────────────────────────────────────────────
# Persistence layer
# ─────────────────────────────────────────────────────────────────────────────

class PersistenceError(CorintError):
    """Base for session persistence errors."""


class SessionStoreError(PersistenceError):
    """A session file could not be read or written."""


# ─────────────────────────────────────────────────────────────────────────────
# Config
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(CorintError):
    """Configuration is missing or invalid."""


# ─────────────────────────────────────────────────────────────────────────────
# LLM layer
# ─────────────────────────────────────────────────────────────────────────────

class LLMError(CorintError):
    """Base exception for all LLM client errors."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class LLMConnectionError(LLMError):
    """Provider unreachable or authentication failed."""


class LLMRateLimitError(LLMError):
    """Rate limit hit at the provider."""

    def __init__(self, message: str, provider: str = "", retry_after: Optional[float] = None):
        super().__init__(message, provider)
        self.retry_after = retry_after


class LLMContextError(LLMError):
    """Input exceeds model context window."""


class LLMInvalidRequestError(LLMError):
    """Bad request: invalid parameters or unsupported feature."""


__all__ = [
    "CorintError",
    # Agent
    "AgentError",
    "SessionNotFoundError",
    "UninitializedSessionError",
    "PlanError",
    "TaskExecutionError",
    # Tool
    "ToolError",
    "ToolNotFoundError",
    "ToolValidationError",
    "ToolTimeoutError",
    "ToolExecutionError",
    # Persistence
    "PersistenceError",
    "SessionStoreError",
    "ConfigError",
    # LLM
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
]

"""
agent/response.py: Agent Output Types

AgentResponse is the final answer for one message. StreamEvent is one
incremental update emitted by the streaming entry points.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from corint_agent.brain.types import TokenUsage


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AgentResponse:
    """
    Unified output object from the agent, ready for an interface to render.
    """
    content: str
    confidence: Confidence = Confidence.HIGH
    reasoning: Optional[str] = None
    suggestions: list[str] = field(default_factory=list)
    requires_user_input: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def blocked(cls, reason: str) -> "AgentResponse":
        return cls(
            content=f"Request blocked: {reason}",
            confidence=Confidence.HIGH,
            requires_user_input=True,
            metadata={"blocked": True},
        )

    @classmethod
    def failure(cls, message: str, usage: Optional[TokenUsage] = None) -> "AgentResponse":
        return cls(
            content=f"Error: {message}",
            confidence=Confidence.LOW,
            requires_user_input=True,
            usage=usage or TokenUsage(),
        )

    def __str__(self) -> str:
        return self.content


class StreamEventType(str, Enum):
    STATUS = "status"
    TEXT = "text"
    TOOL_START = "tool_start"
    TOOL_END = "tool_end"
    ERROR = "error"
    DONE = "done"


@dataclass
class StreamEvent:
    """
    One streaming update.

    TOOL_START / TOOL_END carry tool_name and tool_call_id. The executor's
    DONE event carries the ExecutionResult in `result`; the orchestrator's
    DONE event carries the final AgentResponse in `response`.
    """
    type: StreamEventType
    content: str = ""
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    result: Any = None
    response: Optional[AgentResponse] = None

    @classmethod
    def status(cls, content: str) -> "StreamEvent":
        return cls(type=StreamEventType.STATUS, content=content)

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(type=StreamEventType.TEXT, content=content)

    @classmethod
    def error(cls, content: str) -> "StreamEvent":
        return cls(type=StreamEventType.ERROR, content=content)

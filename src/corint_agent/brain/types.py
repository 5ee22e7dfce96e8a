"""
brain/types.py: Corint Brain Data Models

All shared types used across LLM clients and the agent core.
Providers map their native response shapes into these types.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# ─────────────────────────────────────────────────────────────────────────────
# Enums
# ─────────────────────────────────────────────────────────────────────────────


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"           # tool result fed back to the model


class FinishReason(str, Enum):
    STOP = "stop"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    CONTENT_FILTER = "content_filter"


# ─────────────────────────────────────────────────────────────────────────────
# Tool calling types
# ─────────────────────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A single tool invocation requested by the model."""
    id: str = Field(..., description="Unique ID for this tool call (from the model)")
    name: str = Field(..., description="Tool name to call")
    arguments: str = Field(default="{}", description="Serialized JSON arguments")

    def parsed_arguments(self) -> Any:
        """Decode the argument string. Raises json.JSONDecodeError on bad JSON."""
        return json.loads(self.arguments) if self.arguments.strip() else {}


class ToolSchema(BaseModel):
    """
    Provider-agnostic tool definition as sent to the model.
    Clients translate this into provider-specific format.
    """
    name: str
    description: str
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


# ─────────────────────────────────────────────────────────────────────────────
# Message types
# ─────────────────────────────────────────────────────────────────────────────


class Message(BaseModel):
    """
    A single message in the model transcript.

    For tool results, set role=TOOL and tool_call_id.
    For tool calls made by the assistant, set role=ASSISTANT and populate tool_calls.
    """
    role: Role
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: Optional[str], tool_calls: Optional[list[ToolCall]] = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls or None)

    @classmethod
    def tool_response(cls, tool_call_id: str, content: str, name: Optional[str] = None) -> "Message":
        return cls(role=Role.TOOL, tool_call_id=tool_call_id, content=content, name=name)


# ─────────────────────────────────────────────────────────────────────────────
# LLM config
# ─────────────────────────────────────────────────────────────────────────────


class LLMConfig(BaseModel):
    """
    Per-request model configuration.
    Components derive their own copies (e.g. low temperature for planning).
    """
    model: str
    temperature: float = 0.7
    max_tokens: int = 4096
    top_p: float = 1.0
    timeout_seconds: float = 60.0

    def derive(self, **overrides: Any) -> "LLMConfig":
        """Return a copy with the given fields replaced."""
        return self.model_copy(update=overrides)


# ─────────────────────────────────────────────────────────────────────────────
# LLM response
# ─────────────────────────────────────────────────────────────────────────────


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def of(cls, prompt_tokens: int = 0, completion_tokens: int = 0) -> "TokenUsage":
        return cls(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    def merge(self, other: Optional["TokenUsage"]) -> "TokenUsage":
        """Return the field-wise sum of both usages."""
        if other is None:
            return self.model_copy()
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )

    @property
    def effective_completion_tokens(self) -> int:
        """Completion tokens, derived from the total when a provider omits them."""
        if self.completion_tokens:
            return self.completion_tokens
        return max(self.total_tokens - self.prompt_tokens, 0)

    @property
    def is_empty(self) -> bool:
        return not (self.prompt_tokens or self.completion_tokens or self.total_tokens)


class LLMResponse(BaseModel):
    """
    Normalised non-streaming response from any provider.
    """
    content: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: FinishReason = FinishReason.STOP
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0


# ─────────────────────────────────────────────────────────────────────────────
# Streaming
# ─────────────────────────────────────────────────────────────────────────────


class ToolCallDelta(BaseModel):
    """
    Partial tool call from a streaming provider.
    Fragments sharing the same index are concatenated by the consumer.
    """
    index: int = 0
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class StreamChunk(BaseModel):
    """One incremental piece of a streamed completion."""
    content: Optional[str] = None
    tool_calls: list[ToolCallDelta] = Field(default_factory=list)
    finish_reason: Optional[FinishReason] = None
    usage: Optional[TokenUsage] = None


class ToolCallAccumulator:
    """Reassembles ToolCallDelta fragments into complete ToolCall objects."""

    def __init__(self) -> None:
        self._parts: dict[int, dict[str, str]] = {}

    def add(self, delta: ToolCallDelta) -> None:
        part = self._parts.setdefault(delta.index, {"id": "", "name": "", "arguments": ""})
        if delta.id:
            part["id"] = delta.id
        if delta.name:
            part["name"] = delta.name
        part["arguments"] += delta.arguments

    def build(self) -> list[ToolCall]:
        return [
            ToolCall(
                id=part["id"] or f"call_{index}",
                name=part["name"],
                arguments=part["arguments"] or "{}",
            )
            for index, part in sorted(self._parts.items())
        ]

    def __bool__(self) -> bool:
        return bool(self._parts)

"""
tools/types.py: Tool System Data Models

Shared types used across the tool registry, tool bus, and all tool
implementations.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Type, Union

from pydantic import BaseModel

from corint_agent.brain.types import ToolSchema


# ─────────────────────────────────────────────────────────────────────────────
# Execution context
# ─────────────────────────────────────────────────────────────────────────────


@dataclass
class ToolExecutionContext:
    """
    Passed to every handler invocation.

    `working_memory` is the live session map, not a copy: handlers that
    write to it mutate the session.
    """
    session_id: str
    working_memory: dict[str, Any] = field(default_factory=dict)


ToolHandler = Callable[[BaseModel, ToolExecutionContext], Union[Any, Awaitable[Any]]]


# ─────────────────────────────────────────────────────────────────────────────
# Tool registration record
# ─────────────────────────────────────────────────────────────────────────────


class EmptyParams(BaseModel):
    """Parameters model for tools that take no arguments."""


@dataclass
class Tool:
    """
    A registered capability.

    `parameters` is a pydantic model class: its JSON schema documents the
    tool for the model, and model_validate() checks incoming arguments.
    """
    name: str
    description: str
    handler: ToolHandler
    parameters: Type[BaseModel] = EmptyParams

    def to_llm_schema(self) -> ToolSchema:
        """Return the descriptor in the format the brain expects."""
        schema = self.parameters.model_json_schema()
        schema.pop("title", None)
        schema.setdefault("properties", {})
        return ToolSchema(
            name=self.name,
            description=self.description,
            parameters=schema,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Runtime result type
# ─────────────────────────────────────────────────────────────────────────────


class ToolOutcome(BaseModel):
    """
    The result of one tool call after dispatch.

    Exactly one of `result` / `error` is set. `content` is the serialized
    text fed back to the model in the tool-result message.
    """
    tool_call_id: str
    name: str
    result: Any = None
    error: Optional[str] = None
    content: str = ""
    duration_ms: float = 0.0

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def success(
        cls,
        tool_call_id: str,
        name: str,
        result: Any,
        content: str,
        duration_ms: float = 0.0,
    ) -> "ToolOutcome":
        return cls(
            tool_call_id=tool_call_id,
            name=name,
            result=result,
            content=content,
            duration_ms=duration_ms,
        )

    @classmethod
    def failure(cls, tool_call_id: str, name: str, error_message: str) -> "ToolOutcome":
        return cls(
            tool_call_id=tool_call_id,
            name=name,
            error=error_message,
            content=json.dumps({"error": error_message}),
        )

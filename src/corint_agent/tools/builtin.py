"""
tools/builtin.py: Working-Memory Tools

Three tools that let the model read and write the session's working
memory: memory_set, memory_get, memory_list.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from corint_agent.tools.tool_registry import ToolRegistry
from corint_agent.tools.types import EmptyParams, Tool, ToolExecutionContext


class MemorySetParams(BaseModel):
    key: str = Field(..., min_length=1, description="Working-memory key")
    value: Any = Field(..., description="JSON-serialisable value to store")


class MemoryGetParams(BaseModel):
    key: str = Field(..., min_length=1, description="Working-memory key")


async def memory_set(params: MemorySetParams, ctx: ToolExecutionContext) -> dict:
    ctx.working_memory[params.key] = params.value
    return {"key": params.key, "stored": True}


async def memory_get(params: MemoryGetParams, ctx: ToolExecutionContext) -> dict:
    if params.key not in ctx.working_memory:
        return {"key": params.key, "found": False}
    return {"key": params.key, "found": True, "value": ctx.working_memory[params.key]}


async def memory_list(params: EmptyParams, ctx: ToolExecutionContext) -> dict:
    return {"keys": sorted(ctx.working_memory)}


BUILTIN_TOOLS: list[Tool] = [
    Tool(
        name="memory_set",
        description="Store a value in the session's working memory under a key.",
        handler=memory_set,
        parameters=MemorySetParams,
    ),
    Tool(
        name="memory_get",
        description="Read a value from the session's working memory.",
        handler=memory_get,
        parameters=MemoryGetParams,
    ),
    Tool(
        name="memory_list",
        description="List the keys currently held in the session's working memory.",
        handler=memory_list,
    ),
]


def register_builtin_tools(registry: ToolRegistry) -> ToolRegistry:
    for tool in BUILTIN_TOOLS:
        if tool.name not in registry:
            registry.register_tool(tool)
    return registry

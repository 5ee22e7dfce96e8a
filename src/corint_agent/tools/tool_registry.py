"""
tools/tool_registry.py: Tool Registry

Central registry for all tools available to the agent. Tools register via
the @registry.register() decorator or register_tool().

Each entry is a Tool record: name, description, pydantic parameters model,
and the handler to call. The registry is populated at startup and only
read afterwards, so it is shared by every session.

Usage:
    registry = ToolRegistry()

    class ReadParams(BaseModel):
        path: str

    @registry.register(
        name="file_read",
        description="Read a file",
        parameters=ReadParams,
    )
    async def file_read(params: ReadParams, ctx: ToolExecutionContext) -> str:
        ...

    tool = registry.get("file_read")
    schemas = registry.to_llm_schemas()
"""

from __future__ import annotations

from typing import Callable, Optional, Type

from pydantic import BaseModel

from corint_agent.brain.types import ToolSchema
from corint_agent.exceptions import ToolError, ToolNotFoundError
from corint_agent.observability.logger import get_logger
from corint_agent.tools.types import EmptyParams, Tool

log = get_logger(__name__)


class ToolRegistry:
    """
    Maps tool names to Tool records.

    Safe for concurrent reads (dict lookups). Not designed for concurrent writes.
    """

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(
        self,
        name: str,
        description: str,
        parameters: Type[BaseModel] = EmptyParams,
    ) -> Callable:
        """Decorator form of register_tool(). Returns the handler unchanged."""
        def decorator(fn: Callable) -> Callable:
            self.register_tool(
                Tool(name=name, description=description, handler=fn, parameters=parameters)
            )
            return fn

        return decorator

    def register_tool(self, tool: Tool) -> None:
        """Add a tool. Names are unique; re-registering a name raises ToolError."""
        if tool.name in self._tools:
            raise ToolError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        log.debug("tool.registered", tool=tool.name, params=tool.parameters.__name__)

    def get(self, name: str) -> Optional[Tool]:
        """Return the Tool for a name, or None if not found."""
        return self._tools.get(name)

    def require(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(
                f"Unknown tool '{name}'. Available tools: {self.list_names()}"
            )
        return tool

    def is_registered(self, name: str) -> bool:
        return name in self._tools

    def list_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def list_names(self) -> list[str]:
        return list(self._tools.keys())

    def to_llm_schemas(self) -> list[ToolSchema]:
        """Return every tool as a model-facing descriptor."""
        return [t.to_llm_schema() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __repr__(self) -> str:
        return f"<ToolRegistry tools={self.list_names()}>"

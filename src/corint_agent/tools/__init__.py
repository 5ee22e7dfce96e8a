from corint_agent.tools.builtin import register_builtin_tools
from corint_agent.tools.tool_bus import MAX_RESULT_CHARS, ToolBus
from corint_agent.tools.tool_registry import ToolRegistry
from corint_agent.tools.types import EmptyParams, Tool, ToolExecutionContext, ToolOutcome

__all__ = [
    "ToolRegistry",
    "ToolBus",
    "Tool",
    "ToolExecutionContext",
    "ToolOutcome",
    "EmptyParams",
    "MAX_RESULT_CHARS",
    "register_builtin_tools",
]

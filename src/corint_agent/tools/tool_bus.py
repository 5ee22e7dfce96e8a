"""
tools/tool_bus.py: Tool Bus

The dispatcher that sits between the model and tool execution.
Every tool call requested by the model is routed through here.

Flow:
  model tool_call → ToolBus.dispatch()
    → Registry lookup (is tool registered?)
    → Argument decoding (JSON string → dict)
    → Parameter validation (pydantic model)
    → Handler execution (async, or sync in a worker thread; with timeout)
    → Serialisation + truncation envelope
    → ToolOutcome (success or error)
"""

from __future__ import annotations

import asyncio
import inspect
import json
import time
from typing import Any

from pydantic import ValidationError

from corint_agent.brain.types import ToolCall
from corint_agent.exceptions import (
    ToolExecutionError,
    ToolNotFoundError,
    ToolTimeoutError,
    ToolValidationError,
)
from corint_agent.observability.logger import get_logger
from corint_agent.tools.tool_registry import ToolRegistry
from corint_agent.tools.types import Tool, ToolExecutionContext, ToolOutcome

log = get_logger(__name__)

# Max serialized output fed back to the model
MAX_RESULT_CHARS = 8_000

# Default tool execution timeout
DEFAULT_TIMEOUT_SECONDS = 30.0


class ToolBus:
    """
    Routes tool calls from the model to their handlers.

    Usage:
        bus = ToolBus(registry)
        outcome = await bus.dispatch(tool_call, ctx)
        outcomes = await bus.dispatch_all(reply.tool_calls, ctx)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_result_chars: int = MAX_RESULT_CHARS,
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_result_chars = max_result_chars

    async def dispatch_all(
        self,
        tool_calls: list[ToolCall],
        context: ToolExecutionContext,
    ) -> list[ToolOutcome]:
        """
        Dispatch every call concurrently.

        Outcomes are returned in call order. dispatch() never raises, so a
        failing call cannot cancel its siblings.
        """
        if not tool_calls:
            return []
        return list(await asyncio.gather(*(self.dispatch(tc, context) for tc in tool_calls)))

    async def dispatch(self, tool_call: ToolCall, context: ToolExecutionContext) -> ToolOutcome:
        """
        Dispatch a tool call through the full pipeline.

        Returns:
            ToolOutcome (always; errors are captured in the outcome).
        """
        start_ms = time.monotonic() * 1000

        log.info(
            "tool_bus.dispatch",
            tool=tool_call.name,
            tool_call_id=tool_call.id,
        )

        try:
            tool = self.registry.require(tool_call.name)
            params = self._validate(tool, tool_call)
            raw_result = await self._execute(tool, params, context)
        except (ToolNotFoundError, ToolValidationError, ToolTimeoutError, ToolExecutionError) as e:
            log.warning(
                "tool_bus.failed",
                tool=tool_call.name,
                tool_call_id=tool_call.id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ToolOutcome.failure(tool_call.id, tool_call.name, str(e))

        duration_ms = time.monotonic() * 1000 - start_ms
        result = _normalise_result(raw_result)
        result, content = _serialise(result, self.max_result_chars)

        log.info(
            "tool_bus.success",
            tool=tool_call.name,
            tool_call_id=tool_call.id,
            duration_ms=round(duration_ms, 1),
            result_chars=len(content),
        )

        return ToolOutcome.success(
            tool_call_id=tool_call.id,
            name=tool_call.name,
            result=result,
            content=content,
            duration_ms=duration_ms,
        )

    # ── Pipeline steps ────────────────────────────────────────────────────────

    def _validate(self, tool: Tool, tool_call: ToolCall):
        try:
            arguments = tool_call.parsed_arguments()
        except json.JSONDecodeError as e:
            raise ToolValidationError(f"Arguments are not valid JSON: {e}") from e

        try:
            return tool.parameters.model_validate(arguments)
        except ValidationError as e:
            raise ToolValidationError(f"Invalid parameters: {_format_validation(e)}") from e

    async def _execute(self, tool: Tool, params, context: ToolExecutionContext) -> Any:
        """
        Coroutine handlers run on the loop; plain functions run in a worker
        thread. Both are bounded by timeout_seconds. A timed-out thread is
        abandoned, not killed.
        """
        try:
            if inspect.iscoroutinefunction(tool.handler):
                pending = tool.handler(params, context)
            else:
                pending = asyncio.to_thread(tool.handler, params, context)
            result = await asyncio.wait_for(pending, timeout=self.timeout_seconds)
            if inspect.isawaitable(result):
                result = await asyncio.wait_for(result, timeout=self.timeout_seconds)
            return result
        except asyncio.TimeoutError as e:
            log.error(
                "tool_bus.timeout",
                tool=tool.name,
                timeout_seconds=self.timeout_seconds,
            )
            raise ToolTimeoutError(
                f"Tool '{tool.name}' timed out after {self.timeout_seconds}s"
            ) from e
        except Exception as e:
            log.error(
                "tool_bus.execution_error",
                tool=tool.name,
                error=str(e),
                exc_info=True,
            )
            raise ToolExecutionError(
                f"Tool execution failed: {type(e).__name__}: {e}"
            ) from e


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _format_validation(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


def _normalise_result(result: Any) -> Any:
    """Coerce a handler return value into something JSON-serialisable."""
    if result is None:
        return "Done."
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    return result


def _serialise(result: Any, max_chars: int) -> tuple[Any, str]:
    """
    Return (result, content). Strings pass through as-is; everything else is
    JSON-encoded. Content longer than max_chars is replaced by a
    {truncated, preview, total_chars} envelope, which also becomes the result.
    """
    if isinstance(result, str):
        text = result
    else:
        text = json.dumps(result, default=str)

    if len(text) <= max_chars:
        return result, text

    envelope = {
        "truncated": True,
        "preview": text[:max_chars],
        "total_chars": len(text),
    }
    return envelope, json.dumps(envelope)

"""
agent/executor.py: Executor

Runs work against the model on behalf of the orchestrator:

  - execute_task():      one plan task, with bounded retry and backoff
  - execute_plan():      every task of a plan, respecting dependencies
  - execute_with_tools(): the ordinary-turn loop where the model decides
                          which tools to call
  - stream_with_tools(): the same loop over the provider's streaming API,
                          yielding StreamEvents

The tool loop is bounded: after max_tool_iterations dispatch rounds, a model
that still asks for tools gets one last call with tools disabled so the turn
always ends in plain text.

Usage:
    executor = Executor(llm, config, registry, bus)
    result = await executor.execute_with_tools("What is in memory?", context)
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from corint_agent.agent.response import StreamEvent, StreamEventType
from corint_agent.agent.session import HistoryRole, Plan, SessionContext, Task, TaskStatus
from corint_agent.brain.llm_client import BaseLLMClient
from corint_agent.brain.types import (
    LLMConfig,
    LLMResponse,
    Message,
    Role,
    TokenUsage,
    ToolCall,
    ToolCallAccumulator,
    ToolSchema,
)
from corint_agent.exceptions import TaskExecutionError
from corint_agent.observability.logger import get_logger
from corint_agent.tools.tool_bus import ToolBus
from corint_agent.tools.tool_registry import ToolRegistry
from corint_agent.tools.types import ToolExecutionContext, ToolOutcome

log = get_logger(__name__)

DEFAULT_MAX_TOOL_ITERATIONS = 8
DEFAULT_MAX_TASK_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 1.0

# Receives the usage of every model reply as soon as it arrives
UsageSink = Callable[[TokenUsage], None]

_SYSTEM_PROMPT = """\
You are {agent_name}, an assistant that analyses data and carries out tasks
with the tools available to you.
Call tools when you need information you do not have. When a required data
source or parameter is unknown, ask the user instead of guessing.
Always provide clear, actionable results."""


@dataclass
class ExecutionResult:
    """Outcome of one task or one tool-loop turn. Never persisted."""
    success: bool
    output: Any = None
    error: Optional[str] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolOutcome] = field(default_factory=list)
    task_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.task_id:
            data["task_id"] = self.task_id
        if self.output is not None:
            data["output"] = self.output
        if self.error:
            data["error"] = self.error
        if self.tool_calls:
            data["tool_calls"] = [tc.model_dump() for tc in self.tool_calls]
            data["tool_results"] = [
                {"tool_call_id": o.tool_call_id, "result": o.result, "error": o.error}
                for o in self.tool_results
            ]
        return data


class Executor:
    """
    Stateless between calls apart from its injected collaborators, so one
    instance serves every session.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        tool_registry: ToolRegistry,
        tool_bus: Optional[ToolBus] = None,
        agent_name: str = "Corint",
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        max_task_attempts: int = DEFAULT_MAX_TASK_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        history_window: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._llm = llm_client
        self._config = llm_config
        self._registry = tool_registry
        self._bus = tool_bus or ToolBus(tool_registry)
        self._system_prompt = _SYSTEM_PROMPT.format(agent_name=agent_name)
        self._max_tool_iter = max_tool_iterations
        self._max_attempts = max(1, max_task_attempts)
        self._retry_base_delay = retry_base_delay
        self._history_window = history_window
        self._sleep = sleep

    # ─────────────────────────────────────────────────────────────────────────
    # Plan tasks
    # ─────────────────────────────────────────────────────────────────────────

    async def execute_task(
        self,
        task: Task,
        context: SessionContext,
        on_usage: Optional[UsageSink] = None,
    ) -> ExecutionResult:
        """
        Run one task. The task ends `completed` with its result, or `failed`
        with its error. Failure is returned, never raised.
        """
        task.status = TaskStatus.RUNNING
        log.info("executor.task_start", task_id=task.id, description=task.description[:80])

        result = await self.execute_with_retry(task, context, on_usage)
        result.task_id = task.id

        if result.success:
            task.status = TaskStatus.COMPLETED
            task.result = result.output
            log.info("executor.task_completed", task_id=task.id, attempts=task.retry_count + 1)
        else:
            task.status = TaskStatus.FAILED
            task.error = result.error
            log.warning("executor.task_failed", task_id=task.id, error=result.error)
        return result

    async def execute_with_retry(
        self,
        task: Task,
        context: SessionContext,
        on_usage: Optional[UsageSink] = None,
    ) -> ExecutionResult:
        """
        Up to max_task_attempts attempts. Between attempt k and k+1 the
        executor sleeps retry_base_delay * 2**k; there is no sleep after the
        last attempt. Any exception from an attempt counts as a failed
        attempt; cancellation propagates.
        """
        usage = TokenUsage()
        last_error: Optional[BaseException] = None

        for attempt in range(self._max_attempts):
            task.retry_count = attempt
            try:
                response = await self._execute_single_attempt(task, context)
                usage = usage.merge(response.usage)
                _report(on_usage, response.usage)
                if not (response.content or "").strip():
                    raise TaskExecutionError("Model returned an empty result")
                return ExecutionResult(success=True, output=response.content, usage=usage)
            except Exception as e:
                last_error = e
                log.warning(
                    "executor.attempt_failed",
                    task_id=task.id,
                    attempt=attempt,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if attempt < self._max_attempts - 1:
                    await self._sleep(self._retry_base_delay * 2 ** attempt)

        return ExecutionResult(
            success=False,
            error=str(last_error) or type(last_error).__name__,
            usage=usage,
        )

    async def _execute_single_attempt(self, task: Task, context: SessionContext) -> LLMResponse:
        prompt = (
            "Execute the following task:\n"
            f"Task: {task.description}\n\n"
            "Context:\n"
            f"{json.dumps(context.working_memory, indent=2, default=str)}\n"
        )
        finished = _dependency_results(task, context.current_plan)
        if finished:
            prompt += f"\nResults of prerequisite tasks:\n{json.dumps(finished, indent=2, default=str)}\n"
        prompt += "\nProvide a detailed result."

        return await self._llm.generate(
            messages=[Message.system(self._system_prompt), Message.user(prompt)],
            config=self._config,
        )

    async def execute_plan(
        self,
        plan: Plan,
        context: SessionContext,
        on_usage: Optional[UsageSink] = None,
    ) -> list[ExecutionResult]:
        """
        Re-scanning dependency resolver.

        Each pass walks the tasks in order, marks tasks whose dependencies are
        not all completed as `blocked`, runs the first eligible task, then
        starts a new pass. Stops when a pass runs nothing or a task fails.
        """
        results: list[ExecutionResult] = []
        passes = 0

        while True:
            passes += 1
            ran = False
            for index, task in enumerate(plan.tasks):
                if task.status.is_terminal:
                    continue
                if not _dependencies_met(task, plan):
                    task.status = TaskStatus.BLOCKED
                    continue

                plan.current_task_index = index
                result = await self.execute_task(task, context, on_usage)
                results.append(result)
                ran = True

                if not result.success:
                    _block_unmet(plan)
                    log.warning(
                        "executor.plan_halted",
                        task_id=task.id,
                        completed=sum(1 for t in plan.tasks if t.status == TaskStatus.COMPLETED),
                    )
                    return results
                break

            if not ran:
                break

        log.info("executor.plan_done", passes=passes, progress=plan.progress_summary)
        return results

    # ─────────────────────────────────────────────────────────────────────────
    # Tool loop
    # ─────────────────────────────────────────────────────────────────────────

    async def execute_with_tools(
        self,
        message: str,
        context: SessionContext,
        on_usage: Optional[UsageSink] = None,
    ) -> ExecutionResult:
        """Each reply's usage goes to on_usage before the next call is made."""
        tools = self._tool_schemas()
        messages = self._build_messages(message, context)
        exec_ctx = _tool_context(context)

        response = await self._llm.generate(messages=messages, config=self._config, tools=tools)
        usage = response.usage
        _report(on_usage, response.usage)
        calls: list[ToolCall] = []
        outcomes: list[ToolOutcome] = []
        rounds = 0

        while response.has_tool_calls and rounds < self._max_tool_iter:
            rounds += 1
            round_outcomes = await self._bus.dispatch_all(response.tool_calls, exec_ctx)
            calls.extend(response.tool_calls)
            outcomes.extend(round_outcomes)
            _append_round(messages, response.content, response.tool_calls, round_outcomes)

            log.debug("executor.tool_round", round=rounds, calls=len(response.tool_calls))
            response = await self._llm.generate(messages=messages, config=self._config, tools=tools)
            usage = usage.merge(response.usage)
            _report(on_usage, response.usage)

        if response.has_tool_calls:
            log.warning("executor.max_tool_iterations", session_id=context.session_id, rounds=rounds)
            response = await self._llm.generate(messages=messages, config=self._config, tools=None)
            usage = usage.merge(response.usage)
            _report(on_usage, response.usage)

        return ExecutionResult(
            success=True,
            output=response.content or "",
            usage=usage,
            tool_calls=calls,
            tool_results=outcomes,
        )

    async def stream_with_tools(
        self,
        message: str,
        context: SessionContext,
        on_usage: Optional[UsageSink] = None,
    ) -> AsyncIterator[StreamEvent]:
        """
        Streaming variant of execute_with_tools(). Yields TEXT as it arrives,
        TOOL_START / TOOL_END around every dispatched call, and finally one
        DONE event whose `result` is the ExecutionResult.
        """
        tools = self._tool_schemas()
        messages = self._build_messages(message, context)
        exec_ctx = _tool_context(context)

        calls: list[ToolCall] = []
        outcomes: list[ToolOutcome] = []
        usage = TokenUsage()
        rounds = 0
        use_tools = tools

        while True:
            reply = _StreamedReply()
            async for event in self._stream_call(messages, use_tools, reply, on_usage):
                yield event
            usage = usage.merge(reply.usage)

            if not reply.tool_calls or use_tools is None:
                break
            if rounds >= self._max_tool_iter:
                log.warning("executor.max_tool_iterations", session_id=context.session_id, rounds=rounds)
                use_tools = None
                continue

            rounds += 1
            for tc in reply.tool_calls:
                yield StreamEvent(
                    type=StreamEventType.TOOL_START,
                    content=tc.arguments,
                    tool_name=tc.name,
                    tool_call_id=tc.id,
                )
            round_outcomes = await self._bus.dispatch_all(reply.tool_calls, exec_ctx)
            for outcome in round_outcomes:
                yield StreamEvent(
                    type=StreamEventType.TOOL_END,
                    content=outcome.error or _preview(outcome.content),
                    tool_name=outcome.name,
                    tool_call_id=outcome.tool_call_id,
                )
            calls.extend(reply.tool_calls)
            outcomes.extend(round_outcomes)
            _append_round(messages, reply.content, reply.tool_calls, round_outcomes)

        result = ExecutionResult(
            success=True,
            output=reply.content,
            usage=usage,
            tool_calls=calls,
            tool_results=outcomes,
        )
        yield StreamEvent(type=StreamEventType.DONE, result=result)

    async def _stream_call(
        self,
        messages: list[Message],
        tools: Optional[list[ToolSchema]],
        reply: "_StreamedReply",
        on_usage: Optional[UsageSink] = None,
    ) -> AsyncIterator[StreamEvent]:
        acc = ToolCallAccumulator()
        parts: list[str] = []
        async for chunk in self._llm.stream(messages=messages, config=self._config, tools=tools):
            if chunk.content:
                parts.append(chunk.content)
                yield StreamEvent.text(chunk.content)
            for delta in chunk.tool_calls:
                acc.add(delta)
            if chunk.usage is not None:
                reply.usage = reply.usage.merge(chunk.usage)
                _report(on_usage, chunk.usage)
        reply.content = "".join(parts)
        reply.tool_calls = acc.build() if acc else []

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _tool_schemas(self) -> Optional[list[ToolSchema]]:
        if not getattr(self._llm, "supports_tools", True) or len(self._registry) == 0:
            return None
        return self._registry.to_llm_schemas()

    def _build_messages(self, message: str, context: SessionContext) -> list[Message]:
        messages = [Message.system(self._system_prompt)]
        history = context.recent_history(self._history_window)
        for entry in history:
            role = Role.ASSISTANT if entry.role == HistoryRole.ASSISTANT.value else (
                Role.SYSTEM if entry.role == HistoryRole.SYSTEM.value else Role.USER
            )
            messages.append(Message(role=role, content=entry.content))

        # The orchestrator appends the user message before calling us
        last = history[-1] if history else None
        if last is None or last.role != HistoryRole.USER.value or last.content != message:
            messages.append(Message.user(message))
        return messages


@dataclass
class _StreamedReply:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)


# ─────────────────────────────────────────────────────────────────────────────
# Module helpers
# ─────────────────────────────────────────────────────────────────────────────


def _report(on_usage: Optional[UsageSink], usage: Optional[TokenUsage]) -> None:
    if on_usage is not None and usage is not None:
        on_usage(usage)


def _tool_context(context: SessionContext) -> ToolExecutionContext:
    return ToolExecutionContext(
        session_id=context.session_id,
        working_memory=context.working_memory,
    )


def _append_round(
    messages: list[Message],
    content: Optional[str],
    tool_calls: list[ToolCall],
    outcomes: list[ToolOutcome],
) -> None:
    messages.append(Message.assistant(content, tool_calls))
    for outcome in outcomes:
        messages.append(Message.tool_response(outcome.tool_call_id, outcome.content, name=outcome.name))


def _dependencies_met(task: Task, plan: Plan) -> bool:
    for dep_id in task.dependencies:
        dep = plan.get_task(dep_id)
        if dep is None or dep.status != TaskStatus.COMPLETED:
            return False
    return True


def _block_unmet(plan: Plan) -> None:
    for task in plan.tasks:
        if not task.status.is_terminal and not _dependencies_met(task, plan):
            task.status = TaskStatus.BLOCKED


def _dependency_results(task: Task, plan: Optional[Plan]) -> dict[str, Any]:
    if plan is None:
        return {}
    finished = {}
    for dep_id in task.dependencies:
        dep = plan.get_task(dep_id)
        if dep is not None and dep.status == TaskStatus.COMPLETED:
            finished[dep_id] = dep.result
    return finished


def _preview(text: str, limit: int = 200) -> str:
    return text if len(text) <= limit else text[:limit] + "..."

"""
tests/unit/test_executor.py: Executor Unit Tests

Test groups:
  - execute_with_retry: backoff schedule, empty replies, exhaustion
  - execute_plan: dependency order, blocking after failure, convergence
  - execute_with_tools: tool rounds, the iteration bound, usage merging
  - stream_with_tools: event sequence and the same bound
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from corint_agent.agent.executor import Executor
from corint_agent.agent.response import StreamEventType
from corint_agent.agent.session import Plan, SessionContext, Task, TaskStatus
from corint_agent.brain.llm_client import BaseLLMClient
from corint_agent.brain.types import LLMConfig, LLMResponse, Role, TokenUsage, ToolCall
from corint_agent.exceptions import LLMConnectionError
from corint_agent.tools.tool_registry import ToolRegistry


# ─────────────────────────────────────────────────────────────────────────────
# Shared test helpers
# ─────────────────────────────────────────────────────────────────────────────


class ScriptedLLM(BaseLLMClient):
    """generate() replays a fixed list of replies; stream() uses the base replay."""

    name = "scripted"

    def __init__(self, replies, supports_tools: bool = True):
        super().__init__()
        self.generate = AsyncMock(side_effect=list(replies))
        self.supports_tools = supports_tools

    async def generate(self, messages, config, tools=None):  # replaced per instance
        raise NotImplementedError

    async def health_check(self) -> bool:
        return True


class EchoParams(BaseModel):
    text: str


def _text(content: str, tokens: int = 10) -> LLMResponse:
    return LLMResponse(content=content, usage=TokenUsage.of(tokens, tokens))


def _tool_reply(call_id: str = "c1", text: str = "hi") -> LLMResponse:
    return LLMResponse(
        content=None,
        tool_calls=[ToolCall(id=call_id, name="echo", arguments=json.dumps({"text": text}))],
        usage=TokenUsage.of(5, 5),
    )


@pytest.fixture
def registry():
    reg = ToolRegistry()

    @reg.register("echo", "Echo text", parameters=EchoParams)
    async def echo(params: EchoParams, ctx):
        return params.text

    return reg


def _executor(llm, registry, **kwargs) -> tuple[Executor, AsyncMock]:
    sleep = AsyncMock()
    executor = Executor(
        llm_client=llm,
        llm_config=LLMConfig(model="test-model"),
        tool_registry=registry,
        sleep=sleep,
        **kwargs,
    )
    return executor, sleep


# ─────────────────────────────────────────────────────────────────────────────
# Retry
# ─────────────────────────────────────────────────────────────────────────────


class TestRetry:
    @pytest.mark.asyncio
    async def test_exhaustion_sleeps_between_attempts_only(self, registry):
        llm = ScriptedLLM([LLMConnectionError("down")] * 3)
        executor, sleep = _executor(llm, registry)
        task = Task(id="t", description="do it")

        result = await executor.execute_task(task, SessionContext("s1"))

        assert not result.success
        assert "down" in result.error
        assert task.status == TaskStatus.FAILED
        assert task.retry_count == 2
        assert llm.generate.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_empty_reply_counts_as_failed_attempt(self, registry):
        llm = ScriptedLLM([_text("   "), _text("result")])
        executor, sleep = _executor(llm, registry)
        task = Task(id="t", description="do it")

        result = await executor.execute_task(task, SessionContext("s1"))

        assert result.success
        assert result.output == "result"
        assert task.status == TaskStatus.COMPLETED
        assert task.result == "result"
        assert task.retry_count == 1
        assert result.usage.total_tokens == 40
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_retried_then_fails_task(self, registry):
        llm = ScriptedLLM([RuntimeError("boom")] * 3)
        executor, sleep = _executor(llm, registry)
        task = Task(id="t", description="do it")

        result = await executor.execute_task(task, SessionContext("s1"))

        assert not result.success
        assert result.error == "boom"
        assert task.status == TaskStatus.FAILED
        assert task.error == "boom"
        assert llm.generate.await_count == 3
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, registry):
        llm = ScriptedLLM([asyncio.CancelledError()])
        executor, _ = _executor(llm, registry)
        with pytest.raises(asyncio.CancelledError):
            await executor.execute_task(Task(id="t", description="d"), SessionContext("s1"))
        assert llm.generate.await_count == 1

    @pytest.mark.asyncio
    async def test_usage_reported_per_attempt(self, registry):
        llm = ScriptedLLM([_text("  ", tokens=3), _text("ok", tokens=4)])
        executor, _ = _executor(llm, registry)
        seen = []

        await executor.execute_task(Task(id="t", description="d"), SessionContext("s1"), seen.append)

        assert [u.total_tokens for u in seen] == [6, 8]

    @pytest.mark.asyncio
    async def test_custom_base_delay(self, registry):
        llm = ScriptedLLM([LLMConnectionError("x")] * 3)
        executor, sleep = _executor(llm, registry, retry_base_delay=0.5)
        await executor.execute_task(Task(id="t", description="d"), SessionContext("s1"))
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_prompt_includes_working_memory_and_prerequisites(self, registry):
        llm = ScriptedLLM([_text("ok")])
        executor, _ = _executor(llm, registry)
        done = Task(id="a", description="A", status=TaskStatus.COMPLETED, result="42 rows")
        task = Task(id="b", description="Summarise", dependencies=["a"])
        ctx = SessionContext("s1", working_memory={"source": "events"})
        ctx.current_plan = Plan(goal="g", tasks=[done, task])

        await executor.execute_task(task, ctx)

        prompt = llm.generate.call_args.kwargs["messages"][-1].content
        assert "Summarise" in prompt
        assert '"source": "events"' in prompt
        assert "42 rows" in prompt


# ─────────────────────────────────────────────────────────────────────────────
# Plans
# ─────────────────────────────────────────────────────────────────────────────


class TestExecutePlan:
    @pytest.mark.asyncio
    async def test_dependency_listed_later_still_runs_first(self, registry):
        llm = ScriptedLLM([_text("A done"), _text("B done")])
        executor, _ = _executor(llm, registry)
        plan = Plan(goal="g", tasks=[
            Task(id="b", description="B", dependencies=["a"]),
            Task(id="a", description="A"),
        ])

        results = await executor.execute_plan(plan, SessionContext("s1"))

        assert [r.task_id for r in results] == ["a", "b"]
        assert plan.is_complete
        assert plan.get_task("b").result == "B done"

    @pytest.mark.asyncio
    async def test_failure_blocks_dependents_and_halts(self, registry):
        llm = ScriptedLLM([LLMConnectionError("down")] * 3)
        executor, _ = _executor(llm, registry)
        plan = Plan(goal="g", tasks=[
            Task(id="a", description="A"),
            Task(id="b", description="B", dependencies=["a"]),
        ])

        results = await executor.execute_plan(plan, SessionContext("s1"))

        assert len(results) == 1
        assert not results[0].success
        assert plan.get_task("a").status == TaskStatus.FAILED
        assert plan.get_task("b").status == TaskStatus.BLOCKED
        assert llm.generate.await_count == 3

    @pytest.mark.asyncio
    async def test_unknown_dependency_terminates_blocked(self, registry):
        llm = ScriptedLLM([_text("A done")])
        executor, _ = _executor(llm, registry)
        plan = Plan(goal="g", tasks=[
            Task(id="a", description="A"),
            Task(id="b", description="B", dependencies=["missing"]),
        ])

        results = await executor.execute_plan(plan, SessionContext("s1"))

        assert [r.task_id for r in results] == ["a"]
        assert plan.get_task("b").status == TaskStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_tracks_current_task_index(self, registry):
        llm = ScriptedLLM([_text("1"), _text("2")])
        executor, _ = _executor(llm, registry)
        plan = Plan(goal="g", tasks=[Task(id="a", description="A"), Task(id="b", description="B")])
        await executor.execute_plan(plan, SessionContext("s1"))
        assert plan.current_task_index == 1


# ─────────────────────────────────────────────────────────────────────────────
# Tool loop
# ─────────────────────────────────────────────────────────────────────────────


class TestExecuteWithTools:
    @pytest.mark.asyncio
    async def test_plain_answer(self, registry):
        llm = ScriptedLLM([_text("Hello!")])
        executor, _ = _executor(llm, registry)
        result = await executor.execute_with_tools("hi", SessionContext("s1"))

        assert result.success
        assert result.output == "Hello!"
        assert result.tool_calls == []
        tools = llm.generate.call_args.kwargs["tools"]
        assert [t.name for t in tools] == ["echo"]

    @pytest.mark.asyncio
    async def test_tool_round_feeds_results_back(self, registry):
        llm = ScriptedLLM([_tool_reply("c1", "ping"), _text("pong")])
        executor, _ = _executor(llm, registry)
        result = await executor.execute_with_tools("ping it", SessionContext("s1"))

        assert result.output == "pong"
        assert [tc.id for tc in result.tool_calls] == ["c1"]
        assert result.tool_results[0].result == "ping"
        assert result.usage.total_tokens == 30

        messages = llm.generate.call_args.kwargs["messages"]
        assert messages[-2].role == Role.ASSISTANT
        assert messages[-2].tool_calls[0].id == "c1"
        assert messages[-1].role == Role.TOOL
        assert messages[-1].tool_call_id == "c1"
        assert messages[-1].content == "ping"

    @pytest.mark.asyncio
    async def test_usage_reported_before_later_failure(self, registry):
        llm = ScriptedLLM([_tool_reply("c1"), LLMConnectionError("down")])
        executor, _ = _executor(llm, registry)
        seen = []

        with pytest.raises(LLMConnectionError):
            await executor.execute_with_tools("go", SessionContext("s1"), seen.append)

        assert [u.total_tokens for u in seen] == [10]

    @pytest.mark.asyncio
    async def test_iteration_bound_forces_final_call_without_tools(self, registry):
        replies = [_tool_reply(f"c{i}") for i in range(9)] + [_text("giving up")]
        llm = ScriptedLLM(replies)
        executor, _ = _executor(llm, registry)

        result = await executor.execute_with_tools("loop forever", SessionContext("s1"))

        assert llm.generate.await_count == 10
        assert llm.generate.call_args.kwargs["tools"] is None
        assert len(result.tool_calls) == 8
        assert result.output == "giving up"

    @pytest.mark.asyncio
    async def test_no_tools_sent_when_provider_lacks_support(self, registry):
        llm = ScriptedLLM([_text("ok")], supports_tools=False)
        executor, _ = _executor(llm, registry)
        await executor.execute_with_tools("hi", SessionContext("s1"))
        assert llm.generate.call_args.kwargs["tools"] is None

    @pytest.mark.asyncio
    async def test_user_message_not_duplicated(self, registry):
        llm = ScriptedLLM([_text("ok")])
        executor, _ = _executor(llm, registry)
        ctx = SessionContext("s1")
        ctx.add_message("user", "earlier")
        ctx.add_message("assistant", "reply")
        ctx.add_message("user", "now")

        await executor.execute_with_tools("now", ctx)

        messages = llm.generate.call_args.kwargs["messages"]
        assert [m.role for m in messages] == [Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.USER]
        assert messages[-1].content == "now"

    @pytest.mark.asyncio
    async def test_history_window(self, registry):
        llm = ScriptedLLM([_text("ok")])
        executor, _ = _executor(llm, registry, history_window=2)
        ctx = SessionContext("s1")
        for i in range(6):
            ctx.add_message("user" if i % 2 == 0 else "assistant", f"m{i}")

        await executor.execute_with_tools("new", ctx)

        contents = [m.content for m in llm.generate.call_args.kwargs["messages"][1:]]
        assert contents == ["m4", "m5", "new"]


class TestStreamWithTools:
    @pytest.mark.asyncio
    async def test_event_sequence(self, registry):
        llm = ScriptedLLM([_tool_reply("c1", "ping"), _text("Final answer")])
        executor, _ = _executor(llm, registry)

        events = [e async for e in executor.stream_with_tools("go", SessionContext("s1"))]
        types = [e.type for e in events]

        assert types == [
            StreamEventType.TOOL_START,
            StreamEventType.TOOL_END,
            StreamEventType.TEXT,
            StreamEventType.DONE,
        ]
        assert events[0].tool_name == "echo"
        assert events[1].content == "ping"
        assert events[2].content == "Final answer"
        result = events[-1].result
        assert result.output == "Final answer"
        assert len(result.tool_calls) == 1
        assert result.usage.total_tokens == 30

    @pytest.mark.asyncio
    async def test_bound_applies_to_streaming(self, registry):
        replies = [_tool_reply(f"c{i}") for i in range(3)] + [_text("done")]
        llm = ScriptedLLM(replies)
        executor, _ = _executor(llm, registry, max_tool_iterations=2)

        events = [e async for e in executor.stream_with_tools("go", SessionContext("s1"))]

        assert llm.generate.await_count == 4
        assert llm.generate.call_args.kwargs["tools"] is None
        starts = [e for e in events if e.type == StreamEventType.TOOL_START]
        assert len(starts) == 2
        assert events[-1].result.output == "done"

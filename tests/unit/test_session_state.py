"""
tests/unit/test_session_state.py: Context Store, Cost Controller, Checkpoints

Covers the in-memory session state the orchestrator owns:
  - ContextStore lifecycle, history and working memory
  - CostController admission order and usage accounting
  - CheckpointStore deep-copy snapshots and LIFO restore
"""

from __future__ import annotations

import pytest

from corint_agent.agent.checkpoints import CheckpointStore
from corint_agent.agent.context_store import ContextStore
from corint_agent.agent.cost_controller import BudgetConfig, CostController
from corint_agent.agent.session import Plan, SessionContext, Task, TaskStatus
from corint_agent.exceptions import SessionNotFoundError, UninitializedSessionError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


# ─────────────────────────────────────────────────────────────────────────────
# ContextStore
# ─────────────────────────────────────────────────────────────────────────────


class TestContextStore:
    def test_create_and_get(self):
        store = ContextStore()
        ctx = store.create_session("s1", user_id="u1")
        assert store.get_session("s1") is ctx
        assert ctx.user_id == "u1"
        assert ctx.conversation_history == []
        assert ctx.working_memory == {}
        assert ctx.current_plan is None

    def test_get_missing_returns_none(self):
        assert ContextStore().get_session("nope") is None

    def test_require_missing_raises(self):
        with pytest.raises(SessionNotFoundError) as exc_info:
            ContextStore().require_session("nope")
        assert exc_info.value.session_id == "nope"

    def test_delete(self):
        store = ContextStore()
        store.create_session("s1")
        store.delete_session("s1")
        assert "s1" not in store
        store.delete_session("s1")  # idempotent

    def test_history_order_and_limit(self):
        store = ContextStore()
        store.create_session("s1")
        for i in range(5):
            store.add_message("s1", "user", f"m{i}")
        history = store.get_conversation_history("s1", 2)
        assert [e.content for e in history] == ["m3", "m4"]
        assert len(store.get_conversation_history("s1")) == 5

    def test_history_of_unknown_session_is_empty(self):
        assert ContextStore().get_conversation_history("nope") == []

    def test_working_memory(self):
        store = ContextStore()
        store.create_session("s1")
        store.set_working_memory("s1", "rows", 42)
        assert store.get_working_memory("s1", "rows") == 42
        assert store.get_working_memory("s1", "missing") is None
        store.clear_working_memory("s1")
        assert store.get_session("s1").working_memory == {}


# ─────────────────────────────────────────────────────────────────────────────
# CostController
# ─────────────────────────────────────────────────────────────────────────────


class TestCostController:
    def test_fresh_session_is_admitted(self):
        costs = CostController(BudgetConfig())
        costs.init_session("s1")
        assert costs.check_limits("s1").allowed

    def test_unknown_session_is_admitted(self):
        assert CostController().check_limits("never-seen").allowed

    def test_record_query_accumulates(self):
        costs = CostController()
        costs.init_session("s1")
        costs.record_query("s1", prompt_tokens=100, completion_tokens=20)
        metrics = costs.record_query("s1", prompt_tokens=10, completion_tokens=5)
        assert metrics.prompt_tokens == 110
        assert metrics.completion_tokens == 25
        assert metrics.total_tokens == 135
        assert metrics.query_count == 2
        assert metrics.last_query_time is not None

    def test_record_query_uninitialised_raises(self):
        with pytest.raises(UninitializedSessionError):
            CostController().record_query("s1", prompt_tokens=1, completion_tokens=1)

    def test_query_limit(self):
        costs = CostController(BudgetConfig(max_queries=1))
        costs.init_session("s1")
        costs.record_query("s1", 1, 1)
        decision = costs.check_limits("s1")
        assert not decision.allowed
        assert decision.reason == "Query limit exceeded: 1/1"

    def test_token_limit_checked_before_query_limit(self):
        costs = CostController(BudgetConfig(max_tokens=10, max_queries=1))
        costs.init_session("s1")
        costs.record_query("s1", 8, 8)
        decision = costs.check_limits("s1")
        assert not decision.allowed
        assert decision.reason.startswith("Token limit exceeded")
        assert "limit" in decision.reason

    def test_timeout_limit(self):
        clock = FakeClock()
        costs = CostController(BudgetConfig(timeout_seconds=60), clock=clock)
        costs.init_session("s1")
        clock.now += 61
        decision = costs.check_limits("s1")
        assert not decision.allowed
        assert "Timeout limit exceeded" in decision.reason

    def test_zero_timeout_disables_wall_clock(self):
        clock = FakeClock()
        costs = CostController(BudgetConfig(timeout_seconds=0), clock=clock)
        costs.init_session("s1")
        clock.now += 10_000_000
        assert costs.check_limits("s1").allowed

    def test_init_session_resets_counters(self):
        costs = CostController()
        costs.init_session("s1")
        costs.record_query("s1", 5, 5)
        costs.init_session("s1")
        assert costs.get_metrics("s1").query_count == 0

    def test_clear_metrics(self):
        costs = CostController()
        costs.init_session("s1")
        costs.clear_metrics("s1")
        assert costs.get_metrics("s1") is None


# ─────────────────────────────────────────────────────────────────────────────
# CheckpointStore
# ─────────────────────────────────────────────────────────────────────────────


class TestCheckpointStore:
    def test_restore_is_exact(self):
        ctx = SessionContext(session_id="s1")
        ctx.add_message("user", "hello")
        ctx.working_memory["nested"] = {"a": [1, 2]}
        store = CheckpointStore()
        store.create(ctx)

        snapshot_history = [(e.role, e.content, e.timestamp) for e in ctx.conversation_history]
        ctx.add_message("assistant", "hi")
        ctx.working_memory["nested"]["a"].append(3)
        ctx.working_memory["extra"] = True

        store.restore_last(ctx)
        assert [(e.role, e.content, e.timestamp) for e in ctx.conversation_history] == snapshot_history
        assert ctx.working_memory == {"nested": {"a": [1, 2]}}

    def test_restore_keeps_memory_identity(self):
        ctx = SessionContext(session_id="s1")
        memory = ctx.working_memory
        store = CheckpointStore()
        store.create(ctx)
        ctx.working_memory["k"] = "v"
        store.restore_last(ctx)
        assert ctx.working_memory is memory
        assert memory == {}

    def test_lifo_order(self):
        ctx = SessionContext(session_id="s1")
        store = CheckpointStore()
        ctx.working_memory["step"] = 1
        first = store.create(ctx)
        ctx.working_memory["step"] = 2
        second = store.create(ctx)
        ctx.working_memory["step"] = 3

        assert store.restore_last(ctx).id == second.id
        assert ctx.working_memory["step"] == 2
        assert store.restore_last(ctx).id == first.id
        assert ctx.working_memory["step"] == 1
        assert store.restore_last(ctx) is None

    def test_restore_without_checkpoint_leaves_context(self):
        ctx = SessionContext(session_id="s1")
        ctx.working_memory["k"] = "v"
        assert CheckpointStore().restore_last(ctx) is None
        assert ctx.working_memory == {"k": "v"}

    def test_ids_are_unique(self):
        ctx = SessionContext(session_id="s1")
        store = CheckpointStore()
        ids = {store.create(ctx).id for _ in range(5)}
        assert len(ids) == 5
        assert all(i.startswith("checkpoint-") for i in ids)

    def test_sessions_are_isolated(self):
        a = SessionContext(session_id="a")
        b = SessionContext(session_id="b")
        store = CheckpointStore()
        store.create(a)
        assert store.list("b") == []
        assert store.restore_last(b) is None


# ─────────────────────────────────────────────────────────────────────────────
# Plan helpers
# ─────────────────────────────────────────────────────────────────────────────


class TestPlan:
    def test_progress_and_completion(self):
        plan = Plan(goal="g", tasks=[Task(id="a", description="A"), Task(id="b", description="B")])
        assert not plan.is_complete
        plan.tasks[0].status = TaskStatus.COMPLETED
        assert plan.progress_summary == "1/2 tasks complete"
        plan.tasks[1].status = TaskStatus.COMPLETED
        assert plan.is_complete

    def test_terminal_statuses(self):
        assert TaskStatus.COMPLETED.is_terminal
        assert TaskStatus.FAILED.is_terminal
        assert not TaskStatus.BLOCKED.is_terminal
        assert not TaskStatus.PENDING.is_terminal

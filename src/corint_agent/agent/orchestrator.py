"""
agent/orchestrator.py: Agent Orchestrator

Top-level state machine for one user message:

    admission → context-append → classify
        → direct tool loop                                  (simple_query)
        → plan → execute → error-check → (revise + re-execute once)
          → evaluate → synthesize                           (complex_task)
    → context-append-response → usage-record

Admission denial returns a blocked response without any model call and
leaves the session untouched. Any exception past admission (provider or
transport failure included) becomes a low-confidence response that asks
for user input. Each admitted message records exactly one query whose
tokens are the sum of every model call made for it.

Usage:
    orc = Orchestrator(llm, config, registry)
    orc.create_session("s1")
    response = await orc.process_message("s1", "How many rules fired yesterday?")

    async for event in orc.process_message_stream("s1", "And the day before?"):
        print(event.type, event.content)
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from corint_agent.agent.checkpoints import Checkpoint, CheckpointStore
from corint_agent.agent.context_store import ContextStore
from corint_agent.agent.cost_controller import BudgetConfig, CostController, CostMetrics
from corint_agent.agent.evaluator import Evaluator
from corint_agent.agent.executor import ExecutionResult, Executor
from corint_agent.agent.parsing import Degraded, ParseOutcome, Parsed
from corint_agent.agent.planner import Planner, RevisionMode
from corint_agent.agent.response import AgentResponse, Confidence, StreamEvent, StreamEventType
from corint_agent.agent.session import HistoryRole, SessionContext
from corint_agent.brain.llm_client import BaseLLMClient
from corint_agent.brain.types import LLMConfig, Message, TokenUsage
from corint_agent.observability.logger import bind_session, get_logger
from corint_agent.observability.logger import clear_session as clear_log_context
from corint_agent.tools.tool_bus import ToolBus
from corint_agent.tools.tool_registry import ToolRegistry

if TYPE_CHECKING:
    from corint_agent.persistence.session_store import SessionStore

log = get_logger(__name__)


class PlanningMode(str, Enum):
    AUTO = "auto"         # classify every message
    DIRECT = "direct"     # always the tool loop
    PLAN = "plan"         # always plan / execute / evaluate


class TurnKind(str, Enum):
    SIMPLE_QUERY = "simple_query"
    COMPLEX_TASK = "complex_task"


_CLASSIFY_SYSTEM = """\
Classify the user's message.
Answer with exactly one word:
  simple_query  - a question or request that can be answered directly,
                  possibly with a few tool calls
  complex_task  - a goal that needs several dependent steps to achieve"""


@dataclass
class _Turn:
    """Accumulates usage across every model call made for one message."""
    usage: TokenUsage = field(default_factory=TokenUsage)
    started: float = field(default_factory=time.monotonic)

    def add(self, usage: Optional[TokenUsage]) -> None:
        self.usage = self.usage.merge(usage)


class Orchestrator:
    """
    Coordinates the stores, planner, executor and evaluator for every turn.

    Inject dependencies via the constructor; use from_settings() when wiring
    up the application.
    """

    def __init__(
        self,
        llm_client: BaseLLMClient,
        llm_config: LLMConfig,
        tool_registry: ToolRegistry,
        tool_bus: Optional[ToolBus] = None,
        budget: Optional[BudgetConfig] = None,
        planning_mode: PlanningMode | str = PlanningMode.AUTO,
        agent_name: str = "Corint",
        max_tool_iterations: int = 8,
        max_task_attempts: int = 3,
        retry_base_delay: float = 1.0,
        history_window: Optional[int] = None,
        session_store: Optional["SessionStore"] = None,
        autosave: bool = False,
        checkpoint_before_turn: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._llm = llm_client
        self._config = llm_config
        self._classify_config = llm_config.derive(temperature=0.0, max_tokens=16)
        self._registry = tool_registry
        self._planning_mode = PlanningMode(planning_mode)
        self._session_store = session_store
        self._autosave = autosave
        self._checkpoint_before_turn = checkpoint_before_turn

        self.contexts = ContextStore()
        self.costs = CostController(budget)
        self.checkpoints = CheckpointStore()

        self._executor = Executor(
            llm_client=llm_client,
            llm_config=llm_config,
            tool_registry=tool_registry,
            tool_bus=tool_bus,
            agent_name=agent_name,
            max_tool_iterations=max_tool_iterations,
            max_task_attempts=max_task_attempts,
            retry_base_delay=retry_base_delay,
            history_window=history_window,
            sleep=sleep,
        )
        self._planner = Planner(llm_client=llm_client, llm_config=llm_config)
        self._evaluator = Evaluator(llm_client=llm_client, llm_config=llm_config)

    # ─────────────────────────────────────────────────────────────────────────
    # Session API
    # ─────────────────────────────────────────────────────────────────────────

    def create_session(self, session_id: str, user_id: Optional[str] = None) -> SessionContext:
        context = self.contexts.create_session(session_id, user_id)
        self.costs.init_session(session_id)
        self.checkpoints.clear(session_id)
        log.info("orchestrator.session_created", session_id=session_id)
        return context

    def get_session(self, session_id: str) -> Optional[SessionContext]:
        return self.contexts.get_session(session_id)

    def delete_session(self, session_id: str) -> None:
        self.contexts.delete_session(session_id)
        self.costs.clear_metrics(session_id)
        self.checkpoints.clear(session_id)
        log.info("orchestrator.session_deleted", session_id=session_id)

    def get_metrics(self, session_id: str) -> Optional[CostMetrics]:
        return self.costs.get_metrics(session_id)

    def clear_session(self, session_id: str) -> None:
        """Clear working memory, history and the active plan."""
        context = self.contexts.require_session(session_id)
        context.working_memory.clear()
        context.conversation_history.clear()
        context.current_plan = None

    def restore_checkpoint(self, session_id: str) -> Optional[Checkpoint]:
        """Pop the newest checkpoint into the live context. None when there is none."""
        context = self.contexts.require_session(session_id)
        checkpoint = self.checkpoints.restore_last(context)
        if checkpoint is not None:
            context.current_plan = None
        return checkpoint

    # ── Persistence ───────────────────────────────────────────────────────────

    def resume_session(self, session_id: str) -> SessionContext:
        """
        Rebuild a session from disk, or create a fresh one when nothing is
        stored under the id. Budget counters start over either way.
        """
        # Validates the id before any in-memory state is created
        state = self._session_store.load_session(session_id) if self._session_store else None
        context = self.create_session(session_id)
        if state is None:
            return context

        self._session_store.apply_state(context, state)
        self.checkpoints.load(session_id, self._session_store.checkpoints_from_state(state))
        log.info(
            "orchestrator.session_resumed",
            session_id=session_id,
            messages=len(context.conversation_history),
            checkpoints=len(state.checkpoints),
        )
        return context

    def save_session(self, session_id: str) -> None:
        if self._session_store is None:
            return
        context = self.contexts.require_session(session_id)
        store = self._session_store
        state = store.load_session(session_id) or store.create_state(session_id)
        store.update_state_from_context(state, context, self.checkpoints.list(session_id))
        store.save_session(state)

    # ─────────────────────────────────────────────────────────────────────────
    # Public: message processing
    # ─────────────────────────────────────────────────────────────────────────

    async def process_message(self, session_id: str, message: str) -> AgentResponse:
        """
        Process one user message and return the final AgentResponse.
        Raises SessionNotFoundError for an unknown session id.
        """
        context = self.contexts.require_session(session_id)

        decision = self.costs.check_limits(session_id)
        if not decision.allowed:
            log.warning("orchestrator.blocked", session_id=session_id, reason=decision.reason)
            return AgentResponse.blocked(decision.reason or "budget exhausted")

        bind_session(session_id, context.user_id)
        turn = self._begin_turn(context, message)
        response: Optional[AgentResponse] = None
        try:
            try:
                async for event in self._run_pipeline(context, message, turn, stream=False):
                    if event.type == StreamEventType.DONE:
                        response = event.response
            except Exception as e:
                log.error("orchestrator.turn_error", error=str(e), error_type=type(e).__name__, exc_info=True)
                response = AgentResponse.failure(str(e))
            else:
                context.add_message(HistoryRole.ASSISTANT.value, response.content)
            return response
        finally:
            # Also reached on cancellation
            self._finish_turn(session_id, turn, response)
            clear_log_context()

    async def process_message_stream(self, session_id: str, message: str) -> AsyncIterator[StreamEvent]:
        """
        Streaming variant of process_message(). The last event is always
        DONE carrying the final AgentResponse.
        """
        context = self.contexts.require_session(session_id)

        decision = self.costs.check_limits(session_id)
        if not decision.allowed:
            log.warning("orchestrator.blocked", session_id=session_id, reason=decision.reason)
            blocked = AgentResponse.blocked(decision.reason or "budget exhausted")
            yield StreamEvent.error(blocked.content)
            yield StreamEvent(type=StreamEventType.DONE, content=blocked.content, response=blocked)
            return

        bind_session(session_id, context.user_id)
        turn = self._begin_turn(context, message)
        response: Optional[AgentResponse] = None
        recorded = False
        try:
            try:
                async for event in self._run_pipeline(context, message, turn, stream=True):
                    if event.type == StreamEventType.DONE:
                        response = event.response
                        continue
                    yield event
            except Exception as e:
                log.error("orchestrator.turn_error", error=str(e), error_type=type(e).__name__, exc_info=True)
                response = AgentResponse.failure(str(e))
                yield StreamEvent.error(response.content)
            else:
                context.add_message(HistoryRole.ASSISTANT.value, response.content)

            self._finish_turn(session_id, turn, response)
            recorded = True
            yield StreamEvent(type=StreamEventType.DONE, content=response.content, response=response)
        finally:
            # The consumer may stop reading before DONE
            if not recorded:
                self._finish_turn(session_id, turn, None)
            clear_log_context()

    # ─────────────────────────────────────────────────────────────────────────
    # Pipeline
    # ─────────────────────────────────────────────────────────────────────────

    async def _run_pipeline(
        self,
        context: SessionContext,
        message: str,
        turn: _Turn,
        stream: bool,
    ) -> AsyncIterator[StreamEvent]:
        """Yields progress events, then one DONE event carrying the response."""
        kind = await self._turn_kind(message, turn)
        log.info("orchestrator.classified", kind=kind.value)

        if kind == TurnKind.SIMPLE_QUERY:
            result: Optional[ExecutionResult] = None
            if stream:
                async for event in self._executor.stream_with_tools(message, context, turn.add):
                    if event.type == StreamEventType.DONE:
                        result = event.result
                    else:
                        yield event
            else:
                result = await self._executor.execute_with_tools(message, context, turn.add)

            response = AgentResponse(
                content=_as_text(result.output),
                confidence=Confidence.HIGH,
                metadata={"kind": kind.value, "tool_calls": len(result.tool_calls)},
            )
        else:
            response = None
            async for event in self._run_plan(context, message, turn):
                if event.type == StreamEventType.DONE:
                    response = event.response
                else:
                    yield event

        yield StreamEvent(type=StreamEventType.DONE, response=response)

    async def _run_plan(self, context: SessionContext, goal: str, turn: _Turn) -> AsyncIterator[StreamEvent]:
        yield StreamEvent.status("Planning...")
        planning = self._note(await self._planner.create_plan(goal, context), turn)
        plan = planning.value.plan
        context.current_plan = plan

        yield StreamEvent.status(f"Executing plan ({len(plan.tasks)} tasks)...")
        results = await self._executor.execute_plan(plan, context, turn.add)
        failed = any(not r.success for r in results)

        if failed:
            yield StreamEvent.status("Checking errors...")
            report = self._note(await self._evaluator.detect_errors(results), turn).value
            if report.has_errors:
                yield StreamEvent.status("Revising plan...")
                revision = self._note(
                    await self._planner.revise_plan(plan, report.feedback, RevisionMode.OVERWRITE),
                    turn,
                )
                plan = revision.value.plan
                context.current_plan = plan

                yield StreamEvent.status(f"Executing revised plan ({len(plan.tasks)} tasks)...")
                retry_results = await self._executor.execute_plan(plan, context, turn.add)
                results = results + retry_results
                failed = any(not r.success for r in retry_results)

        yield StreamEvent.status("Evaluating results...")
        evaluation = self._note(await self._evaluator.evaluate_result(goal, results), turn).value

        yield StreamEvent.status("Writing response...")
        response = await self._evaluator.synthesize_response(goal, results, evaluation)
        turn.add(response.usage)

        if failed:
            response.confidence = Confidence.LOW
        response.metadata.update({
            "kind": TurnKind.COMPLEX_TASK.value,
            "plan": plan.to_dict(),
            "failed": failed,
        })
        log.info("orchestrator.plan_finished", progress=plan.progress_summary, failed=failed)
        yield StreamEvent(type=StreamEventType.DONE, response=response)

    async def _turn_kind(self, message: str, turn: _Turn) -> TurnKind:
        if self._planning_mode == PlanningMode.DIRECT:
            return TurnKind.SIMPLE_QUERY
        if self._planning_mode == PlanningMode.PLAN:
            return TurnKind.COMPLEX_TASK
        outcome = self._note(await self.classify(message), turn)
        return outcome.value

    async def classify(self, message: str) -> ParseOutcome[TurnKind]:
        """One model call. Replies naming neither kind degrade to simple_query."""
        response = await self._llm.generate(
            messages=[Message.system(_CLASSIFY_SYSTEM), Message.user(message)],
            config=self._classify_config,
        )
        content = (response.content or "").strip().lower()
        if TurnKind.COMPLEX_TASK.value in content:
            return Parsed(value=TurnKind.COMPLEX_TASK, usage=response.usage)
        if TurnKind.SIMPLE_QUERY.value in content:
            return Parsed(value=TurnKind.SIMPLE_QUERY, usage=response.usage)
        log.debug("orchestrator.classify_degraded", raw=content[:80])
        return Degraded(
            value=TurnKind.SIMPLE_QUERY,
            raw_text=response.content or "",
            reason="reply names no turn kind",
            usage=response.usage,
        )

    # ── Turn bookkeeping ──────────────────────────────────────────────────────

    def _begin_turn(self, context: SessionContext, message: str) -> _Turn:
        log.info("orchestrator.turn_start", session_id=context.session_id, user_message=message[:120])
        if self._checkpoint_before_turn:
            self.checkpoints.create(context)
        context.add_message(HistoryRole.USER.value, message)
        return _Turn()

    def _finish_turn(self, session_id: str, turn: _Turn, response: Optional[AgentResponse]) -> None:
        if response is not None:
            response.usage = turn.usage
        self.costs.record_query(
            session_id,
            prompt_tokens=turn.usage.prompt_tokens,
            completion_tokens=turn.usage.effective_completion_tokens,
        )
        if self._autosave:
            self.save_session(session_id)
        log.info(
            "orchestrator.turn_done",
            session_id=session_id,
            ms=round((time.monotonic() - turn.started) * 1000),
            total_tokens=turn.usage.total_tokens,
            confidence=response.confidence.value if response is not None else None,
        )

    @staticmethod
    def _note(outcome: ParseOutcome, turn: _Turn) -> ParseOutcome:
        turn.add(outcome.usage)
        if outcome.degraded:
            log.warning("orchestrator.degraded_parse", reason=outcome.reason)
        return outcome

    # ─────────────────────────────────────────────────────────────────────────
    # Factory
    # ─────────────────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(
        cls,
        settings,
        llm_client: BaseLLMClient,
        tool_registry: ToolRegistry,
        session_store: Optional["SessionStore"] = None,
    ) -> "Orchestrator":
        """Create an Orchestrator from the Settings object."""
        if session_store is None:
            from corint_agent.persistence.session_store import SessionStore
            session_store = SessionStore(settings.sessions.dir)

        llm_config = LLMConfig(
            model=settings.llm_model,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
        )
        agent = settings.agent
        return cls(
            llm_client=llm_client,
            llm_config=llm_config,
            tool_registry=tool_registry,
            tool_bus=ToolBus(
                tool_registry,
                timeout_seconds=agent.tool_timeout_seconds,
                max_result_chars=agent.tool_result_max_chars,
            ),
            budget=BudgetConfig(
                max_tokens=settings.budget.max_tokens,
                max_queries=settings.budget.max_queries,
                timeout_seconds=settings.budget.timeout_seconds,
            ),
            planning_mode=agent.planning_mode,
            agent_name=agent.name,
            max_tool_iterations=agent.max_tool_iterations,
            max_task_attempts=agent.max_task_retries,
            retry_base_delay=agent.retry_base_delay,
            history_window=agent.history_window,
            session_store=session_store,
            autosave=settings.sessions.autosave,
            checkpoint_before_turn=settings.sessions.checkpoint_before_turn,
        )


def _as_text(output: Any) -> str:
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)

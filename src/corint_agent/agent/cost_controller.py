"""
agent/cost_controller.py: Per-Session Budget

Tracks token and query usage per session and decides whether a new
message may be admitted. Checks run in a fixed order: tokens, queries,
then wall-clock time since the session started.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from corint_agent.exceptions import UninitializedSessionError
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_MAX_TOKENS = 100_000
DEFAULT_MAX_QUERIES = 50
DEFAULT_TIMEOUT_SECONDS = 3600.0


@dataclass
class BudgetConfig:
    max_tokens: int = DEFAULT_MAX_TOKENS
    max_queries: int = DEFAULT_MAX_QUERIES
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS     # 0 disables the wall-clock check


@dataclass
class CostMetrics:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    query_count: int = 0
    start_time: float = field(default_factory=time.time)
    last_query_time: Optional[float] = None


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    reason: Optional[str] = None


class CostController:
    """
    Usage:
        costs = CostController(BudgetConfig(max_queries=10))
        costs.init_session("s1")
        decision = costs.check_limits("s1")
        if decision.allowed:
            ...
            costs.record_query("s1", prompt_tokens=120, completion_tokens=40)
    """

    def __init__(
        self,
        config: Optional[BudgetConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or BudgetConfig()
        self._clock = clock
        self._metrics: dict[str, CostMetrics] = {}

    def init_session(self, session_id: str) -> CostMetrics:
        metrics = CostMetrics(start_time=self._clock())
        self._metrics[session_id] = metrics
        return metrics

    def record_query(self, session_id: str, prompt_tokens: int, completion_tokens: int) -> CostMetrics:
        metrics = self._metrics.get(session_id)
        if metrics is None:
            raise UninitializedSessionError(session_id)

        prompt_tokens = max(int(prompt_tokens), 0)
        completion_tokens = max(int(completion_tokens), 0)
        metrics.prompt_tokens += prompt_tokens
        metrics.completion_tokens += completion_tokens
        metrics.total_tokens += prompt_tokens + completion_tokens
        metrics.query_count += 1
        metrics.last_query_time = self._clock()

        log.debug(
            "cost.recorded",
            session_id=session_id,
            total_tokens=metrics.total_tokens,
            queries=metrics.query_count,
        )
        return metrics

    def check_limits(self, session_id: str) -> AdmissionDecision:
        metrics = self._metrics.get(session_id)
        if metrics is None:
            return AdmissionDecision(allowed=True)

        cfg = self.config
        if metrics.total_tokens >= cfg.max_tokens:
            return AdmissionDecision(
                allowed=False,
                reason=f"Token limit exceeded: {metrics.total_tokens}/{cfg.max_tokens}",
            )

        if metrics.query_count >= cfg.max_queries:
            return AdmissionDecision(
                allowed=False,
                reason=f"Query limit exceeded: {metrics.query_count}/{cfg.max_queries}",
            )

        if cfg.timeout_seconds > 0:
            elapsed = self._clock() - metrics.start_time
            if elapsed >= cfg.timeout_seconds:
                return AdmissionDecision(
                    allowed=False,
                    reason=(
                        f"Timeout limit exceeded: {elapsed:.0f}s/{cfg.timeout_seconds:.0f}s"
                    ),
                )

        return AdmissionDecision(allowed=True)

    def get_metrics(self, session_id: str) -> Optional[CostMetrics]:
        return self._metrics.get(session_id)

    def clear_metrics(self, session_id: str) -> None:
        self._metrics.pop(session_id, None)

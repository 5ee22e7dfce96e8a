from corint_agent.agent.checkpoints import Checkpoint, CheckpointStore
from corint_agent.agent.context_store import ContextStore
from corint_agent.agent.cost_controller import (
    AdmissionDecision,
    BudgetConfig,
    CostController,
    CostMetrics,
)
from corint_agent.agent.evaluator import ErrorReport, EvaluationResult, Evaluator
from corint_agent.agent.executor import ExecutionResult, Executor
from corint_agent.agent.orchestrator import Orchestrator, PlanningMode, TurnKind
from corint_agent.agent.parsing import Degraded, ParseOutcome, Parsed
from corint_agent.agent.planner import Planner, PlanningResult, RevisionMode
from corint_agent.agent.response import AgentResponse, Confidence, StreamEvent, StreamEventType
from corint_agent.agent.session import HistoryEntry, Plan, SessionContext, Task, TaskStatus

__all__ = [
    "Orchestrator",
    "PlanningMode",
    "TurnKind",
    "Planner",
    "PlanningResult",
    "RevisionMode",
    "Executor",
    "ExecutionResult",
    "Evaluator",
    "EvaluationResult",
    "ErrorReport",
    "ContextStore",
    "CostController",
    "BudgetConfig",
    "CostMetrics",
    "AdmissionDecision",
    "Checkpoint",
    "CheckpointStore",
    "AgentResponse",
    "Confidence",
    "StreamEvent",
    "StreamEventType",
    "Parsed",
    "Degraded",
    "ParseOutcome",
    "SessionContext",
    "HistoryEntry",
    "Plan",
    "Task",
    "TaskStatus",
]

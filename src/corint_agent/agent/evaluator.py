"""
agent/evaluator.py: Result Evaluator

Judges whether a plan's execution results achieve the goal, summarises
failures with a recovery suggestion, and turns results plus judgement into
the user-facing AgentResponse.

Like the planner, every structured reply is parsed into a Parsed or
Degraded outcome; a reply that cannot be parsed never raises.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Optional

from corint_agent.agent.executor import ExecutionResult
from corint_agent.agent.parsing import Degraded, ParseOutcome, Parsed, extract_json_object
from corint_agent.agent.response import AgentResponse, Confidence
from corint_agent.brain.llm_client import BaseLLMClient
from corint_agent.brain.types import LLMConfig, Message, TokenUsage
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)

DEFAULT_RECOVERY = "Please retry or provide more details."
DEFAULT_SYNTHESIS = "Task completed."

_EVALUATE_SYSTEM = """\
You are an evaluation assistant for a tool-using agent.
Evaluate whether the execution results successfully achieve the user's goal.
Return ONLY valid JSON, no explanation.

Required format:
{
  "confidence": "high" | "medium" | "low",
  "reasoning": "Detailed reasoning",
  "isValid": true,
  "needsRevision": false,
  "suggestions": ["suggestion 1"],
  "requiresUserInput": false
}"""

_ERRORS_SYSTEM = """\
You are analysing execution errors.
Provide a short summary and suggest a recovery strategy.
Return ONLY valid JSON, no explanation.

Required format:
{
  "errorSummary": "Brief summary of errors",
  "recoverySuggestion": "How to recover or adjust"
}"""

_SYNTHESIZE_SYSTEM = """\
You are synthesising results for the user.
Write a clear, concise reply that explains what was done and what came out of it.
Use natural language, not JSON."""


@dataclass
class EvaluationResult:
    confidence: Confidence
    reasoning: str
    is_valid: bool
    needs_revision: bool
    suggestions: list[str] = field(default_factory=list)
    requires_user_input: bool = False

    @classmethod
    def degraded(cls) -> "EvaluationResult":
        return cls(
            confidence=Confidence.LOW,
            reasoning="Failed to parse evaluation",
            is_valid=False,
            needs_revision=True,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["confidence"] = self.confidence.value
        return data


@dataclass
class ErrorReport:
    has_errors: bool
    error_summary: Optional[str] = None
    recovery_suggestion: Optional[str] = None

    @property
    def feedback(self) -> str:
        """Feedback text handed to Planner.revise_plan()."""
        parts = [p for p in (self.error_summary, self.recovery_suggestion) if p]
        return "\n".join(parts)


class Evaluator:

    def __init__(self, llm_client: BaseLLMClient, llm_config: LLMConfig):
        self._llm = llm_client
        self._judge_config = llm_config.derive(temperature=0.1, max_tokens=1024)
        self._config = llm_config

    async def evaluate_result(
        self, goal: str, results: list[ExecutionResult]
    ) -> ParseOutcome[EvaluationResult]:
        user_content = (
            f"Goal: {goal}\n\n"
            f"Execution Results:\n{_dump_results(results)}\n\n"
            "Please evaluate whether these results achieve the goal."
        )
        response = await self._llm.generate(
            messages=[Message.system(_EVALUATE_SYSTEM), Message.user(user_content)],
            config=self._judge_config,
        )
        content = response.content or ""

        data = extract_json_object(content)
        evaluation = _build_evaluation(data) if data is not None else None
        if evaluation is None:
            log.warning("evaluator.parse_evaluation_failed", raw=content[:200])
            return Degraded(
                value=EvaluationResult.degraded(),
                raw_text=content,
                reason="no usable evaluation in reply",
                usage=response.usage,
            )

        log.info(
            "evaluator.evaluated",
            confidence=evaluation.confidence.value,
            is_valid=evaluation.is_valid,
            needs_revision=evaluation.needs_revision,
        )
        return Parsed(value=evaluation, usage=response.usage)

    async def detect_errors(self, results: list[ExecutionResult]) -> ParseOutcome[ErrorReport]:
        """No model call when every result succeeded."""
        failures = [r for r in results if not r.success]
        if not failures:
            return Parsed(value=ErrorReport(has_errors=False))

        user_content = (
            f"Errors encountered:\n{_dump_results(failures)}\n\n"
            "Please analyse and suggest recovery."
        )
        response = await self._llm.generate(
            messages=[Message.system(_ERRORS_SYSTEM), Message.user(user_content)],
            config=self._judge_config,
        )
        content = response.content or ""

        data = extract_json_object(content)
        if data is None or not data.get("errorSummary"):
            log.warning("evaluator.parse_errors_failed", raw=content[:200])
            return Degraded(
                value=ErrorReport(
                    has_errors=True,
                    error_summary=content[:200],
                    recovery_suggestion=DEFAULT_RECOVERY,
                ),
                raw_text=content,
                reason="no usable error analysis in reply",
                usage=response.usage,
            )

        report = ErrorReport(
            has_errors=True,
            error_summary=str(data["errorSummary"]),
            recovery_suggestion=str(data.get("recoverySuggestion") or DEFAULT_RECOVERY),
        )
        log.info("evaluator.errors_detected", failures=len(failures))
        return Parsed(value=report, usage=response.usage)

    async def synthesize_response(
        self,
        goal: str,
        results: list[ExecutionResult],
        evaluation: EvaluationResult,
    ) -> AgentResponse:
        user_content = (
            f"Goal: {goal}\n\n"
            f"Results:\n{_dump_results(results)}\n\n"
            f"Evaluation:\n{json.dumps(evaluation.to_dict(), indent=2)}\n\n"
            "Please create a user-friendly response."
        )
        response = await self._llm.generate(
            messages=[Message.system(_SYNTHESIZE_SYSTEM), Message.user(user_content)],
            config=self._config,
        )
        return AgentResponse(
            content=response.content or DEFAULT_SYNTHESIS,
            confidence=evaluation.confidence,
            reasoning=evaluation.reasoning,
            suggestions=list(evaluation.suggestions),
            requires_user_input=evaluation.requires_user_input,
            usage=response.usage or TokenUsage(),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _dump_results(results: list[ExecutionResult]) -> str:
    return json.dumps([r.to_dict() for r in results], indent=2, default=str)


def _build_evaluation(data: dict) -> Optional[EvaluationResult]:
    try:
        confidence = Confidence(str(data.get("confidence", "")).lower())
    except ValueError:
        return None

    suggestions = data.get("suggestions") or []
    if not isinstance(suggestions, list):
        suggestions = [suggestions]

    return EvaluationResult(
        confidence=confidence,
        reasoning=str(data.get("reasoning", "")),
        is_valid=bool(data.get("isValid", False)),
        needs_revision=bool(data.get("needsRevision", False)),
        suggestions=[str(s) for s in suggestions],
        requires_user_input=bool(data.get("requiresUserInput", False)),
    )

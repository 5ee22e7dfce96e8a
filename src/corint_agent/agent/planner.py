"""
agent/planner.py: Task Planner

Decomposes a goal into an ordered, dependency-annotated task list using the
model, and revises an existing plan from feedback. Unparseable replies
degrade to a single task built from the raw text instead of raising.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from corint_agent.agent.parsing import Degraded, ParseOutcome, Parsed, extract_json_object
from corint_agent.agent.session import Plan, SessionContext, Task, TaskStatus
from corint_agent.brain.llm_client import BaseLLMClient
from corint_agent.brain.types import LLMConfig, Message
from corint_agent.exceptions import PlanError
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)

FALLBACK_DESCRIPTION_CHARS = 200

_PLAN_SYSTEM = """\
You are a planning assistant for a tool-using agent.
Given a user goal, break it down into concrete, actionable tasks.
Each task should be specific and achievable. A task may list the ids of
tasks that must complete before it.
Return ONLY valid JSON, no explanation.

Required format:
{
  "reasoning": "Explain your planning approach",
  "tasks": [
    {"id": "task_1", "description": "Task description", "dependencies": []}
  ]
}"""

_REVISE_SYSTEM = """\
You are revising an existing plan based on feedback.
Mode: {mode}
- decompose: break the current task into smaller sub-tasks
- overwrite: replace the current and remaining tasks with a new approach
Return ONLY valid JSON, no explanation.

Required format:
{{
  "reasoning": "Explain your revision",
  "tasks": [
    {{"id": "task_1", "description": "Task description", "dependencies": []}}
  ]
}}"""


class RevisionMode(str, Enum):
    DECOMPOSE = "decompose"
    OVERWRITE = "overwrite"


@dataclass
class PlanningResult:
    plan: Plan
    reasoning: str


class Planner:
    """Uses the model to build and revise plans."""

    def __init__(self, llm_client: BaseLLMClient, llm_config: LLMConfig, history_limit: int = 5):
        self._llm = llm_client
        # Low temperature for deterministic plans
        self._config = llm_config.derive(temperature=0.2, max_tokens=1024)
        self._history_limit = history_limit

    async def create_plan(self, goal: str, context: SessionContext) -> ParseOutcome[PlanningResult]:
        """Ask the model to break the goal into tasks. All tasks start pending."""
        user_content = (
            f"Goal: {goal}\n\n"
            f"Context:\n- Previous conversation:\n{self._format_history(context)}\n\n"
            "Please create a detailed plan to achieve this goal."
        )
        messages = [Message.system(_PLAN_SYSTEM), Message.user(user_content)]

        log.info("planner.create_plan", goal=goal[:80], session_id=context.session_id)
        response = await self._llm.generate(messages=messages, config=self._config)
        content = response.content or ""

        parsed = _parse_tasks(content)
        if isinstance(parsed, str):
            log.warning("planner.parse_plan_failed", reason=parsed, raw=content[:200])
            plan = Plan(goal=goal, tasks=[_fallback_task(content)])
            return Degraded(
                value=PlanningResult(plan=plan, reasoning="Failed to parse plan"),
                raw_text=content,
                reason=parsed,
                usage=response.usage,
            )

        tasks, reasoning = parsed
        tasks = _unique_ids(tasks, taken=set())
        plan = Plan(goal=goal, tasks=tasks, current_task_index=0)
        log.info("planner.plan_created", tasks=len(tasks))
        return Parsed(value=PlanningResult(plan=plan, reasoning=reasoning), usage=response.usage)

    async def revise_plan(
        self,
        current_plan: Plan,
        feedback: str,
        mode: Union[RevisionMode, str],
    ) -> ParseOutcome[PlanningResult]:
        """
        Revise a plan around its current_task_index.

        decompose: the task at the index is replaced by the new tasks,
                   tasks before and after it are kept.
        overwrite: tasks before the index are kept, everything from the
                   index onward is replaced by the new tasks.
        """
        try:
            mode = RevisionMode(mode)
        except ValueError as e:
            raise PlanError(f"Unknown revision mode: {mode!r}") from e

        user_content = (
            f"Current plan:\n{json.dumps(current_plan.to_dict(), indent=2, default=str)}\n\n"
            f"Feedback: {feedback}\n\n"
            "Please revise the plan."
        )
        messages = [
            Message.system(_REVISE_SYSTEM.format(mode=mode.value)),
            Message.user(user_content),
        ]

        log.info(
            "planner.revise_plan",
            mode=mode.value,
            current_task_index=current_plan.current_task_index,
        )
        response = await self._llm.generate(messages=messages, config=self._config)
        content = response.content or ""

        parsed = _parse_tasks(content)
        if isinstance(parsed, str):
            log.warning("planner.parse_revision_failed", reason=parsed, raw=content[:200])
            new_tasks, reasoning = [_fallback_task(content)], "Failed to parse plan"
        else:
            new_tasks, reasoning = parsed

        index = current_plan.current_task_index
        before = current_plan.tasks[:index]
        after = current_plan.tasks[index + 1:] if mode == RevisionMode.DECOMPOSE else []
        new_tasks = _unique_ids(new_tasks, taken={t.id for t in before + after})
        tasks = before + new_tasks + after

        plan = Plan(goal=current_plan.goal, tasks=tasks, current_task_index=index)
        result = PlanningResult(plan=plan, reasoning=reasoning)
        if isinstance(parsed, str):
            return Degraded(value=result, raw_text=content, reason=parsed, usage=response.usage)
        return Parsed(value=result, usage=response.usage)

    def _format_history(self, context: SessionContext) -> str:
        recent = context.recent_history(self._history_limit)
        return "\n".join(f"{e.role}: {e.content}" for e in recent)


# ─────────────────────────────────────────────────────────────────────────────
# Parsers
# ─────────────────────────────────────────────────────────────────────────────


def _parse_tasks(content: str) -> Union[tuple[list[Task], str], str]:
    """Return (tasks, reasoning), or a string describing why parsing failed."""
    data = extract_json_object(content)
    if data is None:
        return "no JSON object in reply"

    raw_tasks = data.get("tasks")
    if not isinstance(raw_tasks, list):
        return "reply has no task list"

    tasks = [t for t in (_build_task(raw, i) for i, raw in enumerate(raw_tasks)) if t]
    if not tasks:
        return "task list is empty"
    return tasks, str(data.get("reasoning", ""))


def _build_task(raw: Any, position: int) -> Task | None:
    if isinstance(raw, str):
        raw = {"description": raw}
    if not isinstance(raw, dict):
        return None
    description = str(raw.get("description") or "").strip()
    if not description:
        return None
    deps = raw.get("dependencies") or []
    if not isinstance(deps, list):
        deps = [deps]
    return Task(
        id=str(raw.get("id") or f"task_{position + 1}"),
        description=description,
        status=TaskStatus.PENDING,
        dependencies=[str(d) for d in deps],
    )


def _unique_ids(tasks: list[Task], taken: set[str]) -> list[Task]:
    """
    Rename tasks whose id is already taken (by a kept task or an earlier task
    in the same reply) to `<id>_<n>`. A dependency naming an id that collided
    with a kept task now points at the first new task that carried it.
    """
    renamed: dict[str, str] = {}
    used = set(taken)
    for task in tasks:
        if task.id in used:
            n = 2
            while f"{task.id}_{n}" in used:
                n += 1
            renamed.setdefault(task.id, f"{task.id}_{n}")
            task.id = f"{task.id}_{n}"
        used.add(task.id)
    if renamed:
        log.debug("planner.renamed_task_ids", renamed=renamed)
        for task in tasks:
            task.dependencies = [renamed.get(d, d) if d in taken else d for d in task.dependencies]
    return tasks


def _fallback_task(content: str) -> Task:
    return Task(id="task_1", description=content[:FALLBACK_DESCRIPTION_CHARS])

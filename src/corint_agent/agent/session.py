"""
agent/session.py: Per-Session State

One SessionContext exists per live session id. It holds the conversation
history, the working-memory map, the active plan, and free-form metadata.
Plans and tasks live here too since a plan is always owned by a session.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional


class HistoryRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


@dataclass
class HistoryEntry:
    role: str
    content: str
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryEntry":
        return cls(
            role=str(data.get("role", HistoryRole.USER.value)),
            content=str(data.get("content", "")),
            timestamp=float(data.get("timestamp", time.time())),
        )


@dataclass
class Task:
    id: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    dependencies: list[str] = field(default_factory=list)
    result: Any = None
    error: Optional[str] = None
    retry_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "status": self.status.value,
            "dependencies": list(self.dependencies),
            "result": self.result,
            "error": self.error,
            "retry_count": self.retry_count,
        }


@dataclass
class Plan:
    goal: str
    tasks: list[Task] = field(default_factory=list)
    current_task_index: int = 0

    def get_task(self, task_id: str) -> Optional[Task]:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @property
    def is_complete(self) -> bool:
        return bool(self.tasks) and all(t.status == TaskStatus.COMPLETED for t in self.tasks)

    @property
    def progress_summary(self) -> str:
        done = sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)
        return f"{done}/{len(self.tasks)} tasks complete"

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal": self.goal,
            "tasks": [t.to_dict() for t in self.tasks],
            "current_task_index": self.current_task_index,
        }


@dataclass
class SessionContext:
    """All runtime state for a single agent session."""
    session_id: str
    user_id: Optional[str] = None
    conversation_history: list[HistoryEntry] = field(default_factory=list)
    working_memory: dict[str, Any] = field(default_factory=dict)
    current_plan: Optional[Plan] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(self, role: str, content: str) -> HistoryEntry:
        entry = HistoryEntry(role=role, content=content)
        self.conversation_history.append(entry)
        return entry

    def recent_history(self, limit: Optional[int] = None) -> list[HistoryEntry]:
        if not limit:
            return list(self.conversation_history)
        return self.conversation_history[-limit:]

"""
agent/checkpoints.py: Checkpoint Store

Snapshots of a session's history and working memory, kept per session in
creation order and restored last-in-first-out. Snapshots are deep copies,
so later mutation of the live context never leaks into a checkpoint.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from corint_agent.agent.session import HistoryEntry, SessionContext
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)


@dataclass
class Checkpoint:
    id: str
    timestamp: float
    conversation_history: list[HistoryEntry] = field(default_factory=list)
    working_memory: dict[str, Any] = field(default_factory=dict)


class CheckpointStore:

    def __init__(self):
        self._checkpoints: dict[str, list[Checkpoint]] = {}

    def create(self, context: SessionContext) -> Checkpoint:
        now = time.time()
        stack = self._checkpoints.setdefault(context.session_id, [])
        checkpoint = Checkpoint(
            id=f"checkpoint-{int(now * 1000)}-{len(stack)}",
            timestamp=now,
            conversation_history=copy.deepcopy(context.conversation_history),
            working_memory=copy.deepcopy(context.working_memory),
        )
        stack.append(checkpoint)
        log.debug(
            "checkpoint.created",
            session_id=context.session_id,
            checkpoint_id=checkpoint.id,
            depth=len(stack),
        )
        return checkpoint

    def restore_last(self, context: SessionContext) -> Optional[Checkpoint]:
        """Pop the newest checkpoint and overwrite the live context with it."""
        stack = self._checkpoints.get(context.session_id)
        if not stack:
            return None

        checkpoint = stack.pop()
        context.conversation_history = copy.deepcopy(checkpoint.conversation_history)
        context.working_memory.clear()
        context.working_memory.update(copy.deepcopy(checkpoint.working_memory))
        log.info(
            "checkpoint.restored",
            session_id=context.session_id,
            checkpoint_id=checkpoint.id,
            remaining=len(stack),
        )
        return checkpoint

    def list(self, session_id: str) -> list[Checkpoint]:
        return list(self._checkpoints.get(session_id, []))

    def load(self, session_id: str, checkpoints: list[Checkpoint]) -> None:
        """Replace a session's stack, e.g. with checkpoints read from disk."""
        self._checkpoints[session_id] = list(checkpoints)

    def clear(self, session_id: str) -> None:
        self._checkpoints.pop(session_id, None)

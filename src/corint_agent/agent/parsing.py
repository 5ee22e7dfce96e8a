"""
agent/parsing.py: Tagged Results for Model-Parsed Output

Model replies are untrusted text. Anything parsed out of them (plans,
evaluations, error analyses) comes back as Parsed or Degraded rather than
raising, and callers branch on the tag.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar, Union

from corint_agent.brain.types import TokenUsage

T = TypeVar("T")

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


@dataclass
class Parsed(Generic[T]):
    value: T
    usage: TokenUsage = field(default_factory=TokenUsage)

    degraded = False


@dataclass
class Degraded(Generic[T]):
    """Fallback value built when the reply could not be parsed."""
    value: T
    raw_text: str
    reason: str
    usage: TokenUsage = field(default_factory=TokenUsage)

    degraded = True


ParseOutcome = Union[Parsed[T], Degraded[T]]


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        end = len(lines) - 1 if lines[-1].strip() == "```" else len(lines)
        text = "\n".join(lines[1:end])
    return text.strip()


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Return the outermost {...} fragment of text decoded as a dict, or None.
    Prose around the fragment is ignored.
    """
    match = _JSON_BLOCK.search(strip_fences(text or ""))
    if match is None:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None

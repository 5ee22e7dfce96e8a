"""
brain/llm_client.py: Abstract Completion Provider

All provider implementations must subclass BaseLLMClient and implement
generate(). Streaming providers override stream(); the default stream()
replays a single generate() call as chunks so every provider satisfies
the same contract.

Clients do not retry. Transport failures propagate to the orchestrator,
which turns them into a low-confidence response.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Optional

from corint_agent.brain.types import (
    LLMConfig,
    LLMResponse,
    Message,
    StreamChunk,
    ToolCallDelta,
    ToolSchema,
)
from corint_agent.exceptions import (  # noqa: F401  re-exported for provider modules
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)


class BaseLLMClient(ABC):
    """
    Abstract base for all completion providers.

    Subclasses must implement:
      - generate()     -> call the model, return normalised LLMResponse
      - health_check() -> verify connectivity to the provider

    Class attributes:
      - name:           provider label used in logs
      - supports_tools: False on providers without function calling; the
                        executor then never sends tool descriptors.
    """

    name: str = "base"
    supports_tools: bool = True

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key
        self.base_url = base_url

    @abstractmethod
    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        """Call the model and return a normalised response."""
        ...

    async def stream(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> AsyncIterator[StreamChunk]:
        """Yield incremental chunks. Default: one generate() call split into two chunks."""
        response = await self.generate(messages=messages, config=config, tools=tools)
        yield StreamChunk(
            content=response.content,
            tool_calls=[
                ToolCallDelta(index=i, id=tc.id, name=tc.name, arguments=tc.arguments)
                for i, tc in enumerate(response.tool_calls)
            ],
        )
        yield StreamChunk(finish_reason=response.finish_reason, usage=response.usage)

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the provider is reachable and the API key is valid."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"

"""
brain/openai_client.py: OpenAI Completion Provider

Supports OpenAI chat models and any OpenAI-compatible endpoint
(DeepSeek, GLM, MiniMax, vLLM, LiteLLM proxy, ...).
Handles tool calling, streaming, token counting, and error normalisation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Optional

import openai
from openai import AsyncOpenAI

from corint_agent.brain.llm_client import (
    BaseLLMClient,
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)
from corint_agent.brain.types import (
    FinishReason,
    LLMConfig,
    LLMResponse,
    Message,
    Role,
    StreamChunk,
    TokenUsage,
    ToolCall,
    ToolCallDelta,
    ToolSchema,
)
from corint_agent.observability.logger import get_logger

log = get_logger(__name__)

_FINISH_MAP = {
    "stop": FinishReason.STOP,
    "tool_calls": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "length": FinishReason.LENGTH,
    "content_filter": FinishReason.CONTENT_FILTER,
}


class OpenAIClient(BaseLLMClient):
    """OpenAI API client. `name` is overridden for compatible vendors."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,     # None = official OpenAI endpoint
        name: Optional[str] = None,
    ):
        super().__init__(api_key=api_key, base_url=base_url)
        if name:
            self.name = name
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    # ── Public API ────────────────────────────────────────────────────────────

    async def generate(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> LLMResponse:
        log.debug(
            "llm.request",
            provider=self.name,
            model=config.model,
            message_count=len(messages),
            has_tools=bool(tools),
        )

        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(messages, config, tools),
            )
        except openai.APIError as e:
            raise self._translate_error(e) from e

        result = self._from_provider_response(response)
        log.debug(
            "llm.response",
            model=result.model,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            finish_reason=result.finish_reason.value,
            tool_calls=len(result.tool_calls),
        )
        return result

    async def stream(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]] = None,
    ) -> AsyncIterator[StreamChunk]:
        try:
            response = await self._client.chat.completions.create(
                **self._request_kwargs(messages, config, tools),
                stream=True,
                stream_options={"include_usage": True},
            )
            async for chunk in response:
                yield self._from_stream_chunk(chunk)
        except openai.APIError as e:
            raise self._translate_error(e) from e

    async def health_check(self) -> bool:
        try:
            await self._client.models.list()
            return True
        except (openai.APIError, OSError) as e:
            log.warning("llm.health_check_failed", error=str(e), error_type=type(e).__name__)
            return False

    # ── Private helpers ───────────────────────────────────────────────────────

    def _request_kwargs(
        self,
        messages: list[Message],
        config: LLMConfig,
        tools: Optional[list[ToolSchema]],
    ) -> dict:
        kwargs: dict = {
            "model": config.model,
            "messages": self._to_provider_messages(messages),
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
            "top_p": config.top_p,
            "timeout": config.timeout_seconds,
        }
        if tools:
            kwargs["tools"] = self._to_provider_tools(tools)
            kwargs["tool_choice"] = "auto"
        return kwargs

    def _translate_error(self, e: openai.APIError) -> LLMError:
        if isinstance(e, openai.AuthenticationError):
            return LLMConnectionError(str(e), provider=self.name, status_code=401)
        if isinstance(e, openai.RateLimitError):
            return LLMRateLimitError(str(e), provider=self.name)
        if isinstance(e, openai.BadRequestError):
            lowered = str(e).lower()
            if "context" in lowered or "too long" in lowered:
                return LLMContextError(str(e), provider=self.name)
            return LLMInvalidRequestError(str(e), provider=self.name)
        if isinstance(e, openai.APIConnectionError):
            return LLMConnectionError(str(e), provider=self.name)
        return LLMError(str(e), provider=self.name, status_code=getattr(e, "status_code", None))

    def _to_provider_messages(self, messages: list[Message]) -> list[dict]:
        """Translate internal Message list into OpenAI chat message format."""
        result = []
        for msg in messages:
            if msg.role == Role.ASSISTANT:
                entry: dict = {"role": "assistant", "content": msg.content or ""}
                if msg.tool_calls:
                    entry["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {"name": tc.name, "arguments": tc.arguments},
                        }
                        for tc in msg.tool_calls
                    ]
                result.append(entry)
            elif msg.role == Role.TOOL:
                result.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id or "",
                    "content": msg.content or "",
                })
            else:
                result.append({"role": msg.role.value, "content": msg.content or ""})
        return result

    def _to_provider_tools(self, tools: list[ToolSchema]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.parameters,
                },
            }
            for t in tools
        ]

    def _from_provider_response(self, response) -> LLMResponse:
        choice = response.choices[0]
        msg = choice.message

        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (msg.tool_calls or [])
        ]

        return LLMResponse(
            content=msg.content,
            tool_calls=tool_calls,
            finish_reason=_FINISH_MAP.get(choice.finish_reason or "stop", FinishReason.STOP),
            usage=self._usage(response.usage),
            model=response.model,
            provider=self.name,
        )

    def _from_stream_chunk(self, chunk) -> StreamChunk:
        usage = self._usage(chunk.usage) if getattr(chunk, "usage", None) else None
        if not chunk.choices:
            return StreamChunk(usage=usage)

        choice = chunk.choices[0]
        delta = choice.delta
        deltas = [
            ToolCallDelta(
                index=tc.index,
                id=tc.id,
                name=tc.function.name if tc.function else None,
                arguments=(tc.function.arguments or "") if tc.function else "",
            )
            for tc in (delta.tool_calls or [])
        ]
        finish = _FINISH_MAP.get(choice.finish_reason) if choice.finish_reason else None
        return StreamChunk(
            content=delta.content,
            tool_calls=deltas,
            finish_reason=finish,
            usage=usage,
        )

    @staticmethod
    def _usage(raw) -> TokenUsage:
        if raw is None:
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=raw.prompt_tokens or 0,
            completion_tokens=raw.completion_tokens or 0,
            total_tokens=raw.total_tokens or 0,
        )

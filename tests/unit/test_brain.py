"""
tests/unit/test_brain.py: Completion provider layer

The OpenAI SDK client is replaced with a MagicMock; no network access.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from corint_agent.brain import LLMClientFactory, default_model_for
from corint_agent.brain.openai_client import OpenAIClient
from corint_agent.brain.types import (
    FinishReason,
    LLMConfig,
    Message,
    TokenUsage,
    ToolCall,
    ToolCallAccumulator,
    ToolCallDelta,
    ToolSchema,
)
from corint_agent.exceptions import (
    LLMConnectionError,
    LLMContextError,
    LLMError,
    LLMInvalidRequestError,
    LLMRateLimitError,
)

_REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")
_CONFIG = LLMConfig(model="gpt-test", temperature=0.3, max_tokens=64)


def _completion(content=None, tool_calls=None, finish="stop", usage=(12, 3, 15)):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish)],
        usage=SimpleNamespace(prompt_tokens=usage[0], completion_tokens=usage[1], total_tokens=usage[2]),
        model="gpt-test",
    )


def _sdk_tool_call(call_id="call_1", name="memory_get", arguments='{"key": "k"}'):
    return SimpleNamespace(id=call_id, function=SimpleNamespace(name=name, arguments=arguments))


@pytest.fixture
def client():
    c = OpenAIClient(api_key="sk-test")
    c._client = MagicMock()
    c._client.chat.completions.create = AsyncMock()
    return c


# ─────────────────────────────────────────────────────────────────────────────
# Types
# ─────────────────────────────────────────────────────────────────────────────


class TestTypes:
    def test_usage_merge(self):
        merged = TokenUsage.of(10, 5).merge(TokenUsage.of(1, 2))
        assert (merged.prompt_tokens, merged.completion_tokens, merged.total_tokens) == (11, 7, 18)
        assert TokenUsage.of(1, 1).merge(None).total_tokens == 2

    def test_effective_completion_tokens(self):
        assert TokenUsage(prompt_tokens=10, total_tokens=25).effective_completion_tokens == 15
        assert TokenUsage.of(10, 4).effective_completion_tokens == 4

    def test_accumulator_joins_fragments(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallDelta(index=0, id="c1", name="memory_get", arguments='{"ke'))
        acc.add(ToolCallDelta(index=0, arguments='y": "a"}'))
        acc.add(ToolCallDelta(index=1, id="c2", name="memory_list"))
        calls = acc.build()
        assert [c.id for c in calls] == ["c1", "c2"]
        assert calls[0].parsed_arguments() == {"key": "a"}
        assert calls[1].arguments == "{}"

    def test_config_derive(self):
        derived = _CONFIG.derive(temperature=0.0)
        assert derived.temperature == 0.0
        assert derived.model == "gpt-test"
        assert _CONFIG.temperature == 0.3


# ─────────────────────────────────────────────────────────────────────────────
# OpenAIClient
# ─────────────────────────────────────────────────────────────────────────────


class TestOpenAIClient:
    @pytest.mark.asyncio
    async def test_generate_text(self, client):
        client._client.chat.completions.create.return_value = _completion("Hello")
        response = await client.generate([Message.user("hi")], _CONFIG)

        assert response.content == "Hello"
        assert response.finish_reason == FinishReason.STOP
        assert response.usage.total_tokens == 15
        assert response.provider == "openai"

        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
        assert "tools" not in kwargs

    @pytest.mark.asyncio
    async def test_generate_tool_calls(self, client):
        client._client.chat.completions.create.return_value = _completion(
            tool_calls=[_sdk_tool_call()], finish="tool_calls"
        )
        tools = [ToolSchema(name="memory_get", description="read")]
        response = await client.generate([Message.user("hi")], _CONFIG, tools=tools)

        assert response.has_tool_calls
        assert response.tool_calls[0].name == "memory_get"
        assert response.finish_reason == FinishReason.TOOL_CALLS

        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["tool_choice"] == "auto"
        assert kwargs["tools"][0]["function"]["name"] == "memory_get"

    def test_transcript_translation(self, client):
        call = ToolCall(id="c1", name="memory_get", arguments='{"key": "k"}')
        messages = client._to_provider_messages([
            Message.system("sys"),
            Message.assistant(None, [call]),
            Message.tool_response("c1", '{"found": false}', name="memory_get"),
        ])
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1]["tool_calls"][0]["function"]["arguments"] == '{"key": "k"}'
        assert messages[2] == {"role": "tool", "tool_call_id": "c1", "content": '{"found": false}'}

    @pytest.mark.asyncio
    async def test_generate_translates_sdk_errors(self, client):
        client._client.chat.completions.create.side_effect = openai.APIConnectionError(request=_REQUEST)
        with pytest.raises(LLMConnectionError):
            await client.generate([Message.user("hi")], _CONFIG)

    @pytest.mark.parametrize("status,message,expected", [
        (401, "bad key", LLMConnectionError),
        (429, "slow down", LLMRateLimitError),
        (400, "maximum context length exceeded", LLMContextError),
        (400, "unknown parameter", LLMInvalidRequestError),
        (500, "server exploded", LLMError),
    ])
    def test_error_mapping(self, client, status, message, expected):
        error_cls = {
            401: openai.AuthenticationError,
            429: openai.RateLimitError,
            400: openai.BadRequestError,
            500: openai.InternalServerError,
        }[status]
        sdk_error = error_cls(message, response=httpx.Response(status, request=_REQUEST), body=None)
        translated = client._translate_error(sdk_error)
        assert type(translated) is expected
        assert translated.provider == "openai"

    def test_stream_chunk_mapping(self, client):
        chunk = SimpleNamespace(
            usage=None,
            choices=[SimpleNamespace(
                delta=SimpleNamespace(
                    content="Hel",
                    tool_calls=[SimpleNamespace(
                        index=0, id="c1", function=SimpleNamespace(name="memory_list", arguments=""),
                    )],
                ),
                finish_reason=None,
            )],
        )
        mapped = client._from_stream_chunk(chunk)
        assert mapped.content == "Hel"
        assert mapped.tool_calls[0].name == "memory_list"
        assert mapped.finish_reason is None

    def test_usage_only_stream_chunk(self, client):
        chunk = SimpleNamespace(
            choices=[],
            usage=SimpleNamespace(prompt_tokens=4, completion_tokens=2, total_tokens=6),
        )
        assert client._from_stream_chunk(chunk).usage.total_tokens == 6


# ─────────────────────────────────────────────────────────────────────────────
# Factory
# ─────────────────────────────────────────────────────────────────────────────


class TestFactory:
    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClientFactory.create("nope", api_key="k")

    def test_missing_key(self):
        with pytest.raises(LLMConnectionError) as exc_info:
            LLMClientFactory.create("glm")
        assert "GLM_API_KEY" in str(exc_info.value)

    def test_compatible_vendor_uses_preset_endpoint(self):
        client = LLMClientFactory.create("DeepSeek", api_key="k")
        assert isinstance(client, OpenAIClient)
        assert client.name == "deepseek"
        assert client.base_url == "https://api.deepseek.com/v1"

    def test_explicit_base_url_wins(self):
        client = LLMClientFactory.create("openai", api_key="k", base_url="http://localhost:8000/v1")
        assert client.base_url == "http://localhost:8000/v1"

    def test_default_models(self):
        assert default_model_for("minimax") == "abab6.5s-chat"
        assert default_model_for("unknown") == default_model_for("openai")

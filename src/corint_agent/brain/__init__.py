"""
brain/__init__.py: Corint Completion Providers
"""

from __future__ import annotations

from typing import Optional

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

__all__ = [
    "LLMClientFactory",
    "BaseLLMClient",
    "LLMError",
    "LLMConnectionError",
    "LLMRateLimitError",
    "LLMContextError",
    "LLMInvalidRequestError",
    "Message",
    "LLMConfig",
    "LLMResponse",
    "StreamChunk",
    "ToolCall",
    "ToolCallDelta",
    "ToolSchema",
    "TokenUsage",
    "Role",
    "FinishReason",
    "default_model_for",
]

# Default models per provider
_DEFAULT_MODELS: dict[str, str] = {
    "openai":   "gpt-4-turbo",
    "deepseek": "deepseek-chat",
    "glm":      "glm-4",
    "minimax":  "abab6.5s-chat",
}

# OpenAI-compatible endpoints
_BASE_URLS: dict[str, Optional[str]] = {
    "openai":   None,
    "deepseek": "https://api.deepseek.com/v1",
    "glm":      "https://open.bigmodel.cn/api/paas/v4",
    "minimax":  "https://api.minimax.chat/v1",
}

# Env var that holds each provider's key
API_KEY_ENV: dict[str, str] = {
    "openai":   "OPENAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "glm":      "GLM_API_KEY",
    "minimax":  "MINIMAX_API_KEY",
}

SUPPORTED_PROVIDERS = frozenset(_BASE_URLS)


def default_model_for(provider: str) -> str:
    return _DEFAULT_MODELS.get(provider.lower().strip(), _DEFAULT_MODELS["openai"])


class LLMClientFactory:

    @staticmethod
    def create(
        provider: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ) -> BaseLLMClient:
        """Build a provider client. Raises LLMConnectionError when the key is missing."""
        provider = provider.lower().strip()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(
                f"Unsupported LLM provider: {provider}. "
                f"Supported: {sorted(SUPPORTED_PROVIDERS)}"
            )
        if not api_key:
            raise LLMConnectionError(
                f"{API_KEY_ENV[provider]} is required for the {provider} provider.",
                provider=provider,
            )

        from corint_agent.brain.openai_client import OpenAIClient
        return OpenAIClient(
            api_key=api_key,
            base_url=base_url or _BASE_URLS[provider],
            name=provider,
        )

"""
Test conftest: isolate provider API key environment variables and the
config path so Settings() behaves as if nothing is set unless a test
provides it. Also disables .env loading so a developer's local .env does
not leak real credentials into tests.
"""
import pytest
from pydantic_settings import SettingsConfigDict

import corint_agent.config.settings as settings_module

_ENV_VARS = [
    "OPENAI_API_KEY",
    "DEEPSEEK_API_KEY",
    "GLM_API_KEY",
    "MINIMAX_API_KEY",
    "CORINT_CONFIG",
]


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch):
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)

    patched_config = SettingsConfigDict(
        env_file=None,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )
    monkeypatch.setattr(settings_module.Settings, "model_config", patched_config)
    settings_module.reset_settings()
    yield
    settings_module.reset_settings()

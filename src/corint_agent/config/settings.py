"""
config/settings.py: Corint Runtime Settings

Merges config.yaml (defaults/structure) with environment variables and
.env (secrets). Pydantic-powered: all fields are validated and typed.

  - Field validators reject out-of-range values at parse time
  - validate_all() performs cross-field startup validation and raises
    ConfigError listing every problem found
  - load_settings() respects the CORINT_CONFIG env var when no explicit
    config_path argument is given
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from corint_agent.exceptions import ConfigError

__all__ = [
    "ConfigError",
    "Settings",
    "AgentSettings",
    "BudgetSettings",
    "LLMSettings",
    "SessionSettings",
    "LoggingSettings",
    "load_settings",
    "get_settings",
    "reset_settings",
]


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_PLANNING_MODES = {"auto", "direct", "plan"}
_VALID_PROVIDERS = {"openai", "deepseek", "glm", "minimax"}
_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

_KNOWN_SECTIONS = {"agent", "budget", "llm", "sessions", "logging"}


# ─────────────────────────────────────────────────────────────────────────────
# Sub-models
# ─────────────────────────────────────────────────────────────────────────────

class AgentSettings(BaseModel):
    name: str = "Corint"
    planning_mode: str = "auto"
    max_tool_iterations: int = 8
    max_task_retries: int = 3
    retry_base_delay: float = 1.0
    tool_result_max_chars: int = 8000
    tool_timeout_seconds: float = 30.0
    history_window: Optional[int] = None

    @field_validator("planning_mode")
    @classmethod
    def _valid_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_PLANNING_MODES:
            raise ValueError(
                f"agent.planning_mode must be one of "
                f"{sorted(_VALID_PLANNING_MODES)}, got '{v}'"
            )
        return v

    @field_validator("max_tool_iterations", "max_task_retries", "tool_result_max_chars")
    @classmethod
    def _at_least_one(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"agent.{info.field_name} must be >= 1")
        return v

    @field_validator("retry_base_delay")
    @classmethod
    def _non_negative_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("agent.retry_base_delay must be >= 0")
        return v

    @field_validator("tool_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("agent.tool_timeout_seconds must be > 0")
        return v

    @field_validator("history_window")
    @classmethod
    def _positive_window(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError("agent.history_window must be >= 1 or unset")
        return v


class BudgetSettings(BaseModel):
    max_tokens: int = 100_000
    max_queries: int = 50
    timeout_seconds: float = 3600.0      # 0 disables the wall-clock check

    @field_validator("max_tokens", "max_queries")
    @classmethod
    def _positive(cls, v: int, info) -> int:
        if v < 1:
            raise ValueError(f"budget.{info.field_name} must be >= 1")
        return v

    @field_validator("timeout_seconds")
    @classmethod
    def _non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError("budget.timeout_seconds must be >= 0 (0 disables it)")
        return v


class LLMSettings(BaseModel):
    provider: str = "openai"
    model: Optional[str] = None          # None = provider default
    temperature: float = 0.7
    max_tokens: int = 4096
    base_url: Optional[str] = None

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in _VALID_PROVIDERS:
            raise ValueError(
                f"llm.provider '{v}' is not supported. "
                f"Supported: {sorted(_VALID_PROVIDERS)}"
            )
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("llm.temperature must be between 0.0 and 2.0")
        return v

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("llm.max_tokens must be >= 1")
        return v


class SessionSettings(BaseModel):
    dir: str = "~/.corint/sessions"
    autosave: bool = True
    checkpoint_before_turn: bool = True


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: str = "~/.corint/logs"
    max_file_size_mb: int = 50
    backup_count: int = 5
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Corint runtime settings.

    Priority (highest to lowest):
      1. Init arguments (config.yaml sections)
      2. Environment variables
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from env / .env ---------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")
    deepseek_api_key: Optional[str] = Field(default=None, alias="DEEPSEEK_API_KEY")
    glm_api_key: Optional[str] = Field(default=None, alias="GLM_API_KEY")
    minimax_api_key: Optional[str] = Field(default=None, alias="MINIMAX_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    agent: AgentSettings = Field(default_factory=AgentSettings)
    budget: BudgetSettings = Field(default_factory=BudgetSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("agent", mode="before")
    @classmethod
    def _coerce_agent(cls, v: Any) -> Any:
        return AgentSettings(**v) if isinstance(v, dict) else v

    @field_validator("budget", mode="before")
    @classmethod
    def _coerce_budget(cls, v: Any) -> Any:
        return BudgetSettings(**v) if isinstance(v, dict) else v

    @field_validator("llm", mode="before")
    @classmethod
    def _coerce_llm(cls, v: Any) -> Any:
        return LLMSettings(**v) if isinstance(v, dict) else v

    @field_validator("sessions", mode="before")
    @classmethod
    def _coerce_sessions(cls, v: Any) -> Any:
        return SessionSettings(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingSettings(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def llm_model(self) -> str:
        from corint_agent.brain import default_model_for
        return self.llm.model or default_model_for(self.llm.provider)

    @property
    def llm_api_key(self) -> Optional[str]:
        return getattr(self, f"{self.llm.provider}_api_key", None)

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Field validators catch type/value errors at parse time; this catches
        cross-field problems they can't see, such as a missing API key for
        the chosen provider.
        """
        errors: list[str] = []

        from corint_agent.brain import API_KEY_ENV
        provider = self.llm.provider
        if not self.llm_api_key:
            errors.append(
                f"LLM provider '{provider}' requires {API_KEY_ENV[provider]} to be set "
                f"in your environment or .env file."
            )

        if self.agent.tool_result_max_chars < 100:
            errors.append(
                "agent.tool_result_max_chars is below 100; tool results would be "
                "reduced to an unusable preview."
            )

        if self.sessions.autosave and not self.sessions.dir.strip():
            errors.append("sessions.dir must not be empty when sessions.autosave is on.")

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nCorint startup failed: {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your environment "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Could not parse {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CORINT_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path).expanduser()
    env_path = os.environ.get("CORINT_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """
    Return the global Settings singleton, loading from the default config
    path on first use.
    """
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            yaml_data = _load_yaml(_resolve_config_path(None))
            _singleton = Settings(**{k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS})
    return _singleton


def reset_settings() -> None:
    """Drop the singleton. Used by tests."""
    global _singleton
    with _singleton_lock:
        _singleton = None

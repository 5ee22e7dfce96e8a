"""
observability/logger.py: Corint Structured Logging

structlog routed through stdlib logging. Every line is a dotted event name
plus key/value fields; session_id and user_id are attached from contextvars
while a turn is being processed.

    setup_logging(level="INFO", log_dir="~/.corint/logs")   # once, at startup
    log = get_logger(__name__)
    log.info("executor.task_start", task_id="task_1")

The rotating file always receives JSON. Console output goes to stderr so
the chat shell's stdout stays clean.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILE_NAME = "corint-agent.log"

# Model replies and user messages can be long; log lines carry a prefix only
MAX_FIELD_CHARS = 2_000

# SDK loggers that are chatty at INFO
_NOISY_LOGGERS = ("openai", "httpx", "httpcore")


def _clip_long_values(logger: Any, method_name: str, event_dict: dict) -> dict:
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            event_dict[key] = f"{value[:MAX_FIELD_CHARS]}... [{len(value)} chars]"
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _clip_long_values,
    ]


def _handlers(
    log_dir: Path,
    level: int,
    console_output: bool,
    max_bytes: int,
    backup_count: int,
) -> tuple[logging.Handler, list[logging.Handler]]:
    """Return (file_handler, console_handlers)."""
    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(level)

    console: list[logging.Handler] = []
    if console_output:
        stream = logging.StreamHandler(sys.stderr)
        stream.setLevel(level)
        console.append(stream)
    return file_handler, console


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "~/.corint/logs",
    json_format: bool = True,
    console_output: bool = False,
    max_bytes: int = 50 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    json_format only affects the console; the file is always JSON.
    """
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    file_handler, console_handlers = _handlers(
        log_dir, numeric_level, console_output, max_bytes, backup_count
    )
    pre_chain = _pre_chain()

    def formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
        return structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )

    file_handler.setFormatter(formatter(structlog.processors.JSONRenderer()))
    console_renderer = (
        structlog.processors.JSONRenderer() if json_format
        else structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    )
    for handler in console_handlers:
        handler.setFormatter(formatter(console_renderer))

    logging.basicConfig(
        level=numeric_level,
        handlers=[file_handler, *console_handlers],
        force=True,
    )
    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=pre_chain + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "corint_agent", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**initial_values) if initial_values else logger


def bind_session(session_id: str, user_id: str | None = None) -> None:
    """Attach session ids to every log line emitted by this async context."""
    structlog.contextvars.bind_contextvars(session_id=session_id, user_id=user_id)


def clear_session() -> None:
    structlog.contextvars.clear_contextvars()

"""
__main__.py: Corint Entry Point

Usage:
    corint-agent                                   # interactive chat, last session
    corint-agent --session s1                      # chat in a named session
    corint-agent --prompt "Summarise my notes"     # one-shot, prints the answer
    corint-agent --log-level DEBUG --config path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from dotenv import load_dotenv
from pydantic import ValidationError


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="corint-agent",
        description="Corint: LLM agent with planning, tools and persistent sessions",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $CORINT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--session",
        default=None,
        help="Session id to resume or create (default: the last used session)",
    )
    parser.add_argument(
        "--prompt",
        default=None,
        help="Send one message, print the response and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log). Exits with code 1 on any config problem.
    """
    from corint_agent.config.settings import ConfigError, load_settings
    from corint_agent.observability.logger import get_logger, setup_logging

    load_dotenv()

    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(f"\nConfig validation failed:\n\n{problems}\n", file=sys.stderr)
        sys.exit(1)
    except (ConfigError, OSError) as exc:
        print(f"\nFailed to load config: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings, get_logger("corint_agent.main")


async def run(args: argparse.Namespace) -> int:
    from corint_agent.agent.orchestrator import Orchestrator
    from corint_agent.brain import LLMClientFactory
    from corint_agent.exceptions import CorintError
    from corint_agent.interfaces.chat import ChatShell
    from corint_agent.persistence.session_store import SessionStore
    from corint_agent.tools import ToolRegistry, register_builtin_tools

    settings, log = bootstrap(args)
    log.info(
        "corint.starting",
        llm_provider=settings.llm.provider,
        llm_model=settings.llm_model,
        planning_mode=settings.agent.planning_mode,
    )

    try:
        llm = LLMClientFactory.create(
            settings.llm.provider,
            api_key=settings.llm_api_key,
            base_url=settings.llm.base_url,
        )
    except CorintError as exc:
        log.error("corint.startup_failed", error=str(exc))
        print(f"\n{exc}\n", file=sys.stderr)
        return 1

    registry = register_builtin_tools(ToolRegistry())
    store = SessionStore(settings.sessions.dir)
    orchestrator = Orchestrator.from_settings(settings, llm, registry, session_store=store)
    shell = ChatShell(orchestrator, store)

    if args.prompt is not None:
        shell.open_session(args.session)
        response = await shell.ask(args.prompt)
        shell.save()
        return 0 if response is not None and not response.requires_user_input else 2

    await shell.run(args.session)
    log.info("corint.stopped")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())

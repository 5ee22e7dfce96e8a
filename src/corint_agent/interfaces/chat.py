"""
interfaces/chat.py: Corint Interactive Chat Shell

Rich-powered async REPL on top of the Orchestrator.

Features:
  - Resumes the requested session, else the last used one, else a new
    timestamped session
  - Streams text, tool activity and plan status as it happens
  - /session, /sessions, /history, /clear, /restore, /help, /exit
  - Graceful Ctrl+C / Ctrl+D handling

Usage:
    corint-agent
    corint-agent --session session-2024-06-01T10-00-00 --log-level DEBUG
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import aioconsole
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from corint_agent.agent.orchestrator import Orchestrator
from corint_agent.agent.response import AgentResponse, Confidence, StreamEventType
from corint_agent.exceptions import CorintError
from corint_agent.observability.logger import get_logger
from corint_agent.persistence.session_store import SessionStore

log = get_logger(__name__)

_HELP_TEXT = """
## Corint Chat Commands

| Command | Description |
|---------|-------------|
| `/session <id>` | Switch to a session (created if it does not exist) |
| `/sessions` | List saved sessions |
| `/history [n]` | Show the last n messages (default 10) |
| `/clear` | Clear working memory and history of this session |
| `/restore` | Roll back to the checkpoint taken before the last message |
| `/help` | Show this help |
| `/exit`, `/quit` | Leave the shell |

Anything else is sent to the agent.
"""

_CONFIDENCE_STYLE = {
    Confidence.HIGH: "green",
    Confidence.MEDIUM: "yellow",
    Confidence.LOW: "red",
}


def new_session_id(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return "session-" + now.strftime("%Y-%m-%dT%H-%M-%S")


class ChatShell:
    """
    Interactive shell. One instance drives one active session at a time.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        session_store: SessionStore,
        console: Optional[Console] = None,
        input_fn: Optional[Callable[[str], Awaitable[str]]] = None,
    ):
        self.orchestrator = orchestrator
        self.store = session_store
        self.console = console or Console()
        self._input = input_fn or aioconsole.ainput
        self.session_id: Optional[str] = None
        self._running = False

    # ── Startup ───────────────────────────────────────────────────────────────

    def open_session(self, session_id: Optional[str] = None) -> str:
        """Resolve and load the active session: explicit, last used, or new."""
        resolved = session_id or self.store.get_last_session_id() or new_session_id()
        context = self.orchestrator.resume_session(resolved)
        self.session_id = resolved
        log.info(
            "chat.session_open",
            session_id=resolved,
            messages=len(context.conversation_history),
        )
        return resolved

    async def run(self, session_id: Optional[str] = None) -> None:
        if self.session_id is None or session_id:
            self.open_session(session_id)
        self.console.print(
            f"[bold cyan]Corint[/] [dim]session[/] {self.session_id} "
            f"[dim](type /help for commands)[/]"
        )

        self._running = True
        while self._running:
            try:
                raw = await self._input(f"{self.session_id}> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/]")
                break
            raw = raw.strip()
            if not raw:
                continue
            try:
                await self.dispatch(raw)
            except CorintError as e:
                log.error("chat.command_failed", error=str(e), error_type=type(e).__name__)
                self.console.print(f"[red]{e}[/]")

        self.save()

    # ── Command Dispatch ──────────────────────────────────────────────────────

    async def dispatch(self, raw: str) -> None:
        """Route input to a command handler, or send it to the agent."""
        if not raw.startswith("/"):
            await self.ask(raw)
            return

        parts = raw.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        handlers = {
            "/help":     lambda _: self._cmd_help(),
            "/history":  self._cmd_history,
            "/sessions": lambda _: self._cmd_sessions(),
            "/session":  self._cmd_session,
            "/clear":    lambda _: self._cmd_clear(),
            "/restore":  lambda _: self._cmd_restore(),
            "/exit":     lambda _: self._cmd_exit(),
            "/quit":     lambda _: self._cmd_exit(),
        }
        handler = handlers.get(cmd)
        if handler is None:
            self.console.print(f"[yellow]Unknown command: {cmd}. Type /help for commands.[/]")
            return
        result = handler(arg)
        if asyncio.iscoroutine(result):
            await result

    async def ask(self, message: str) -> Optional[AgentResponse]:
        response: Optional[AgentResponse] = None
        streamed_text = False

        async for event in self.orchestrator.process_message_stream(self.session_id, message):
            if event.type == StreamEventType.TEXT:
                self.console.print(event.content, end="", markup=False, highlight=False)
                streamed_text = True
            elif event.type == StreamEventType.STATUS:
                self.console.print(f"  [dim cyan]{event.content}[/]")
            elif event.type == StreamEventType.TOOL_START:
                self.console.print(f"  [dim]→ {event.tool_name}[/]")
            elif event.type == StreamEventType.TOOL_END:
                self.console.print(f"  [green]✓ {event.tool_name}[/] [dim]{event.content}[/]")
            elif event.type == StreamEventType.ERROR:
                self.console.print(Panel(event.content, title="[red]Error[/]", border_style="red"))
            elif event.type == StreamEventType.DONE:
                response = event.response

        if streamed_text:
            self.console.print()
        if response is not None:
            self._render_response(response, show_content=not streamed_text)
        return response

    # ── Commands ──────────────────────────────────────────────────────────────

    def _cmd_help(self) -> None:
        self.console.print(Markdown(_HELP_TEXT))

    def _cmd_history(self, arg: str) -> None:
        try:
            limit = int(arg) if arg else 10
        except ValueError:
            self.console.print("[yellow]Usage: /history [n][/]")
            return
        history = self.orchestrator.contexts.get_conversation_history(self.session_id, limit)
        if not history:
            self.console.print("[dim]No messages yet.[/]")
            return
        for entry in history:
            ts = datetime.fromtimestamp(entry.timestamp).strftime("%H:%M:%S")
            colour = "cyan" if entry.role == "user" else "magenta"
            self.console.print(f"[dim]{ts}[/] [{colour}]{entry.role}[/]: {entry.content}")

    def _cmd_sessions(self) -> None:
        sessions = self.store.list_sessions()
        if not sessions:
            self.console.print("[dim]No saved sessions.[/]")
            return
        table = Table(title="Sessions")
        table.add_column("Session")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")
        for s in sessions:
            marker = " *" if s.session_id == self.session_id else ""
            table.add_row(
                s.session_id + marker,
                str(s.message_count),
                datetime.fromtimestamp(s.updated_at).strftime("%Y-%m-%d %H:%M"),
            )
        self.console.print(table)

    def _cmd_session(self, arg: str) -> None:
        if not arg:
            self.console.print(f"Current session: {self.session_id}")
            return
        if arg == self.session_id:
            self.console.print(f"Already in session {arg}")
            return
        previous = self.session_id
        self.save()
        self.open_session(arg)
        if previous is not None:
            self.orchestrator.delete_session(previous)
        self.console.print(f"[green]Switched to session {self.session_id}[/]")

    def _cmd_clear(self) -> None:
        self.orchestrator.clear_session(self.session_id)
        self.save()
        self.console.print("[green]Working memory and history cleared.[/]")

    def _cmd_restore(self) -> None:
        checkpoint = self.orchestrator.restore_checkpoint(self.session_id)
        if checkpoint is None:
            self.console.print("[yellow]No checkpoint to restore.[/]")
            return
        self.save()
        self.console.print(
            f"[green]Restored checkpoint {checkpoint.id}[/] "
            f"[dim]({len(checkpoint.conversation_history)} messages)[/]"
        )

    def _cmd_exit(self) -> None:
        self._running = False
        self.console.print("[dim]Goodbye.[/]")

    # ── Rendering ─────────────────────────────────────────────────────────────

    def _render_response(self, response: AgentResponse, show_content: bool) -> None:
        text = response.content.strip() if response.content else ""
        if show_content and text and not response.content.startswith(("Error:", "Request blocked:")):
            self.console.print(Panel(Markdown(text), border_style="cyan", padding=(0, 2)))

        style = _CONFIDENCE_STYLE.get(response.confidence, "white")
        footer = f"[{style}]confidence: {response.confidence.value}[/]"
        if response.usage.total_tokens:
            footer += f" [dim]· {response.usage.total_tokens} tokens[/]"
        self.console.print(footer)
        for suggestion in response.suggestions:
            self.console.print(f"  [dim]• {suggestion}[/]")

    def save(self) -> None:
        if self.session_id and self.orchestrator.get_session(self.session_id) is not None:
            self.orchestrator.save_session(self.session_id)

"""Output formatting utilities for the CLI."""

from __future__ import annotations

import json
from datetime import datetime

from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from llmsession.llm.types import Role, ToolCall
from llmsession.session.models import ChatMessageInfo, ChatMessageState, ChatSession
from llmsession.tools.base import ToolDefinition

STATE_COLORS = {
    ChatMessageState.CREATED: "dim",
    ChatMessageState.SENDING: "yellow",
    ChatMessageState.RECEIVING: "yellow",
    ChatMessageState.PROCESSING_TOOL: "magenta",
    ChatMessageState.SUCCEEDED: "green",
    ChatMessageState.FAILED: "red",
    ChatMessageState.CANCELLED: "dim red",
}

ROLE_COLORS = {
    Role.SYSTEM: "dim",
    Role.USER: "blue",
    Role.ASSISTANT: "green",
    Role.TOOL: "cyan",
}


def _short_ts(value: str) -> str:
    """ISO timestamp -> ``YYYY-MM-DD HH:MM``; anything unparseable is shown as-is."""
    try:
        return datetime.fromisoformat(value).strftime("%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return str(value)


class OutputFormatter:
    """Rich-based output formatting for the llmsession CLI."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format_session_list(self, sessions: list[dict]) -> None:
        if not sessions:
            self.console.print("[dim]No sessions found.[/dim]")
            return

        table = Table(title="Sessions")
        table.add_column("ID", style="cyan", overflow="fold")
        table.add_column("Title", min_width=12)
        table.add_column("State", no_wrap=True)
        table.add_column("Messages", justify="right")
        table.add_column("Updated", no_wrap=True)

        for s in sessions:
            state = s.get("state", "?")
            if s.get("pending_count"):
                state_text = Text(f"{state} (interrupted)", style="yellow")
            else:
                state_text = Text(state)
            table.add_row(
                s.get("session_id", "?"),
                s.get("title") or "",
                state_text,
                str(s.get("message_count", 0) + s.get("pending_count", 0)),
                _short_ts(s.get("updated_at", "?")),
            )

        self.console.print(table)

    def format_history(self, infos: list[ChatMessageInfo]) -> None:
        if not infos:
            self.console.print("[dim]No messages.[/dim]")
            return

        for info in infos:
            msg = info.message
            ts = info.timestamp.strftime("%H:%M:%S")
            role_color = ROLE_COLORS.get(msg.role, "white")
            state_color = STATE_COLORS.get(info.state, "white")

            if msg.role is Role.TOOL:
                content = f"{msg.name}[{msg.tool_call_id}] -> {msg.content[:100]}"
            elif msg.tool_calls:
                calls = ", ".join(f"{tc.name}({tc.arguments[:60]})" for tc in msg.tool_calls)
                content = f"{msg.content[:60]} [tools: {calls}]".strip()
            else:
                content = msg.content[:100]

            self.console.print(
                f"  {ts} [{role_color}]{msg.role.value:>9s}[/{role_color}] "
                f"[{state_color}]{info.state.value:<14s}[/{state_color}] {content}",
                highlight=False,
            )
            if info.error_message:
                self.console.print(f"  {'':>24s}[red]{info.error_message}[/red]")

    def format_session(self, session: ChatSession) -> None:
        self.console.print(Panel(
            f"[bold]{session.title or session.session_id}[/bold]\n\n"
            f"[dim]Id:[/dim] {session.session_id}\n"
            f"[dim]State:[/dim] {session.state.value}\n"
            f"[dim]Created:[/dim] {session.created_at.isoformat()}\n"
            f"[dim]Updated:[/dim] {session.updated_at.isoformat()}",
            title="Session",
        ))
        self.format_history(session.get_all_message_infos())

    def format_tool_list(self, tools: list[ToolDefinition]) -> None:
        table = Table(title="Registered Tools")
        table.add_column("Name", style="cyan", no_wrap=True)
        table.add_column("Description")
        for t in tools:
            table.add_row(t.name, t.description)
        self.console.print(table)

    def format_config(self, config: dict) -> None:
        text = json.dumps(config, indent=2, default=str)
        self.console.print(Syntax(text, "json", theme="monokai"))

    def format_confirmation(self, tool_call: ToolCall) -> None:
        try:
            args_str = json.dumps(json.loads(tool_call.arguments or "{}"), indent=2)
        except json.JSONDecodeError:
            args_str = tool_call.arguments
        self.console.print(
            "[bold yellow]Tool call requires confirmation[/bold yellow]\n"
            f"  [bold]Tool:[/bold]  {tool_call.name}\n"
            f"  [bold]Call:[/bold]  {tool_call.id}\n"
            "  [bold]Args:[/bold]"
        )
        self.console.print(Syntax(args_str, "json", theme="monokai"))

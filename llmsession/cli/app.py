"""
Main CLI application for llmsession.

Usage:
    llmsession chat [--session ID] [--model M] [--stream/--no-stream] [--profile NAME]
    llmsession sessions list|show|delete
    llmsession tools list
    llmsession config show|validate
    llmsession version
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from llmsession.config import load_config
from llmsession.errors import ConfigurationError

__version__ = "0.1.0"

app = typer.Typer(name="llmsession", help="Chat sessions with tool calling and resumable turns")
sessions_app = typer.Typer(help="Session management")
tools_app = typer.Typer(help="Tool management")
config_app = typer.Typer(help="Configuration management")

app.add_typer(sessions_app, name="sessions")
app.add_typer(tools_app, name="tools")
app.add_typer(config_app, name="config")

console = Console()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_config_path() -> Path | None:
    """Find config file in standard locations."""
    candidates = [
        Path.cwd() / "llmsession.yaml",
        Path.cwd() / "llmsession.yml",
        Path.home() / ".config" / "llmsession" / "config.yaml",
        Path.home() / ".llmsession" / "config.yaml",
    ]
    for p in candidates:
        if p.is_file():
            return p
    return None


@app.callback()
def _main(
    log_level: str = typer.Option("WARNING", "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
):
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


async def _open_store(path: str):
    from llmsession.session.store import SessionStore

    store = SessionStore(path)
    await store.init()
    return store


def _with_store(work):
    """Run ``await work(store)`` against the configured session store."""

    async def _run():
        cfg = load_config(_get_config_path())
        store = await _open_store(cfg.store.path)
        try:
            return await work(store)
        finally:
            await store.close()

    return asyncio.run(_run())


def _not_found(session_id: str) -> None:
    console.print(f"[red]No such session:[/red] {session_id}")
    raise typer.Exit(1)


async def _setup_stack(
    profile: str | None = None,
    session_id: str | None = None,
    model: str | None = None,
    stream: bool | None = None,
):
    """Wire up the full stack for chat."""
    from llmsession.cli.chat import ChatHandler
    from llmsession.llm.openai_compat import OpenAICompatClient
    from llmsession.orchestrator.core import Orchestrator
    from llmsession.tools.builtin import register_builtin_tools
    from llmsession.tools.registry import ToolRegistry

    cfg = load_config(
        _get_config_path(),
        profile=profile,
        cli_overrides={"provider.model": model, "chatbot.use_streaming": stream},
    )
    client = OpenAICompatClient(cfg.provider)

    store = await _open_store(cfg.store.path)
    session = None
    if session_id:
        session = await store.load(session_id)
        if session is None:
            await store.close()
            _not_found(session_id)

    handler = ChatHandler(console=console)
    chatbot = cfg.chatbot
    chatbot.tool_registry = register_builtin_tools(ToolRegistry(validate_arguments=True))
    chatbot.on_streaming_chunk = handler.on_chunk
    chatbot.should_execute_tool = handler.confirm_tool

    try:
        orchestrator = Orchestrator(client, chatbot, session=session, store=store)
    except ConfigurationError:
        await store.close()
        raise
    if not orchestrator.session.title:
        orchestrator.session.title = f"Chat {orchestrator.session.created_at:%Y-%m-%d %H:%M}"
    handler.orchestrator = orchestrator
    return handler, store


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@app.command()
def chat(
    session: Optional[str] = typer.Option(None, "--session", help="Resume session ID"),
    model: Optional[str] = typer.Option(None, "--model", help="Model override"),
    stream: Optional[bool] = typer.Option(None, "--stream/--no-stream", help="Stream replies"),
    profile: Optional[str] = typer.Option(None, help="Config profile name"),
):
    """Start an interactive chat session."""

    async def _run():
        handler, store = await _setup_stack(profile, session, model, stream)
        try:
            await handler.orchestrator.checkpoint()
            await handler.run_loop()
        finally:
            await store.close()

    try:
        asyncio.run(_run())
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


@sessions_app.command("list")
def sessions_list():
    """List stored sessions, newest first."""
    from llmsession.cli.output import OutputFormatter

    rows = _with_store(lambda store: store.list_sessions())
    OutputFormatter(console).format_session_list(rows)


@sessions_app.command("show")
def sessions_show(session_id: str = typer.Argument(..., help="Session ID")):
    """Show a session's messages and their states."""
    from llmsession.cli.output import OutputFormatter

    session = _with_store(lambda store: store.load(session_id))
    if session is None:
        _not_found(session_id)
    OutputFormatter(console).format_session(session)


@sessions_app.command("delete")
def sessions_delete(session_id: str = typer.Argument(..., help="Session ID")):
    """Delete a stored session."""
    if not _with_store(lambda store: store.delete_session(session_id)):
        _not_found(session_id)
    console.print(f"Session {session_id} deleted.")


@tools_app.command("list")
def tools_list():
    """List the built-in tools offered to the model."""
    from llmsession.cli.output import OutputFormatter
    from llmsession.tools.builtin import register_builtin_tools
    from llmsession.tools.registry import ToolRegistry

    registry = register_builtin_tools(ToolRegistry())
    OutputFormatter(console).format_tool_list(registry.list_definitions())


@config_app.command("show")
def config_show(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Show effective config."""
    from llmsession.cli.output import OutputFormatter

    cfg = load_config(_get_config_path(), profile=profile)
    OutputFormatter(console).format_config(cfg.to_dict())


@config_app.command("validate")
def config_validate(profile: Optional[str] = typer.Option(None, help="Config profile name")):
    """Validate config and report the first problem found."""
    config_path = _get_config_path()
    try:
        cfg = load_config(config_path, profile=profile)
        cfg.provider.validate()
        if not cfg.chatbot.skip_tool_message:
            raise ConfigurationError("Skip tool message cannot be empty")
    except ConfigurationError as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)

    console.print("[green]Config is valid.[/green]")
    if config_path:
        console.print(f"  Loaded from: {config_path}")
    else:
        console.print("  [dim]No config file found, using defaults.[/dim]")
    console.print(f"  Endpoint: {cfg.provider.api_base} ({cfg.provider.model})")
    console.print(f"  Streaming: {cfg.chatbot.use_streaming}")
    console.print(f"  Session store: {cfg.store.path}")


@app.command()
def version():
    """Show version."""
    console.print(f"llmsession v{__version__}")


def main():
    app()


if __name__ == "__main__":
    main()

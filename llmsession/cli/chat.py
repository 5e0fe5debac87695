"""Interactive chat session handler."""

from __future__ import annotations

import asyncio

from rich.console import Console

from llmsession.cli.output import OutputFormatter
from llmsession.errors import LLMError, RequestCancelledError
from llmsession.llm.types import ChatMessage, ToolCall
from llmsession.orchestrator.core import ChatParams, Orchestrator
from llmsession.session.models import ChatMessageInfo


class ChatHandler:
    """
    Manages the interactive chat loop.

    Handles streaming output, inline commands, tool confirmation prompts and
    the resume-or-discard decision for interrupted sessions.
    """

    def __init__(
        self,
        orchestrator: Orchestrator | None = None,
        console: Console | None = None,
        confirm_tools: bool = True,
    ) -> None:
        self.orchestrator = orchestrator
        self.console = console or Console()
        self.formatter = OutputFormatter(self.console)
        self.confirm_tools = confirm_tools
        self.params = ChatParams()
        self._running = True
        self._streamed = 0

    async def _ask(self, prompt: str) -> str:
        return await asyncio.get_event_loop().run_in_executor(
            None, lambda: input(prompt).strip()
        )

    async def confirm_tool(self, info: ChatMessageInfo, tool_call: ToolCall) -> bool:
        """Rich-formatted confirmation prompt for tool calls."""
        if not self.confirm_tools:
            return True
        if self._streamed:
            self.console.print()
            self._streamed = 0
        self.formatter.format_confirmation(tool_call)
        try:
            response = (await self._ask("\n  Proceed? [y/N]: ")).lower()
            return response in ("y", "yes")
        except (EOFError, KeyboardInterrupt):
            return False

    def on_chunk(self, message: ChatMessage, done: bool) -> None:
        """Print the part of the accumulated content not yet shown."""
        content = message.content or ""
        if len(content) > self._streamed:
            self.console.print(content[self._streamed:], end="", markup=False, highlight=False)
            self._streamed = len(content)
        if done:
            self._streamed = 0

    async def handle_command(self, command: str) -> bool:
        """
        Handle inline commands. Returns True if the command was handled.
        """
        assert self.orchestrator is not None
        cmd = command.strip().split(None, 1)[0].lower()

        if cmd == "/quit":
            self._running = False
            self.console.print("[dim]Goodbye.[/dim]")
            return True

        if cmd == "/history":
            self.formatter.format_history(self.orchestrator.get_all_message_infos())
            return True

        if cmd == "/clear":
            self.orchestrator.clear_history()
            await self.orchestrator.checkpoint()
            self.console.print("[dim]History cleared.[/dim]")
            return True

        if cmd == "/help":
            self.console.print(
                "  [bold]Commands:[/bold]\n"
                "  /quit     - Exit the chat\n"
                "  /history  - Show messages and their states\n"
                "  /clear    - Clear the conversation history\n"
                "  /help     - Show this help\n"
            )
            return True

        return False

    async def handle_input(self, user_input: str) -> None:
        """Run one turn and print the reply."""
        assert self.orchestrator is not None
        self._streamed = 0
        try:
            reply = await self.orchestrator.send_message(user_input, self.params)
        except RequestCancelledError:
            self.console.print("\n[yellow]Cancelled.[/yellow]")
            return
        except LLMError as e:
            self.console.print(f"\n[red]Error:[/red] {e}")
            return
        self._print_reply(reply)

    async def maybe_resume(self) -> None:
        """Offer to resume or discard a turn left behind by an earlier run."""
        assert self.orchestrator is not None
        if not self.orchestrator.is_interrupted:
            return

        self.console.print("[yellow]This session has an interrupted turn.[/yellow]")
        self.formatter.format_history(self.orchestrator.session.pending_messages)
        try:
            answer = (await self._ask("  Resume it? [Y/n]: ")).lower()
        except (EOFError, KeyboardInterrupt):
            answer = "n"

        if answer in ("", "y", "yes"):
            self._streamed = 0
            self.console.print("[dim]assistant>[/dim] ", end="")
            try:
                reply = await self.orchestrator.resume_session(self.params)
            except LLMError as e:
                self.console.print(f"\n[red]Error:[/red] {e}")
                return
            self._print_reply(reply)
        else:
            self.orchestrator.clear_pending()
            await self.orchestrator.checkpoint()
            self.console.print("[dim]Interrupted turn discarded.[/dim]")

    def _print_reply(self, reply: ChatMessage | None) -> None:
        if reply is None:
            self.console.print("\n[dim](no reply)[/dim]")
            return
        assert self.orchestrator is not None
        if not self.orchestrator.config.use_streaming:
            self.console.print(reply.content or "", end="", markup=False, highlight=False)
        self._streamed = 0
        self.console.print()

    async def run_loop(self) -> None:
        """Main interactive loop."""
        assert self.orchestrator is not None
        self.console.print(
            "[bold]llmsession[/bold] - chat with tool calling\n"
            f"[dim]Session {self.orchestrator.session.session_id}. "
            "Type /help for commands, /quit to exit.[/dim]\n"
        )
        await self.maybe_resume()

        while self._running:
            try:
                user_input = await self._ask("you> ")
            except (EOFError, KeyboardInterrupt):
                self.console.print("\n[dim]Goodbye.[/dim]")
                break

            if not user_input:
                continue

            if user_input.startswith("/"):
                handled = await self.handle_command(user_input)
                if handled:
                    continue

            self.console.print("[dim]assistant>[/dim] ", end="")
            await self.handle_input(user_input)

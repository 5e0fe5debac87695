"""
Orchestrator core -- the state machine that drives one user turn.

The orchestrator:
1. Appends the user message to the session as a pending message
2. Sends the whole history (completed + pending) to the completion client
3. Executes any tool calls in the response through the tool registry
4. Loops until the model answers without tool calls (final response)
5. Moves the turn's pending messages into history, succeeded or failed

Every step is driven by the state of the "current" pending message, so a
session persisted mid-turn can be handed to ``resume_session`` and picks
up exactly where it stopped.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Callable

from llmsession.config import ChatbotConfig
from llmsession.errors import (
    ConfigurationError,
    LLMError,
    RequestCancelledError,
    ResponseError,
    SessionBusyError,
    ToolError,
)
from llmsession.llm.base import CompletionClient
from llmsession.llm.cancellation import CancellationToken
from llmsession.llm.types import ChatMessage, ToolCall
from llmsession.session.events import StateChangedEvent
from llmsession.session.models import ChatMessageInfo, ChatMessageState, ChatSession, ChatState
from llmsession.session.store import SessionStore

logger = logging.getLogger(__name__)

StateListener = Callable[[StateChangedEvent], None]

_S = ChatMessageState


@dataclass
class ChatParams:
    """Per-call options for ``send_message`` / ``resume_session``."""

    model: str | None = None
    cancel_token: CancellationToken | None = None


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, LLMError):
        return exc.message
    return str(exc) or type(exc).__name__


def _is_cancellation(exc: BaseException) -> bool:
    return isinstance(exc, (RequestCancelledError, asyncio.CancelledError))


class Orchestrator:
    """
    Drives turns against a single ``ChatSession``.

    Parameters
    ----------
    client : CompletionClient
        Performs one completion request per loop step.
    config : ChatbotConfig
        Streaming mode, callbacks, tool registry and system prompt.
        Validated here; a bad config raises ``ConfigurationError``.
    session : ChatSession, optional
        Session to continue.  A fresh one (seeded with the system prompt)
        is created when omitted.
    store : SessionStore, optional
        When given, the session is saved after every step of a turn.

    A session handed over with pending messages is interrupted: a prior
    process stopped mid-turn.  ``send_message`` refuses it with
    ``SessionBusyError`` until ``resume_session()`` or ``clear_pending()``
    settles the old turn.
    """

    def __init__(
        self,
        client: CompletionClient,
        config: ChatbotConfig,
        session: ChatSession | None = None,
        store: SessionStore | None = None,
    ) -> None:
        if client is None:
            raise ConfigurationError("Completion client cannot be None")
        if config is None:
            raise ConfigurationError("Chatbot config cannot be None")
        config.validate()

        self.client = client
        self.config = config
        self.store = store
        self._listeners: list[StateListener] = []
        self._sending = False
        # Bumped per turn and by clear_pending; a turn only settles pending
        # state while it still owns the current generation.
        self._generation = 0
        self._session: ChatSession | None = None
        self.set_session(session if session is not None else ChatSession())

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def session(self) -> ChatSession:
        assert self._session is not None
        return self._session

    @property
    def messages(self) -> list[ChatMessage]:
        return self.session.get_all_messages()

    @property
    def current_state(self) -> ChatState:
        return self.session.state

    @property
    def is_pending(self) -> bool:
        """True while a send or resume is running on this orchestrator."""
        return self._sending

    @property
    def is_interrupted(self) -> bool:
        """Pending messages with no send running: a prior process stopped mid-turn."""
        return not self._sending and self.session.has_pending_messages()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(
        self,
        info: ChatMessageInfo,
        old_state: ChatMessageState,
        new_state: ChatMessageState,
        error: str | None = None,
    ) -> None:
        event = StateChangedEvent(
            session_id=self.session.session_id,
            message_id=info.message_id,
            new_state=new_state,
            old_state=old_state,
            error=error if new_state is _S.FAILED else None,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("State listener %r failed", listener)

    def _set_state(
        self, info: ChatMessageInfo, new_state: ChatMessageState, error: str | None = None
    ) -> None:
        old = info.update_state(new_state, error)
        if old != new_state:
            logger.debug("Message %s: %s -> %s", info.message_id, old.value, new_state.value)
            self._notify(info, old, new_state, error)

    def _complete_pending(self, target: ChatMessageState) -> bool:
        before = [(info, info.state) for info in self.session.pending_messages]
        moved = self.session.complete_all_pending(target)
        for info, old in before:
            if info.state != old:
                self._notify(info, old, info.state)
        return moved

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    def set_session(self, session: ChatSession) -> None:
        """Switch to *session*, seeding the system prompt into an empty one."""
        if session is None:
            raise ValueError("session cannot be None")
        if self._sending:
            raise SessionBusyError("Cannot switch sessions while a message is being sent")
        if self._session is not None and self._session is not session:
            self.clear_pending()

        self._session = session
        if not session.messages and not session.pending_messages and self.config.system_prompt:
            session.system_prompt = self.config.system_prompt
            self.add_system_message()

    def create_system_message(self, prompt: str | None = None) -> ChatMessage | None:
        prompt = prompt or self.config.system_prompt
        if not prompt:
            return None
        return ChatMessage.system(prompt)

    def add_system_message(self, prompt: str | None = None) -> ChatMessageInfo | None:
        message = self.create_system_message(prompt)
        if message is None:
            return None
        return self.add_message(message)

    def add_message(self, message: ChatMessage) -> ChatMessageInfo:
        """Append an already-completed message to the history."""
        if message is None:
            raise ValueError("message cannot be None")
        if not message.content:
            raise ValueError("message content cannot be empty")
        message.validate()
        info = self.session.add_message(message)
        self._notify(info, _S.CREATED, info.state)
        return info

    def get_message_state(self, message_id: str) -> ChatMessageState | None:
        return self.session.get_message_state(message_id)

    def get_all_message_infos(self, include_pending: bool = True) -> list[ChatMessageInfo]:
        return self.session.get_all_message_infos(include_pending)

    def clear_pending(self) -> None:
        """Discard an interrupted turn: its pending messages go to history as Cancelled."""
        self._complete_pending(_S.CANCELLED)
        # Any turn still running is now stale and must leave the session alone.
        self._generation += 1
        self._sending = False

    def delete_message(
        self,
        message_id: str,
        keep_system_message: bool = True,
        clear_pending: bool = True,
    ) -> bool:
        if not message_id:
            raise ValueError("message_id cannot be empty")
        if self._sending:
            raise SessionBusyError("Cannot delete messages while processing a request")
        if clear_pending:
            self.clear_pending()

        removed = self.session.delete_message(message_id, keep_system_message)
        for info in removed:
            self._notify(info, info.state, _S.CANCELLED)
        return bool(removed)

    def clear_history(self, keep_system_message: bool = True) -> None:
        if self._sending:
            raise SessionBusyError("Cannot clear history while processing a request")
        self.clear_pending()
        self.session.clear_history(keep_system_message, clear_pending=False)
        if keep_system_message and not self.session.messages:
            self.add_system_message()

    async def checkpoint(self) -> None:
        """Save the session to the store, if one is attached."""
        if self.store is not None:
            await self.store.save(self.session)

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def send_message(self, text: str, params: ChatParams | None = None) -> ChatMessage | None:
        """
        Send *text* as a user message and drive the turn to its final reply.

        Raises ``SessionBusyError`` without touching the session when a
        turn is already running or an interrupted turn is waiting to be
        resumed or cleared.
        """
        if not text:
            raise ValueError("Message cannot be empty")
        if self._sending:
            raise SessionBusyError("A message is already being sent")
        if self.session.has_pending_messages():
            raise SessionBusyError(
                "Session has an interrupted turn; resume it or clear pending first"
            )

        self._sending = True
        self._generation += 1
        turn = self._generation
        try:
            info = self.session.add_message(ChatMessage.user(text), pending=True)
            self._set_state(info, _S.SENDING)
            await self.checkpoint()
            return await self._run_turn(info, params or ChatParams(), turn)
        finally:
            if self._generation == turn:
                self._sending = False

    async def resume_session(self, params: ChatParams | None = None) -> ChatMessage | None:
        """
        Continue an interrupted turn from its persisted pending state.

        Returns ``None`` when there is nothing to resume.
        """
        if not self.is_interrupted:
            return None
        current = self.session.get_last_non_tool_pending_message()
        if current is None:
            return None

        logger.info(
            "Resuming session %s from message %s (%s)",
            self.session.session_id,
            current.message_id,
            current.state.value,
        )
        self._sending = True
        self._generation += 1
        turn = self._generation
        try:
            return await self._run_turn(current, params or ChatParams(), turn)
        finally:
            if self._generation == turn:
                self._sending = False

    async def _run_turn(
        self, origin: ChatMessageInfo, params: ChatParams, turn: int
    ) -> ChatMessage | None:
        model = params.model or self.config.default_model
        token = params.cancel_token or CancellationToken()
        try:
            result = await self._advance(origin, model, token)
        except (Exception, asyncio.CancelledError) as exc:
            if self._generation != turn:
                # Discarded by clear_pending; the pending list may belong to a newer turn.
                logger.debug("Discarded turn ended with %s", type(exc).__name__)
                raise
            cancelled = _is_cancellation(exc)
            if not origin.is_completed():
                if cancelled:
                    self._set_state(origin, _S.CANCELLED)
                else:
                    self._set_state(origin, _S.FAILED, _error_text(exc))
            self._complete_pending(_S.CANCELLED if cancelled else _S.FAILED)
            if cancelled:
                logger.info("Turn cancelled in session %s", self.session.session_id)
            else:
                logger.error("Turn failed in session %s: %s", self.session.session_id, exc)
            await self.checkpoint()
            raise

        if self._generation != turn:
            logger.debug("Discarded turn in session %s finished", self.session.session_id)
            return None
        if result is None:
            if not origin.is_completed():
                self._set_state(origin, _S.FAILED, "Turn was interrupted before a reply arrived")
            self._complete_pending(_S.CANCELLED)
        else:
            self._complete_pending(_S.SUCCEEDED)
        await self.checkpoint()
        return result

    async def _advance(
        self,
        current: ChatMessageInfo,
        model: str | None,
        token: CancellationToken,
    ) -> ChatMessage | None:
        """Step the current message until the model stops asking for tools."""
        while True:
            try:
                if current.state in (_S.CREATED, _S.SENDING, _S.RECEIVING):
                    self._set_state(current, _S.SENDING)
                    nxt = await self._handle_chat_completion(current, model, token)
                    if nxt is not None:
                        self._set_state(current, _S.SUCCEEDED)
                elif current.state is _S.PROCESSING_TOOL:
                    if not current.message.tool_calls:
                        self._set_state(
                            current, _S.FAILED, "Message awaiting tools carries no tool calls"
                        )
                        nxt = None
                    else:
                        nxt = await self._handle_tool_calls(current, token)
                        if nxt is not None:
                            self._set_state(current, _S.SENDING)
                else:
                    return current.message
            except (Exception, asyncio.CancelledError) as exc:
                if not current.is_completed():
                    if _is_cancellation(exc):
                        self._set_state(current, _S.CANCELLED)
                    else:
                        self._set_state(current, _S.FAILED, _error_text(exc))
                raise

            await self.checkpoint()
            if nxt is None:
                return None
            current = nxt

    async def _handle_chat_completion(
        self,
        current: ChatMessageInfo,
        model: str | None,
        token: CancellationToken,
    ) -> ChatMessageInfo | None:
        token.raise_if_cancelled()
        messages = self.session.get_all_messages()
        registry = self.config.tool_registry
        tools = registry.to_openai_schema() if registry is not None and len(registry) else None

        if self.config.use_streaming:

            async def on_chunk(message: ChatMessage, done: bool) -> None:
                if current.state is _S.SENDING:
                    self._set_state(current, _S.RECEIVING)
                callback = self.config.on_streaming_chunk
                if callback is not None:
                    result = callback(message, done)
                    if inspect.isawaitable(result):
                        await result

            response = await self.client.complete_streaming(
                messages, on_chunk, model=model, tools=tools, cancel_token=token
            )
        else:
            response = await self.client.complete(
                messages, model=model, tools=tools, cancel_token=token
            )

        if response is None or current.is_completed():
            return None
        if not response.content and not response.tool_calls:
            raise ResponseError("Response carried neither content nor tool calls")

        info = self.session.add_message(response, pending=True)
        self._set_state(info, _S.PROCESSING_TOOL if response.tool_calls else _S.SUCCEEDED)
        await self.checkpoint()
        return info

    async def _handle_tool_calls(
        self, current: ChatMessageInfo, token: CancellationToken
    ) -> ChatMessageInfo | None:
        """
        Run each tool call of *current* that has no pending result yet.

        Returns *current* so the loop sends the results back, or ``None``
        when the turn was discarded while tools were running.
        """
        decide = self.config.should_execute_tool

        for tool_call in current.message.tool_calls or []:
            token.raise_if_cancelled()
            if current.is_completed():
                return None
            if self.session.find_pending_tool_result(tool_call.id) is not None:
                logger.debug("Tool call %s already answered; skipping", tool_call.id)
                continue

            execute = True
            if decide is not None:
                decision = decide(current, tool_call)
                if inspect.isawaitable(decision):
                    decision = await token.guard(decision)
                execute = bool(decision)
                if current.is_completed():
                    return None

            if not execute:
                logger.info("Tool call %s (%s) skipped", tool_call.id, tool_call.name)
                self._append_tool_result(tool_call, self.config.skip_tool_message, _S.SUCCEEDED)
                await self.checkpoint()
                continue

            try:
                result = await self._execute_tool(tool_call)
            except (RequestCancelledError, asyncio.CancelledError):
                raise
            except Exception as exc:
                error = _error_text(exc)
                self._append_tool_result(
                    tool_call, f"Error executing tool: {error}", _S.FAILED, error
                )
                await self.checkpoint()
                raise

            if current.is_completed():
                return None
            self._append_tool_result(tool_call, result, _S.SUCCEEDED)
            await self.checkpoint()

        return current

    async def _execute_tool(self, tool_call: ToolCall) -> str:
        registry = self.config.tool_registry
        if registry is None:
            raise ToolError(f"Tool '{tool_call.name}' not found", tool_call.name)
        return await registry.execute(tool_call)

    def _append_tool_result(
        self,
        tool_call: ToolCall,
        content: str,
        state: ChatMessageState,
        error: str | None = None,
    ) -> ChatMessageInfo:
        message = ChatMessage.tool_response(tool_call.id, tool_call.name, content)
        info = self.session.add_message(message, pending=True)
        self._set_state(info, state, error)
        return info


__all__ = ["ChatParams", "Orchestrator", "StateListener"]

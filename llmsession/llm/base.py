"""Abstract base class for completion clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Union

from llmsession.llm.cancellation import CancellationToken
from llmsession.llm.types import ChatMessage

ChunkCallback = Callable[[ChatMessage, bool], Union[None, Awaitable[None]]]


class CompletionClient(ABC):
    """
    A client performs exactly one request cycle against a chat-completion
    endpoint.  It never loops over tool calls and never retries; that is
    the orchestrator's (or the embedding application's) job.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        tools: list[dict] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatMessage:
        """Send one non-streaming request and return the assistant message."""
        ...

    @abstractmethod
    async def complete_streaming(
        self,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback,
        model: str | None = None,
        tools: list[dict] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatMessage:
        """
        Send one streaming request.

        ``on_chunk(message, done)`` is called with the accumulated message
        after every content or tool-call update, and once more with
        ``done=True`` when the stream terminates.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable client name (e.g. ``"openai-compat"``)."""
        ...

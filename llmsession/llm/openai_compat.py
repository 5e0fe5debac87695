"""
OpenAI-compatible chat-completion client.

Works with any endpoint that speaks the OpenAI ``/chat/completions`` wire
protocol -- OpenAI itself, Azure OpenAI, OpenRouter, vLLM, LM Studio, etc.

Dependencies: ``httpx`` via ``HttpTransport``.  No ``openai`` SDK needed.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass, field

from llmsession import codec
from llmsession.config import ProviderConfig
from llmsession.errors import ConfigurationError, NetworkError, ResponseError, ValidationError
from llmsession.llm.base import ChunkCallback, CompletionClient
from llmsession.llm.cancellation import CancellationToken
from llmsession.llm.tool_call_assembler import ToolCallAssembler
from llmsession.llm.transport import HttpTransport
from llmsession.llm.types import (
    ChatCompletionChunk,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ChatMessage,
    ErrorPayload,
)

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def validate_messages(messages: list[ChatMessage]) -> None:
    """Validate a message list before it is sent anywhere."""
    if not messages:
        raise ValidationError("Messages cannot be null or empty", "messages")
    for message in messages:
        message.validate()


@dataclass
class _StreamState:
    """Scratch state for a single streaming call."""

    content_parts: list[str] = field(default_factory=list)
    assembler: ToolCallAssembler = field(default_factory=ToolCallAssembler)
    done: bool = False

    def snapshot(self) -> ChatMessage:
        calls = self.assembler.build()
        return ChatMessage.assistant("".join(self.content_parts), calls or None)


class OpenAICompatClient(CompletionClient):
    """
    Completion client for any OpenAI-API-compatible endpoint.

    Parameters
    ----------
    config:
        Provider settings (base URL, key, default model, sampling knobs).
        Validated here; a bad config raises ``ConfigurationError``.
    transport:
        HTTP transport.  Defaults to an ``HttpTransport`` using the
        configured timeout.
    """

    def __init__(
        self,
        config: ProviderConfig,
        transport: HttpTransport | None = None,
    ) -> None:
        if config is None:
            raise ConfigurationError("Provider config cannot be None")
        config.validate()
        self._config = config
        self._api_key = config.resolve_api_key()
        self._url = config.api_base.rstrip("/")
        self._transport = transport or HttpTransport(timeout=float(config.timeout_seconds))

    # ------------------------------------------------------------------
    # CompletionClient interface
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return "openai-compat"

    @property
    def default_model(self) -> str:
        return self._config.model

    @property
    def endpoint(self) -> str:
        return f"{self._url}/chat/completions"

    async def complete(
        self,
        messages: list[ChatMessage],
        model: str | None = None,
        tools: list[dict] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatMessage:
        validate_messages(messages)
        body = self._build_body(messages, model, tools, stream=False)

        try:
            text = await self._transport.post_json(
                self.endpoint, body, self._build_headers(), cancel_token
            )
        except NetworkError as exc:
            error = _response_error_from_http(exc)
            if error is None:
                raise
            raise error from exc

        response = _decode(text, ChatCompletionResponse)
        if response.error is not None:
            raise ResponseError.from_error_payload(response.error, text)
        if not response.choices:
            raise ResponseError("No response choices available", text)

        choice = response.choices[0]
        if choice.error is not None:
            raise ResponseError.from_error_payload(choice.error, text)
        if choice.message is None:
            raise ResponseError("Response choice carries no message", text)

        message = choice.message
        _check_tool_calls(message, text)
        if not message.content and not message.tool_calls:
            raise ResponseError("Response carried neither content nor tool calls", text)

        if response.usage is not None:
            logger.info(
                "RESPONSE: finish=%s prompt_tokens=%d completion_tokens=%d",
                choice.finish_reason,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
        return message

    async def complete_streaming(
        self,
        messages: list[ChatMessage],
        on_chunk: ChunkCallback,
        model: str | None = None,
        tools: list[dict] | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> ChatMessage:
        if on_chunk is None:
            raise ValidationError(
                "Chunk handler cannot be None for streaming completion", "on_chunk"
            )
        validate_messages(messages)
        body = self._build_body(messages, model, tools, stream=True)
        state = _StreamState()

        async def on_line(line: str) -> None:
            await self._handle_stream_line(line, state, on_chunk)

        try:
            await self._transport.post_json_stream(
                self.endpoint, body, self._build_headers(), on_line, cancel_token
            )
        except NetworkError as exc:
            error = _response_error_from_http(exc)
            if error is None:
                raise
            raise error from exc

        if not state.done:
            raise ResponseError("Stream ended before the [DONE] marker")
        return state.snapshot()

    # ------------------------------------------------------------------
    # Request building
    # ------------------------------------------------------------------

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _build_body(
        self,
        messages: list[ChatMessage],
        model: str | None,
        tools: list[dict] | None,
        stream: bool,
    ) -> str:
        request = ChatCompletionRequest(
            model=model or self._config.model,
            messages=list(messages),
            temperature=float(self._config.temperature),
            max_tokens=int(self._config.max_tokens),
            stream=stream,
            tools=list(tools) if tools else None,
            tool_choice="auto" if tools else None,
        )
        logger.info(
            "REQUEST: model=%s stream=%s tools=%d messages=%d api_key=%s...",
            request.model,
            stream,
            len(tools) if tools else 0,
            len(messages),
            self._api_key[:12],
        )
        return codec.serialize(request)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def _handle_stream_line(
        self,
        line: str,
        state: _StreamState,
        on_chunk: ChunkCallback,
    ) -> None:
        """
        Process one server-sent line.

        Each event has the form ``data: {json}``; the sentinel
        ``data: [DONE]`` terminates the stream.  Blank lines, comments and
        other SSE fields are ignored.
        """
        if state.done or not line.startswith("data:"):
            return

        data_str = line[len("data:"):].strip()
        if data_str == DONE_SENTINEL:
            logger.debug("Stream completed")
            message = state.snapshot()
            for idx in state.assembler.missing_ids():
                logger.warning("Streamed tool call %d carried no id; using call_%d", idx, idx)
            _check_tool_calls(message, data_str)
            if not message.content and not message.tool_calls:
                raise ResponseError(
                    "Response carried neither content nor tool calls", data_str
                )
            state.done = True
            await _emit(on_chunk, message, True)
            return

        try:
            chunk = codec.deserialize(data_str, ChatCompletionChunk)
        except codec.DecodeError as exc:
            logger.error("Failed to parse SSE data: %s", data_str[:200])
            raise ResponseError(
                f"Error parsing streaming response: {exc}", data_str
            ) from exc

        if chunk.error is not None:
            raise ResponseError.from_error_payload(chunk.error, data_str)
        for choice in chunk.choices:
            if choice.error is not None:
                raise ResponseError.from_error_payload(choice.error, data_str)

        if not chunk.choices or chunk.choices[0].delta is None:
            return

        delta = chunk.choices[0].delta
        updated = False
        if delta.content:
            state.content_parts.append(delta.content)
            updated = True
        if delta.tool_calls:
            for tc in delta.tool_calls:
                state.assembler.feed(tc)
            updated = True

        if updated:
            await _emit(on_chunk, state.snapshot(), False)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _decode(text: str, cls: type):
    try:
        return codec.deserialize(text, cls)
    except codec.DecodeError as exc:
        raise ResponseError(f"Invalid response payload: {exc}", text) from exc


def _check_tool_calls(message: ChatMessage, raw: str) -> None:
    for idx, tc in enumerate(message.tool_calls or []):
        if not tc.function.name:
            raise ResponseError(f"Tool call {idx} has no function name", raw)
        if not tc.id:
            logger.warning("Tool call %d carried no id; using call_%d", idx, idx)
            tc.id = f"call_{idx}"


def _response_error_from_http(exc: NetworkError) -> ResponseError | None:
    """Turn an HTTP error whose body carries an ``error`` object into a ResponseError."""
    if not exc.response_text:
        return None
    try:
        data = json.loads(exc.response_text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("error"), (dict, str)):
        return None
    return ResponseError.from_error_payload(
        ErrorPayload.from_dict(data["error"]),
        exc.response_text,
        status_code=exc.status_code,
    )


async def _emit(on_chunk: ChunkCallback, message: ChatMessage, done: bool) -> None:
    result = on_chunk(message, done)
    if inspect.isawaitable(result):
        await result

"""Core message types and the chat-completion wire shapes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from llmsession.errors import ValidationError


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


@dataclass
class ToolCallFunction:
    name: str
    arguments: str = ""  # serialized JSON object, passed through untouched

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallFunction:
        return cls(
            name=data.get("name") or "",
            arguments=data.get("arguments") or "",
        )


@dataclass
class ToolCall:
    """A complete tool call proposed by the assistant."""

    id: str
    function: ToolCallFunction
    type: str = "function"

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "function": self.function.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCall:
        return cls(
            id=data.get("id") or "",
            type=data.get("type") or "function",
            function=ToolCallFunction.from_dict(data.get("function") or {}),
        )


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: Role
    content: str
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None  # tool results only
    name: str | None = None  # tool results only

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(
        cls, content: str, tool_calls: list[ToolCall] | None = None
    ) -> ChatMessage:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tool_calls)

    @classmethod
    def tool_response(cls, tool_call_id: str, name: str, content: str) -> ChatMessage:
        return cls(
            role=Role.TOOL,
            content=content,
            tool_call_id=tool_call_id,
            name=name,
        )

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    def validate(self) -> None:
        """
        Check the message invariants.

        Raises ``ValidationError`` naming the offending field.
        """
        if not isinstance(self.role, Role):
            raise ValidationError(f"Unknown message role: {self.role!r}", "role")
        if self.content is None:
            raise ValidationError("Message content cannot be None", "content")

        if self.role is Role.TOOL:
            if not self.tool_call_id:
                raise ValidationError(
                    "Tool call ID cannot be empty for tool response", "tool_call_id"
                )
            if not self.name:
                raise ValidationError(
                    "Tool name cannot be empty for tool response", "name"
                )
        else:
            if self.tool_call_id or self.name:
                raise ValidationError(
                    f"tool_call_id/name are only allowed on tool messages, not {self.role.value}",
                    "tool_call_id",
                )
            if not self.content and not self.tool_calls:
                raise ValidationError(
                    "Message content cannot be empty without tool calls", "content"
                )

        if self.tool_calls and self.role is not Role.ASSISTANT:
            raise ValidationError(
                "Only assistant messages may carry tool calls", "tool_calls"
            )
        for tc in self.tool_calls or []:
            if not tc.function.name:
                raise ValidationError(
                    "Tool call function name cannot be empty", "function.name"
                )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            d["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            d["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            d["name"] = self.name
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessage:
        raw_calls = data.get("tool_calls")
        return cls(
            role=Role(data["role"]),
            content=data.get("content") or "",
            tool_calls=[ToolCall.from_dict(tc) for tc in raw_calls] if raw_calls else None,
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


# ---------------------------------------------------------------------------
# Errors reported by the server
# ---------------------------------------------------------------------------


@dataclass
class ErrorMetadata:
    provider_name: str | None = None
    raw: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ErrorMetadata:
        raw = data.get("raw")
        if raw is not None and not isinstance(raw, str):
            raw = str(raw)
        return cls(provider_name=data.get("provider_name"), raw=raw)


@dataclass
class ErrorPayload:
    message: str = ""
    code: int | str | None = None
    metadata: ErrorMetadata | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ErrorPayload:
        if isinstance(data, str):
            return cls(message=data)
        meta = data.get("metadata")
        return cls(
            message=data.get("message") or "",
            code=data.get("code"),
            metadata=ErrorMetadata.from_dict(meta) if isinstance(meta, dict) else None,
        )


# ---------------------------------------------------------------------------
# Request / non-streaming response
# ---------------------------------------------------------------------------


@dataclass
class ChatCompletionRequest:
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 1000
    stream: bool = False
    tools: list[dict] | None = None
    tool_choice: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": self.stream,
        }
        if self.tools:
            body["tools"] = self.tools
            body["tool_choice"] = self.tool_choice or "auto"
        return body


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Usage:
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
        )


@dataclass
class ChatChoice:
    message: ChatMessage | None
    finish_reason: str | None = None
    index: int = 0
    error: ErrorPayload | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatChoice:
        msg = data.get("message")
        err = data.get("error")
        return cls(
            message=ChatMessage.from_dict(msg) if msg else None,
            finish_reason=data.get("finish_reason"),
            index=int(data.get("index") or 0),
            error=ErrorPayload.from_dict(err) if err else None,
        )


@dataclass
class ChatCompletionResponse:
    id: str | None = None
    choices: list[ChatChoice] = field(default_factory=list)
    usage: Usage | None = None
    error: ErrorPayload | None = None
    model: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatCompletionResponse:
        usage = data.get("usage")
        err = data.get("error")
        return cls(
            id=data.get("id"),
            choices=[ChatChoice.from_dict(c) for c in data.get("choices") or []],
            usage=Usage.from_dict(usage) if isinstance(usage, dict) else None,
            error=ErrorPayload.from_dict(err) if err else None,
            model=data.get("model"),
        )


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


@dataclass
class ToolCallChunkFunction:
    name: str | None = None
    arguments: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallChunkFunction:
        return cls(name=data.get("name"), arguments=data.get("arguments"))


@dataclass
class ToolCallChunk:
    """
    One fragment of a streamed tool call.

    Fragments are addressed by ``index`` (position among the parallel calls
    of a single response), not by ``id``; the id may itself arrive split or
    only on the first fragment.
    """

    index: int
    id: str | None = None
    type: str | None = None
    function: ToolCallChunkFunction | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallChunk:
        func = data.get("function")
        return cls(
            index=int(data.get("index") or 0),
            id=data.get("id"),
            type=data.get("type"),
            function=ToolCallChunkFunction.from_dict(func) if func else None,
        )


@dataclass
class ChunkDelta:
    role: str | None = None
    content: str | None = None
    tool_calls: list[ToolCallChunk] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChunkDelta:
        raw_calls = data.get("tool_calls")
        return cls(
            role=data.get("role"),
            content=data.get("content"),
            tool_calls=[ToolCallChunk.from_dict(tc) for tc in raw_calls] if raw_calls else None,
        )


@dataclass
class ChunkChoice:
    delta: ChunkDelta | None = None
    finish_reason: str | None = None
    index: int = 0
    error: ErrorPayload | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChunkChoice:
        delta = data.get("delta")
        err = data.get("error")
        return cls(
            delta=ChunkDelta.from_dict(delta) if delta else None,
            finish_reason=data.get("finish_reason"),
            index=int(data.get("index") or 0),
            error=ErrorPayload.from_dict(err) if err else None,
        )


@dataclass
class ChatCompletionChunk:
    id: str | None = None
    choices: list[ChunkChoice] = field(default_factory=list)
    error: ErrorPayload | None = None
    model: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatCompletionChunk:
        err = data.get("error")
        return cls(
            id=data.get("id"),
            choices=[ChunkChoice.from_dict(c) for c in data.get("choices") or []],
            error=ErrorPayload.from_dict(err) if err else None,
            model=data.get("model"),
        )

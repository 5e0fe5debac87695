"""
Session aggregate: messages, their lifecycle state, and the in-flight turn.

A ``ChatSession`` keeps two ordered sequences:

- ``messages`` -- completed, append-only history.
- ``pending_messages`` -- the messages of the turn currently in flight.

The session is ``Pending`` exactly when ``pending_messages`` is non-empty,
so a session restored from disk with pending messages is an interrupted
turn that can be resumed.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from llmsession import codec
from llmsession.errors import InvalidStateTransitionError, SessionBusyError
from llmsession.llm.types import ChatMessage, Role


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


class ChatMessageState(str, Enum):
    CREATED = "Created"
    SENDING = "Sending"
    RECEIVING = "Receiving"
    PROCESSING_TOOL = "ProcessingTool"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {ChatMessageState.SUCCEEDED, ChatMessageState.FAILED, ChatMessageState.CANCELLED}
)

_S = ChatMessageState
_TRANSITIONS: dict[ChatMessageState, frozenset[ChatMessageState]] = {
    _S.CREATED: frozenset({_S.SENDING, _S.PROCESSING_TOOL, _S.SUCCEEDED, _S.FAILED, _S.CANCELLED}),
    _S.SENDING: frozenset({_S.RECEIVING, _S.SUCCEEDED, _S.FAILED, _S.CANCELLED}),
    _S.RECEIVING: frozenset({_S.SENDING, _S.PROCESSING_TOOL, _S.SUCCEEDED, _S.FAILED, _S.CANCELLED}),
    _S.PROCESSING_TOOL: frozenset({_S.SENDING, _S.FAILED, _S.CANCELLED}),
    _S.SUCCEEDED: frozenset(),
    _S.FAILED: frozenset(),
    _S.CANCELLED: frozenset(),
}


def can_transition(old: ChatMessageState, new: ChatMessageState) -> bool:
    """Self-transitions are no-ops and always allowed."""
    return old == new or new in _TRANSITIONS[old]


class ChatState(str, Enum):
    READY = "Ready"
    PENDING = "Pending"


# ---------------------------------------------------------------------------
# ChatMessageInfo
# ---------------------------------------------------------------------------


@dataclass
class ChatMessageInfo:
    """A message plus its lifecycle metadata.  Owned by exactly one session."""

    message: ChatMessage
    message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_now)
    state: ChatMessageState = ChatMessageState.CREATED
    error_message: str | None = None
    token_count: int | None = None

    def update_state(
        self, new_state: ChatMessageState, error: str | None = None
    ) -> ChatMessageState:
        """
        Move to *new_state* and return the previous state.

        Raises ``InvalidStateTransitionError`` for an edge the state machine
        does not allow (in particular any move out of a terminal state).
        Error text is recorded only when entering ``Failed``.
        """
        old = self.state
        if not can_transition(old, new_state):
            raise InvalidStateTransitionError(
                f"Message {self.message_id}: {old.value} -> {new_state.value} is not allowed"
            )
        self.state = new_state
        if new_state is ChatMessageState.FAILED and error:
            self.error_message = error
        return old

    def finalize(self, target: ChatMessageState) -> ChatMessageState:
        """Force a non-terminal message into the terminal *target* state."""
        if not target.is_terminal:
            raise ValueError(f"{target.value} is not a terminal state")
        old = self.state
        if old.is_terminal:
            raise InvalidStateTransitionError(
                f"Message {self.message_id} is already {old.value}"
            )
        self.state = target
        return old

    def is_in_state(self, state: ChatMessageState) -> bool:
        return self.state == state

    def is_completed(self) -> bool:
        return self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "message": self.message.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "state": self.state.value,
            "error_message": self.error_message,
            "token_count": self.token_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatMessageInfo:
        token_count = data.get("token_count")
        return cls(
            message=ChatMessage.from_dict(data["message"]),
            message_id=data["message_id"],
            timestamp=_parse_ts(data["timestamp"]),
            state=ChatMessageState(data.get("state") or ChatMessageState.CREATED.value),
            error_message=data.get("error_message"),
            token_count=int(token_count) if token_count is not None else None,
        )


# ---------------------------------------------------------------------------
# ChatSession
# ---------------------------------------------------------------------------


@dataclass
class ChatSession:
    """
    Aggregate root for one conversation.

    Only the orchestrator mutates a session; everything else should treat
    the lists returned by the query methods as read-only snapshots.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    title: str = ""
    description: str = ""
    system_prompt: str = ""
    messages: list[ChatMessageInfo] = field(default_factory=list)
    pending_messages: list[ChatMessageInfo] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def state(self) -> ChatState:
        return ChatState.PENDING if self.pending_messages else ChatState.READY

    def _touch(self) -> None:
        self.updated_at = _now()

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add_message(self, message: ChatMessage, pending: bool = False) -> ChatMessageInfo:
        """
        Append *message* and return its info.

        Pending messages start ``Created`` and put the session in
        ``Pending``; completed messages are stored as ``Succeeded``.
        """
        if message is None:
            raise ValueError("message cannot be None")

        info = ChatMessageInfo(message=message)
        if pending:
            self.pending_messages.append(info)
        else:
            info.update_state(ChatMessageState.SUCCEEDED)
            self.messages.append(info)
        self._touch()
        return info

    def update_message_state(
        self,
        message_id: str,
        new_state: ChatMessageState,
        error: str | None = None,
    ) -> ChatMessageState | None:
        """Update a message's state; returns the old state, or None if unknown."""
        info = self.get_message_info(message_id)
        if info is None:
            return None
        old = info.update_state(new_state, error)
        self._touch()
        return old

    def complete_all_pending(
        self, target_state: ChatMessageState = ChatMessageState.SUCCEEDED
    ) -> bool:
        """
        Move every pending message into history.

        Messages not yet terminal are forced to *target_state*, which must
        itself be terminal.  Returns ``False`` when nothing was pending.
        """
        if not isinstance(target_state, ChatMessageState) or not target_state.is_terminal:
            raise ValueError(
                f"complete_all_pending requires a terminal state, got {target_state!r}"
            )
        if not self.pending_messages:
            return False

        for info in self.pending_messages:
            if not info.is_completed():
                info.finalize(target_state)
        self.messages.extend(self.pending_messages)
        self.pending_messages.clear()
        self._touch()
        return True

    def cancel_all_pending(self) -> bool:
        """Drop pending messages without merging them, marking them ``Cancelled``."""
        if not self.pending_messages:
            return False
        for info in self.pending_messages:
            if not info.is_completed():
                info.finalize(ChatMessageState.CANCELLED)
        self.pending_messages.clear()
        self._touch()
        return True

    def delete_message(
        self, message_id: str, keep_system_message: bool = True
    ) -> list[ChatMessageInfo]:
        """
        Delete a completed message and return everything removed.

        Deleting an assistant message that owns tool calls also deletes the
        tool-result messages answering those calls.  A system message is
        kept when *keep_system_message* is set.  Refused while a turn is
        pending.
        """
        if self.pending_messages:
            raise SessionBusyError("Cannot delete messages while a turn is pending")

        target = next((m for m in self.messages if m.message_id == message_id), None)
        if target is None:
            return []
        if keep_system_message and target.message.role is Role.SYSTEM:
            return []

        removed = [target]
        call_ids = {tc.id for tc in target.message.tool_calls or [] if tc.id}
        if call_ids:
            removed.extend(
                m
                for m in self.messages
                if m is not target
                and m.message.role is Role.TOOL
                and m.message.tool_call_id in call_ids
            )
        removed_ids = {m.message_id for m in removed}
        self.messages = [m for m in self.messages if m.message_id not in removed_ids]
        self._touch()
        return removed

    def clear_history(self, keep_system_message: bool = True, clear_pending: bool = True) -> None:
        if keep_system_message and self.messages and self.messages[0].message.role is Role.SYSTEM:
            self.messages = [self.messages[0]]
        else:
            self.messages = []
        if clear_pending:
            self.cancel_all_pending()
        self._touch()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_message_info(self, message_id: str) -> ChatMessageInfo | None:
        for info in self.messages:
            if info.message_id == message_id:
                return info
        for info in self.pending_messages:
            if info.message_id == message_id:
                return info
        return None

    def get_message_state(self, message_id: str) -> ChatMessageState | None:
        info = self.get_message_info(message_id)
        return info.state if info is not None else None

    def get_all_messages(self, include_pending: bool = True) -> list[ChatMessage]:
        """Completed messages followed by pending ones, in order."""
        return [info.message for info in self.get_all_message_infos(include_pending)]

    def get_all_message_infos(self, include_pending: bool = True) -> list[ChatMessageInfo]:
        infos = list(self.messages)
        if include_pending:
            infos.extend(self.pending_messages)
        return infos

    def has_pending_messages(self) -> bool:
        return bool(self.pending_messages)

    def get_last_non_tool_pending_message(self) -> ChatMessageInfo | None:
        """Most recent pending message that can serve as a resume point."""
        for info in reversed(self.pending_messages):
            if info.message.role is not Role.TOOL:
                return info
        return None

    def find_pending_tool_result(self, tool_call_id: str) -> ChatMessageInfo | None:
        for info in self.pending_messages:
            if info.message.tool_call_id == tool_call_id:
                return info
        return None

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "title": self.title,
            "description": self.description,
            "system_prompt": self.system_prompt,
            "state": self.state.value,
            "messages": [m.to_dict() for m in self.messages],
            "pending_messages": [m.to_dict() for m in self.pending_messages],
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChatSession:
        # ``state`` is derived from pending_messages and not read back.
        return cls(
            session_id=data["session_id"],
            created_at=_parse_ts(data["created_at"]),
            updated_at=_parse_ts(data.get("updated_at") or data["created_at"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            system_prompt=data.get("system_prompt") or "",
            messages=[ChatMessageInfo.from_dict(m) for m in data.get("messages") or []],
            pending_messages=[
                ChatMessageInfo.from_dict(m) for m in data.get("pending_messages") or []
            ],
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )

    def to_json(self) -> str:
        return codec.serialize(self)

    @classmethod
    def from_json(cls, text: str) -> ChatSession:
        return codec.deserialize(text, cls)

    def to_bytes(self) -> bytes:
        return codec.encode(self)

    @classmethod
    def from_bytes(cls, data: bytes) -> ChatSession:
        return codec.decode(data, cls)

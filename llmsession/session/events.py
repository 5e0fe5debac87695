"""
Message state-change events.

The orchestrator emits a ``StateChangedEvent`` for every lifecycle move of
a message (including the moves made while completing or cancelling a
turn).  Events are immutable once created and serialize to plain dicts so
a listener can log or forward them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from llmsession.session.models import ChatMessageState


@dataclass(frozen=True)
class StateChangedEvent:
    """
    One message moving from ``old_state`` to ``new_state``.

    Attributes
    ----------
    session_id:
        Session the message belongs to.
    message_id:
        Id of the ``ChatMessageInfo`` that changed.
    new_state, old_state:
        The transition.  Deleted messages are reported as moving to
        ``Cancelled`` from whatever state they were stored in.
    error:
        Error text, set only when ``new_state`` is ``Failed``.
    timestamp:
        UTC time the transition was observed.
    """

    session_id: str
    message_id: str
    new_state: ChatMessageState
    old_state: ChatMessageState
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "message_id": self.message_id,
            "new_state": self.new_state.value,
            "old_state": self.old_state.value,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StateChangedEvent:
        ts = data.get("timestamp")
        return cls(
            session_id=data["session_id"],
            message_id=data["message_id"],
            new_state=ChatMessageState(data["new_state"]),
            old_state=ChatMessageState(data["old_state"]),
            error=data.get("error"),
            timestamp=datetime.fromisoformat(ts) if isinstance(ts, str) else datetime.now(timezone.utc),
        )

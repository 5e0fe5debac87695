"""Chat session model, state-change events and persistence."""

from llmsession.session.events import StateChangedEvent
from llmsession.session.models import (
    ChatMessageInfo,
    ChatMessageState,
    ChatSession,
    ChatState,
)
from llmsession.session.store import SessionStore

__all__ = [
    "ChatMessageInfo",
    "ChatMessageState",
    "ChatSession",
    "ChatState",
    "SessionStore",
    "StateChangedEvent",
]

"""
Tests for the session model, message state machine, events and codec.
"""

from __future__ import annotations

import json
from datetime import timezone

import pytest

from llmsession import codec
from llmsession.errors import InvalidStateTransitionError, SessionBusyError
from llmsession.llm.types import ChatMessage, Role
from llmsession.session.events import StateChangedEvent
from llmsession.session.models import (
    TERMINAL_STATES,
    ChatMessageInfo,
    ChatMessageState,
    ChatSession,
    ChatState,
    can_transition,
)
from tests.mock_clients import tool_call, tool_call_reply

S = ChatMessageState


def _weather_session() -> tuple[ChatSession, ChatMessageInfo]:
    """A completed turn: system, user, assistant(a, b), tool(a), tool(b), assistant."""
    session = ChatSession()
    session.add_message(ChatMessage.system("be brief"))
    session.add_message(ChatMessage.user("weather?"))
    asst = session.add_message(
        tool_call_reply(tool_call("a", "get_weather"), tool_call("b", "get_weather"))
    )
    session.add_message(ChatMessage.tool_response("a", "get_weather", "sunny"))
    session.add_message(ChatMessage.tool_response("b", "get_weather", "rainy"))
    session.add_message(ChatMessage.assistant("sunny and rainy"))
    return session, asst


# ===================================================================
# ChatMessageInfo state machine
# ===================================================================


class TestMessageStateMachine:
    def test_new_info_defaults(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"))
        assert info.state is S.CREATED
        assert info.error_message is None
        assert info.timestamp.tzinfo == timezone.utc
        assert len(info.message_id) == 36

    @pytest.mark.parametrize(
        "path",
        [
            [S.SENDING, S.SUCCEEDED],
            [S.SENDING, S.RECEIVING, S.SUCCEEDED],
            [S.SENDING, S.RECEIVING, S.SENDING, S.SUCCEEDED],
            [S.PROCESSING_TOOL, S.SENDING, S.SUCCEEDED],
            [S.SENDING, S.RECEIVING, S.PROCESSING_TOOL, S.CANCELLED],
        ],
    )
    def test_legal_paths(self, path):
        info = ChatMessageInfo(message=ChatMessage.user("hi"))
        for state in path:
            info.update_state(state)
        assert info.state is path[-1]

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_no_transition_out_of_terminal(self, terminal):
        for target in ChatMessageState:
            if target is terminal:
                continue
            assert not can_transition(terminal, target)
            info = ChatMessageInfo(message=ChatMessage.user("hi"), state=terminal)
            with pytest.raises(InvalidStateTransitionError):
                info.update_state(target)
            assert info.state is terminal

    def test_self_transition_is_noop(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"), state=S.SUCCEEDED)
        assert info.update_state(S.SUCCEEDED) is S.SUCCEEDED
        assert info.state is S.SUCCEEDED

    def test_processing_tool_cannot_jump_to_succeeded(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"), state=S.PROCESSING_TOOL)
        with pytest.raises(InvalidStateTransitionError):
            info.update_state(S.SUCCEEDED)

    def test_update_returns_old_state(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"))
        assert info.update_state(S.SENDING) is S.CREATED
        assert info.update_state(S.RECEIVING) is S.SENDING

    def test_error_recorded_only_on_failed(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"))
        info.update_state(S.SENDING, error="ignored")
        assert info.error_message is None
        info.update_state(S.FAILED, error="HTTP Error: 500")
        assert info.error_message == "HTTP Error: 500"
        assert info.is_completed()
        assert info.is_in_state(S.FAILED)

    def test_finalize_requires_terminal_target(self):
        info = ChatMessageInfo(message=ChatMessage.user("hi"), state=S.PROCESSING_TOOL)
        with pytest.raises(ValueError):
            info.finalize(S.SENDING)
        assert info.finalize(S.SUCCEEDED) is S.PROCESSING_TOOL


# ===================================================================
# ChatSession
# ===================================================================


class TestChatSession:
    def test_add_completed_message(self):
        session = ChatSession()
        info = session.add_message(ChatMessage.user("hi"))
        assert info.state is S.SUCCEEDED
        assert session.messages == [info]
        assert session.state is ChatState.READY

    def test_add_pending_message(self):
        session = ChatSession()
        info = session.add_message(ChatMessage.user("hi"), pending=True)
        assert info.state is S.CREATED
        assert session.pending_messages == [info]
        assert session.state is ChatState.PENDING
        assert session.has_pending_messages()

    def test_add_none_rejected(self):
        with pytest.raises(ValueError):
            ChatSession().add_message(None)

    def test_complete_all_pending_succeeded(self):
        session = ChatSession()
        user = session.add_message(ChatMessage.user("hi"), pending=True)
        user.update_state(S.SENDING)
        reply = session.add_message(ChatMessage.assistant("hello"), pending=True)
        reply.update_state(S.SUCCEEDED)

        assert session.complete_all_pending() is True
        assert session.pending_messages == []
        assert session.state is ChatState.READY
        assert [m.state for m in session.messages] == [S.SUCCEEDED, S.SUCCEEDED]

    @pytest.mark.parametrize("target", [S.FAILED, S.CANCELLED])
    def test_complete_all_pending_forces_target_on_unfinished(self, target):
        session = ChatSession()
        user = session.add_message(ChatMessage.user("hi"), pending=True)
        user.update_state(S.SUCCEEDED)
        asst = session.add_message(tool_call_reply(tool_call("a", "f")), pending=True)
        asst.update_state(S.PROCESSING_TOOL)
        fresh = session.add_message(ChatMessage.tool_response("a", "f", "x"), pending=True)

        session.complete_all_pending(target)

        assert user.state is S.SUCCEEDED  # already terminal, untouched
        assert asst.state is target
        assert fresh.state is target
        assert session.messages == [user, asst, fresh]
        assert session.state is ChatState.READY

    @pytest.mark.parametrize("target", [S.CREATED, S.SENDING, S.RECEIVING, S.PROCESSING_TOOL])
    def test_complete_all_pending_rejects_non_terminal(self, target):
        session = ChatSession()
        session.add_message(ChatMessage.user("hi"), pending=True)
        with pytest.raises(ValueError):
            session.complete_all_pending(target)
        assert session.state is ChatState.PENDING

    def test_complete_all_pending_when_nothing_pending(self):
        assert ChatSession().complete_all_pending() is False

    def test_cancel_all_pending_drops_messages(self):
        session = ChatSession()
        session.add_message(ChatMessage.user("old"))
        pending = session.add_message(ChatMessage.user("hi"), pending=True)

        assert session.cancel_all_pending() is True
        assert pending.state is S.CANCELLED
        assert [m.message.content for m in session.messages] == ["old"]
        assert session.state is ChatState.READY

    def test_update_message_state(self):
        session = ChatSession()
        info = session.add_message(ChatMessage.user("hi"), pending=True)
        assert session.update_message_state(info.message_id, S.SENDING) is S.CREATED
        assert session.get_message_state(info.message_id) is S.SENDING
        assert session.update_message_state("nope", S.SENDING) is None
        assert session.get_message_state("nope") is None

    def test_get_all_messages_orders_completed_before_pending(self):
        session = ChatSession()
        session.add_message(ChatMessage.system("sys"))
        session.add_message(ChatMessage.user("pending"), pending=True)
        session.add_message(ChatMessage.user("done"))

        assert [m.content for m in session.get_all_messages()] == ["sys", "done", "pending"]
        assert [m.content for m in session.get_all_messages(include_pending=False)] == ["sys", "done"]
        assert len(session.get_all_message_infos()) == 3

    def test_last_non_tool_pending_message(self):
        session = ChatSession()
        session.add_message(ChatMessage.user("hi"), pending=True)
        asst = session.add_message(tool_call_reply(tool_call("a", "f")), pending=True)
        session.add_message(ChatMessage.tool_response("a", "f", "x"), pending=True)

        assert session.get_last_non_tool_pending_message() is asst
        assert session.find_pending_tool_result("a") is not None
        assert session.find_pending_tool_result("b") is None

    def test_last_non_tool_pending_message_none(self):
        assert ChatSession().get_last_non_tool_pending_message() is None


class TestDeleteAndClear:
    def test_cascade_delete_of_tool_results(self):
        session, asst = _weather_session()
        removed = session.delete_message(asst.message_id)

        assert {m.message.tool_call_id for m in removed if m.message.role is Role.TOOL} == {"a", "b"}
        assert len(removed) == 3
        roles = [m.message.role for m in session.messages]
        assert roles == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert session.messages[-1].message.content == "sunny and rainy"

    def test_delete_plain_message(self):
        session, _ = _weather_session()
        last = session.messages[-1]
        assert session.delete_message(last.message_id) == [last]
        assert len(session.messages) == 5

    def test_delete_unknown_returns_empty(self):
        session, _ = _weather_session()
        assert session.delete_message("missing") == []

    def test_system_message_protected(self):
        session, _ = _weather_session()
        system = session.messages[0]
        assert session.delete_message(system.message_id) == []
        assert session.delete_message(system.message_id, keep_system_message=False) == [system]

    def test_delete_refused_while_pending(self):
        session, asst = _weather_session()
        session.add_message(ChatMessage.user("next"), pending=True)
        with pytest.raises(SessionBusyError):
            session.delete_message(asst.message_id)
        assert len(session.messages) == 6

    def test_clear_history_keeps_system(self):
        session, _ = _weather_session()
        session.clear_history()
        assert [m.message.role for m in session.messages] == [Role.SYSTEM]

    def test_clear_history_everything(self):
        session, _ = _weather_session()
        pending = session.add_message(ChatMessage.user("next"), pending=True)
        session.clear_history(keep_system_message=False)
        assert session.messages == []
        assert session.pending_messages == []
        assert pending.state is S.CANCELLED

    def test_clear_history_can_keep_pending(self):
        session, _ = _weather_session()
        session.add_message(ChatMessage.user("next"), pending=True)
        session.clear_history(clear_pending=False)
        assert len(session.pending_messages) == 1
        assert session.state is ChatState.PENDING


# ===================================================================
# Serialization
# ===================================================================


class TestSerialization:
    def test_bytes_roundtrip_preserves_pending_turn(self):
        session, _ = _weather_session()
        session.title = "Weather"
        session.metadata["profile"] = "default"
        user = session.add_message(ChatMessage.user("again?"), pending=True)
        user.update_state(S.SUCCEEDED)
        asst = session.add_message(tool_call_reply(tool_call("c", "get_weather", {"location": "NYC"})), pending=True)
        asst.update_state(S.PROCESSING_TOOL)
        failed = session.add_message(ChatMessage.tool_response("c", "get_weather", "Error"), pending=True)
        failed.update_state(S.FAILED, "boom")

        restored = ChatSession.from_bytes(session.to_bytes())

        assert restored == session
        assert restored.state is ChatState.PENDING
        assert restored.pending_messages[1].state is S.PROCESSING_TOOL
        assert restored.pending_messages[1].message.tool_calls[0].arguments == '{"location": "NYC"}'
        assert restored.pending_messages[2].error_message == "boom"

    def test_json_document_layout(self):
        session, _ = _weather_session()
        session.add_message(ChatMessage.user("x"), pending=True)
        doc = json.loads(session.to_json())

        assert doc["session_id"] == session.session_id
        assert doc["state"] == "Pending"
        assert len(doc["messages"]) == 6
        assert doc["pending_messages"][0]["state"] == "Created"
        assert doc["messages"][2]["message"]["tool_calls"][0]["id"] == "a"

    def test_state_derived_on_load(self):
        session = ChatSession()
        doc = json.loads(session.to_json())
        doc["state"] = "Pending"  # stale value on disk
        restored = ChatSession.from_json(json.dumps(doc))
        assert restored.state is ChatState.READY

    def test_malformed_input(self):
        with pytest.raises(codec.DecodeError):
            ChatSession.from_json("{not json")
        with pytest.raises(codec.DecodeError):
            ChatSession.from_json("[]")
        with pytest.raises(codec.DecodeError):
            ChatSession.from_json('{"created_at": "2024-01-01T00:00:00+00:00"}')

    def test_unknown_state_rejected(self):
        session = ChatSession()
        session.add_message(ChatMessage.user("hi"))
        doc = json.loads(session.to_json())
        doc["messages"][0]["state"] = "Exploded"
        with pytest.raises(codec.DecodeError):
            ChatSession.from_json(json.dumps(doc))

    def test_decode_is_a_value_error(self):
        assert issubclass(codec.DecodeError, ValueError)


class TestStateChangedEvent:
    def test_to_dict_and_back(self):
        event = StateChangedEvent(
            session_id="s1",
            message_id="m1",
            new_state=S.FAILED,
            old_state=S.SENDING,
            error="HTTP Error: 500",
        )
        d = event.to_dict()
        assert d["new_state"] == "Failed"
        assert d["old_state"] == "Sending"
        assert StateChangedEvent.from_dict(d) == event

    def test_timestamp_is_utc(self):
        event = StateChangedEvent("s", "m", S.SENDING, S.CREATED)
        assert event.timestamp.tzinfo == timezone.utc

"""Chat lifecycle state machine: pure transitions, no store involved."""
from datetime import datetime, timezone

import pytest

from domain.chat_state import (
    CLOSING_TEXT,
    clean_text,
    draft_message,
    open_chat,
    transition,
    unread_increments,
    welcome_text,
)
from domain.entities import Chat
from domain.exceptions import ChatValidationError, EmptyMessageError, IllegalTransitionError
from domain.models import ChatAction, ChatStatus, SenderRole, UnreadCount

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _chat(status):
    return Chat(
        id="c1",
        client_id="client-1",
        dietitian_id="diet-1",
        status=status,
        last_message="before",
        unread_count=UnreadCount(client=0, dietitian=0),
        updated_at=datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc),
    )


def test_client_opened_chat_starts_waiting_with_first_message():
    result = open_chat("c1", "client-1", "diet-1", SenderRole.CLIENT, "  Hi, I need help ", now=NOW)

    assert result.chat.status is ChatStatus.WAITING
    assert result.chat.last_message == "Hi, I need help"
    assert result.chat.unread_count == UnreadCount(client=0, dietitian=1)
    assert len(result.messages) == 1
    assert result.messages[0].sender_role is SenderRole.CLIENT
    assert result.messages[0].sender_id == "client-1"


def test_dietitian_opened_chat_is_active_immediately():
    result = open_chat("c1", "client-1", "diet-1", SenderRole.DIETITIAN, now=NOW)

    assert result.chat.status is ChatStatus.ACTIVE
    assert result.messages == []
    assert result.chat.unread_count == UnreadCount()


def test_accept_moves_waiting_to_active_with_welcome():
    chat = _chat(ChatStatus.WAITING)

    result = transition(chat, ChatAction.ACCEPT, display_name="Dr. Green", now=NOW)

    assert result.chat.status is ChatStatus.ACTIVE
    assert result.status_changed
    assert [m.text for m in result.messages] == ["Hello! I'm Dr. Green. How can I help you today?"]
    assert result.messages[0].sender_role is SenderRole.DIETITIAN
    assert result.chat.unread_count.client == 1
    assert result.chat.updated_at == NOW
    # input untouched
    assert chat.status is ChatStatus.WAITING
    assert chat.unread_count.client == 0


def test_welcome_falls_back_to_generic_name():
    assert welcome_text("") == "Hello! I'm your dietitian. How can I help you today?"
    assert welcome_text(None) == "Hello! I'm your dietitian. How can I help you today?"


@pytest.mark.parametrize("status", [ChatStatus.ACTIVE, ChatStatus.CLOSED])
def test_accept_rejected_unless_waiting(status):
    with pytest.raises(IllegalTransitionError):
        transition(_chat(status), ChatAction.ACCEPT, now=NOW)


@pytest.mark.parametrize("status", [ChatStatus.WAITING, ChatStatus.CLOSED])
def test_send_rejected_when_not_active(status):
    chat = _chat(status)
    draft = draft_message(chat, SenderRole.CLIENT, "hello")

    with pytest.raises(IllegalTransitionError) as exc:
        transition(chat, ChatAction.SEND, draft, now=NOW)

    assert isinstance(exc.value, ChatValidationError)
    assert chat.status is status
    assert chat.last_message == "before"


def test_send_on_waiting_explains_why():
    chat = _chat(ChatStatus.WAITING)
    with pytest.raises(IllegalTransitionError, match="Waiting for the dietitian"):
        transition(chat, ChatAction.SEND, draft_message(chat, SenderRole.CLIENT, "hi"), now=NOW)


def test_send_on_active_keeps_status_and_counts_for_recipient():
    chat = _chat(ChatStatus.ACTIVE)

    result = transition(
        chat, ChatAction.SEND, draft_message(chat, SenderRole.CLIENT, "How much water?"), now=NOW,
    )

    assert result.chat.status is ChatStatus.ACTIVE
    assert not result.status_changed
    assert result.chat.last_message == "How much water?"
    assert result.chat.unread_count == UnreadCount(client=0, dietitian=1)
    assert len(result.messages) == 1


def test_respond_on_waiting_accepts_with_exactly_one_message():
    chat = _chat(ChatStatus.WAITING)

    result = transition(
        chat, ChatAction.RESPOND, draft_message(chat, SenderRole.DIETITIAN, "Sure!"), now=NOW,
    )

    assert result.chat.status is ChatStatus.ACTIVE
    assert [m.text for m in result.messages] == ["Sure!"]


def test_respond_rejected_on_closed():
    chat = _chat(ChatStatus.CLOSED)
    with pytest.raises(IllegalTransitionError):
        transition(chat, ChatAction.RESPOND, draft_message(chat, SenderRole.DIETITIAN, "hi"), now=NOW)


def test_respond_requires_dietitian_draft():
    chat = _chat(ChatStatus.ACTIVE)
    with pytest.raises(IllegalTransitionError):
        transition(chat, ChatAction.RESPOND, draft_message(chat, SenderRole.CLIENT, "hi"), now=NOW)


@pytest.mark.parametrize("status", [ChatStatus.WAITING, ChatStatus.ACTIVE])
def test_close_appends_closing_message(status):
    result = transition(_chat(status), ChatAction.CLOSE, now=NOW)

    assert result.chat.status is ChatStatus.CLOSED
    assert [m.text for m in result.messages] == [CLOSING_TEXT]
    assert result.chat.unread_count.client == 1


def test_close_uses_configured_text():
    result = transition(_chat(ChatStatus.ACTIVE), ChatAction.CLOSE, closing_text="Bye!", now=NOW)
    assert result.messages[0].text == "Bye!"


def test_closed_is_terminal():
    with pytest.raises(IllegalTransitionError):
        transition(_chat(ChatStatus.CLOSED), ChatAction.CLOSE, now=NOW)


def test_send_without_draft_is_a_programming_error():
    with pytest.raises(ValueError):
        transition(_chat(ChatStatus.ACTIVE), ChatAction.SEND, now=NOW)


@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
def test_clean_text_rejects_blank(text):
    with pytest.raises(EmptyMessageError):
        clean_text(text)


def test_clean_text_trims():
    assert clean_text("  hello \n") == "hello"


def test_unread_increments_per_recipient():
    chat = _chat(ChatStatus.ACTIVE)
    messages = [
        draft_message(chat, SenderRole.DIETITIAN, "a"),
        draft_message(chat, SenderRole.DIETITIAN, "b"),
        draft_message(chat, SenderRole.CLIENT, "c"),
    ]
    assert unread_increments(messages) == {SenderRole.CLIENT: 2, SenderRole.DIETITIAN: 1}

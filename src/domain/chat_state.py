"""
domain.chat_state - Chat lifecycle state machine.

Pure functions, no I/O. ``transition`` never mutates its input: it returns
the chat as it should look after the action plus the messages the action
appends. Persisting both is the caller's job.

    waiting --accept/respond--> active --close--> closed
    waiting --close-----------> closed

closed is terminal; further contact needs a new chat.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from domain.entities import Chat, Message
from domain.exceptions import EmptyMessageError, IllegalTransitionError
from domain.models import ChatAction, ChatStatus, MessageKind, PlanSnapshot, SenderRole

DEFAULT_DIETITIAN_NAME = "your dietitian"
CLOSING_TEXT = "This chat has been closed. Thank you for your consultation!"


@dataclass(frozen=True)
class Transition:
    """Outcome of one state-machine step."""
    chat: Chat
    messages: list[Message] = field(default_factory=list)
    previous_status: Optional[ChatStatus] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status is not self.chat.status


def clean_text(text: Optional[str]) -> str:
    """Trim *text*, rejecting empty or whitespace-only input."""
    cleaned = (text or "").strip()
    if not cleaned:
        raise EmptyMessageError("Message text must not be empty.")
    return cleaned


def welcome_text(display_name: Optional[str] = None) -> str:
    name = (display_name or "").strip() or DEFAULT_DIETITIAN_NAME
    return f"Hello! I'm {name}. How can I help you today?"


def draft_message(
    chat: Chat,
    sender_role: SenderRole,
    text: str,
    *,
    kind: MessageKind = MessageKind.PLAIN,
    plan: Optional[PlanSnapshot] = None,
) -> Message:
    """Build an unsaved message authored by *sender_role* in *chat*."""
    return Message(
        chat_id=chat.id,
        text=clean_text(text),
        sender_id=chat.participant(sender_role),
        sender_role=sender_role,
        read=False,
        kind=kind,
        plan=plan,
    )


def open_chat(
    chat_id: str,
    client_id: str,
    dietitian_id: str,
    opened_by: SenderRole,
    first_text: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """Create a brand-new chat.

    A client-opened chat starts ``waiting`` until the dietitian engages; a
    dietitian-opened chat is ``active`` immediately.
    """
    now = now or datetime.now(timezone.utc)
    status = ChatStatus.WAITING if opened_by is SenderRole.CLIENT else ChatStatus.ACTIVE
    chat = Chat(
        id=chat_id,
        client_id=client_id,
        dietitian_id=dietitian_id,
        status=status,
        created_at=now,
        updated_at=now,
    )
    if first_text is None or not first_text.strip():
        return Transition(chat=chat, messages=[], previous_status=None)
    message = draft_message(chat, opened_by, first_text)
    return Transition(
        chat=_with_messages(chat, [message], now),
        messages=[_stamp(message, now)],
        previous_status=None,
    )


def transition(
    chat: Chat,
    action: ChatAction,
    draft: Optional[Message] = None,
    *,
    display_name: Optional[str] = None,
    closing_text: str = CLOSING_TEXT,
    now: Optional[datetime] = None,
) -> Transition:
    """Apply *action* to *chat*.

    SEND and RESPOND need a *draft* message; ACCEPT and CLOSE synthesize
    their own dietitian-authored message. Raises IllegalTransitionError
    without touching anything when the action is not legal.
    """
    now = now or datetime.now(timezone.utc)
    action = ChatAction(action)
    status = chat.status

    if action is ChatAction.ACCEPT:
        if status is not ChatStatus.WAITING:
            raise IllegalTransitionError(action.value, status.value)
        welcome = draft_message(chat, SenderRole.DIETITIAN, welcome_text(display_name))
        return _apply(chat, ChatStatus.ACTIVE, [welcome], now)

    if action is ChatAction.CLOSE:
        if status is ChatStatus.CLOSED:
            raise IllegalTransitionError(action.value, status.value)
        closing = draft_message(chat, SenderRole.DIETITIAN, closing_text)
        return _apply(chat, ChatStatus.CLOSED, [closing], now)

    if draft is None:
        raise ValueError(f"{action.value} requires a draft message")
    draft = replace(draft, chat_id=chat.id, text=clean_text(draft.text))

    if action is ChatAction.RESPOND:
        if draft.sender_role is not SenderRole.DIETITIAN:
            raise IllegalTransitionError(
                action.value, status.value, "Only the dietitian can respond.",
            )
        if status is ChatStatus.CLOSED:
            raise IllegalTransitionError(action.value, status.value)
        return _apply(chat, ChatStatus.ACTIVE, [draft], now)

    # SEND
    if status is not ChatStatus.ACTIVE:
        detail = "Waiting for the dietitian to respond." if status is ChatStatus.WAITING else ""
        raise IllegalTransitionError(action.value, status.value, detail)
    return _apply(chat, ChatStatus.ACTIVE, [draft], now)


def unread_increments(messages: list[Message]) -> dict[SenderRole, int]:
    """Per-recipient counter deltas for a list of appended messages."""
    deltas: dict[SenderRole, int] = {}
    for message in messages:
        role = message.recipient_role
        deltas[role] = deltas.get(role, 0) + 1
    return deltas


# ---------------------------------------------------------------------------
# Internals
# ---------------------------------------------------------------------------

def _apply(
    chat: Chat, status: ChatStatus, messages: list[Message], now: datetime,
) -> Transition:
    updated = replace(_with_messages(chat, messages, now), status=status)
    return Transition(
        chat=updated,
        messages=[_stamp(m, now) for m in messages],
        previous_status=chat.status,
    )


def _with_messages(chat: Chat, messages: list[Message], now: datetime) -> Chat:
    counts = chat.unread_count
    for role, delta in unread_increments(messages).items():
        counts = counts.incremented(role, delta)
    return replace(
        chat,
        last_message=messages[-1].text if messages else chat.last_message,
        unread_count=counts,
        updated_at=now,
    )


def _stamp(message: Message, now: datetime) -> Message:
    return replace(message, sent_at=message.sent_at or now)

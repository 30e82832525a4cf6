"""Pydantic models for REST API request/response validation."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from domain.entities import Chat, Message
from domain.models import Availability, ChatStatus, MessageKind, SenderRole


# --- Chats ---

class OpenChatBody(BaseModel):
    counterpart_id: str = Field(..., min_length=1)
    first_message: Optional[str] = None


class OpenChatOut(BaseModel):
    chat_id: str


class UnreadCountOut(BaseModel):
    client: int
    dietitian: int


class ChatOut(BaseModel):
    id: str
    client_id: str
    dietitian_id: str
    status: ChatStatus
    last_message: str
    unread_count: UnreadCountOut
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_entity(cls, chat: Chat) -> ChatOut:
        return cls(
            id=chat.id,
            client_id=chat.client_id,
            dietitian_id=chat.dietitian_id,
            status=chat.status,
            last_message=chat.last_message,
            unread_count=UnreadCountOut(**chat.unread_count.to_dict()),
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        )


class InboxOut(BaseModel):
    waiting: list[ChatOut]
    active: list[ChatOut]
    closed: list[ChatOut]


# --- Messages ---

class SendMessageBody(BaseModel):
    text: str


class MessageOut(BaseModel):
    id: str
    chat_id: str
    text: str
    sender_id: str
    sender_role: SenderRole
    sent_at: Optional[datetime] = None
    read: bool
    kind: MessageKind = MessageKind.PLAIN
    plan: Optional[dict[str, Any]] = None

    @classmethod
    def from_entity(cls, message: Message) -> MessageOut:
        return cls(
            id=message.id,
            chat_id=message.chat_id,
            text=message.text,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            sent_at=message.sent_at,
            read=message.read,
            kind=message.kind,
            plan=message.plan.to_dict() if message.plan is not None else None,
        )


class TranscriptOut(BaseModel):
    chat: ChatOut
    messages: list[MessageOut]


class MarkReadOut(BaseModel):
    marked: int


class PlanBody(BaseModel):
    """A nutrition plan as stored by the plan catalog; copied verbatim."""
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    description: str = ""
    days: list[dict[str, Any]] = Field(default_factory=list)


# --- Presence ---

class AvailabilityBody(BaseModel):
    availability: Availability


class AvailabilityOut(BaseModel):
    dietitian_id: str
    availability: Availability

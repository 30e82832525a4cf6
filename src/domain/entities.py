"""
domain.entities - Persistence-aware types (have IDs, timestamps).

Decoupled from any persistence strategy. Timestamps are assigned by the
document store on write; entities built locally before a write carry
``None`` until the store's snapshot comes back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from domain.models import (
    Availability,
    ChatStatus,
    MessageKind,
    PlanSnapshot,
    SenderRole,
    UnreadCount,
)


@dataclass
class Chat:
    """One conversation between exactly one client and one dietitian."""
    id: str = ""
    client_id: str = ""
    dietitian_id: str = ""
    status: ChatStatus = ChatStatus.WAITING
    last_message: str = ""
    unread_count: UnreadCount = field(default_factory=UnreadCount)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def role_of(self, user_id: str) -> Optional[SenderRole]:
        """Return the participant role of *user_id*, or None for outsiders."""
        if user_id == self.client_id:
            return SenderRole.CLIENT
        if user_id == self.dietitian_id:
            return SenderRole.DIETITIAN
        return None

    def participant(self, role: SenderRole) -> str:
        return self.client_id if role is SenderRole.CLIENT else self.dietitian_id


@dataclass
class Message:
    """A single utterance nested under a chat."""
    id: str = ""
    chat_id: str = ""
    text: str = ""
    sender_id: str = ""
    sender_role: SenderRole = SenderRole.CLIENT
    sent_at: Optional[datetime] = None
    read: bool = False
    kind: MessageKind = MessageKind.PLAIN
    plan: Optional[PlanSnapshot] = None

    @property
    def recipient_role(self) -> SenderRole:
        return self.sender_role.other


@dataclass
class ChatIndex:
    """Denormalized per-user roster of chat ids.

    ``availability`` is only meaningful on dietitian indexes.
    """
    owner_id: str = ""
    chat_ids: list[str] = field(default_factory=list)
    unread_count: int = 0
    availability: Optional[Availability] = None

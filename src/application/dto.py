"""
application.dto - Data Transfer Objects for service input/output.

These are the structured results that services return to callers
(REST endpoints, WebSocket streams, CLI commands).
"""

from __future__ import annotations

from dataclasses import dataclass, field

from domain.entities import Chat, Message
from domain.models import ChatStatus


@dataclass(frozen=True)
class ChatTranscript:
    """A chat together with its messages in display order."""
    chat: Chat
    messages: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class InboxPartition:
    """A dietitian's chats split by lifecycle status for presentation."""
    waiting: list[Chat] = field(default_factory=list)
    active: list[Chat] = field(default_factory=list)
    closed: list[Chat] = field(default_factory=list)

    @classmethod
    def of(cls, chats: list[Chat]) -> InboxPartition:
        """Partition *chats*, keeping their incoming order within each group."""
        return cls(
            waiting=[c for c in chats if c.status is ChatStatus.WAITING],
            active=[c for c in chats if c.status is ChatStatus.ACTIVE],
            closed=[c for c in chats if c.status is ChatStatus.CLOSED],
        )

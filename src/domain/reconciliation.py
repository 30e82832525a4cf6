"""
domain.reconciliation - Read/unread reconciliation and ordering rules.

Live subscriptions may deliver snapshots late, twice, or out of order.
Everything here is pure and tolerant of that: message lists are merged by
id and re-sorted on every delivery, read flags only ever move to True, and
chat snapshots older than the one already applied are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Optional

from domain.entities import Chat, Message
from domain.models import ChatStatus, SenderRole

# Pending server timestamps sort after everything that has one.
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ReadReceipt:
    """Writes needed to acknowledge what the viewer has now seen."""
    chat_id: str
    viewer_role: SenderRole
    message_ids: tuple[str, ...] = ()
    reset_counter: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.message_ids and not self.reset_counter

    @property
    def write_count(self) -> int:
        return len(self.message_ids) + (1 if self.reset_counter else 0)


def plan_read_receipt(
    chat_id: str,
    messages: Iterable[Message],
    viewer_role: SenderRole,
    *,
    pending: Iterable[str] = (),
) -> ReadReceipt:
    """Compute the read flips for *viewer_role* over a delivered batch.

    Only messages authored by the other party are candidates; the viewer's
    own messages are never touched. Ids in *pending* are already being
    flipped by an earlier pass and are skipped. The counter reset is
    requested only when something is flipped, so a second pass over an
    already-read batch is empty.
    """
    skip = set(pending)
    other = viewer_role.other
    ids = tuple(
        m.id for m in sort_messages(messages)
        if m.id and m.sender_role is other and not m.read and m.id not in skip
    )
    return ReadReceipt(
        chat_id=chat_id,
        viewer_role=viewer_role,
        message_ids=ids,
        reset_counter=bool(ids),
    )


def count_unread(messages: Iterable[Message]) -> dict[SenderRole, int]:
    """Unread messages per recipient role, recomputed from scratch."""
    counts = {SenderRole.CLIENT: 0, SenderRole.DIETITIAN: 0}
    for message in messages:
        if not message.read:
            counts[message.recipient_role] += 1
    return counts


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------

def _message_key(message: Message) -> tuple[datetime, str]:
    return (message.sent_at or _FAR_FUTURE, message.id)


def sort_messages(messages: Iterable[Message]) -> list[Message]:
    """Order by sentAt ascending, ties broken by id."""
    return sorted(messages, key=_message_key)


def merge_messages(
    current: Iterable[Message], incoming: Iterable[Message],
) -> list[Message]:
    """Union two message sets by id and return them in display order.

    A read flag set on either side wins, and a known sentAt is never
    replaced by a pending one.
    """
    merged: dict[str, Message] = {}
    unkeyed: list[Message] = []
    for message in list(current) + list(incoming):
        if not message.id:
            unkeyed.append(message)
            continue
        seen = merged.get(message.id)
        if seen is None:
            merged[message.id] = message
            continue
        merged[message.id] = replace(
            message,
            read=seen.read or message.read,
            sent_at=message.sent_at or seen.sent_at,
        )
    return sort_messages(list(merged.values()) + unkeyed)


# ---------------------------------------------------------------------------
# Chat snapshots
# ---------------------------------------------------------------------------

_STATUS_RANK = {ChatStatus.WAITING: 0, ChatStatus.ACTIVE: 1, ChatStatus.CLOSED: 2}


def is_stale(current: Optional[Chat], incoming: Chat) -> bool:
    """True when *incoming* is older than the snapshot already applied.

    Last-writer-wins on updatedAt. Equal timestamps are not stale, and a
    snapshot can never move the status backwards.
    """
    if current is None:
        return False
    if _STATUS_RANK[incoming.status] < _STATUS_RANK[current.status]:
        return True
    if current.updated_at is None or incoming.updated_at is None:
        return False
    return incoming.updated_at < current.updated_at


def sort_chats(chats: Iterable[Chat]) -> list[Chat]:
    """Newest activity first."""
    return sorted(
        chats,
        key=lambda c: c.updated_at or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )


def merge_chats(current: Iterable[Chat], incoming: Iterable[Chat]) -> list[Chat]:
    """Per-chat last-writer-wins merge of two roster snapshots."""
    merged: dict[str, Chat] = {c.id: c for c in current}
    for chat in incoming:
        if not is_stale(merged.get(chat.id), chat):
            merged[chat.id] = chat
    return sort_chats(merged.values())

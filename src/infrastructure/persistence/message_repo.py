"""
infrastructure.persistence.message_repo - Messages under ``chats/{id}/messages``.

Message ids are allocated client-side so a message can be written in the
same batch as its chat's metadata update. sentAt is always the store's
own write time.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Callable, Optional

from domain.entities import Message
from domain.models import (
    SERVER_TIMESTAMP,
    Document,
    MessageKind,
    OrderBy,
    PlanSnapshot,
    SenderRole,
)
from domain.ports import DocumentStore, ErrorCallback, Subscription, WriteBatch
from infrastructure.persistence.chat_repo import CHATS, parse_timestamp

logger = logging.getLogger(__name__)


def messages_path(chat_id: str) -> str:
    return f"{CHATS}/{chat_id}/messages"


class DocumentMessageRepository:
    """DocumentStore-backed implementation of MessageRepository."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def list(self, chat_id: str) -> list[Message]:
        docs = await self._store.query_documents(
            messages_path(chat_id), [], OrderBy("sentAt"),
        )
        return [self._to_entity(chat_id, d) for d in docs]

    async def subscribe(
        self,
        chat_id: str,
        on_change: Callable[[list[Message]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def deliver(docs: list[Document]) -> Any:
            return on_change([self._to_entity(chat_id, d) for d in docs])

        return await self._store.subscribe_query(
            messages_path(chat_id), [], OrderBy("sentAt"), deliver, on_error,
        )

    def stage_append(self, batch: WriteBatch, message: Message) -> Message:
        message_id = message.id or self._store.new_id()
        data: dict[str, Any] = {
            "text": message.text,
            "senderId": message.sender_id,
            "senderRole": message.sender_role.value,
            "sentAt": SERVER_TIMESTAMP,
            "read": False,
            "messageKind": message.kind.value,
        }
        if message.plan is not None:
            data["planId"] = message.plan.plan_id
            data["planSnapshot"] = message.plan.to_dict()
        batch.set(f"{messages_path(message.chat_id)}/{message_id}", data)
        return replace(message, id=message_id, read=False)

    def stage_mark_read(self, batch: WriteBatch, chat_id: str, message_ids: list[str]) -> None:
        for message_id in message_ids:
            batch.update(f"{messages_path(chat_id)}/{message_id}", {"read": True})

    @staticmethod
    def _to_entity(chat_id: str, doc: Document) -> Message:
        data = doc.data
        snapshot = data.get("planSnapshot")
        return Message(
            id=doc.id,
            chat_id=chat_id,
            text=data.get("text", "") or "",
            sender_id=data.get("senderId", "") or "",
            sender_role=SenderRole(data.get("senderRole") or SenderRole.CLIENT.value),
            sent_at=parse_timestamp(data.get("sentAt")),
            read=bool(data.get("read", False)),
            kind=MessageKind(data.get("messageKind") or MessageKind.PLAIN.value),
            plan=PlanSnapshot.from_dict(snapshot) if isinstance(snapshot, dict) else None,
        )

"""
infrastructure.persistence.chat_repo - Chat documents in ``chats``.

Maps Chat entities to camelCase documents. Counter changes are written as
Increment transforms so concurrent senders compose instead of overwriting
each other; lastMessage and updatedAt are plain overwrites.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from domain.entities import Chat
from domain.models import (
    OPEN_STATUSES,
    SERVER_TIMESTAMP,
    ChatStatus,
    Document,
    Increment,
    OrderBy,
    QueryFilter,
    SenderRole,
    UnreadCount,
)
from domain.ports import DocumentStore, ErrorCallback, Subscription, WriteBatch

logger = logging.getLogger(__name__)

CHATS = "chats"

_PARTICIPANT_FIELD = {
    SenderRole.CLIENT: "clientId",
    SenderRole.DIETITIAN: "dietitianId",
}


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return None


class DocumentChatRepository:
    """DocumentStore-backed implementation of ChatRepository."""

    def __init__(self, store: DocumentStore):
        self._store = store

    def new_id(self) -> str:
        return self._store.new_id()

    async def get(self, chat_id: str) -> Optional[Chat]:
        data = await self._store.get_document(f"{CHATS}/{chat_id}")
        return self._to_entity(chat_id, data) if data is not None else None

    async def find_open(self, client_id: str, dietitian_id: str) -> list[Chat]:
        """Open chats for the pair, oldest first."""
        docs = await self._store.query_documents(
            CHATS,
            [
                QueryFilter("clientId", "==", client_id),
                QueryFilter("dietitianId", "==", dietitian_id),
                QueryFilter("status", "in", [s.value for s in OPEN_STATUSES]),
            ],
            OrderBy("createdAt"),
        )
        return [self._from_document(d) for d in docs]

    async def list_for(self, role: SenderRole, user_id: str) -> list[Chat]:
        docs = await self._store.query_documents(
            CHATS,
            [QueryFilter(_PARTICIPANT_FIELD[role], "==", user_id)],
            OrderBy("updatedAt", descending=True),
        )
        return [self._from_document(d) for d in docs]

    async def set_unread(self, chat_id: str, counts: UnreadCount) -> None:
        await self._store.update_document(
            f"{CHATS}/{chat_id}",
            {"unreadCount": counts.to_dict()},
        )

    async def subscribe(
        self,
        chat_id: str,
        on_change: Callable[[Optional[Chat]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def deliver(doc: Optional[Document]) -> Any:
            return on_change(self._from_document(doc) if doc is not None else None)

        return await self._store.subscribe_document(f"{CHATS}/{chat_id}", deliver, on_error)

    async def subscribe_for(
        self,
        role: SenderRole,
        user_id: str,
        on_change: Callable[[list[Chat]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def deliver(docs: list[Document]) -> Any:
            return on_change([self._from_document(d) for d in docs])

        return await self._store.subscribe_query(
            CHATS,
            [QueryFilter(_PARTICIPANT_FIELD[role], "==", user_id)],
            OrderBy("updatedAt", descending=True),
            deliver,
            on_error,
        )

    # -- staged writes ---------------------------------------------------

    def stage_create(self, batch: WriteBatch, chat: Chat) -> None:
        batch.set(f"{CHATS}/{chat.id}", {
            "clientId": chat.client_id,
            "dietitianId": chat.dietitian_id,
            "status": chat.status.value,
            "lastMessage": chat.last_message,
            "unreadCount": chat.unread_count.to_dict(),
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        })

    def stage_update(
        self,
        batch: WriteBatch,
        chat_id: str,
        *,
        status: Optional[ChatStatus] = None,
        last_message: Optional[str] = None,
        unread_increments: Optional[dict[SenderRole, int]] = None,
    ) -> None:
        partial: dict[str, Any] = {"updatedAt": SERVER_TIMESTAMP}
        if status is not None:
            partial["status"] = ChatStatus(status).value
        if last_message is not None:
            partial["lastMessage"] = last_message
        for role, delta in (unread_increments or {}).items():
            if delta:
                partial[f"unreadCount.{role.value}"] = Increment(delta)
        batch.update(f"{CHATS}/{chat_id}", partial)

    def stage_reset_unread(self, batch: WriteBatch, chat_id: str, role: SenderRole) -> None:
        # updatedAt is left alone: a read receipt is not chat activity.
        batch.update(f"{CHATS}/{chat_id}", {f"unreadCount.{role.value}": 0})

    # -- mapping ---------------------------------------------------------

    def _from_document(self, doc: Document) -> Chat:
        return self._to_entity(doc.id, doc.data)

    @staticmethod
    def _to_entity(chat_id: str, data: dict[str, Any]) -> Chat:
        return Chat(
            id=chat_id,
            client_id=data.get("clientId", "") or "",
            dietitian_id=data.get("dietitianId", "") or "",
            status=ChatStatus(data.get("status") or ChatStatus.WAITING.value),
            last_message=data.get("lastMessage", "") or "",
            unread_count=UnreadCount.from_dict(data.get("unreadCount")),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
        )

"""
infrastructure.persistence.chat_index_repo - Per-user chat rosters.

``userChats/{clientId}`` and ``dietitianChats/{dietitianId}`` are a
denormalized cache over ``chats``. They may not exist yet, so every write
tries an update first and falls back to creating the document when the
store reports not-found.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from domain.entities import ChatIndex
from domain.exceptions import DocumentNotFoundError
from domain.models import ArrayUnion, Availability, Document, Increment, SenderRole
from domain.ports import DocumentStore, ErrorCallback, Subscription

logger = logging.getLogger(__name__)

USER_CHATS = "userChats"
DIETITIAN_CHATS = "dietitianChats"


def index_path(role: SenderRole, owner_id: str) -> str:
    collection = USER_CHATS if role is SenderRole.CLIENT else DIETITIAN_CHATS
    return f"{collection}/{owner_id}"


class DocumentChatIndexRepository:
    """DocumentStore-backed implementation of ChatIndexRepository."""

    def __init__(
        self,
        store: DocumentStore,
        default_availability: Availability = Availability.ONLINE,
    ):
        self._store = store
        self._default_availability = default_availability

    async def get(self, role: SenderRole, owner_id: str) -> Optional[ChatIndex]:
        data = await self._store.get_document(index_path(role, owner_id))
        return self._to_entity(owner_id, data) if data is not None else None

    async def add_chat(
        self, role: SenderRole, owner_id: str, chat_id: str, unread_increment: int = 0,
    ) -> None:
        partial: dict[str, Any] = {"chatIds": ArrayUnion(chat_id)}
        if unread_increment:
            partial["unreadCount"] = Increment(unread_increment)
        seed: dict[str, Any] = {"chatIds": [chat_id], "unreadCount": unread_increment}
        if role is SenderRole.DIETITIAN:
            seed["availability"] = self._default_availability.value
        await self._upsert(index_path(role, owner_id), partial, seed)

    async def set_availability(self, dietitian_id: str, availability: Availability) -> None:
        value = Availability(availability).value
        await self._upsert(
            index_path(SenderRole.DIETITIAN, dietitian_id),
            {"availability": value},
            {"chatIds": [], "unreadCount": 0, "availability": value},
        )

    async def subscribe(
        self,
        role: SenderRole,
        owner_id: str,
        on_change: Callable[[Optional[ChatIndex]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        def deliver(doc: Optional[Document]) -> Any:
            return on_change(self._to_entity(owner_id, doc.data) if doc is not None else None)

        return await self._store.subscribe_document(index_path(role, owner_id), deliver, on_error)

    async def _upsert(self, path: str, partial: dict[str, Any], seed: dict[str, Any]) -> None:
        try:
            await self._store.update_document(path, partial)
        except DocumentNotFoundError:
            logger.info("Index %s missing, creating it", path)
            # A concurrent creator may have won; retry as an update if so.
            if await self._store.get_document(path) is not None:
                await self._store.update_document(path, partial)
            else:
                await self._store.set_document(path, seed)

    @staticmethod
    def _to_entity(owner_id: str, data: dict[str, Any]) -> ChatIndex:
        availability = data.get("availability")
        return ChatIndex(
            owner_id=owner_id,
            chat_ids=list(data.get("chatIds") or []),
            unread_count=max(int(data.get("unreadCount", 0) or 0), 0),
            availability=Availability(availability) if availability else None,
        )

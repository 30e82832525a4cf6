"""
domain.ports - Abstract interfaces (Protocols) for all system boundaries.

These define WHAT the chat engine needs without specifying HOW. The
document store is an external capability; infrastructure provides a
local SQLite implementation and the repositories that map entities onto
documents. Application services depend only on these protocols.

Using typing.Protocol (structural typing) instead of ABC: any class that
implements the methods satisfies the port without explicit inheritance.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from domain.entities import Chat, ChatIndex, Message
from domain.models import (
    Availability,
    Document,
    OrderBy,
    QueryFilter,
    SenderRole,
    UnreadCount,
)

# Callbacks may be plain functions or coroutines; the store awaits either.
QueryCallback = Callable[[list[Document]], Union[Awaitable[None], None]]
DocumentCallback = Callable[[Optional[Document]], Union[Awaitable[None], None]]
ErrorCallback = Callable[[Exception], Union[Awaitable[None], None]]


# ---------------------------------------------------------------------------
# Document store
# ---------------------------------------------------------------------------

@runtime_checkable
class Subscription(Protocol):
    """Owned handle for one live listener. close() is immediate and final."""

    @property
    def active(self) -> bool: ...

    def close(self) -> None: ...


@runtime_checkable
class WriteBatch(Protocol):
    """Group of writes committed together (atomically where supported)."""

    def set(self, path: str, data: dict[str, Any]) -> None: ...
    def update(self, path: str, partial: dict[str, Any]) -> None: ...
    async def commit(self) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    """Narrow document-database capability used by the engine.

    ``update_document`` accepts dotted field paths plus the Increment,
    ArrayUnion and SERVER_TIMESTAMP transforms, and raises
    DocumentNotFoundError when the target does not exist.
    Live listeners pass snapshot fetch failures to ``on_error`` when one
    is given and keep listening; the next write retries the fetch.
    """

    def new_id(self) -> str: ...
    async def create_document(self, collection_path: str, data: dict[str, Any]) -> str: ...
    async def get_document(self, path: str) -> Optional[dict[str, Any]]: ...
    async def update_document(self, path: str, partial: dict[str, Any]) -> None: ...
    async def set_document(self, path: str, data: dict[str, Any]) -> None: ...
    async def query_documents(
        self,
        collection_path: str,
        filters: list[QueryFilter],
        order_by: Optional[OrderBy] = None,
    ) -> list[Document]: ...
    async def subscribe_query(
        self,
        collection_path: str,
        filters: list[QueryFilter],
        order_by: Optional[OrderBy],
        on_change: QueryCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...
    async def subscribe_document(
        self,
        path: str,
        on_change: DocumentCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...
    def batch(self) -> WriteBatch: ...


# ---------------------------------------------------------------------------
# Repository Ports
# ---------------------------------------------------------------------------

@runtime_checkable
class ChatRepository(Protocol):
    """Chat documents in the ``chats`` collection."""

    def new_id(self) -> str: ...
    async def get(self, chat_id: str) -> Optional[Chat]: ...
    async def find_open(self, client_id: str, dietitian_id: str) -> list[Chat]: ...
    async def list_for(self, role: SenderRole, user_id: str) -> list[Chat]: ...
    async def set_unread(self, chat_id: str, counts: UnreadCount) -> None: ...
    async def subscribe(
        self,
        chat_id: str,
        on_change: Callable[[Optional[Chat]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...
    async def subscribe_for(
        self,
        role: SenderRole,
        user_id: str,
        on_change: Callable[[list[Chat]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...
    def stage_create(self, batch: WriteBatch, chat: Chat) -> None: ...
    def stage_update(
        self,
        batch: WriteBatch,
        chat_id: str,
        *,
        status: Optional[Any] = None,
        last_message: Optional[str] = None,
        unread_increments: Optional[dict[SenderRole, int]] = None,
    ) -> None: ...
    def stage_reset_unread(self, batch: WriteBatch, chat_id: str, role: SenderRole) -> None: ...


@runtime_checkable
class MessageRepository(Protocol):
    """Message documents nested under ``chats/{id}/messages``."""

    async def list(self, chat_id: str) -> list[Message]: ...
    async def subscribe(
        self,
        chat_id: str,
        on_change: Callable[[list[Message]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...
    def stage_append(self, batch: WriteBatch, message: Message) -> Message: ...
    def stage_mark_read(self, batch: WriteBatch, chat_id: str, message_ids: list[str]) -> None: ...


@runtime_checkable
class ChatIndexRepository(Protocol):
    """Per-user rosters in ``userChats`` / ``dietitianChats``."""

    async def get(self, role: SenderRole, owner_id: str) -> Optional[ChatIndex]: ...
    async def add_chat(
        self, role: SenderRole, owner_id: str, chat_id: str, unread_increment: int = 0,
    ) -> None: ...
    async def set_availability(self, dietitian_id: str, availability: Availability) -> None: ...
    async def subscribe(
        self,
        role: SenderRole,
        owner_id: str,
        on_change: Callable[[Optional[ChatIndex]], Any],
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription: ...

"""
application.subscriptions - Owned handles for live chat views.

A view opens its store subscriptions when it mounts and must close them
when it unmounts or switches chat. The handles here own the underlying
store listeners and the view state they feed:

- ChatSubscription: one chat document + its message stream, with read
  reconciliation after every message batch.
- ChatListSubscription: a participant's chat roster (inbox/history).

Once closed a handle never calls back again, and results of writes that
were already in flight are dropped instead of being applied to its state.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Optional

from domain.entities import Chat, Message
from domain.exceptions import RepositoryError
from domain.models import SenderRole
from domain.ports import ChatRepository, MessageRepository, Subscription
from domain.reconciliation import (
    ReadReceipt,
    is_stale,
    merge_chats,
    merge_messages,
    plan_read_receipt,
)

logger = logging.getLogger(__name__)

ChatCallback = Callable[[Chat], Any]
MessagesCallback = Callable[[list[Message]], Any]
ChatsCallback = Callable[[list[Chat]], Any]
ErrorCallback = Callable[[Exception], Any]
Reconciler = Callable[[ReadReceipt], Awaitable[None]]


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class ChatView:
    """Latest observed state of one chat, as the viewer should see it."""

    def __init__(self, chat_id: str):
        self.chat_id = chat_id
        self.chat: Optional[Chat] = None
        self.messages: list[Message] = []

    def apply_chat(self, chat: Chat) -> bool:
        """Adopt *chat* unless it is older than what is already shown."""
        if is_stale(self.chat, chat):
            logger.debug(
                "Discarding stale snapshot of chat %s (%s < %s)",
                chat.id, chat.updated_at, self.chat.updated_at if self.chat else None,
            )
            return False
        self.chat = chat
        return True

    def apply_messages(self, batch: list[Message]) -> list[Message]:
        self.messages = merge_messages(self.messages, batch)
        return list(self.messages)

    def mark_read(self, message_ids: tuple[str, ...]) -> None:
        ids = set(message_ids)
        self.messages = [
            replace(m, read=True) if m.id in ids else m for m in self.messages
        ]


class ChatSubscription:
    """Live view of one chat for one viewer role."""

    def __init__(
        self,
        chat_id: str,
        viewer_role: SenderRole,
        on_chat_update: ChatCallback,
        on_messages: MessagesCallback,
        *,
        reconcile: Optional[Reconciler] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.chat_id = chat_id
        self.viewer_role = viewer_role
        self.view = ChatView(chat_id)
        self._on_chat_update = on_chat_update
        self._on_messages = on_messages
        self._reconcile = reconcile
        self._on_error = on_error
        self._handles: list[Subscription] = []
        self._pending: set[str] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, chat_repo: ChatRepository, message_repo: MessageRepository) -> ChatSubscription:
        self._handles.append(
            await chat_repo.subscribe(self.chat_id, self._handle_chat, self._handle_error),
        )
        if self._closed:
            self._release()
            return self
        try:
            self._handles.append(
                await message_repo.subscribe(
                    self.chat_id, self._handle_messages, self._handle_error,
                ),
            )
        except Exception:
            self._release()
            raise
        if self._closed:
            self._release()
        return self

    def close(self) -> None:
        """Tear down both listeners immediately."""
        if self._closed:
            return
        self._closed = True
        self._release()
        logger.debug("Closed subscription for chat %s", self.chat_id)

    async def __aenter__(self) -> ChatSubscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    def _release(self) -> None:
        for handle in self._handles:
            handle.close()

    async def _handle_chat(self, chat: Optional[Chat]) -> None:
        if self._closed or chat is None:
            return
        if self.view.apply_chat(chat):
            await _maybe_await(self._on_chat_update(chat))

    async def _handle_error(self, exc: Exception) -> None:
        if self._closed:
            return
        if self._on_error is not None:
            await _maybe_await(self._on_error(exc))
        else:
            logger.error("Live view of chat %s failed to refresh: %s", self.chat_id, exc)

    async def _handle_messages(self, batch: list[Message]) -> None:
        if self._closed:
            return
        ordered = self.view.apply_messages(batch)
        await _maybe_await(self._on_messages(ordered))
        if self._reconcile is not None and not self._closed:
            await self._run_reconciliation(ordered)

    async def _run_reconciliation(self, ordered: list[Message]) -> None:
        receipt = plan_read_receipt(
            self.chat_id, ordered, self.viewer_role, pending=self._pending,
        )
        if receipt.is_empty:
            return
        self._pending.update(receipt.message_ids)
        try:
            await self._reconcile(receipt)
        except RepositoryError as exc:
            self._pending.difference_update(receipt.message_ids)
            await self._handle_error(exc)
            return
        if self._closed:
            logger.debug(
                "Chat %s closed during reconciliation; dropping %d read flag(s)",
                self.chat_id, len(receipt.message_ids),
            )
            return
        self.view.mark_read(receipt.message_ids)


class ChatListSubscription:
    """Live roster of every chat a participant is part of, newest first."""

    def __init__(self, on_change: ChatsCallback, on_error: Optional[ErrorCallback] = None):
        self._on_change = on_change
        self._on_error = on_error
        self._handle: Optional[Subscription] = None
        self._closed = False
        self.chats: list[Chat] = []

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, chat_repo: ChatRepository, role: SenderRole, user_id: str) -> ChatListSubscription:
        self._handle = await chat_repo.subscribe_for(
            role, user_id, self._handle_chats, self._handle_error,
        )
        if self._closed:
            self._handle.close()
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            self._handle.close()

    async def __aenter__(self) -> ChatListSubscription:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.close()

    async def _handle_error(self, exc: Exception) -> None:
        if self._closed:
            return
        if self._on_error is not None:
            await _maybe_await(self._on_error(exc))
        else:
            logger.error("Chat list failed to refresh: %s", exc)

    async def _handle_chats(self, chats: list[Chat]) -> None:
        if self._closed:
            return
        self.chats = merge_chats(self.chats, chats)
        await _maybe_await(self._on_change(list(self.chats)))

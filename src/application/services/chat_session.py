"""
application.services.chat_session - Behaviour shared by both chat roles.

A controller acts for one viewer (SessionContext) and orchestrates
lookup-or-create, live subscriptions, the state machine and read
reconciliation on top of the repository ports.

Writes: a message append and its chat metadata update go into one write
batch. On the bundled SQLite store that is a single transaction. On a
store without transactions the two land separately; lastMessage and
updatedAt are overwritten by the next successful write, while the unread
counters can drift until repair_unread_counts() recomputes them.

Known limitation: two near-simultaneous open_or_create_chat calls for the
same pair can both see no open chat and both create one. Without a
server-side unique constraint this is tolerated; lookups then use the
oldest open chat.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from application.context import SessionContext
from application.dto import ChatTranscript
from application.subscriptions import (
    ChatCallback,
    ChatListSubscription,
    ChatSubscription,
    ChatsCallback,
    ErrorCallback,
    MessagesCallback,
)
from domain.chat_state import (
    CLOSING_TEXT,
    Transition,
    clean_text,
    draft_message,
    open_chat,
    transition,
    unread_increments,
)
from domain.entities import Chat, Message
from domain.exceptions import ChatAccessError, ChatNotFoundError
from domain.models import ChatAction, SenderRole, UnreadCount
from domain.ports import ChatIndexRepository, ChatRepository, DocumentStore, MessageRepository
from domain.reconciliation import ReadReceipt, count_unread, plan_read_receipt, sort_messages

logger = logging.getLogger(__name__)


class ChatSessionService:
    """Base controller; subclasses fix the viewer role."""

    role: SenderRole
    send_action: ChatAction = ChatAction.SEND
    # Added to the dietitian roster's aggregate unread count on creation.
    index_unread_on_create: int = 0

    def __init__(
        self,
        ctx: SessionContext,
        store: DocumentStore,
        chat_repo: ChatRepository,
        message_repo: MessageRepository,
        index_repo: ChatIndexRepository,
        *,
        closing_text: str = CLOSING_TEXT,
    ):
        if ctx.role is not self.role:
            raise ValueError(
                f"{type(self).__name__} needs a {self.role.value} session, got {ctx.role.value}"
            )
        self._ctx = ctx
        self._store = store
        self._chat_repo = chat_repo
        self._message_repo = message_repo
        self._index_repo = index_repo
        self._closing_text = closing_text

    @property
    def user_id(self) -> str:
        return self._ctx.user_id

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_chat(self, chat_id: str) -> Chat:
        """Load a chat the current user participates in."""
        chat = await self._chat_repo.get(chat_id)
        if chat is None:
            raise ChatNotFoundError(f"Chat {chat_id} not found.")
        if chat.role_of(self.user_id) is not self.role:
            raise ChatAccessError(f"User {self.user_id} is not part of chat {chat_id}.")
        return chat

    async def get_transcript(self, chat_id: str) -> ChatTranscript:
        chat = await self.get_chat(chat_id)
        messages = await self._message_repo.list(chat_id)
        return ChatTranscript(chat=chat, messages=sort_messages(messages))

    async def list_chats(self) -> list[Chat]:
        """All chats of the current user, most recent activity first."""
        return await self._chat_repo.list_for(self.role, self.user_id)

    # ------------------------------------------------------------------
    # Chat lifecycle
    # ------------------------------------------------------------------

    async def open_or_create_chat(
        self, counterpart_id: str, first_message_text: Optional[str] = None,
    ) -> str:
        """Return the open chat with *counterpart_id*, creating it if needed."""
        text = clean_text(first_message_text) if first_message_text is not None else None
        client_id, dietitian_id = self._pair(counterpart_id)

        existing = await self._chat_repo.find_open(client_id, dietitian_id)
        if existing:
            chat = existing[0]
            if len(existing) > 1:
                logger.warning(
                    "Found %d open chats for client %s / dietitian %s; using %s",
                    len(existing), client_id, dietitian_id, chat.id,
                )
            await self._continue_existing(chat, text)
            return chat.id

        return await self._create_chat(client_id, dietitian_id, text)

    async def send_message(self, chat_id: str, text: str) -> Message:
        """Append a message from the current user.

        Empty text and chats that do not accept messages are rejected
        before anything is written.
        """
        text = clean_text(text)
        chat = await self.get_chat(chat_id)
        result = await self._apply(chat, self.send_action, draft_message(chat, self.role, text))
        return result.messages[-1]

    # ------------------------------------------------------------------
    # Read reconciliation
    # ------------------------------------------------------------------

    async def mark_read(self, chat_id: str, messages: list[Message]) -> int:
        """Flip the counterpart's unread messages in *messages* to read.

        Returns the number of messages flipped; zero means no write.
        """
        receipt = plan_read_receipt(chat_id, messages, self.role)
        await self._commit_receipt(receipt)
        return len(receipt.message_ids)

    async def repair_unread_counts(self, chat_id: str) -> UnreadCount:
        """Recompute both counters from the unread messages and overwrite them."""
        await self.get_chat(chat_id)
        counts = count_unread(await self._message_repo.list(chat_id))
        repaired = UnreadCount(
            client=counts[SenderRole.CLIENT],
            dietitian=counts[SenderRole.DIETITIAN],
        )
        await self._chat_repo.set_unread(chat_id, repaired)
        logger.info("Repaired unread counters of chat %s: %s", chat_id, repaired.to_dict())
        return repaired

    # ------------------------------------------------------------------
    # Live views
    # ------------------------------------------------------------------

    async def subscribe(
        self,
        chat_id: str,
        on_chat_update: ChatCallback,
        on_messages: MessagesCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChatSubscription:
        """Open a live view of one chat; close the handle when leaving it.

        Every message batch is delivered in sentAt order and then
        reconciled: the counterpart's unread messages are marked read and
        this viewer's counter reset.
        """
        await self.get_chat(chat_id)
        subscription = ChatSubscription(
            chat_id,
            self.role,
            on_chat_update,
            on_messages,
            reconcile=self._commit_receipt,
            on_error=on_error,
        )
        return await subscription.open(self._chat_repo, self._message_repo)

    async def watch_chats(
        self, on_change: ChatsCallback, on_error: Optional[ErrorCallback] = None,
    ) -> ChatListSubscription:
        """Live roster of the user's chats, updatedAt descending."""
        subscription = ChatListSubscription(on_change, on_error)
        return await subscription.open(self._chat_repo, self.role, self.user_id)

    # ------------------------------------------------------------------
    # Role hooks
    # ------------------------------------------------------------------

    def _pair(self, counterpart_id: str) -> tuple[str, str]:
        raise NotImplementedError

    async def _continue_existing(self, chat: Chat, text: Optional[str]) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _create_chat(
        self, client_id: str, dietitian_id: str, text: Optional[str],
    ) -> str:
        result = open_chat(
            self._chat_repo.new_id(), client_id, dietitian_id, self.role, text,
        )
        batch = self._store.batch()
        self._chat_repo.stage_create(batch, result.chat)
        for message in result.messages:
            self._message_repo.stage_append(batch, message)
        await batch.commit()
        chat_id = result.chat.id
        logger.info(
            "Created %s chat %s (client=%s, dietitian=%s)",
            result.chat.status.value, chat_id, client_id, dietitian_id,
        )

        await self._index_repo.add_chat(SenderRole.CLIENT, client_id, chat_id)
        await self._index_repo.add_chat(
            SenderRole.DIETITIAN, dietitian_id, chat_id,
            unread_increment=self.index_unread_on_create,
        )
        return chat_id

    async def _apply(
        self,
        chat: Chat,
        action: ChatAction,
        draft: Optional[Message] = None,
        *,
        last_message: Optional[str] = None,
    ) -> Transition:
        """Run the state machine and persist its outcome in one batch."""
        result = transition(
            chat,
            action,
            draft,
            display_name=self._ctx.display_name,
            closing_text=self._closing_text,
        )
        batch = self._store.batch()
        saved = [self._message_repo.stage_append(batch, m) for m in result.messages]
        self._chat_repo.stage_update(
            batch,
            chat.id,
            status=result.chat.status if result.status_changed else None,
            last_message=last_message if last_message is not None else result.chat.last_message,
            unread_increments=unread_increments(result.messages),
        )
        await batch.commit()
        if result.status_changed:
            logger.info(
                "Chat %s: %s -> %s (%s by %s)",
                chat.id, chat.status.value, result.chat.status.value,
                ChatAction(action).value, self.user_id,
            )
        chat_after = result.chat
        if last_message is not None:
            chat_after = replace(chat_after, last_message=last_message)
        return replace(result, chat=chat_after, messages=saved)

    async def _commit_receipt(self, receipt: ReadReceipt) -> None:
        if receipt.is_empty:
            return
        batch = self._store.batch()
        self._message_repo.stage_mark_read(batch, receipt.chat_id, list(receipt.message_ids))
        if receipt.reset_counter:
            self._chat_repo.stage_reset_unread(batch, receipt.chat_id, receipt.viewer_role)
        await batch.commit()
        logger.debug(
            "Marked %d message(s) read in chat %s for %s",
            len(receipt.message_ids), receipt.chat_id, receipt.viewer_role.value,
        )

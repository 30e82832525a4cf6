"""
application.services.dietitian_chat - Dietitian-side chat controller.

Everything the client controller does with roles reversed, plus the
dietitian-only actions: accepting and closing chats, suggesting nutrition
plans and watching the inbox. A dietitian message into a waiting chat
accepts it implicitly, so a chat never stays waiting once the dietitian
has engaged.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from application.dto import InboxPartition
from application.services.chat_session import ChatSessionService
from application.subscriptions import ChatListSubscription, ChatsCallback, ErrorCallback
from domain.chat_state import draft_message
from domain.entities import Chat, Message
from domain.exceptions import ChatValidationError
from domain.models import ChatAction, MessageKind, PlanSnapshot, SenderRole

logger = logging.getLogger(__name__)


class DietitianChatService(ChatSessionService):
    """Chat controller acting for one dietitian."""

    role = SenderRole.DIETITIAN
    send_action = ChatAction.RESPOND
    index_unread_on_create = 0

    async def mark_client_messages_read(self, chat_id: str, messages: list[Message]) -> int:
        """Acknowledge the client's messages in *messages*."""
        return await self.mark_read(chat_id, messages)

    async def accept_chat(self, chat_id: str) -> Chat:
        """Move a waiting chat to active and greet the client."""
        chat = await self.get_chat(chat_id)
        result = await self._apply(chat, ChatAction.ACCEPT)
        await self._index_repo.add_chat(SenderRole.DIETITIAN, self.user_id, chat_id)
        return result.chat

    async def close_chat(self, chat_id: str) -> Chat:
        """Close a waiting or active chat with a closing message."""
        chat = await self.get_chat(chat_id)
        result = await self._apply(chat, ChatAction.CLOSE)
        await self._index_repo.add_chat(SenderRole.DIETITIAN, self.user_id, chat_id)
        return result.chat

    async def suggest_plan(self, chat_id: str, plan: dict[str, Any]) -> Message:
        """Send a nutrition plan suggestion.

        The message embeds a deep copy of *plan* taken now; later edits of
        the source plan never change what the client was shown.
        """
        snapshot = PlanSnapshot.capture(plan)
        if not snapshot.name.strip():
            raise ChatValidationError("A suggested plan needs a name.")
        chat = await self.get_chat(chat_id)
        draft = draft_message(
            chat,
            self.role,
            snapshot.render(),
            kind=MessageKind.PLAN_SUGGESTION,
            plan=snapshot,
        )
        result = await self._apply(
            chat, ChatAction.RESPOND, draft, last_message=snapshot.summary(),
        )
        logger.info("Suggested plan %r in chat %s", snapshot.name, chat_id)
        return result.messages[-1]

    async def list_inbox(
        self, on_change: ChatsCallback, on_error: Optional[ErrorCallback] = None,
    ) -> ChatListSubscription:
        """Live, unpartitioned inbox ordered by updatedAt descending.

        Use partition_inbox() to split a delivery into waiting/active/closed.
        """
        return await self.watch_chats(on_change, on_error)

    def _pair(self, counterpart_id: str) -> tuple[str, str]:
        return counterpart_id, self.user_id

    async def _continue_existing(self, chat: Chat, text: Optional[str]) -> None:
        if text is not None:
            await self._apply(chat, ChatAction.RESPOND, draft_message(chat, self.role, text))


def partition_inbox(chats: list[Chat]) -> InboxPartition:
    return InboxPartition.of(chats)

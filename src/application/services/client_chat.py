"""
application.services.client_chat - Client-side chat controller.

A client opens a chat with a dietitian (it starts ``waiting``), talks once
the dietitian has engaged, and acknowledges the dietitian's messages.
"""

from __future__ import annotations

import logging
from typing import Optional

from application.services.chat_session import ChatSessionService
from domain.chat_state import draft_message
from domain.entities import Chat, Message
from domain.models import ChatAction, ChatStatus, SenderRole

logger = logging.getLogger(__name__)


class ClientChatService(ChatSessionService):
    """Chat controller acting for one client."""

    role = SenderRole.CLIENT
    send_action = ChatAction.SEND
    index_unread_on_create = 1

    async def mark_dietitian_messages_read(self, chat_id: str, messages: list[Message]) -> int:
        """Acknowledge the dietitian's messages in *messages*."""
        return await self.mark_read(chat_id, messages)

    def _pair(self, counterpart_id: str) -> tuple[str, str]:
        return self.user_id, counterpart_id

    async def _continue_existing(self, chat: Chat, text: Optional[str]) -> None:
        if text is None:
            return
        if chat.status is ChatStatus.ACTIVE:
            await self._apply(chat, ChatAction.SEND, draft_message(chat, self.role, text))
        else:
            # The waiting chat already carries the opening message.
            logger.info(
                "Chat %s is still waiting; not appending another opening message", chat.id,
            )

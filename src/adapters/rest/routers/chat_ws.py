"""WebSocket endpoints streaming live chat state."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from adapters.rest.dependencies import authenticate, get_factory
from adapters.rest.schemas import ChatOut, MessageOut
from domain.entities import Chat, Message
from domain.exceptions import (
    AuthenticationError,
    ChatAccessError,
    ChatNotFoundError,
    ChatValidationError,
    RepositoryError,
)

router = APIRouter()
logger = logging.getLogger(__name__)

# Application close codes (4000-4999 are free for application use)
_CLOSE_UNAUTHORIZED = 4001
_CLOSE_FORBIDDEN = 4003
_CLOSE_NOT_FOUND = 4004
_CLOSE_INTERNAL = 1011


def _chat_event(chat: Chat) -> dict[str, Any]:
    return {"type": "chat", "chat": ChatOut.from_entity(chat).model_dump(mode="json")}


def _messages_event(messages: list[Message]) -> dict[str, Any]:
    return {
        "type": "messages",
        "messages": [MessageOut.from_entity(m).model_dump(mode="json") for m in messages],
    }


def _chats_event(chats: list[Chat]) -> dict[str, Any]:
    return {
        "type": "chats",
        "chats": [ChatOut.from_entity(c).model_dump(mode="json") for c in chats],
    }


def _error_event(exc: Exception) -> dict[str, Any]:
    return {"type": "error", "detail": str(exc)}


async def _pump(ws: WebSocket, outbox: asyncio.Queue) -> None:
    """Forward queued events to the socket, one at a time and in order."""
    while True:
        event = await outbox.get()
        try:
            await ws.send_json(event)
        except Exception as exc:
            logger.info("WS send failed, stopping event pump: %s", exc)
            return


async def _stop(pump: asyncio.Task) -> None:
    pump.cancel()
    try:
        await pump
    except asyncio.CancelledError:
        pass


@router.websocket("/ws/chats/{chat_id}")
async def websocket_chat(
    ws: WebSocket,
    chat_id: str,
    token: str = Query(...),
):
    """
    Live view of one chat.

    Authentication via query parameter: /ws/chats/<id>?token=<JWT>
    (WebSocket handshake does not support Authorization headers in browsers.)

    Protocol:
      - Server sends JSON events:
          {"type": "chat", "chat": {...}}          chat metadata changed
          {"type": "messages", "messages": [...]}  full ordered message list
          {"type": "error", "detail": "..."}       a rejected send, a failed
                                                   read acknowledgement or a
                                                   failed live refresh
      - Client sends: plain text, appended as a message from the caller
      - While connected, the counterpart's messages are marked read
      - On auth failure: close with code 4001
      - Unknown chat: 4004, not a participant: 4003, store unavailable: 1011
    """
    factory = get_factory()
    try:
        user = authenticate(token, factory)
    except AuthenticationError:
        await ws.close(code=_CLOSE_UNAUTHORIZED, reason="Invalid or expired token")
        return

    service = factory.create_chat_service(user.session())
    outbox: asyncio.Queue = asyncio.Queue()
    try:
        subscription = await service.subscribe(
            chat_id,
            on_chat_update=lambda chat: outbox.put_nowait(_chat_event(chat)),
            on_messages=lambda messages: outbox.put_nowait(_messages_event(messages)),
            on_error=lambda exc: outbox.put_nowait(_error_event(exc)),
        )
    except ChatNotFoundError:
        await ws.close(code=_CLOSE_NOT_FOUND, reason="Chat not found")
        return
    except ChatAccessError:
        await ws.close(code=_CLOSE_FORBIDDEN, reason="Not a participant")
        return
    except RepositoryError as exc:
        logger.warning("Could not open chat %s for %s: %s", chat_id, user.user_id, exc)
        await ws.close(code=_CLOSE_INTERNAL, reason=str(exc))
        return

    await ws.accept()
    pump = asyncio.create_task(_pump(ws, outbox))
    logger.info("WS open: %s %s on chat %s", user.role.value, user.user_id, chat_id)

    try:
        while True:
            text = await ws.receive_text()
            try:
                await service.send_message(chat_id, text)
            except (ChatValidationError, RepositoryError) as exc:
                outbox.put_nowait(_error_event(exc))
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Unhandled error in chat WS for user %s", user.user_id)
        await ws.close(code=_CLOSE_INTERNAL)
    finally:
        subscription.close()
        await _stop(pump)
        logger.info("WS closed: %s on chat %s", user.user_id, chat_id)


@router.websocket("/ws/inbox")
async def websocket_inbox(
    ws: WebSocket,
    token: str = Query(...),
):
    """
    Live list of the caller's chats, most recently updated first.

    Server sends {"type": "chats", "chats": [...]} on every change and
    {"type": "error", "detail": "..."} when a refresh fails. If the roster
    cannot be watched at all, the error event is followed by close code
    1011. Messages from the client are ignored.
    """
    factory = get_factory()
    try:
        user = authenticate(token, factory)
    except AuthenticationError:
        await ws.close(code=_CLOSE_UNAUTHORIZED, reason="Invalid or expired token")
        return

    await ws.accept()
    service = factory.create_chat_service(user.session())
    outbox: asyncio.Queue = asyncio.Queue()
    pump = asyncio.create_task(_pump(ws, outbox))
    subscription = None
    try:
        subscription = await service.watch_chats(
            lambda chats: outbox.put_nowait(_chats_event(chats)),
            on_error=lambda exc: outbox.put_nowait(_error_event(exc)),
        )
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    except RepositoryError as exc:
        logger.warning("Could not watch chats for %s: %s", user.user_id, exc)
        await _stop(pump)
        await ws.send_json(_error_event(exc))
        await ws.close(code=_CLOSE_INTERNAL, reason=str(exc))
    finally:
        if subscription is not None:
            subscription.close()
        await _stop(pump)

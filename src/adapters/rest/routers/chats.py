"""Protected chat endpoints for clients and dietitians."""

from fastapi import APIRouter, Depends, status

from adapters.rest.dependencies import (
    domain_errors,
    get_chat_service,
    get_dietitian_service,
)
from adapters.rest.schemas import (
    ChatOut,
    InboxOut,
    MarkReadOut,
    MessageOut,
    OpenChatBody,
    OpenChatOut,
    PlanBody,
    SendMessageBody,
    TranscriptOut,
    UnreadCountOut,
)
from application.services.dietitian_chat import partition_inbox

router = APIRouter(prefix="/chats", tags=["chats"])


@router.post("", response_model=OpenChatOut, status_code=status.HTTP_201_CREATED)
async def open_chat(body: OpenChatBody, service=Depends(get_chat_service)):
    """Return the open chat with the counterpart, creating it when none exists."""
    with domain_errors():
        chat_id = await service.open_or_create_chat(body.counterpart_id, body.first_message)
    return OpenChatOut(chat_id=chat_id)


@router.get("", response_model=list[ChatOut])
async def list_chats(service=Depends(get_chat_service)):
    with domain_errors():
        chats = await service.list_chats()
    return [ChatOut.from_entity(c) for c in chats]


@router.get("/inbox", response_model=InboxOut)
async def inbox(service=Depends(get_dietitian_service)):
    """Dietitian inbox split into waiting, active and closed chats."""
    with domain_errors():
        chats = await service.list_chats()
    parts = partition_inbox(chats)
    return InboxOut(
        waiting=[ChatOut.from_entity(c) for c in parts.waiting],
        active=[ChatOut.from_entity(c) for c in parts.active],
        closed=[ChatOut.from_entity(c) for c in parts.closed],
    )


@router.get("/{chat_id}", response_model=ChatOut)
async def get_chat(chat_id: str, service=Depends(get_chat_service)):
    with domain_errors():
        chat = await service.get_chat(chat_id)
    return ChatOut.from_entity(chat)


@router.get("/{chat_id}/messages", response_model=TranscriptOut)
async def get_messages(chat_id: str, service=Depends(get_chat_service)):
    """Chat plus its messages in sentAt order. Does not mark anything read."""
    with domain_errors():
        transcript = await service.get_transcript(chat_id)
    return TranscriptOut(
        chat=ChatOut.from_entity(transcript.chat),
        messages=[MessageOut.from_entity(m) for m in transcript.messages],
    )


@router.post(
    "/{chat_id}/messages",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(chat_id: str, body: SendMessageBody, service=Depends(get_chat_service)):
    with domain_errors():
        message = await service.send_message(chat_id, body.text)
    return MessageOut.from_entity(message)


@router.post("/{chat_id}/read", response_model=MarkReadOut)
async def mark_read(chat_id: str, service=Depends(get_chat_service)):
    """Acknowledge every unread message from the counterpart."""
    with domain_errors():
        transcript = await service.get_transcript(chat_id)
        marked = await service.mark_read(chat_id, transcript.messages)
    return MarkReadOut(marked=marked)


@router.post("/{chat_id}/accept", response_model=ChatOut)
async def accept_chat(chat_id: str, service=Depends(get_dietitian_service)):
    with domain_errors():
        chat = await service.accept_chat(chat_id)
    return ChatOut.from_entity(chat)


@router.post("/{chat_id}/close", response_model=ChatOut)
async def close_chat(chat_id: str, service=Depends(get_dietitian_service)):
    with domain_errors():
        chat = await service.close_chat(chat_id)
    return ChatOut.from_entity(chat)


@router.post(
    "/{chat_id}/plans",
    response_model=MessageOut,
    status_code=status.HTTP_201_CREATED,
)
async def suggest_plan(chat_id: str, body: PlanBody, service=Depends(get_dietitian_service)):
    with domain_errors():
        message = await service.suggest_plan(chat_id, body.model_dump(exclude_none=True))
    return MessageOut.from_entity(message)


@router.post("/{chat_id}/repair", response_model=UnreadCountOut)
async def repair_unread_counts(chat_id: str, service=Depends(get_chat_service)):
    """Recompute both unread counters from the stored messages."""
    with domain_errors():
        counts = await service.repair_unread_counts(chat_id)
    return UnreadCountOut(**counts.to_dict())

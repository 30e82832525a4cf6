"""Client controller: opening chats, sending and acknowledging messages."""
import pytest

from conftest import CLIENT_ID, DIETITIAN_ID, Recorder
from application.context import SessionContext
from domain.exceptions import (
    ChatAccessError,
    ChatNotFoundError,
    EmptyMessageError,
    IllegalTransitionError,
)
from domain.models import ChatStatus, SenderRole, UnreadCount


async def test_opening_a_chat_creates_waiting_chat_and_indexes(factory, client_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi, I need help")

    transcript = await client_service.get_transcript(chat_id)
    assert transcript.chat.status is ChatStatus.WAITING
    assert transcript.chat.unread_count == UnreadCount(client=0, dietitian=1)
    assert transcript.chat.last_message == "Hi, I need help"
    assert [(m.text, m.sender_role) for m in transcript.messages] == [
        ("Hi, I need help", SenderRole.CLIENT),
    ]
    assert transcript.messages[0].read is False
    assert transcript.messages[0].sent_at is not None

    dietitian_index = await factory._index_repo.get(SenderRole.DIETITIAN, DIETITIAN_ID)
    client_index = await factory._index_repo.get(SenderRole.CLIENT, CLIENT_ID)
    assert dietitian_index.chat_ids == [chat_id]
    assert dietitian_index.unread_count == 1
    assert client_index.chat_ids == [chat_id]


async def test_opening_without_text_writes_no_message(client_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID)

    transcript = await client_service.get_transcript(chat_id)
    assert transcript.messages == []
    assert transcript.chat.unread_count == UnreadCount()


async def test_reopening_waiting_chat_reuses_it_without_duplicating(client_service):
    first = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi, I need help")
    second = await client_service.open_or_create_chat(DIETITIAN_ID, "Hello again?")

    assert second == first
    transcript = await client_service.get_transcript(first)
    assert len(transcript.messages) == 1
    assert len(await client_service.list_chats()) == 1


async def test_reopening_active_chat_sends_the_text(client_service, dietitian_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)

    again = await client_service.open_or_create_chat(DIETITIAN_ID, "One more question")

    assert again == chat_id
    transcript = await client_service.get_transcript(chat_id)
    assert transcript.messages[-1].text == "One more question"
    assert transcript.chat.last_message == "One more question"


async def test_closed_chat_is_not_reused(client_service, dietitian_service):
    old = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.close_chat(old)

    new = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi again")

    assert new != old
    assert (await client_service.get_chat(new)).status is ChatStatus.WAITING


async def test_send_while_waiting_is_rejected_without_writes(client_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")

    with pytest.raises(IllegalTransitionError):
        await client_service.send_message(chat_id, "Anyone there?")

    transcript = await client_service.get_transcript(chat_id)
    assert len(transcript.messages) == 1
    assert transcript.chat.unread_count.dietitian == 1


@pytest.mark.parametrize("text", ["", "   "])
async def test_empty_text_is_rejected(client_service, dietitian_service, text):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)

    with pytest.raises(EmptyMessageError):
        await client_service.send_message(chat_id, text)
    with pytest.raises(EmptyMessageError):
        await client_service.open_or_create_chat(DIETITIAN_ID, text)


async def test_send_on_active_updates_chat_metadata(client_service, dietitian_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)
    before = await client_service.get_chat(chat_id)

    message = await client_service.send_message(chat_id, "  Is rice ok?  ")

    after = await client_service.get_chat(chat_id)
    assert message.text == "Is rice ok?"
    assert message.id
    assert after.last_message == "Is rice ok?"
    assert after.unread_count.dietitian == before.unread_count.dietitian + 1
    assert after.updated_at > before.updated_at


async def test_unknown_and_foreign_chats(factory, client_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    stranger = factory.create_client_chat_service(
        SessionContext(user_id="client-2", role=SenderRole.CLIENT),
    )

    with pytest.raises(ChatNotFoundError):
        await client_service.get_chat("nope")
    with pytest.raises(ChatAccessError):
        await stranger.get_chat(chat_id)
    with pytest.raises(ChatAccessError):
        await stranger.send_message(chat_id, "hi")


async def test_marking_three_dietitian_messages_read(factory, client_service, dietitian_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)
    await dietitian_service.send_message(chat_id, "What do you eat for breakfast?")
    await dietitian_service.send_message(chat_id, "And for lunch?")
    await factory._chat_repo.set_unread(chat_id, UnreadCount(client=0, dietitian=1))
    messages = (await client_service.get_transcript(chat_id)).messages

    flipped = await client_service.mark_dietitian_messages_read(chat_id, messages)

    assert flipped == 3
    transcript = await client_service.get_transcript(chat_id)
    by_role = {m.text: m.read for m in transcript.messages}
    assert by_role["Hi"] is False
    assert all(m.read for m in transcript.messages if m.sender_role is SenderRole.DIETITIAN)
    assert transcript.chat.unread_count == UnreadCount(client=0, dietitian=1)


async def test_marking_read_twice_writes_nothing(client_service, dietitian_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)
    await client_service.mark_read(chat_id, (await client_service.get_transcript(chat_id)).messages)
    before = await client_service.get_chat(chat_id)

    again = await client_service.mark_read(chat_id, (await client_service.get_transcript(chat_id)).messages)

    assert again == 0
    assert (await client_service.get_chat(chat_id)) == before


async def test_watch_chats_lists_newest_first(client_service, dietitian_service):
    recorder = Recorder()
    first = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    second = await client_service.open_or_create_chat("diet-2", "Hello")

    handle = await client_service.watch_chats(recorder)
    chats = await recorder.until(lambda chats: len(chats) == 2)
    assert [c.id for c in chats] == [second, first]

    await dietitian_service.accept_chat(first)
    chats = await recorder.until(lambda chats: chats[0].id == first)
    assert chats[0].status is ChatStatus.ACTIVE
    handle.close()

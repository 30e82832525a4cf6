"""Live chat views: ordering, reconciliation and handle lifetime."""
from datetime import datetime, timedelta, timezone

import pytest

from conftest import DIETITIAN_ID, Recorder, settle
from application.subscriptions import ChatSubscription, ChatView
from domain.entities import Chat, Message
from domain.exceptions import StoreUnavailableError
from domain.models import ChatStatus, SenderRole, UnreadCount

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _dietitian_msg(mid, seconds):
    return Message(
        id=mid,
        chat_id="c1",
        text=mid,
        sender_id=DIETITIAN_ID,
        sender_role=SenderRole.DIETITIAN,
        sent_at=T0 + timedelta(seconds=seconds),
    )


async def _active_chat(client_service, dietitian_service):
    chat_id = await client_service.open_or_create_chat(DIETITIAN_ID, "Hi")
    await dietitian_service.accept_chat(chat_id)
    return chat_id


async def test_client_view_marks_dietitian_messages_read(client_service, dietitian_service):
    chat_id = await _active_chat(client_service, dietitian_service)
    await dietitian_service.send_message(chat_id, "First question")
    chats, batches = Recorder(), Recorder()

    handle = await client_service.subscribe(chat_id, chats, batches)
    messages = await batches.until(
        lambda ms: len(ms) == 3 and all(m.read for m in ms if m.sender_role is SenderRole.DIETITIAN),
    )
    await chats.until(lambda chat: chat.unread_count.client == 0)

    assert [m.text for m in messages][0] == "Hi"
    assert [m.sent_at for m in messages] == sorted(m.sent_at for m in messages)
    transcript = await client_service.get_transcript(chat_id)
    assert transcript.chat.unread_count == UnreadCount(client=0, dietitian=1)
    assert next(m for m in transcript.messages if m.text == "Hi").read is False
    handle.close()


async def test_new_messages_are_read_while_viewing(client_service, dietitian_service):
    chat_id = await _active_chat(client_service, dietitian_service)
    chats, batches = Recorder(), Recorder()

    async with await client_service.subscribe(chat_id, chats, batches):
        await batches.until(lambda ms: len(ms) == 2 and ms[-1].read)
        await dietitian_service.send_message(chat_id, "Still there?")
        messages = await batches.until(lambda ms: len(ms) == 3 and ms[-1].read)

    assert messages[-1].text == "Still there?"
    assert (await client_service.get_chat(chat_id)).unread_count.client == 0


async def test_closed_handle_stops_callbacks(client_service, dietitian_service):
    chat_id = await _active_chat(client_service, dietitian_service)
    chats, batches = Recorder(), Recorder()
    handle = await client_service.subscribe(chat_id, chats, batches)
    await batches.until()
    await settle()

    handle.close()
    seen_chats, seen_batches = len(chats.items), len(batches.items)
    await dietitian_service.send_message(chat_id, "After close")
    await settle()

    assert handle.closed
    assert len(chats.items) == seen_chats
    assert len(batches.items) == seen_batches
    assert (await client_service.get_chat(chat_id)).unread_count.client == 1


async def test_view_discards_older_chat_snapshot():
    view = ChatView("c1")
    newer = Chat(id="c1", status=ChatStatus.ACTIVE, updated_at=T0 + timedelta(seconds=5))
    older = Chat(id="c1", status=ChatStatus.ACTIVE, updated_at=T0, last_message="old")

    assert view.apply_chat(newer)
    assert not view.apply_chat(older)
    assert view.chat is newer


async def test_chat_update_callback_skips_stale_snapshots():
    updates = Recorder()
    sub = ChatSubscription("c1", SenderRole.CLIENT, updates, Recorder())
    newer = Chat(id="c1", status=ChatStatus.CLOSED, updated_at=T0 + timedelta(seconds=5))
    older = Chat(id="c1", status=ChatStatus.ACTIVE, updated_at=T0)

    await sub._handle_chat(newer)
    await sub._handle_chat(older)

    assert updates.items == [newer]


async def test_out_of_order_batches_are_merged_and_sorted():
    batches = Recorder()
    sub = ChatSubscription("c1", SenderRole.CLIENT, Recorder(), batches)

    await sub._handle_messages([_dietitian_msg("m3", 3), _dietitian_msg("m1", 1)])
    await sub._handle_messages([_dietitian_msg("m2", 2)])

    assert [m.id for m in batches.last] == ["m1", "m2", "m3"]


async def test_failed_reconciliation_reports_and_retries():
    errors = Recorder()
    attempts = []

    async def flaky(receipt):
        attempts.append(receipt.message_ids)
        if len(attempts) == 1:
            raise StoreUnavailableError("disk full")

    sub = ChatSubscription(
        "c1", SenderRole.CLIENT, Recorder(), Recorder(), reconcile=flaky, on_error=errors,
    )
    batch = [_dietitian_msg("m1", 1)]

    await sub._handle_messages(batch)
    await sub._handle_messages(batch)

    assert len(errors.items) == 1
    assert isinstance(errors.items[0], StoreUnavailableError)
    assert attempts == [("m1",), ("m1",)]
    assert sub.view.messages[0].read is True


async def test_reconciliation_result_dropped_after_close():
    sub = None

    async def close_midway(receipt):
        sub.close()

    sub = ChatSubscription("c1", SenderRole.CLIENT, Recorder(), Recorder(), reconcile=close_midway)

    await sub._handle_messages([_dietitian_msg("m1", 1)])

    assert sub.closed
    assert sub.view.messages[0].read is False


async def test_reconciliation_never_runs_twice_for_pending_ids():
    calls = []

    async def record(receipt):
        calls.append(receipt.message_ids)
        await sub._handle_messages([_dietitian_msg("m1", 1)])

    sub = ChatSubscription("c1", SenderRole.CLIENT, Recorder(), Recorder(), reconcile=record)

    await sub._handle_messages([_dietitian_msg("m1", 1)])

    assert calls == [("m1",)]


async def _unavailable(*args, **kwargs):
    raise StoreUnavailableError("network down")


async def test_message_refresh_failure_reaches_error_callback(
    store, client_service, dietitian_service, monkeypatch,
):
    chat_id = await _active_chat(client_service, dietitian_service)
    chats, batches, errors = Recorder(), Recorder(), Recorder()
    handle = await client_service.subscribe(chat_id, chats, batches, on_error=errors)
    await batches.until(lambda ms: len(ms) == 2 and ms[-1].read)
    await settle()

    monkeypatch.setattr(store, "query_documents", _unavailable)
    await dietitian_service.send_message(chat_id, "Still there?")

    error = await errors.until()
    assert isinstance(error, StoreUnavailableError)
    assert len(batches.last) == 2

    monkeypatch.undo()
    await dietitian_service.send_message(chat_id, "Hello again")
    messages = await batches.until(lambda ms: len(ms) == 4)
    assert [m.text for m in messages[-2:]] == ["Still there?", "Hello again"]
    handle.close()


async def test_roster_refresh_failure_reaches_error_callback(store, client_service, monkeypatch):
    monkeypatch.setattr(store, "query_documents", _unavailable)
    chats, errors = Recorder(), Recorder()

    handle = await client_service.watch_chats(chats, on_error=errors)

    assert isinstance(await errors.until(), StoreUnavailableError)
    assert chats.items == []
    handle.close()


async def test_refresh_failure_after_close_is_not_reported():
    errors = Recorder()
    sub = ChatSubscription("c1", SenderRole.CLIENT, Recorder(), Recorder(), on_error=errors)
    sub.close()

    await sub._handle_error(StoreUnavailableError("network down"))

    assert errors.items == []


class _Handle:
    def __init__(self):
        self.active = True

    def close(self):
        self.active = False


class _ChatRepo:
    def __init__(self):
        self.handle = _Handle()

    async def subscribe(self, chat_id, on_change, on_error=None):
        return self.handle


class _UnavailableMessageRepo:
    async def subscribe(self, chat_id, on_change, on_error=None):
        raise StoreUnavailableError("network down")


async def test_failed_open_releases_chat_listener():
    chat_repo = _ChatRepo()
    sub = ChatSubscription("c1", SenderRole.CLIENT, Recorder(), Recorder())

    with pytest.raises(StoreUnavailableError):
        await sub.open(chat_repo, _UnavailableMessageRepo())

    assert not chat_repo.handle.active

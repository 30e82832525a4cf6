"""Read reconciliation, message ordering and snapshot staleness."""
import random
from datetime import datetime, timedelta, timezone

from domain.entities import Chat, Message
from domain.models import ChatStatus, SenderRole
from domain.reconciliation import (
    count_unread,
    is_stale,
    merge_chats,
    merge_messages,
    plan_read_receipt,
    sort_messages,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _msg(mid, seconds, role=SenderRole.DIETITIAN, read=False):
    return Message(
        id=mid,
        chat_id="c1",
        text=f"text {mid}",
        sender_id="diet-1" if role is SenderRole.DIETITIAN else "client-1",
        sender_role=role,
        sent_at=T0 + timedelta(seconds=seconds) if seconds is not None else None,
        read=read,
    )


def _chat(status=ChatStatus.ACTIVE, minutes=0, chat_id="c1"):
    return Chat(
        id=chat_id,
        client_id="client-1",
        dietitian_id="diet-1",
        status=status,
        updated_at=T0 + timedelta(minutes=minutes),
    )


def test_display_order_ignores_delivery_order():
    messages = [_msg(f"m{i}", i) for i in range(10)]
    shuffled = messages[:]
    random.Random(7).shuffle(shuffled)

    ordered = sort_messages(shuffled)

    assert [m.id for m in ordered] == [m.id for m in messages]


def test_ties_broken_by_id_and_pending_timestamps_last():
    ordered = sort_messages([_msg("b", 1), _msg("z", None), _msg("a", 1)])
    assert [m.id for m in ordered] == ["a", "b", "z"]


def test_merge_unions_by_id_and_keeps_read_flag():
    current = [_msg("m1", 1, read=True), _msg("m2", 2)]
    incoming = [_msg("m3", 0), _msg("m1", 1, read=False)]

    merged = merge_messages(current, incoming)

    assert [m.id for m in merged] == ["m3", "m1", "m2"]
    assert next(m for m in merged if m.id == "m1").read is True


def test_merge_keeps_known_timestamp():
    merged = merge_messages([_msg("m1", 5)], [_msg("m1", None)])
    assert merged[0].sent_at == T0 + timedelta(seconds=5)


def test_three_unread_dietitian_messages_are_flipped_for_client():
    batch = [_msg("m1", 1), _msg("m2", 2), _msg("m3", 3), _msg("own", 4, role=SenderRole.CLIENT)]

    receipt = plan_read_receipt("c1", batch, SenderRole.CLIENT)

    assert receipt.message_ids == ("m1", "m2", "m3")
    assert receipt.reset_counter is True
    assert receipt.write_count == 4


def test_second_pass_over_read_batch_is_empty():
    batch = [_msg("m1", 1, read=True), _msg("m2", 2, read=True)]

    receipt = plan_read_receipt("c1", batch, SenderRole.CLIENT)

    assert receipt.is_empty
    assert receipt.write_count == 0


def test_viewer_own_messages_never_flipped():
    batch = [_msg("m1", 1, role=SenderRole.CLIENT), _msg("m2", 2, role=SenderRole.CLIENT)]
    assert plan_read_receipt("c1", batch, SenderRole.CLIENT).is_empty


def test_pending_ids_are_skipped():
    batch = [_msg("m1", 1), _msg("m2", 2)]
    receipt = plan_read_receipt("c1", batch, SenderRole.CLIENT, pending={"m1"})
    assert receipt.message_ids == ("m2",)


def test_unsaved_messages_are_skipped():
    assert plan_read_receipt("c1", [_msg("", 1)], SenderRole.CLIENT).is_empty


def test_count_unread_per_recipient():
    batch = [
        _msg("m1", 1),
        _msg("m2", 2, read=True),
        _msg("m3", 3, role=SenderRole.CLIENT),
        _msg("m4", 4),
    ]
    assert count_unread(batch) == {SenderRole.CLIENT: 2, SenderRole.DIETITIAN: 1}


def test_older_chat_snapshot_is_stale():
    assert is_stale(_chat(minutes=5), _chat(minutes=4))
    assert not is_stale(_chat(minutes=5), _chat(minutes=5))
    assert not is_stale(_chat(minutes=5), _chat(minutes=6))
    assert not is_stale(None, _chat())


def test_status_never_moves_backwards():
    current = _chat(ChatStatus.CLOSED, minutes=1)
    assert is_stale(current, _chat(ChatStatus.ACTIVE, minutes=2))


def test_merge_chats_is_last_writer_wins_per_chat():
    current = [_chat(ChatStatus.ACTIVE, minutes=10, chat_id="a"), _chat(minutes=1, chat_id="b")]
    incoming = [_chat(ChatStatus.WAITING, minutes=2, chat_id="a"), _chat(minutes=20, chat_id="b")]

    merged = merge_chats(current, incoming)

    assert [c.id for c in merged] == ["b", "a"]
    assert merged[1].status is ChatStatus.ACTIVE

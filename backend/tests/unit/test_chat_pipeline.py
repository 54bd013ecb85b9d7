from __future__ import annotations

import asyncio

import pytest

from safechat import container
from safechat.domain.chat.exceptions import (
    Forbidden,
    InvalidContent,
    MessageNotFound,
    RateLimited,
    ValidationError,
)
from safechat.domain.chat.models import FlaggedBy, RoomStatus
from safechat.infra.rate_limit import FixedWindowLimiter


@pytest.mark.asyncio
async def test_send_updates_room_aggregates(pipeline, rooms, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "hello bob")
    updated = await rooms.get_room(room.room_id)
    assert updated.message_count == 1
    assert updated.last_message_id == message.message_id
    assert updated.unread_for("bob") == 1
    assert updated.unread_for("alice") == 0


@pytest.mark.asyncio
async def test_concurrent_sends_are_all_counted(pipeline, rooms, room) -> None:
    sends = [pipeline.send_message(room.room_id, "alice", "text", f"message {i}") for i in range(25)]
    sent = await asyncio.gather(*sends)
    updated = await rooms.get_room(room.room_id)
    assert len({m.message_id for m in sent}) == 25
    assert updated.message_count == 25
    assert updated.unread_for("bob") == 25


@pytest.mark.asyncio
async def test_mark_read_clears_reader_only(pipeline, room) -> None:
    await pipeline.send_message(room.room_id, "alice", "text", "one")
    await pipeline.send_message(room.room_id, "bob", "text", "two")
    after = await pipeline.mark_read(room.room_id, "bob")
    assert after.unread_for("bob") == 0
    assert after.unread_for("alice") == 1
    views = await pipeline.list_messages(room.room_id, "bob")
    from_alice = next(v for v in views if v.sender_id == "alice")
    assert from_alice.read_at is not None


@pytest.mark.asyncio
async def test_flagged_message_is_stored_and_delivered(pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "whatsapp me on 9876543210")
    assert message.is_flagged
    assert message.flagged_by == FlaggedBy.SYSTEM
    assert message.flagged_reason == "contains_phone,contains_suspicious_keywords"
    flagged = await pipeline.list_flagged()
    assert [m.message_id for m in flagged] == [message.message_id]
    views = await pipeline.list_messages(room.room_id, "bob")
    assert views[0].content == "whatsapp me on 9876543210"


@pytest.mark.asyncio
async def test_content_validation(pipeline, room) -> None:
    with pytest.raises(InvalidContent) as empty:
        await pipeline.send_message(room.room_id, "alice", "text", "   ")
    assert empty.value.reason == "empty_content"
    with pytest.raises(InvalidContent) as too_long:
        await pipeline.send_message(room.room_id, "alice", "text", "x" * 5001)
    assert too_long.value.reason == "content_too_long"
    with pytest.raises(ValidationError):
        await pipeline.send_message(room.room_id, "alice", "sticker", "hi")


@pytest.mark.asyncio
async def test_non_participant_cannot_send(pipeline, room) -> None:
    with pytest.raises(Forbidden) as excinfo:
        await pipeline.send_message(room.room_id, "mallory", "text", "hi")
    assert excinfo.value.reason == "not_participant"


@pytest.mark.asyncio
async def test_closed_room_rejects_messages(pipeline, rooms, room) -> None:
    await rooms.close_room(room.room_id, "done", "alice")
    with pytest.raises(Forbidden) as excinfo:
        await pipeline.send_message(room.room_id, "bob", "text", "still there?")
    assert excinfo.value.reason == "room_closed"


@pytest.mark.asyncio
async def test_block_then_unblock_restores_messaging(pipeline, blocks, room) -> None:
    block = await blocks.block("alice", "bob")
    for sender in ("alice", "bob"):
        with pytest.raises(Forbidden) as excinfo:
            await pipeline.send_message(room.room_id, sender, "text", "hello")
        assert excinfo.value.reason == "blocked"

    await blocks.unblock(block.block_id, "alice")
    message = await pipeline.send_message(room.room_id, "bob", "text", "hello again")
    assert message.sender_id == "bob"


@pytest.mark.asyncio
async def test_reply_must_target_same_room(pipeline, chat_service, room) -> None:
    other, _ = await chat_service.initiate_chat("alice", "carol", "general")
    elsewhere = await pipeline.send_message(other.room_id, "carol", "text", "hi alice")
    with pytest.raises(MessageNotFound):
        await pipeline.send_message(room.room_id, "alice", "text", "re", reply_to=elsewhere.message_id)
    first = await pipeline.send_message(room.room_id, "bob", "text", "question")
    reply = await pipeline.send_message(room.room_id, "alice", "text", "answer", reply_to=first.message_id)
    assert reply.reply_to_id == first.message_id


@pytest.mark.asyncio
async def test_retract_hides_content_from_both_but_keeps_it(pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "oops")
    with pytest.raises(Forbidden):
        await pipeline.retract_message(message.message_id, "bob")
    retracted = await pipeline.retract_message(message.message_id, "alice")
    assert retracted.is_retracted
    assert retracted.content == "oops"
    for viewer in ("alice", "bob"):
        [view] = await pipeline.list_messages(room.room_id, viewer)
        assert view.retracted
        assert view.content is None


@pytest.mark.asyncio
async def test_sender_delete_hides_locally(pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "for my eyes")
    with pytest.raises(Forbidden):
        await pipeline.delete_message(message.message_id, "bob", by_moderator=False)
    hidden = await pipeline.delete_message(message.message_id, "alice", by_moderator=False)
    assert hidden.is_hidden
    assert not hidden.is_deleted
    assert await pipeline.list_messages(room.room_id, "alice") == []
    [view] = await pipeline.list_messages(room.room_id, "bob")
    assert view.content == "for my eyes"


@pytest.mark.asyncio
async def test_moderator_delete_and_restore(pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "rude words")
    removed = await pipeline.delete_message(message.message_id, "mod-1", by_moderator=True, reason="abuse")
    assert removed.is_deleted
    assert removed.deleted_reason == "abuse"
    [view] = await pipeline.list_messages(room.room_id, "bob")
    assert view.removed
    assert view.content is None

    restored = await pipeline.restore_message(message.message_id, "mod-1")
    assert not restored.is_deleted
    [view] = await pipeline.list_messages(room.room_id, "bob")
    assert view.content == "rude words"


@pytest.mark.asyncio
async def test_edit_rescans_content(pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "text", "hello")
    edited = await pipeline.edit_message(message.message_id, "alice", "send money to rahul@ybl")
    assert edited.edited_at is not None
    assert edited.is_flagged
    assert edited.flagged_reason == "edited_content"

    await pipeline.retract_message(message.message_id, "alice")
    with pytest.raises(Forbidden):
        await pipeline.edit_message(message.message_id, "alice", "fixed")


@pytest.mark.asyncio
async def test_send_rate_limit(room) -> None:
    container.configure(rate_limiter=FixedWindowLimiter("chat_send", limit=2))
    pipeline = container.get_message_pipeline()
    await pipeline.send_message(room.room_id, "alice", "text", "one")
    await pipeline.send_message(room.room_id, "alice", "text", "two")
    with pytest.raises(RateLimited) as excinfo:
        await pipeline.send_message(room.room_id, "alice", "text", "three")
    assert excinfo.value.reason == "send_rate_limited"
    reply = await pipeline.send_message(room.room_id, "bob", "text", "slow down")
    assert reply.sender_id == "bob"


@pytest.mark.asyncio
async def test_messages_allowed_in_muted_room(pipeline, rooms, room) -> None:
    await rooms.transition_status(room.room_id, "alice", RoomStatus.MUTED)
    message = await pipeline.send_message(room.room_id, "bob", "text", "are you there")
    assert message.room_id == room.room_id

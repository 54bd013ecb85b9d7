import pytest

from safechat.domain.chat.exceptions import Forbidden, InvalidTransition, SelfChat
from safechat.domain.chat.models import RoomStatus


@pytest.mark.asyncio
async def test_initiate_returns_existing_room_for_either_side(chat_service):
    room, created = await chat_service.initiate_chat("bob", "alice", "business", "biz-1")
    assert created
    assert (room.user_id_a, room.user_id_b) == ("alice", "bob")

    again, created_again = await chat_service.initiate_chat("alice", "bob", "business", "biz-1")
    assert not created_again
    assert again.room_id == room.room_id

    other, created_other = await chat_service.initiate_chat("alice", "bob", "business", "biz-2")
    assert created_other
    assert other.room_id != room.room_id


@pytest.mark.asyncio
async def test_initiate_rejected_when_recipient_blocked_initiator(chat_service, blocks):
    await blocks.block("bob", "alice", "no contact")
    with pytest.raises(Forbidden):
        await chat_service.initiate_chat("alice", "bob", "general")
    room, created = await chat_service.initiate_chat("bob", "alice", "general")
    assert created
    assert room.status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_initiate_with_self_is_rejected(chat_service):
    with pytest.raises(SelfChat):
        await chat_service.initiate_chat("alice", "alice", "general")


@pytest.mark.asyncio
async def test_unmute_requires_muted_room(chat_service, room):
    with pytest.raises(InvalidTransition):
        await chat_service.unmute_room(room.room_id, "alice")
    muted = await chat_service.mute_room(room.room_id, "alice", "busy")
    assert muted.muted_by == "alice"
    active = await chat_service.unmute_room(room.room_id, "alice")
    assert active.status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_block_in_room_keeps_reported_status(chat_service, reports, blocks, room):
    await reports.file_report(room.room_id, "alice", "bob", "harassment")
    block, current = await chat_service.block_in_room(room.room_id, "alice")
    assert block.blocked_id == "bob"
    assert current.status == RoomStatus.REPORTED
    assert not await blocks.can_message("bob", "alice")


@pytest.mark.asyncio
async def test_unblock_while_reported_restores_active_room(chat_service, reports, rooms, pipeline, room):
    await chat_service.block_in_room(room.room_id, "alice", "spam")
    report = await reports.file_report(room.room_id, "alice", "bob", "spam")
    _, current = await chat_service.unblock_in_room(room.room_id, "alice")
    assert current.status == RoomStatus.REPORTED
    assert current.status_before_report == RoomStatus.ACTIVE
    assert current.blocked_by is None

    await reports.dismiss(report.report_id, "mod-1")
    restored = await rooms.get_room(room.room_id)
    assert restored.status == RoomStatus.ACTIVE
    assert restored.blocked_by is None
    sent = await pipeline.send_message(room.room_id, "bob", "text", "sorry about that")
    assert sent.sender_id == "bob"


@pytest.mark.asyncio
async def test_unblock_by_other_side_keeps_pending_block(chat_service, reports, rooms, room):
    await chat_service.block_in_room(room.room_id, "alice")
    await chat_service.block_in_room(room.room_id, "bob")
    await reports.file_report(room.room_id, "alice", "bob", "spam")
    _, current = await chat_service.unblock_in_room(room.room_id, "bob")
    assert current.status_before_report == RoomStatus.BLOCKED
    assert current.blocked_by == "alice"

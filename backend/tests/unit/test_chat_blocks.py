from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from safechat.domain.chat.exceptions import (
    AlreadyBlocked,
    AlreadyInactive,
    Forbidden,
    SelfBlock,
    ValidationError,
)
from safechat.domain.chat.models import BlockType, RoomStatus, utcnow


@pytest.mark.asyncio
async def test_block_is_directional_but_stops_both_sides(blocks) -> None:
    await blocks.block("alice", "bob", "spam")
    assert await blocks.is_blocked("alice", "bob")
    assert not await blocks.is_blocked("bob", "alice")
    assert not await blocks.can_message("alice", "bob")
    assert not await blocks.can_message("bob", "alice")
    assert await blocks.can_message("alice", "carol")


@pytest.mark.asyncio
async def test_duplicate_active_block_conflicts(blocks) -> None:
    await blocks.block("alice", "bob")
    with pytest.raises(AlreadyBlocked):
        await blocks.block("alice", "bob")
    reverse = await blocks.block("bob", "alice")
    assert reverse.blocker_id == "bob"


@pytest.mark.asyncio
async def test_self_block_rejected(blocks) -> None:
    with pytest.raises(SelfBlock):
        await blocks.block("alice", "alice")


@pytest.mark.asyncio
async def test_temporary_block_needs_future_expiry(blocks) -> None:
    with pytest.raises(ValidationError) as missing:
        await blocks.block("alice", "bob", permanent=False)
    assert missing.value.reason == "expiry_required"
    with pytest.raises(ValidationError) as past:
        await blocks.block("alice", "bob", permanent=False, expires_at=utcnow() - timedelta(minutes=1))
    assert past.value.reason == "expiry_in_past"


@pytest.mark.asyncio
async def test_only_blocker_may_unblock(blocks) -> None:
    block = await blocks.block("alice", "bob")
    with pytest.raises(Forbidden):
        await blocks.unblock(block.block_id, "bob")
    lifted = await blocks.unblock(block.block_id, "alice")
    assert not lifted.is_active
    assert lifted.unblocked_at is not None
    with pytest.raises(AlreadyInactive):
        await blocks.unblock(block.block_id, "alice")
    assert await blocks.can_message("bob", "alice")


@pytest.mark.asyncio
async def test_moderator_unblock(blocks) -> None:
    block = await blocks.block("alice", "bob")
    lifted = await blocks.unblock(block.block_id, "mod-1", moderator=True)
    assert not lifted.is_active


@pytest.mark.asyncio
async def test_expired_block_swept_once(blocks) -> None:
    await blocks.block("alice", "bob", permanent=False, expires_at=utcnow() + timedelta(hours=1))
    await blocks.block("alice", "carol")
    later = utcnow() + timedelta(hours=2)

    assert await blocks.sweep_expired(later) == 1
    assert await blocks.sweep_expired(later) == 0
    assert await blocks.can_message("alice", "bob", later)
    assert not await blocks.can_message("alice", "carol", later)


@pytest.mark.asyncio
async def test_expired_block_ignored_before_sweep(blocks) -> None:
    await blocks.block("alice", "bob", permanent=False, expires_at=utcnow() + timedelta(minutes=5))
    assert not await blocks.can_message("bob", "alice")
    assert await blocks.can_message("bob", "alice", utcnow() + timedelta(minutes=10))


@pytest.mark.asyncio
async def test_platform_suspension_blocks_all_messaging(blocks) -> None:
    block = await blocks.suspend("bob", "mod-1", "abuse", minutes=60)
    assert block.block_type == BlockType.ADMIN
    assert not block.is_permanent
    assert await blocks.is_suspended("bob")
    assert not await blocks.can_message("bob", "carol")
    assert not await blocks.can_message("carol", "bob")

    ban = await blocks.suspend("bob", "mod-1", "repeat abuse")
    assert ban.is_permanent
    assert ban.block_id != block.block_id

    assert await blocks.lift_platform_blocks("bob", "mod-1") == 1
    assert await blocks.lift_platform_blocks("bob", "mod-1") == 0
    assert await blocks.can_message("bob", "carol")


@pytest.mark.asyncio
async def test_block_in_room_moves_room_to_blocked(chat_service, room) -> None:
    block, blocked_room = await chat_service.block_in_room(room.room_id, "alice", "rude")
    assert block.blocked_id == "bob"
    assert blocked_room.status == RoomStatus.BLOCKED
    assert blocked_room.blocked_by == "alice"

    _, reopened = await chat_service.unblock_in_room(room.room_id, "alice")
    assert reopened.status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_concurrent_blocks_yield_one_active_block(blocks) -> None:
    results = await asyncio.gather(
        *(blocks.block("alice", "bob", "spam") for _ in range(5)),
        return_exceptions=True,
    )
    created = [result for result in results if not isinstance(result, BaseException)]
    assert len(created) == 1
    assert sum(isinstance(result, AlreadyBlocked) for result in results) == 4
    assert [block.block_id for block in await blocks.list_blocks("alice")] == [created[0].block_id]

from __future__ import annotations

import asyncio

import pytest

from safechat.domain.chat.exceptions import (
    DuplicateRoom,
    Forbidden,
    InvalidTransition,
    RoomNotFound,
    SelfChat,
)
from safechat.domain.chat.models import RoomStatus
from safechat.domain.chat.rooms import can_transition


def test_transition_table() -> None:
    assert can_transition(RoomStatus.ACTIVE, RoomStatus.MUTED)
    assert can_transition(RoomStatus.BLOCKED, RoomStatus.ACTIVE)
    assert can_transition(RoomStatus.REPORTED, RoomStatus.CLOSED)
    assert not can_transition(RoomStatus.REPORTED, RoomStatus.ACTIVE)
    assert not any(can_transition(RoomStatus.CLOSED, target) for target in RoomStatus)


@pytest.mark.asyncio
async def test_create_room_orders_participants(rooms) -> None:
    room = await rooms.create_room("zoe", "adam", "job", "job-1")
    assert (room.user_id_a, room.user_id_b) == ("adam", "zoe")
    assert room.status == RoomStatus.ACTIVE
    assert room.message_count == 0


@pytest.mark.asyncio
async def test_duplicate_room_rejected_in_either_order(rooms) -> None:
    await rooms.create_room("alice", "bob", "job", "job-1")
    with pytest.raises(DuplicateRoom):
        await rooms.create_room("bob", "alice", "job", "job-1")
    other = await rooms.create_room("bob", "alice", "job", "job-2")
    assert other.context_id == "job-2"


@pytest.mark.asyncio
async def test_self_chat_rejected(rooms) -> None:
    with pytest.raises(SelfChat):
        await rooms.create_room("alice", "alice", "general")


@pytest.mark.asyncio
async def test_invalid_transition_reports_states(rooms, room) -> None:
    await rooms.close_room(room.room_id, "done", "alice")
    with pytest.raises(InvalidTransition) as excinfo:
        await rooms.transition_status(room.room_id, "alice", RoomStatus.ACTIVE)
    assert excinfo.value.reason == "invalid_transition:closed->active"


@pytest.mark.asyncio
async def test_only_muter_can_unmute(rooms, room) -> None:
    muted = await rooms.transition_status(room.room_id, "alice", RoomStatus.MUTED, "busy")
    assert muted.muted_by == "alice"
    with pytest.raises(Forbidden):
        await rooms.transition_status(room.room_id, "bob", RoomStatus.ACTIVE)
    active = await rooms.transition_status(room.room_id, "alice", RoomStatus.ACTIVE)
    assert active.status == RoomStatus.ACTIVE
    assert active.muted_by is None


@pytest.mark.asyncio
async def test_moderator_can_unmute(rooms, room) -> None:
    await rooms.transition_status(room.room_id, "alice", RoomStatus.MUTED)
    active = await rooms.transition_status(room.room_id, "mod-1", RoomStatus.ACTIVE, moderator=True)
    assert active.status == RoomStatus.ACTIVE


@pytest.mark.asyncio
async def test_outsider_cannot_transition(rooms, room) -> None:
    with pytest.raises(Forbidden):
        await rooms.transition_status(room.room_id, "mallory", RoomStatus.MUTED)


@pytest.mark.asyncio
async def test_close_is_idempotent(rooms, room) -> None:
    first = await rooms.close_room(room.room_id, "context expired")
    second = await rooms.close_room(room.room_id, "again", "alice")
    assert first.status == second.status == RoomStatus.CLOSED
    assert second.close_reason == "context expired"
    assert second.closed_by == "system"


@pytest.mark.asyncio
async def test_report_restores_prior_status(rooms, room) -> None:
    await rooms.transition_status(room.room_id, "alice", RoomStatus.MUTED)
    reported = await rooms.mark_reported(room.room_id, "bob", "spam")
    assert reported.status == RoomStatus.REPORTED
    assert reported.status_before_report == RoomStatus.MUTED
    again = await rooms.mark_reported(room.room_id, "alice", "scam")
    assert again.reported_by == "bob"
    restored = await rooms.restore_after_report(room.room_id)
    assert restored.status == RoomStatus.MUTED
    assert restored.muted_by == "alice"


@pytest.mark.asyncio
async def test_deleted_room_is_hidden_and_frees_the_pair(rooms, room) -> None:
    await rooms.delete_room(room.room_id, "alice")
    with pytest.raises(RoomNotFound):
        await rooms.get_room(room.room_id)
    recreated = await rooms.create_room("alice", "bob", "general")
    assert recreated.room_id != room.room_id


@pytest.mark.asyncio
async def test_inbox_lists_only_participant_rooms(rooms, room) -> None:
    await rooms.create_room("carol", "dave", "help", "h-1")
    inbox = await rooms.list_rooms_for_user("alice")
    assert [r.room_id for r in inbox] == [room.room_id]


@pytest.mark.asyncio
async def test_concurrent_create_yields_one_room(rooms) -> None:
    results = await asyncio.gather(
        *(rooms.create_room("alice", "bob", "job", "job-7") for _ in range(5)),
        return_exceptions=True,
    )
    created = [result for result in results if not isinstance(result, BaseException)]
    assert len(created) == 1
    assert sum(isinstance(result, DuplicateRoom) for result in results) == 4
    found = await rooms.find_room("bob", "alice", "job", "job-7")
    assert found.room_id == created[0].room_id

from __future__ import annotations

from datetime import timedelta

import pytest

from safechat import container
from safechat.domain.chat.exceptions import (
    AlreadyApproved,
    Conflict,
    DependencyUnavailable,
    Forbidden,
    NotFound,
    NotRequired,
)
from safechat.domain.chat.models import ContextType, RoomStatus, utcnow


class StubDirectory:
    def __init__(self, *, known=(), inactive=(), broken: bool = False) -> None:
        self.known = set(known)
        self.inactive = set(inactive)
        self.broken = broken

    async def context_exists(self, context_type: ContextType, context_id: str) -> bool:
        if self.broken:
            raise ConnectionError("directory down")
        return context_id in self.known

    async def context_active(self, context_type: ContextType, context_id: str) -> bool:
        return context_id not in self.inactive


@pytest.mark.asyncio
async def test_initiate_links_context(chat_service, links) -> None:
    room, created = await chat_service.initiate_chat("alice", "bob", "job", "job-42")
    assert created
    link = await links.get_active_link(room.room_id)
    assert link is not None
    assert link.context_id == "job-42"
    assert link.initiated_from == "alice"

    again, created_again = await chat_service.initiate_chat("bob", "alice", "job", "job-42")
    assert not created_again
    assert again.room_id == room.room_id


@pytest.mark.asyncio
async def test_approval_gates_sending(chat_service, links, pipeline) -> None:
    room, _ = await chat_service.initiate_chat("alice", "bob", "marriage", "m-1", requires_approval=True)
    link = await links.get_active_link(room.room_id)
    with pytest.raises(Forbidden) as excinfo:
        await pipeline.send_message(room.room_id, "alice", "text", "hello")
    assert excinfo.value.reason == "awaiting_approval"

    with pytest.raises(Forbidden):
        await links.approve(link.link_id, "mallory")
    approved = await links.approve(link.link_id, "bob")
    assert approved.approved_by == "bob"
    with pytest.raises(AlreadyApproved):
        await links.approve(link.link_id, "bob")

    message = await pipeline.send_message(room.room_id, "alice", "text", "hello")
    assert message.room_id == room.room_id


@pytest.mark.asyncio
async def test_approve_without_requirement(chat_service, links) -> None:
    room, _ = await chat_service.initiate_chat("alice", "bob", "help", "h-1")
    link = await links.get_active_link(room.room_id)
    with pytest.raises(NotRequired):
        await links.approve(link.link_id, "alice")


@pytest.mark.asyncio
async def test_expiry_sweep_closes_rooms_once(chat_service, links, rooms) -> None:
    expiry = utcnow() + timedelta(hours=1)
    room, _ = await chat_service.initiate_chat("alice", "bob", "business", "b-1", expires_at=expiry)
    keep, _ = await chat_service.initiate_chat("alice", "carol", "business", "b-2")
    later = expiry + timedelta(minutes=1)

    assert await links.sweep_expired(later) == [room.room_id]
    assert await links.sweep_expired(later) == []

    closed = await rooms.get_room(room.room_id)
    assert closed.status == RoomStatus.CLOSED
    assert closed.close_reason == "context expired"
    assert (await rooms.get_room(keep.room_id)).status == RoomStatus.ACTIVE
    assert await links.get_active_link(room.room_id) is None


@pytest.mark.asyncio
async def test_revoked_context_closes_linked_rooms(chat_service, links, rooms) -> None:
    first, _ = await chat_service.initiate_chat("alice", "bob", "job", "job-9")
    second, _ = await chat_service.initiate_chat("carol", "bob", "job", "job-9")
    closed = await links.revoke_context("job", "job-9", "mod-1")
    assert sorted(closed) == sorted([first.room_id, second.room_id])
    assert (await rooms.get_room(first.room_id)).closed_by == "mod-1"
    assert await links.revoke_context("job", "job-9", "mod-1") == []


@pytest.mark.asyncio
async def test_unknown_or_inactive_context_rejected(rooms) -> None:
    container.configure(directory=StubDirectory(known={"job-1", "job-2"}, inactive={"job-2"}))
    resolver = container.get_context_links()
    room = await rooms.create_room("alice", "bob", "job", "job-x")
    with pytest.raises(NotFound):
        await resolver.link_context(room.room_id, "job", "job-x")
    with pytest.raises(Conflict) as excinfo:
        await resolver.link_context(room.room_id, "job", "job-2")
    assert excinfo.value.reason == "context_inactive"
    link = await resolver.link_context(room.room_id, "job", "job-1")
    assert link.is_active


@pytest.mark.asyncio
async def test_directory_failure_is_dependency_error(rooms) -> None:
    container.configure(directory=StubDirectory(broken=True))
    resolver = container.get_context_links()
    room = await rooms.create_room("alice", "bob", "job", "job-1")
    with pytest.raises(DependencyUnavailable):
        await resolver.link_context(room.room_id, "job", "job-1")


@pytest.mark.asyncio
async def test_failed_link_leaves_no_room() -> None:
    container.configure(directory=StubDirectory(known=set()))
    service = container.get_chat_service()
    with pytest.raises(NotFound):
        await service.initiate_chat("alice", "bob", "job", "missing")
    assert await container.get_room_store().find_room("alice", "bob", "job", "missing") is None

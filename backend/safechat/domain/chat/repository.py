"""Storage contracts and in-memory implementations for chat rooms and blocks.

Repositories own atomicity: every method is one indivisible unit. Mutations
take a callback that is applied to a private copy under the room/entity
serialization boundary; if the callback raises, nothing is written.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, MutableMapping, Optional, Protocol, Sequence

from safechat.domain.chat.exceptions import (
    AlreadyBlocked,
    AttachmentNotFound,
    DuplicateRoom,
    Forbidden,
    LinkAlreadyActive,
    LinkNotFound,
    MessageNotFound,
    RoomNotFound,
)
from safechat.domain.chat.models import (
    CanonicalPair,
    ChatAttachment,
    ChatContextLink,
    ChatMessage,
    ChatRoom,
    ContextType,
    RoomStatus,
    UserBlock,
)

RoomMutation = Callable[[ChatRoom], None]
MessageMutation = Callable[[ChatMessage], None]
LinkMutation = Callable[[ChatContextLink], None]
AttachmentMutation = Callable[[ChatAttachment], None]


def room_key(room: ChatRoom) -> tuple[str, str, str, str]:
    return (room.user_id_a, room.user_id_b, room.context_type.value, room.context_id or "")


class ChatRepository(Protocol):
    """Persistence for a room and the subtree it owns (messages, links, attachments)."""

    async def insert_room(self, room: ChatRoom) -> ChatRoom:
        """Insert a room; raise DuplicateRoom if a live room holds the same pair/context."""

    async def get_room(self, room_id: str) -> Optional[ChatRoom]:
        """Fetch a room including soft-deleted ones."""

    async def find_room(
        self, pair: CanonicalPair, context_type: ContextType, context_id: Optional[str]
    ) -> Optional[ChatRoom]:
        """Return the live room for a pair and context."""

    async def update_room(self, room_id: str, mutate: RoomMutation) -> ChatRoom:
        """Apply ``mutate`` to the room under its lock and persist the result."""

    async def list_rooms_for_user(self, user_id: str, *, limit: int, offset: int) -> Sequence[ChatRoom]:
        """Live rooms of a participant, most recent activity first."""

    async def list_rooms(self, *, status: Optional[RoomStatus], limit: int, offset: int) -> Sequence[ChatRoom]:
        """Live rooms filtered by status, most recently updated first."""

    async def count_rooms(self, *, status: Optional[RoomStatus] = None) -> int:
        """Count live rooms, optionally by status."""

    async def soft_delete_room(self, room_id: str, actor_id: str, at: datetime) -> ChatRoom:
        """Soft-delete a room together with its messages and attachments."""

    async def append_message(self, message: ChatMessage) -> tuple[ChatMessage, ChatRoom]:
        """Insert a message and bump the room aggregates in one unit."""

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        """Fetch a message by id."""

    async def update_message(self, message_id: str, mutate: MessageMutation) -> ChatMessage:
        """Apply ``mutate`` to the message and persist the result."""

    async def list_messages(self, room_id: str, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        """Room timeline, newest first."""

    async def mark_read(self, room_id: str, reader_id: str, at: datetime) -> ChatRoom:
        """Reset the reader's unread counter and stamp read_at on their unread messages."""

    async def list_flagged(self, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        """Flagged messages that are still visible, newest first."""

    async def count_messages(self, *, flagged_only: bool = False) -> int:
        """Count messages in live rooms."""

    async def insert_link(self, link: ChatContextLink) -> ChatContextLink:
        """Insert a link; raise LinkAlreadyActive if the room already has an active one."""

    async def get_link(self, link_id: str) -> Optional[ChatContextLink]:
        """Fetch a link by id."""

    async def get_active_link(self, room_id: str) -> Optional[ChatContextLink]:
        """Return the active link of a room."""

    async def update_link(self, link_id: str, mutate: LinkMutation) -> ChatContextLink:
        """Apply ``mutate`` to the link and persist the result."""

    async def deactivate_link(self, link_id: str, at: datetime, reason: str) -> bool:
        """Deactivate only if still active; return whether this call did it."""

    async def list_expired_links(self, now: datetime, limit: int) -> Sequence[ChatContextLink]:
        """Active links whose expiry has passed."""

    async def list_active_links_for_context(
        self, context_type: ContextType, context_id: str
    ) -> Sequence[ChatContextLink]:
        """Active links pointing at a context."""

    async def insert_attachment(self, attachment: ChatAttachment) -> ChatAttachment:
        """Insert an attachment."""

    async def get_attachment(self, attachment_id: str) -> Optional[ChatAttachment]:
        """Fetch an attachment by id."""

    async def update_attachment(self, attachment_id: str, mutate: AttachmentMutation) -> ChatAttachment:
        """Apply ``mutate`` to the attachment and persist the result."""

    async def list_expired_attachments(self, now: datetime, limit: int) -> Sequence[ChatAttachment]:
        """Live attachments past their expiry."""

    async def expire_attachment(self, attachment_id: str, at: datetime) -> bool:
        """Soft-delete only if still live; return whether this call did it."""


class BlockRepository(Protocol):
    """Persistence for directed user blocks."""

    async def insert_block(self, block: UserBlock) -> UserBlock:
        """Insert a block; raise AlreadyBlocked if the ordered pair has an active one."""

    async def get_block(self, block_id: str) -> Optional[UserBlock]:
        """Fetch a block by id."""

    async def find_active(self, blocker_id: str, blocked_id: str) -> Optional[UserBlock]:
        """Return the active block for an ordered pair, expired or not."""

    async def deactivate(self, block_id: str, actor_id: str, at: datetime) -> Optional[UserBlock]:
        """Deactivate only if still active; None when it already was inactive."""

    async def list_active(self, blocker_id: str) -> Sequence[UserBlock]:
        """Active blocks created by ``blocker_id``, newest first."""

    async def list_expired(self, now: datetime, limit: int) -> Sequence[UserBlock]:
        """Active temporary blocks past their expiry."""


def _page(items: list, limit: int, offset: int) -> list:
    return items[offset : offset + limit]


@dataclass
class InMemoryChatRepository(ChatRepository):
    """Dict-backed store serialised by a single asyncio lock."""

    rooms: MutableMapping[str, ChatRoom] = field(default_factory=dict)
    messages: MutableMapping[str, ChatMessage] = field(default_factory=dict)
    timelines: MutableMapping[str, list[str]] = field(default_factory=dict)
    links: MutableMapping[str, ChatContextLink] = field(default_factory=dict)
    attachments: MutableMapping[str, ChatAttachment] = field(default_factory=dict)
    live_keys: MutableMapping[tuple[str, str, str, str], str] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def insert_room(self, room: ChatRoom) -> ChatRoom:
        async with self._lock:
            key = room_key(room)
            if key in self.live_keys:
                raise DuplicateRoom()
            self.rooms[room.room_id] = copy.deepcopy(room)
            self.live_keys[key] = room.room_id
            self.timelines[room.room_id] = []
            return copy.deepcopy(room)

    async def get_room(self, room_id: str) -> Optional[ChatRoom]:
        room = self.rooms.get(room_id)
        return copy.deepcopy(room) if room else None

    async def find_room(
        self, pair: CanonicalPair, context_type: ContextType, context_id: Optional[str]
    ) -> Optional[ChatRoom]:
        room_id = self.live_keys.get((pair.user_a, pair.user_b, context_type.value, context_id or ""))
        return await self.get_room(room_id) if room_id else None

    async def update_room(self, room_id: str, mutate: RoomMutation) -> ChatRoom:
        async with self._lock:
            current = self.rooms.get(room_id)
            if current is None:
                raise RoomNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.rooms[room_id] = draft
            return copy.deepcopy(draft)

    async def list_rooms_for_user(self, user_id: str, *, limit: int, offset: int) -> Sequence[ChatRoom]:
        rooms = [r for r in self.rooms.values() if not r.is_deleted and r.is_participant(user_id)]
        rooms.sort(key=lambda r: (r.last_message_at is not None, r.last_message_at or r.created_at), reverse=True)
        return [copy.deepcopy(r) for r in _page(rooms, limit, offset)]

    async def list_rooms(self, *, status: Optional[RoomStatus], limit: int, offset: int) -> Sequence[ChatRoom]:
        rooms = [r for r in self.rooms.values() if not r.is_deleted and (status is None or r.status == status)]
        rooms.sort(key=lambda r: r.updated_at, reverse=True)
        return [copy.deepcopy(r) for r in _page(rooms, limit, offset)]

    async def count_rooms(self, *, status: Optional[RoomStatus] = None) -> int:
        return sum(1 for r in self.rooms.values() if not r.is_deleted and (status is None or r.status == status))

    async def soft_delete_room(self, room_id: str, actor_id: str, at: datetime) -> ChatRoom:
        async with self._lock:
            room = self.rooms.get(room_id)
            if room is None or room.is_deleted:
                raise RoomNotFound()
            room.is_deleted = True
            room.deleted_by = actor_id
            room.deleted_at = at
            room.updated_at = at
            self.live_keys.pop(room_key(room), None)
            for message_id in self.timelines.get(room_id, []):
                message = self.messages[message_id]
                if not message.is_deleted:
                    message.is_deleted = True
                    message.deleted_by = actor_id
                    message.deleted_at = at
                    message.deleted_reason = "room_deleted"
            for attachment in self.attachments.values():
                if attachment.room_id == room_id and not attachment.is_deleted:
                    attachment.is_deleted = True
                    attachment.deleted_at = at
                    attachment.updated_at = at
            return copy.deepcopy(room)

    async def append_message(self, message: ChatMessage) -> tuple[ChatMessage, ChatRoom]:
        async with self._lock:
            room = self.rooms.get(message.room_id)
            if room is None or room.is_deleted:
                raise RoomNotFound()
            if room.status == RoomStatus.CLOSED:
                raise Forbidden("room_closed")
            self.messages[message.message_id] = copy.deepcopy(message)
            self.timelines.setdefault(room.room_id, []).append(message.message_id)
            room.message_count += 1
            if message.sender_id == room.user_id_a:
                room.unread_count_b += 1
            else:
                room.unread_count_a += 1
            room.last_message_id = message.message_id
            room.last_message_at = message.sent_at
            room.updated_at = message.sent_at
            return copy.deepcopy(message), copy.deepcopy(room)

    async def get_message(self, message_id: str) -> Optional[ChatMessage]:
        message = self.messages.get(message_id)
        return copy.deepcopy(message) if message else None

    async def update_message(self, message_id: str, mutate: MessageMutation) -> ChatMessage:
        async with self._lock:
            current = self.messages.get(message_id)
            if current is None:
                raise MessageNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.messages[message_id] = draft
            return copy.deepcopy(draft)

    async def list_messages(self, room_id: str, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        ids = list(reversed(self.timelines.get(room_id, [])))
        return [copy.deepcopy(self.messages[mid]) for mid in _page(ids, limit, offset)]

    async def mark_read(self, room_id: str, reader_id: str, at: datetime) -> ChatRoom:
        async with self._lock:
            room = self.rooms.get(room_id)
            if room is None or room.is_deleted:
                raise RoomNotFound()
            if reader_id == room.user_id_a:
                room.unread_count_a = 0
            elif reader_id == room.user_id_b:
                room.unread_count_b = 0
            for message_id in self.timelines.get(room_id, []):
                message = self.messages[message_id]
                if message.sender_id != reader_id and message.read_at is None:
                    message.read_at = at
            room.updated_at = at
            return copy.deepcopy(room)

    def _visible_flagged(self) -> list[ChatMessage]:
        live_rooms = {rid for rid, room in self.rooms.items() if not room.is_deleted}
        return [
            m for m in self.messages.values() if m.is_flagged and not m.is_deleted and m.room_id in live_rooms
        ]

    async def list_flagged(self, *, limit: int, offset: int) -> Sequence[ChatMessage]:
        flagged = sorted(self._visible_flagged(), key=lambda m: (m.sent_at, m.message_id), reverse=True)
        return [copy.deepcopy(m) for m in _page(flagged, limit, offset)]

    async def count_messages(self, *, flagged_only: bool = False) -> int:
        if flagged_only:
            return len(self._visible_flagged())
        live_rooms = {rid for rid, room in self.rooms.items() if not room.is_deleted}
        return sum(1 for m in self.messages.values() if m.room_id in live_rooms)

    async def insert_link(self, link: ChatContextLink) -> ChatContextLink:
        async with self._lock:
            if any(l.room_id == link.room_id and l.is_active for l in self.links.values()):
                raise LinkAlreadyActive()
            self.links[link.link_id] = copy.deepcopy(link)
            return copy.deepcopy(link)

    async def get_link(self, link_id: str) -> Optional[ChatContextLink]:
        link = self.links.get(link_id)
        return copy.deepcopy(link) if link else None

    async def get_active_link(self, room_id: str) -> Optional[ChatContextLink]:
        for link in self.links.values():
            if link.room_id == room_id and link.is_active:
                return copy.deepcopy(link)
        return None

    async def update_link(self, link_id: str, mutate: LinkMutation) -> ChatContextLink:
        async with self._lock:
            current = self.links.get(link_id)
            if current is None:
                raise LinkNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.links[link_id] = draft
            return copy.deepcopy(draft)

    async def deactivate_link(self, link_id: str, at: datetime, reason: str) -> bool:
        async with self._lock:
            link = self.links.get(link_id)
            if link is None or not link.is_active:
                return False
            link.is_active = False
            link.deactivated_at = at
            link.deactivation_reason = reason
            link.updated_at = at
            return True

    async def list_expired_links(self, now: datetime, limit: int) -> Sequence[ChatContextLink]:
        expired = [
            l for l in self.links.values() if l.is_active and l.expires_at is not None and l.expires_at <= now
        ]
        expired.sort(key=lambda l: l.expires_at)
        return [copy.deepcopy(l) for l in expired[:limit]]

    async def list_active_links_for_context(
        self, context_type: ContextType, context_id: str
    ) -> Sequence[ChatContextLink]:
        return [
            copy.deepcopy(l)
            for l in self.links.values()
            if l.is_active and l.context_type == context_type and l.context_id == context_id
        ]

    async def insert_attachment(self, attachment: ChatAttachment) -> ChatAttachment:
        async with self._lock:
            self.attachments[attachment.attachment_id] = copy.deepcopy(attachment)
            return copy.deepcopy(attachment)

    async def get_attachment(self, attachment_id: str) -> Optional[ChatAttachment]:
        attachment = self.attachments.get(attachment_id)
        return copy.deepcopy(attachment) if attachment else None

    async def update_attachment(self, attachment_id: str, mutate: AttachmentMutation) -> ChatAttachment:
        async with self._lock:
            current = self.attachments.get(attachment_id)
            if current is None:
                raise AttachmentNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.attachments[attachment_id] = draft
            return copy.deepcopy(draft)

    async def list_expired_attachments(self, now: datetime, limit: int) -> Sequence[ChatAttachment]:
        expired = [
            a
            for a in self.attachments.values()
            if not a.is_deleted and a.expiry_at is not None and a.expiry_at <= now
        ]
        expired.sort(key=lambda a: a.expiry_at)
        return [copy.deepcopy(a) for a in expired[:limit]]

    async def expire_attachment(self, attachment_id: str, at: datetime) -> bool:
        async with self._lock:
            attachment = self.attachments.get(attachment_id)
            if attachment is None or attachment.is_deleted:
                return False
            attachment.is_deleted = True
            attachment.download_allowed = False
            attachment.deleted_at = at
            attachment.updated_at = at
            return True


@dataclass
class InMemoryBlockRepository(BlockRepository):
    blocks: MutableMapping[str, UserBlock] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def insert_block(self, block: UserBlock) -> UserBlock:
        async with self._lock:
            for existing in self.blocks.values():
                if (
                    existing.is_active
                    and existing.blocker_id == block.blocker_id
                    and existing.blocked_id == block.blocked_id
                ):
                    raise AlreadyBlocked()
            self.blocks[block.block_id] = copy.deepcopy(block)
            return copy.deepcopy(block)

    async def get_block(self, block_id: str) -> Optional[UserBlock]:
        block = self.blocks.get(block_id)
        return copy.deepcopy(block) if block else None

    async def find_active(self, blocker_id: str, blocked_id: str) -> Optional[UserBlock]:
        for block in self.blocks.values():
            if block.is_active and block.blocker_id == blocker_id and block.blocked_id == blocked_id:
                return copy.deepcopy(block)
        return None

    async def deactivate(self, block_id: str, actor_id: str, at: datetime) -> Optional[UserBlock]:
        async with self._lock:
            block = self.blocks.get(block_id)
            if block is None or not block.is_active:
                return None
            block.is_active = False
            block.unblocked_at = at
            block.unblocked_by = actor_id
            block.updated_at = at
            return copy.deepcopy(block)

    async def list_active(self, blocker_id: str) -> Sequence[UserBlock]:
        active = [b for b in self.blocks.values() if b.is_active and b.blocker_id == blocker_id]
        active.sort(key=lambda b: b.created_at, reverse=True)
        return [copy.deepcopy(b) for b in active]

    async def list_expired(self, now: datetime, limit: int) -> Sequence[UserBlock]:
        expired = [b for b in self.blocks.values() if b.is_active and b.is_expired(now)]
        expired.sort(key=lambda b: b.expires_at)
        return [copy.deepcopy(b) for b in expired[:limit]]


__all__ = [
    "AttachmentMutation",
    "BlockRepository",
    "ChatRepository",
    "InMemoryBlockRepository",
    "InMemoryChatRepository",
    "LinkMutation",
    "MessageMutation",
    "RoomMutation",
    "room_key",
]

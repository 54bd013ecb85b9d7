"""Room-level orchestration that spans the room store, block registry and context links."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.context_links import ContextLinkResolver
from safechat.domain.chat.exceptions import DuplicateRoom, Forbidden, InvalidTransition, RoomNotFound
from safechat.domain.chat.models import ChatRoom, ContextType, RoomStatus, UserBlock
from safechat.domain.chat.rooms import ChatRoomStore, can_transition

logger = logging.getLogger(__name__)


class ChatService:
	"""Combines registry writes with the matching room transitions."""

	def __init__(self, rooms: ChatRoomStore, blocks: BlockRegistry, links: ContextLinkResolver) -> None:
		self._rooms = rooms
		self._blocks = blocks
		self._links = links

	async def initiate_chat(
		self,
		initiator_id: str,
		recipient_id: str,
		context_type: str | ContextType,
		context_id: Optional[str] = None,
		*,
		requires_approval: bool = False,
		expires_at: Optional[datetime] = None,
	) -> tuple[ChatRoom, bool]:
		"""Return the pair's room for this context, creating and linking it when missing.

		The boolean is True when the room was created by this call.
		"""
		if initiator_id != recipient_id and not await self._blocks.can_message(initiator_id, recipient_id):
			raise Forbidden("blocked")
		existing = await self._rooms.find_room(initiator_id, recipient_id, context_type, context_id)
		if existing is not None:
			return existing, False
		try:
			room = await self._rooms.create_room(initiator_id, recipient_id, context_type, context_id)
		except DuplicateRoom:
			existing = await self._rooms.find_room(initiator_id, recipient_id, context_type, context_id)
			if existing is None:
				raise
			return existing, False
		if context_id:
			try:
				await self._links.link_context(
					room.room_id,
					room.context_type,
					context_id,
					initiated_from=initiator_id,
					requires_approval=requires_approval,
					expires_at=expires_at,
				)
			except Exception:
				# Leave no unlinked room behind when the context check fails
				await self._rooms.delete_room(room.room_id, initiator_id)
				raise
		return room, True

	async def block_in_room(
		self, room_id: str, actor_id: str, reason: Optional[str] = None
	) -> tuple[UserBlock, ChatRoom]:
		room = await self._rooms.get_room_for(room_id, actor_id)
		block = await self._blocks.block(actor_id, room.counterpart(actor_id), reason)
		if can_transition(room.status, RoomStatus.BLOCKED):
			try:
				room = await self._rooms.transition_status(room_id, actor_id, RoomStatus.BLOCKED, reason)
			except InvalidTransition:
				room = await self._rooms.get_room(room_id)
		return block, room

	async def unblock_in_room(self, room_id: str, actor_id: str) -> tuple[UserBlock, ChatRoom]:
		room = await self._rooms.get_room_for(room_id, actor_id)
		block = await self._blocks.unblock_user(actor_id, room.counterpart(actor_id))
		if room.status == RoomStatus.BLOCKED and room.blocked_by == actor_id:
			try:
				room = await self._rooms.transition_status(room_id, actor_id, RoomStatus.ACTIVE)
			except (InvalidTransition, RoomNotFound):
				room = await self._rooms.get_room(room_id)
		elif room.status == RoomStatus.REPORTED and room.status_before_report == RoomStatus.BLOCKED:
			room = await self._rooms.release_block_while_reported(room_id, actor_id)
		return block, room

	async def mute_room(self, room_id: str, actor_id: str, reason: Optional[str] = None) -> ChatRoom:
		return await self._rooms.transition_status(room_id, actor_id, RoomStatus.MUTED, reason)

	async def unmute_room(self, room_id: str, actor_id: str) -> ChatRoom:
		room = await self._rooms.get_room_for(room_id, actor_id)
		if room.status != RoomStatus.MUTED:
			raise InvalidTransition("room_not_muted")
		return await self._rooms.transition_status(room_id, actor_id, RoomStatus.ACTIVE)


__all__ = ["ChatService"]

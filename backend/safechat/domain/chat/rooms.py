"""Room lifecycle: creation, status transitions and read/unread aggregates."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Optional, Sequence
from uuid import uuid4

from safechat.domain.chat.exceptions import (
	Forbidden,
	InvalidTransition,
	RoomNotFound,
	SelfChat,
	ValidationError,
)
from safechat.domain.chat.models import (
	SYSTEM_ACTOR,
	CanonicalPair,
	ChatMessage,
	ChatRoom,
	ContextType,
	RoomStatus,
	utcnow,
)
from safechat.domain.chat.repository import ChatRepository
from safechat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)

# Leaving REPORTED only happens through restore_after_report.
ALLOWED_TRANSITIONS: Mapping[RoomStatus, frozenset[RoomStatus]] = {
	RoomStatus.ACTIVE: frozenset({RoomStatus.MUTED, RoomStatus.BLOCKED, RoomStatus.REPORTED, RoomStatus.CLOSED}),
	RoomStatus.MUTED: frozenset({RoomStatus.ACTIVE, RoomStatus.BLOCKED, RoomStatus.REPORTED, RoomStatus.CLOSED}),
	RoomStatus.BLOCKED: frozenset({RoomStatus.ACTIVE, RoomStatus.REPORTED, RoomStatus.CLOSED}),
	RoomStatus.REPORTED: frozenset({RoomStatus.CLOSED}),
	RoomStatus.CLOSED: frozenset(),
}


def parse_context_type(value: str | ContextType) -> ContextType:
	try:
		return ContextType(value)
	except ValueError:
		raise ValidationError("invalid_context_type") from None


def can_transition(current: RoomStatus, target: RoomStatus) -> bool:
	return target in ALLOWED_TRANSITIONS[current]


def _clear_fields_for(room: ChatRoom, status: RoomStatus) -> None:
	if status == RoomStatus.MUTED:
		room.muted_by = None
		room.muted_at = None
		room.mute_reason = None
	elif status == RoomStatus.BLOCKED:
		room.blocked_by = None
		room.blocked_at = None
		room.block_reason = None
	elif status == RoomStatus.REPORTED:
		room.reported_by = None
		room.reported_at = None
		room.report_reason = None
		room.status_before_report = None


def _apply_status(room: ChatRoom, target: RoomStatus, actor_id: str, reason: Optional[str], now: datetime) -> None:
	previous = room.status
	if target == RoomStatus.REPORTED:
		room.status_before_report = previous
		room.reported_by = actor_id
		room.reported_at = now
		room.report_reason = reason
	else:
		if previous == RoomStatus.REPORTED and room.status_before_report:
			_clear_fields_for(room, room.status_before_report)
		_clear_fields_for(room, previous)
	if target == RoomStatus.MUTED:
		room.muted_by = actor_id
		room.muted_at = now
		room.mute_reason = reason
	elif target == RoomStatus.BLOCKED:
		room.blocked_by = actor_id
		room.blocked_at = now
		room.block_reason = reason
	elif target == RoomStatus.CLOSED:
		room.closed_by = actor_id
		room.closed_at = now
		room.close_reason = reason
	room.status = target
	room.updated_at = now


class ChatRoomStore:
	"""Owns room rows and serialises every aggregate write through the repository."""

	def __init__(self, repository: ChatRepository) -> None:
		self._repo = repository

	async def create_room(
		self,
		user_a: str,
		user_b: str,
		context_type: str | ContextType,
		context_id: Optional[str] = None,
	) -> ChatRoom:
		if not user_a or not user_b:
			raise ValidationError("participants_required")
		if user_a == user_b:
			raise SelfChat()
		ctx = parse_context_type(context_type)
		pair = CanonicalPair.from_participants(user_a, user_b)
		now = utcnow()
		room = ChatRoom(
			room_id=str(uuid4()),
			user_id_a=pair.user_a,
			user_id_b=pair.user_b,
			context_type=ctx,
			context_id=context_id or None,
			created_at=now,
			updated_at=now,
		)
		created = await self._repo.insert_room(room)
		obs_metrics.inc_room_created(ctx.value)
		logger.info(
			"chat_room_created",
			extra={"room_id": created.room_id, "context_type": ctx.value, "initiator": user_a},
		)
		return created

	async def get_room(self, room_id: str) -> ChatRoom:
		room = await self._repo.get_room(room_id)
		if room is None or room.is_deleted:
			raise RoomNotFound()
		return room

	async def get_room_for(self, room_id: str, user_id: str) -> ChatRoom:
		room = await self.get_room(room_id)
		if not room.is_participant(user_id):
			raise Forbidden("not_participant")
		return room

	async def find_room(
		self, user_a: str, user_b: str, context_type: str | ContextType, context_id: Optional[str] = None
	) -> Optional[ChatRoom]:
		pair = CanonicalPair.from_participants(user_a, user_b)
		return await self._repo.find_room(pair, parse_context_type(context_type), context_id or None)

	async def transition_status(
		self,
		room_id: str,
		actor_id: str,
		target: str | RoomStatus,
		reason: Optional[str] = None,
		*,
		moderator: bool = False,
	) -> ChatRoom:
		"""Move a room through the status state machine.

		Participants, moderators and the system actor may transition a room; only
		the participant who muted a room (or a moderator/system) may unmute it.
		"""
		try:
			desired = RoomStatus(target)
		except ValueError:
			raise ValidationError("invalid_status") from None
		privileged = moderator or actor_id == SYSTEM_ACTOR
		now = utcnow()
		previous: dict[str, RoomStatus] = {}

		def _mutate(room: ChatRoom) -> None:
			if room.is_deleted:
				raise RoomNotFound()
			if not privileged and not room.is_participant(actor_id):
				raise Forbidden("not_participant")
			if not can_transition(room.status, desired):
				raise InvalidTransition(f"invalid_transition:{room.status.value}->{desired.value}")
			if room.status == RoomStatus.MUTED and desired == RoomStatus.ACTIVE:
				if not privileged and room.muted_by != actor_id:
					raise Forbidden("not_mute_owner")
			if room.status == RoomStatus.BLOCKED and desired == RoomStatus.ACTIVE:
				if not privileged and room.blocked_by != actor_id:
					raise Forbidden("not_block_owner")
			previous["status"] = room.status
			_apply_status(room, desired, actor_id, reason, now)

		room = await self._repo.update_room(room_id, _mutate)
		obs_metrics.inc_room_transition(previous["status"].value, desired.value)
		logger.info(
			"chat_room_transition",
			extra={
				"room_id": room_id,
				"actor_id": actor_id,
				"from_status": previous["status"].value,
				"to_status": desired.value,
			},
		)
		return room

	async def mark_reported(self, room_id: str, reporter_id: str, reason: Optional[str]) -> ChatRoom:
		"""Enter REPORTED unless the room is closed or already reported."""
		room = await self.get_room(room_id)
		if room.status in (RoomStatus.CLOSED, RoomStatus.REPORTED):
			return room
		try:
			return await self.transition_status(room_id, reporter_id, RoomStatus.REPORTED, reason)
		except InvalidTransition:
			# A concurrent report or closure won the race
			return await self.get_room(room_id)

	async def restore_after_report(self, room_id: str) -> ChatRoom:
		"""Return a REPORTED room to the status it held before the first report."""
		now = utcnow()
		restored: dict[str, RoomStatus] = {}

		def _mutate(room: ChatRoom) -> None:
			if room.status != RoomStatus.REPORTED:
				return
			target = room.status_before_report or RoomStatus.ACTIVE
			_clear_fields_for(room, RoomStatus.REPORTED)
			room.status = target
			room.updated_at = now
			restored["status"] = target

		room = await self._repo.update_room(room_id, _mutate)
		if restored:
			obs_metrics.inc_room_transition(RoomStatus.REPORTED.value, restored["status"].value)
			logger.info(
				"chat_room_restored",
				extra={"room_id": room_id, "to_status": restored["status"].value},
			)
		return room

	async def reinstate_report(self, room_id: str, snapshot: ChatRoom) -> ChatRoom:
		"""Undo ``restore_after_report`` using the REPORTED ``snapshot`` taken before it."""
		restored_to = snapshot.status_before_report or RoomStatus.ACTIVE
		reinstated: dict[str, bool] = {}

		def _mutate(room: ChatRoom) -> None:
			# Leave the room alone if anything moved it after the restore
			if room.status != restored_to:
				return
			room.status = RoomStatus.REPORTED
			room.status_before_report = snapshot.status_before_report
			room.reported_by = snapshot.reported_by
			room.reported_at = snapshot.reported_at
			room.report_reason = snapshot.report_reason
			room.updated_at = utcnow()
			reinstated["done"] = True

		room = await self._repo.update_room(room_id, _mutate)
		if reinstated:
			logger.warning("chat_room_report_reinstated", extra={"room_id": room_id, "from_status": restored_to.value})
		return room

	async def release_block_while_reported(self, room_id: str, actor_id: str) -> ChatRoom:
		"""Drop the block a REPORTED room would return to once its reports close."""
		released: dict[str, bool] = {}

		def _mutate(room: ChatRoom) -> None:
			if room.status != RoomStatus.REPORTED or room.status_before_report != RoomStatus.BLOCKED:
				return
			if room.blocked_by != actor_id:
				return
			_clear_fields_for(room, RoomStatus.BLOCKED)
			room.status_before_report = RoomStatus.ACTIVE
			room.updated_at = utcnow()
			released["done"] = True

		room = await self._repo.update_room(room_id, _mutate)
		if released:
			logger.info("chat_room_block_released", extra={"room_id": room_id, "actor_id": actor_id})
		return room

	async def close_room(self, room_id: str, reason: Optional[str], actor_id: str = SYSTEM_ACTOR) -> ChatRoom:
		"""Close a room; closing an already-closed room is a no-op."""
		now = utcnow()
		changed: dict[str, RoomStatus] = {}

		def _mutate(room: ChatRoom) -> None:
			if room.status == RoomStatus.CLOSED:
				return
			changed["from"] = room.status
			_apply_status(room, RoomStatus.CLOSED, actor_id, reason, now)

		room = await self._repo.update_room(room_id, _mutate)
		if changed:
			obs_metrics.inc_room_transition(changed["from"].value, RoomStatus.CLOSED.value)
			logger.info("chat_room_closed", extra={"room_id": room_id, "actor_id": actor_id, "reason": reason})
		return room

	async def record_message(self, message: ChatMessage) -> tuple[ChatMessage, ChatRoom]:
		"""Persist ``message`` and bump message/unread/last-message aggregates atomically."""
		return await self._repo.append_message(message)

	async def mark_read(self, room_id: str, reader_id: str) -> ChatRoom:
		await self.get_room_for(room_id, reader_id)
		return await self._repo.mark_read(room_id, reader_id, utcnow())

	async def delete_room(self, room_id: str, actor_id: str, *, moderator: bool = False) -> ChatRoom:
		room = await self.get_room(room_id)
		if not moderator and not room.is_participant(actor_id):
			raise Forbidden("not_participant")
		deleted = await self._repo.soft_delete_room(room_id, actor_id, utcnow())
		logger.info("chat_room_deleted", extra={"room_id": room_id, "actor_id": actor_id})
		return deleted

	async def list_rooms_for_user(self, user_id: str, *, limit: int = 50, offset: int = 0) -> Sequence[ChatRoom]:
		return await self._repo.list_rooms_for_user(user_id, limit=limit, offset=offset)

	async def list_rooms(
		self, *, status: Optional[RoomStatus] = None, limit: int = 50, offset: int = 0
	) -> Sequence[ChatRoom]:
		return await self._repo.list_rooms(status=status, limit=limit, offset=offset)

	async def count_rooms(self, *, status: Optional[RoomStatus] = None) -> int:
		return await self._repo.count_rooms(status=status)


__all__ = ["ALLOWED_TRANSITIONS", "ChatRoomStore", "can_transition", "parse_context_type"]

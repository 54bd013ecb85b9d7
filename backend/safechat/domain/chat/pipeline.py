"""Outbound message submission and sender/moderator message lifecycle."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence

import ulid

from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.exceptions import (
	Forbidden,
	InvalidContent,
	MessageNotFound,
	RateLimited,
	ValidationError,
)
from safechat.domain.chat.models import (
	ChatMessage,
	ChatRoom,
	FlaggedBy,
	MessageType,
	MessageView,
	RoomStatus,
	utcnow,
)
from safechat.domain.chat.repository import ChatRepository
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.domain.chat.safety import ContentSafetyScanner
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)

SendLimiter = Callable[[str], Awaitable[bool]]

MODERATION_REMOVALS = ("hide", "delete")


def parse_message_type(value: str | MessageType) -> MessageType:
	try:
		return MessageType(value)
	except ValueError:
		raise ValidationError("invalid_message_type") from None


class MessagePipeline:
	"""Runs submissions through room, block and safety checks before persisting.

	Flagging is advisory: a flagged message is stored and delivered, and is
	surfaced to moderators through ``list_flagged``.
	"""

	def __init__(
		self,
		rooms: ChatRoomStore,
		blocks: BlockRegistry,
		scanner: ContentSafetyScanner,
		repository: ChatRepository,
		*,
		rate_limiter: Optional[SendLimiter] = None,
		max_length: Optional[int] = None,
	) -> None:
		self._rooms = rooms
		self._blocks = blocks
		self._scanner = scanner
		self._repo = repository
		self._rate_limiter = rate_limiter
		self._max_length = max_length or settings.message_max_length

	def _validate_content(self, content: str) -> str:
		if content is None or not str(content).strip():
			raise InvalidContent("empty_content")
		if len(content) > self._max_length:
			raise InvalidContent("content_too_long")
		return content

	async def send_message(
		self,
		room_id: str,
		sender_id: str,
		message_type: str | MessageType,
		content: str,
		reply_to: Optional[str] = None,
	) -> ChatMessage:
		kind = parse_message_type(message_type)
		body = self._validate_content(content)
		room = await self._rooms.get_room(room_id)
		await self._ensure_can_send(room, sender_id)
		if reply_to:
			target = await self._repo.get_message(reply_to)
			if target is None or target.room_id != room.room_id:
				raise MessageNotFound("reply_target_not_found")
		if self._rate_limiter is not None and not await self._rate_limiter(sender_id):
			raise RateLimited("send_rate_limited")

		flags = self._scanner.scan(body)
		message = ChatMessage(
			message_id=str(ulid.new()),
			room_id=room.room_id,
			sender_id=sender_id,
			message_type=kind,
			content=body,
			sent_at=utcnow(),
			reply_to_id=reply_to,
			flags=flags,
		)
		hits = flags.hits()
		if hits:
			message.is_flagged = True
			message.flagged_by = FlaggedBy.SYSTEM
			message.flagged_reason = ",".join(hits)

		stored, _ = await self._rooms.record_message(message)
		obs_metrics.inc_message_sent(kind.value)
		if hits:
			obs_metrics.inc_message_flagged(hits)
			logger.info(
				"chat_message_flagged",
				extra={"message_id": stored.message_id, "room_id": room.room_id, "flags": hits},
			)
		return stored

	async def _ensure_can_send(self, room: ChatRoom, sender_id: str) -> None:
		if not room.is_participant(sender_id):
			raise Forbidden("not_participant")
		if room.status == RoomStatus.CLOSED:
			raise Forbidden("room_closed")
		if not await self._blocks.can_message(sender_id, room.counterpart(sender_id)):
			raise Forbidden("blocked")
		link = await self._repo.get_active_link(room.room_id)
		if link is not None and link.awaiting_approval:
			raise Forbidden("awaiting_approval")

	async def get_message(self, message_id: str) -> ChatMessage:
		message = await self._repo.get_message(message_id)
		if message is None:
			raise MessageNotFound()
		return message

	async def _own_message(self, message_id: str, actor_id: str) -> ChatMessage:
		message = await self.get_message(message_id)
		if message.sender_id != actor_id:
			raise Forbidden("not_sender")
		return message

	async def retract_message(self, message_id: str, actor_id: str) -> ChatMessage:
		"""Recall a message for both participants; content is kept for moderation."""
		await self._own_message(message_id, actor_id)
		now = utcnow()

		def _mutate(message: ChatMessage) -> None:
			if not message.is_retracted:
				message.is_retracted = True
				message.retracted_at = now

		updated = await self._repo.update_message(message_id, _mutate)
		logger.info("chat_message_retracted", extra={"message_id": message_id, "actor_id": actor_id})
		return updated

	async def hide_message(self, message_id: str, actor_id: str) -> ChatMessage:
		"""Sender-local removal; the recipient and moderators still see the message."""
		await self._own_message(message_id, actor_id)

		def _mutate(message: ChatMessage) -> None:
			message.is_hidden = True

		return await self._repo.update_message(message_id, _mutate)

	async def delete_message(
		self,
		message_id: str,
		actor_id: str,
		by_moderator: bool,
		reason: Optional[str] = None,
	) -> ChatMessage:
		"""Moderators remove the message for everyone; senders may only remove their own."""
		message = await self.get_message(message_id)
		if not by_moderator:
			if message.sender_id != actor_id:
				raise Forbidden("not_sender")
			return await self.hide_message(message_id, actor_id)
		return await self.moderate_message(message_id, actor_id, "delete", reason)

	async def moderate_message(
		self, message_id: str, moderator_id: str, action: str, reason: Optional[str] = None
	) -> ChatMessage:
		if action not in MODERATION_REMOVALS:
			raise ValidationError("invalid_moderation_action")
		now = utcnow()

		def _mutate(message: ChatMessage) -> None:
			message.is_deleted = True
			message.deleted_by = moderator_id
			message.deleted_at = now
			message.deleted_reason = reason or action

		updated = await self._repo.update_message(message_id, _mutate)
		logger.info(
			"chat_message_moderated",
			extra={"message_id": message_id, "moderator_id": moderator_id, "action": action},
		)
		return updated

	async def restore_message(self, message_id: str, moderator_id: str) -> ChatMessage:
		def _mutate(message: ChatMessage) -> None:
			message.is_deleted = False
			message.deleted_by = None
			message.deleted_at = None
			message.deleted_reason = None

		updated = await self._repo.update_message(message_id, _mutate)
		logger.info("chat_message_restored", extra={"message_id": message_id, "moderator_id": moderator_id})
		return updated

	async def edit_message(self, message_id: str, actor_id: str, content: str) -> ChatMessage:
		body = self._validate_content(content)
		message = await self._own_message(message_id, actor_id)
		if message.is_retracted or message.is_deleted:
			raise Forbidden("message_not_editable")
		room = await self._rooms.get_room(message.room_id)
		if room.status == RoomStatus.CLOSED:
			raise Forbidden("room_closed")
		tripped = self._scanner.scan(body).hits()
		now = utcnow()

		def _mutate(draft: ChatMessage) -> None:
			if draft.is_retracted or draft.is_deleted:
				raise Forbidden("message_not_editable")
			draft.content = body
			draft.edited_at = now
			if tripped and not draft.is_flagged:
				draft.is_flagged = True
				draft.flagged_by = FlaggedBy.SYSTEM
				draft.flagged_reason = "edited_content"

		updated = await self._repo.update_message(message_id, _mutate)
		if tripped:
			obs_metrics.inc_message_flagged(tripped)
			logger.info("chat_message_flagged", extra={"message_id": message_id, "flags": tripped, "edited": True})
		return updated

	async def rescan_message(self, message_id: str, moderator_id: str) -> ChatMessage:
		"""Recompute detector flags for the current content."""
		message = await self.get_message(message_id)
		flags = self._scanner.scan(message.content)

		def _mutate(draft: ChatMessage) -> None:
			draft.flags = flags
			if flags.any and not draft.is_flagged:
				draft.is_flagged = True
				draft.flagged_by = FlaggedBy.SYSTEM
				draft.flagged_reason = ",".join(flags.hits())

		updated = await self._repo.update_message(message_id, _mutate)
		logger.info(
			"chat_message_rescanned",
			extra={"message_id": message_id, "moderator_id": moderator_id, "flags": flags.hits()},
		)
		return updated

	async def increment_report_count(self, message_id: str) -> ChatMessage:
		def _mutate(message: ChatMessage) -> None:
			message.report_count += 1

		return await self._repo.update_message(message_id, _mutate)

	async def list_messages(
		self, room_id: str, viewer_id: str, *, limit: int = 50, offset: int = 0
	) -> list[MessageView]:
		await self._rooms.get_room_for(room_id, viewer_id)
		messages = await self._repo.list_messages(room_id, limit=limit, offset=offset)
		views = []
		for message in messages:
			if message.is_hidden and message.sender_id == viewer_id:
				continue
			views.append(MessageView.render(message))
		return views

	async def recent_messages(self, room_id: str, limit: int) -> Sequence[ChatMessage]:
		"""Raw timeline for moderation, including retracted and removed content."""
		return await self._repo.list_messages(room_id, limit=limit, offset=0)

	async def mark_read(self, room_id: str, reader_id: str) -> ChatRoom:
		return await self._rooms.mark_read(room_id, reader_id)

	async def list_flagged(self, *, limit: int = 50, offset: int = 0) -> Sequence[ChatMessage]:
		return await self._repo.list_flagged(limit=limit, offset=offset)

	async def count_messages(self, *, flagged_only: bool = False) -> int:
		return await self._repo.count_messages(flagged_only=flagged_only)


__all__ = ["MessagePipeline", "SendLimiter", "parse_message_type"]

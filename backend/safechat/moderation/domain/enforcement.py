"""Carry out moderation actions through the stores that own the affected state."""

from __future__ import annotations

import logging
from typing import Optional

from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.exceptions import InvalidTransition, ValidationError
from safechat.domain.chat.models import RoomStatus
from safechat.domain.chat.pipeline import MessagePipeline
from safechat.domain.chat.rooms import ChatRoomStore, can_transition
from safechat.moderation.domain.models import ModerationAction, ModerationLog, TargetType
from safechat.settings import settings

logger = logging.getLogger(__name__)


class ModerationEnforcer:
    """Applies the effect of a ledger entry and its reversal.

    The ledger never mutates rooms, messages or blocks directly; each effect is an
    explicit call into the owning component.
    """

    def __init__(self, rooms: ChatRoomStore, messages: MessagePipeline, blocks: BlockRegistry) -> None:
        self._rooms = rooms
        self._messages = messages
        self._blocks = blocks

    async def message_author(self, message_id: str) -> str:
        message = await self._messages.get_message(message_id)
        return message.sender_id

    async def ensure_room(self, room_id: str, subject_user_id: str) -> None:
        room = await self._rooms.get_room(room_id)
        if not room.is_participant(subject_user_id):
            raise ValidationError("subject_not_participant")

    async def check(
        self,
        target_type: TargetType,
        target_id: str,
        action: ModerationAction,
        *,
        room_status: Optional[RoomStatus] = None,
    ) -> None:
        """Raise the error ``apply`` would raise for a room action, leaving state untouched."""
        if target_type != TargetType.ROOM:
            return
        if action not in (ModerationAction.CHAT_MUTE, ModerationAction.CHAT_CLOSE):
            return
        room = await self._rooms.get_room(target_id)
        current = room_status or room.status
        if action == ModerationAction.CHAT_MUTE and not can_transition(current, RoomStatus.MUTED):
            raise InvalidTransition(f"invalid_transition:{current.value}->{RoomStatus.MUTED.value}")

    async def apply(
        self,
        admin_id: str,
        target_type: TargetType,
        target_id: str,
        action: ModerationAction,
        reason: Optional[str],
        duration_minutes: Optional[int] = None,
        *,
        automatic: bool = False,
    ) -> None:
        if action == ModerationAction.CHAT_MUTE:
            await self._rooms.transition_status(target_id, admin_id, RoomStatus.MUTED, reason, moderator=True)
        elif action == ModerationAction.CHAT_CLOSE:
            await self._rooms.close_room(target_id, reason, admin_id)
        elif action in (ModerationAction.MESSAGE_DELETE, ModerationAction.CONTENT_REMOVE):
            if target_type == TargetType.MESSAGE:
                await self._messages.moderate_message(target_id, admin_id, "delete", reason)
        elif action == ModerationAction.MESSAGE_HIDE:
            await self._messages.moderate_message(target_id, admin_id, "hide", reason)
        elif action == ModerationAction.USER_MUTE:
            await self._blocks.suspend(
                target_id,
                admin_id,
                reason,
                minutes=duration_minutes or settings.strike_mute_minutes,
                automatic=automatic,
            )
        elif action == ModerationAction.USER_BAN:
            await self._blocks.suspend(target_id, admin_id, reason, automatic=automatic)
        elif action == ModerationAction.USER_UNBAN:
            await self._blocks.lift_platform_blocks(target_id, admin_id)

    async def reverse(self, log: ModerationLog, reviewer_id: str) -> bool:
        """Undo the effect of an overturned entry; returns False when nothing could be undone."""
        action = log.action
        if action == ModerationAction.CHAT_MUTE:
            room = await self._rooms.get_room(log.target_id)
            if room.status != RoomStatus.MUTED:
                return False
            try:
                await self._rooms.transition_status(log.target_id, reviewer_id, RoomStatus.ACTIVE, moderator=True)
            except InvalidTransition:
                return False
            return True
        if action == ModerationAction.CHAT_CLOSE:
            logger.info("moderation_reversal_skipped", extra={"log_id": log.log_id, "action": action.value})
            return False
        if action in (
            ModerationAction.MESSAGE_DELETE,
            ModerationAction.MESSAGE_HIDE,
            ModerationAction.CONTENT_REMOVE,
        ):
            if log.target_type != TargetType.MESSAGE:
                return False
            await self._messages.restore_message(log.target_id, reviewer_id)
            return True
        if action in (ModerationAction.USER_MUTE, ModerationAction.USER_BAN):
            return await self._blocks.lift_platform_blocks(log.target_id, reviewer_id) > 0
        if action == ModerationAction.USER_UNBAN:
            await self._blocks.suspend(log.target_id, reviewer_id, "unban overturned")
            return True
        return False


__all__ = ["ModerationEnforcer"]

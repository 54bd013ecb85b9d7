"""Directed user blocks and platform-wide sanctions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import uuid4

from safechat.domain.chat.exceptions import (
	AlreadyInactive,
	BlockNotFound,
	Forbidden,
	SelfBlock,
	ValidationError,
)
from safechat.domain.chat.models import PLATFORM_ACTOR, SYSTEM_ACTOR, BlockType, UserBlock, utcnow
from safechat.domain.chat.repository import BlockRepository
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)


class BlockRegistry:
	"""Answers "can A message B" and enforces one active block per ordered pair.

	Expired temporary blocks are deactivated lazily whenever they are read and
	in bulk by ``sweep_expired``; both paths use a conditional deactivation so
	racing readers and sweeps apply the change once.
	"""

	def __init__(self, repository: BlockRepository) -> None:
		self._repo = repository

	async def block(
		self,
		blocker_id: str,
		blocked_id: str,
		reason: Optional[str] = None,
		permanent: bool = True,
		expires_at: Optional[datetime] = None,
		*,
		block_type: BlockType = BlockType.MANUAL,
		admin_id: Optional[str] = None,
		admin_reason: Optional[str] = None,
	) -> UserBlock:
		if not blocker_id or not blocked_id:
			raise ValidationError("participants_required")
		if blocker_id == blocked_id:
			raise SelfBlock()
		now = utcnow()
		if permanent:
			expires_at = None
		elif expires_at is None:
			raise ValidationError("expiry_required")
		elif expires_at <= now:
			raise ValidationError("expiry_in_past")
		existing = await self._repo.find_active(blocker_id, blocked_id)
		if existing is not None and existing.is_expired(now):
			await self._expire(existing, now)
		record = UserBlock(
			block_id=str(uuid4()),
			blocker_id=blocker_id,
			blocked_id=blocked_id,
			block_type=block_type,
			block_reason=reason,
			is_permanent=permanent,
			expires_at=expires_at,
			blocked_by_admin=admin_id,
			admin_reason=admin_reason,
			created_at=now,
			updated_at=now,
		)
		created = await self._repo.insert_block(record)
		obs_metrics.inc_block("block")
		logger.info(
			"user_block_created",
			extra={
				"block_id": created.block_id,
				"blocker_id": blocker_id,
				"blocked_id": blocked_id,
				"block_type": block_type.value,
				"permanent": permanent,
			},
		)
		return created

	async def unblock(self, block_id: str, actor_id: str, *, moderator: bool = False) -> UserBlock:
		block = await self._repo.get_block(block_id)
		if block is None:
			raise BlockNotFound()
		if not block.is_active:
			raise AlreadyInactive()
		if not moderator and actor_id != block.blocker_id:
			raise Forbidden("not_blocker")
		updated = await self._repo.deactivate(block_id, actor_id, utcnow())
		if updated is None:
			raise AlreadyInactive()
		obs_metrics.inc_block("unblock")
		logger.info("user_block_lifted", extra={"block_id": block_id, "actor_id": actor_id})
		return updated

	async def unblock_user(self, blocker_id: str, blocked_id: str) -> UserBlock:
		"""Lift the caller's active block on ``blocked_id``."""
		block = await self._repo.find_active(blocker_id, blocked_id)
		if block is None:
			raise BlockNotFound()
		return await self.unblock(block.block_id, blocker_id)

	async def active_block(self, from_id: str, to_id: str, now: Optional[datetime] = None) -> Optional[UserBlock]:
		now = now or utcnow()
		block = await self._repo.find_active(from_id, to_id)
		if block is None:
			return None
		if block.is_expired(now):
			await self._expire(block, now)
			return None
		return block

	async def is_blocked(self, from_id: str, to_id: str, now: Optional[datetime] = None) -> bool:
		return await self.active_block(from_id, to_id, now) is not None

	async def is_suspended(self, user_id: str, now: Optional[datetime] = None) -> bool:
		return await self.is_blocked(PLATFORM_ACTOR, user_id, now)

	async def can_message(self, sender_id: str, recipient_id: str, now: Optional[datetime] = None) -> bool:
		"""True iff neither direction is actively blocked and the sender is not suspended."""
		now = now or utcnow()
		if await self.is_blocked(sender_id, recipient_id, now):
			return False
		if await self.is_blocked(recipient_id, sender_id, now):
			return False
		return not await self.is_suspended(sender_id, now)

	async def list_blocks(self, blocker_id: str) -> Sequence[UserBlock]:
		now = utcnow()
		blocks = []
		for block in await self._repo.list_active(blocker_id):
			if block.is_expired(now):
				await self._expire(block, now)
				continue
			blocks.append(block)
		return blocks

	async def get_block(self, block_id: str) -> UserBlock:
		block = await self._repo.get_block(block_id)
		if block is None:
			raise BlockNotFound()
		return block

	async def suspend(
		self,
		user_id: str,
		admin_id: str,
		reason: Optional[str],
		*,
		minutes: Optional[int] = None,
		automatic: bool = False,
	) -> UserBlock:
		"""Place a platform-wide block; ``minutes`` makes it temporary.

		An existing platform block is replaced so a ban supersedes a mute.
		"""
		existing = await self._repo.find_active(PLATFORM_ACTOR, user_id)
		if existing is not None:
			await self._repo.deactivate(existing.block_id, admin_id, utcnow())
		expires_at = utcnow() + timedelta(minutes=minutes) if minutes else None
		return await self.block(
			PLATFORM_ACTOR,
			user_id,
			reason,
			permanent=expires_at is None,
			expires_at=expires_at,
			block_type=BlockType.AUTOMATIC if automatic else BlockType.ADMIN,
			admin_id=admin_id,
			admin_reason=reason,
		)

	async def lift_platform_blocks(self, user_id: str, actor_id: str) -> int:
		block = await self._repo.find_active(PLATFORM_ACTOR, user_id)
		if block is None:
			return 0
		lifted = await self._repo.deactivate(block.block_id, actor_id, utcnow())
		if lifted is None:
			return 0
		obs_metrics.inc_block("platform_lift")
		logger.info("platform_block_lifted", extra={"user_id": user_id, "actor_id": actor_id})
		return 1

	async def sweep_expired(self, now: Optional[datetime] = None, *, batch_size: Optional[int] = None) -> int:
		now = now or utcnow()
		expired = await self._repo.list_expired(now, batch_size or settings.sweep_batch_size)
		count = 0
		failed = 0
		for block in expired:
			try:
				if await self._expire(block, now):
					count += 1
			except Exception:
				failed += 1
				logger.exception("block_sweep_failed", extra={"block_id": block.block_id})
		obs_metrics.record_sweep("blocks", processed=count, failed=failed)
		return count

	async def _expire(self, block: UserBlock, now: datetime) -> bool:
		updated = await self._repo.deactivate(block.block_id, SYSTEM_ACTOR, now)
		if updated is not None:
			obs_metrics.inc_block("expired")
			logger.info("user_block_expired", extra={"block_id": block.block_id})
		return updated is not None


__all__ = ["BlockRegistry"]

"""Binding rooms to their originating context, approval gating and expiry."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol, Sequence
from uuid import uuid4

from safechat.domain.chat.exceptions import (
	AlreadyApproved,
	Conflict,
	DependencyUnavailable,
	Forbidden,
	LinkNotFound,
	NotFound,
	NotRequired,
)
from safechat.domain.chat.models import SYSTEM_ACTOR, ChatContextLink, ContextType, utcnow
from safechat.domain.chat.repository import ChatRepository
from safechat.domain.chat.rooms import ChatRoomStore, parse_context_type
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)


class ContextDirectory(Protocol):
	"""Lookup into the services that own profiles, job posts, listings and help requests."""

	async def context_exists(self, context_type: ContextType, context_id: str) -> bool:
		"""Return True when the referenced context exists."""

	async def context_active(self, context_type: ContextType, context_id: str) -> bool:
		"""Return True when the referenced context still accepts conversations."""


class OpenContextDirectory:
	"""Directory that treats every context as existing and active."""

	async def context_exists(self, context_type: ContextType, context_id: str) -> bool:
		return True

	async def context_active(self, context_type: ContextType, context_id: str) -> bool:
		return True


class ContextLinkResolver:
	def __init__(
		self,
		repository: ChatRepository,
		rooms: ChatRoomStore,
		directory: Optional[ContextDirectory] = None,
	) -> None:
		self._repo = repository
		self._rooms = rooms
		self._directory = directory or OpenContextDirectory()

	async def _ensure_context(self, context_type: ContextType, context_id: str) -> None:
		try:
			exists = await self._directory.context_exists(context_type, context_id)
			active = exists and await self._directory.context_active(context_type, context_id)
		except Exception as exc:
			logger.warning(
				"context_directory_failed",
				extra={"context_type": context_type.value, "context_id": context_id, "error": type(exc).__name__},
			)
			raise DependencyUnavailable("context_lookup_failed") from exc
		if not exists:
			raise NotFound("context_not_found")
		if not active:
			raise Conflict("context_inactive")

	async def link_context(
		self,
		room_id: str,
		context_type: str | ContextType,
		context_id: str,
		initiated_from: Optional[str] = None,
		requires_approval: bool = False,
		expires_at: Optional[datetime] = None,
	) -> ChatContextLink:
		ctx = parse_context_type(context_type)
		room = await self._rooms.get_room(room_id)
		await self._ensure_context(ctx, context_id)
		now = utcnow()
		link = ChatContextLink(
			link_id=str(uuid4()),
			room_id=room.room_id,
			context_type=ctx,
			context_id=context_id,
			initiated_from=initiated_from,
			requires_approval=requires_approval,
			expires_at=expires_at,
			created_at=now,
			updated_at=now,
		)
		created = await self._repo.insert_link(link)
		logger.info(
			"chat_context_linked",
			extra={"link_id": created.link_id, "room_id": room_id, "context_type": ctx.value},
		)
		return created

	async def get_link(self, link_id: str) -> ChatContextLink:
		link = await self._repo.get_link(link_id)
		if link is None:
			raise LinkNotFound()
		return link

	async def get_active_link(self, room_id: str) -> Optional[ChatContextLink]:
		return await self._repo.get_active_link(room_id)

	async def approve(self, link_id: str, approver_id: str, *, moderator: bool = False) -> ChatContextLink:
		link = await self.get_link(link_id)
		room = await self._rooms.get_room(link.room_id)
		if not moderator and not room.is_participant(approver_id):
			raise Forbidden("not_participant")
		if not link.requires_approval:
			raise NotRequired()
		if link.approved_at is not None:
			raise AlreadyApproved()
		if not link.is_active:
			raise Conflict("link_inactive")
		await self._ensure_context(link.context_type, link.context_id)
		now = utcnow()

		def _mutate(draft: ChatContextLink) -> None:
			if draft.approved_at is not None:
				raise AlreadyApproved()
			if not draft.is_active:
				raise Conflict("link_inactive")
			draft.approved_at = now
			draft.approved_by = approver_id
			draft.updated_at = now

		approved = await self._repo.update_link(link_id, _mutate)
		logger.info("chat_context_approved", extra={"link_id": link_id, "approver_id": approver_id})
		return approved

	async def sweep_expired(self, now: Optional[datetime] = None, *, batch_size: Optional[int] = None) -> list[str]:
		"""Deactivate expired links and close their rooms; returns the rooms closed by this call."""
		now = now or utcnow()
		expired = await self._repo.list_expired_links(now, batch_size or settings.sweep_batch_size)
		closed, failed = await self._deactivate_and_close(expired, now, "expired", "context expired")
		obs_metrics.record_sweep("context_links", processed=len(closed), failed=failed)
		return closed

	async def revoke_context(
		self, context_type: str | ContextType, context_id: str, actor_id: str
	) -> list[str]:
		ctx = parse_context_type(context_type)
		links = await self._repo.list_active_links_for_context(ctx, context_id)
		closed, _ = await self._deactivate_and_close(links, utcnow(), "revoked", "context revoked", actor_id)
		logger.info(
			"chat_context_revoked",
			extra={"context_type": ctx.value, "context_id": context_id, "actor_id": actor_id, "rooms": len(closed)},
		)
		return closed

	async def _deactivate_and_close(
		self,
		links: Sequence[ChatContextLink],
		now: datetime,
		reason: str,
		close_reason: str,
		actor_id: Optional[str] = None,
	) -> tuple[list[str], int]:
		closed: list[str] = []
		failed = 0
		for link in links:
			try:
				# Closing is idempotent; only the caller that flips is_active reports the room
				await self._rooms.close_room(link.room_id, close_reason, actor_id or SYSTEM_ACTOR)
				if await self._repo.deactivate_link(link.link_id, now, reason):
					closed.append(link.room_id)
			except Exception:
				failed += 1
				logger.exception("context_link_sweep_failed", extra={"link_id": link.link_id})
		return closed, failed


__all__ = ["ContextDirectory", "ContextLinkResolver", "OpenContextDirectory"]

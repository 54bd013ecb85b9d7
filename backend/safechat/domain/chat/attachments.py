"""Attachment lifecycle: registration, virus-scan status and download gating."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Protocol
from uuid import uuid4

from safechat.domain.chat.exceptions import (
	AttachmentNotClean,
	AttachmentNotFound,
	DependencyUnavailable,
	Forbidden,
	MessageNotFound,
	ValidationError,
)
from safechat.domain.chat.models import ChatAttachment, ScanStatus, utcnow
from safechat.domain.chat.repository import ChatRepository
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)


class FileScanner(Protocol):
	async def scan_file(self, path: str) -> ScanStatus:
		"""Return the antivirus verdict for a stored file."""


class AttachmentService:
	def __init__(
		self,
		repository: ChatRepository,
		rooms: ChatRoomStore,
		scanner: Optional[FileScanner] = None,
	) -> None:
		self._repo = repository
		self._rooms = rooms
		self._scanner = scanner

	async def register(
		self,
		message_id: str,
		uploader_id: str,
		*,
		file_name: str,
		file_type: str,
		file_size: int,
		mime_type: Optional[str] = None,
		file_path: Optional[str] = None,
		encrypted_file_path: Optional[str] = None,
		file_hash: Optional[str] = None,
		expires_at: Optional[datetime] = None,
	) -> ChatAttachment:
		message = await self._repo.get_message(message_id)
		if message is None:
			raise MessageNotFound()
		if message.sender_id != uploader_id:
			raise Forbidden("not_sender")
		await self._rooms.get_room(message.room_id)
		if file_size <= 0:
			raise ValidationError("invalid_file_size")
		if not (file_path or encrypted_file_path):
			raise ValidationError("storage_path_required")
		now = utcnow()
		attachment = ChatAttachment(
			attachment_id=str(uuid4()),
			message_id=message_id,
			room_id=message.room_id,
			uploaded_by=uploader_id,
			file_name=file_name,
			file_type=file_type,
			file_size=file_size,
			mime_type=mime_type,
			file_path=file_path,
			encrypted_file_path=encrypted_file_path,
			file_hash=file_hash,
			is_encrypted=encrypted_file_path is not None,
			expiry_at=expires_at,
			created_at=now,
			updated_at=now,
		)
		created = await self._repo.insert_attachment(attachment)
		logger.info(
			"chat_attachment_registered",
			extra={"attachment_id": created.attachment_id, "message_id": message_id, "file_type": file_type},
		)
		return created

	async def get(self, attachment_id: str) -> ChatAttachment:
		attachment = await self._repo.get_attachment(attachment_id)
		if attachment is None or attachment.is_deleted:
			raise AttachmentNotFound()
		return attachment

	async def scan(self, attachment_id: str) -> ChatAttachment:
		attachment = await self.get(attachment_id)
		if self._scanner is None:
			raise DependencyUnavailable("scanner_unavailable")
		path = attachment.storage_path
		if not path:
			raise ValidationError("storage_path_required")
		try:
			verdict = ScanStatus(await self._scanner.scan_file(path))
		except Exception as exc:
			logger.warning(
				"attachment_scan_failed",
				extra={"attachment_id": attachment_id, "error": type(exc).__name__},
			)
			raise DependencyUnavailable("scan_failed") from exc
		return await self.apply_scan_result(attachment_id, verdict)

	async def apply_scan_result(self, attachment_id: str, status: str | ScanStatus) -> ChatAttachment:
		"""Record a scan verdict; infected files are soft-deleted immediately."""
		try:
			verdict = ScanStatus(status)
		except ValueError:
			raise ValidationError("invalid_scan_status") from None
		now = utcnow()

		def _mutate(draft: ChatAttachment) -> None:
			if draft.is_deleted:
				raise AttachmentNotFound()
			draft.scan_status = verdict
			draft.scanned_at = now
			draft.updated_at = now
			if verdict != ScanStatus.CLEAN:
				draft.download_allowed = False
			if verdict == ScanStatus.INFECTED:
				draft.is_deleted = True
				draft.deleted_at = now

		updated = await self._repo.update_attachment(attachment_id, _mutate)
		log = logger.warning if verdict == ScanStatus.INFECTED else logger.info
		log("attachment_scanned", extra={"attachment_id": attachment_id, "scan_status": verdict.value})
		return updated

	async def allow_download(self, attachment_id: str, actor_id: str) -> ChatAttachment:
		attachment = await self.get(attachment_id)
		room = await self._rooms.get_room(attachment.room_id)
		if not room.is_participant(actor_id):
			raise Forbidden("not_participant")
		now = utcnow()

		def _mutate(draft: ChatAttachment) -> None:
			if draft.scan_status != ScanStatus.CLEAN:
				raise AttachmentNotClean()
			draft.download_allowed = True
			draft.updated_at = now

		return await self._repo.update_attachment(attachment_id, _mutate)

	async def record_download(self, attachment_id: str, user_id: str) -> ChatAttachment:
		attachment = await self.get(attachment_id)
		room = await self._rooms.get_room(attachment.room_id)
		if not room.is_participant(user_id):
			raise Forbidden("not_participant")
		now = utcnow()

		def _mutate(draft: ChatAttachment) -> None:
			if not draft.download_allowed or draft.scan_status != ScanStatus.CLEAN:
				raise Forbidden("download_not_allowed")
			if draft.expiry_at is not None and draft.expiry_at <= now:
				raise Forbidden("attachment_expired")
			draft.download_count += 1
			draft.updated_at = now

		return await self._repo.update_attachment(attachment_id, _mutate)

	async def sweep_expired(self, now: Optional[datetime] = None, *, batch_size: Optional[int] = None) -> int:
		now = now or utcnow()
		expired = await self._repo.list_expired_attachments(now, batch_size or settings.sweep_batch_size)
		count = 0
		failed = 0
		for attachment in expired:
			try:
				if await self._repo.expire_attachment(attachment.attachment_id, now):
					count += 1
			except Exception:
				failed += 1
				logger.exception("attachment_sweep_failed", extra={"attachment_id": attachment.attachment_id})
		obs_metrics.record_sweep("attachments", processed=count, failed=failed)
		return count


__all__ = ["AttachmentService", "FileScanner"]

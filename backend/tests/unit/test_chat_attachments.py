from __future__ import annotations

from datetime import timedelta

import pytest

from safechat import container
from safechat.domain.chat.exceptions import (
    AttachmentNotClean,
    AttachmentNotFound,
    DependencyUnavailable,
    Forbidden,
    ValidationError,
)
from safechat.domain.chat.models import ScanStatus, utcnow


class StubFileScanner:
    def __init__(self, verdict: ScanStatus) -> None:
        self.verdict = verdict
        self.paths: list[str] = []

    async def scan_file(self, path: str) -> ScanStatus:
        self.paths.append(path)
        return self.verdict


async def _register(attachments, message, **overrides):
    fields = {
        "file_name": "resume.pdf",
        "file_type": "document",
        "file_size": 2048,
        "mime_type": "application/pdf",
        "file_path": "uploads/resume.pdf",
    }
    fields.update(overrides)
    return await attachments.register(message.message_id, message.sender_id, **fields)


@pytest.mark.asyncio
async def test_register_requires_sender_and_storage(attachments, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "file", "my resume")
    with pytest.raises(Forbidden):
        await attachments.register(
            message.message_id, "bob", file_name="x", file_type="document", file_size=1, file_path="p"
        )
    with pytest.raises(ValidationError):
        await _register(attachments, message, file_size=0)
    with pytest.raises(ValidationError):
        await _register(attachments, message, file_path=None)

    attachment = await _register(attachments, message)
    assert attachment.room_id == room.room_id
    assert attachment.scan_status == ScanStatus.UNSCANNED
    assert not attachment.download_allowed


@pytest.mark.asyncio
async def test_download_requires_clean_scan(attachments, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "file", "photo")
    attachment = await _register(attachments, message)
    with pytest.raises(AttachmentNotClean):
        await attachments.allow_download(attachment.attachment_id, "bob")
    with pytest.raises(Forbidden):
        await attachments.record_download(attachment.attachment_id, "bob")

    await attachments.apply_scan_result(attachment.attachment_id, "clean")
    allowed = await attachments.allow_download(attachment.attachment_id, "bob")
    assert allowed.download_allowed
    downloaded = await attachments.record_download(attachment.attachment_id, "bob")
    assert downloaded.download_count == 1
    with pytest.raises(Forbidden):
        await attachments.record_download(attachment.attachment_id, "mallory")


@pytest.mark.asyncio
async def test_infected_file_is_removed(attachments, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "file", "invoice")
    attachment = await _register(attachments, message)
    infected = await attachments.apply_scan_result(attachment.attachment_id, ScanStatus.INFECTED)
    assert infected.is_deleted
    assert not infected.download_allowed
    with pytest.raises(AttachmentNotFound):
        await attachments.get(attachment.attachment_id)


@pytest.mark.asyncio
async def test_scan_without_scanner_is_unavailable(attachments, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "file", "doc")
    attachment = await _register(attachments, message)
    with pytest.raises(DependencyUnavailable) as excinfo:
        await attachments.scan(attachment.attachment_id)
    assert excinfo.value.reason == "scanner_unavailable"


@pytest.mark.asyncio
async def test_scan_uses_configured_scanner(pipeline, room) -> None:
    scanner = StubFileScanner(ScanStatus.CLEAN)
    container.configure(file_scanner=scanner)
    attachments = container.get_attachment_service()
    message = await pipeline.send_message(room.room_id, "alice", "file", "doc")
    attachment = await _register(attachments, message, file_path=None, encrypted_file_path="vault/doc.enc")
    scanned = await attachments.scan(attachment.attachment_id)
    assert scanned.scan_status == ScanStatus.CLEAN
    assert scanned.scanned_at is not None
    assert scanner.paths == ["vault/doc.enc"]


@pytest.mark.asyncio
async def test_expired_attachments_swept_once(attachments, pipeline, room) -> None:
    message = await pipeline.send_message(room.room_id, "alice", "file", "doc")
    expiry = utcnow() + timedelta(days=1)
    await _register(attachments, message, expires_at=expiry)
    await _register(attachments, message, file_name="keep.pdf")
    later = expiry + timedelta(seconds=1)
    assert await attachments.sweep_expired(later) == 1
    assert await attachments.sweep_expired(later) == 0

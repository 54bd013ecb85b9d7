"""Lightweight service container wiring chat and moderation components."""

from __future__ import annotations

from typing import Optional

import asyncpg

from safechat.domain.chat.attachments import AttachmentService, FileScanner
from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.context_links import ContextDirectory, ContextLinkResolver
from safechat.domain.chat.pipeline import MessagePipeline, SendLimiter
from safechat.domain.chat.repository import (
    BlockRepository,
    ChatRepository,
    InMemoryBlockRepository,
    InMemoryChatRepository,
)
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.domain.chat.safety import ContentSafetyScanner
from safechat.domain.chat.service import ChatService
from safechat.infra.chat_repo import PostgresBlockRepository, PostgresChatRepository
from safechat.infra.rate_limit import FixedWindowLimiter
from safechat.moderation.domain.dashboard import ModerationDashboard
from safechat.moderation.domain.enforcement import ModerationEnforcer
from safechat.moderation.domain.ledger import ModerationLedger
from safechat.moderation.domain.reports import ReportWorkflow
from safechat.moderation.domain.repository import (
    InMemoryLedgerRepository,
    InMemoryReportRepository,
    LedgerRepository,
    ReportRepository,
)
from safechat.moderation.domain.strikes import StrikePolicy
from safechat.moderation.infra.postgres_repo import PostgresLedgerRepository, PostgresReportRepository
from safechat.settings import settings

_UNSET = object()


def _default_rate_limiter() -> Optional[SendLimiter]:
    if settings.message_send_per_minute <= 0:
        return None
    return FixedWindowLimiter("chat_send", limit=settings.message_send_per_minute)


_chat_repository: ChatRepository = InMemoryChatRepository()
_block_repository: BlockRepository = InMemoryBlockRepository()
_report_repository: ReportRepository = InMemoryReportRepository()
_ledger_repository: LedgerRepository = InMemoryLedgerRepository()
_directory: Optional[ContextDirectory] = None
_file_scanner: Optional[FileScanner] = None
_scanner = ContentSafetyScanner.from_settings(settings)
_rate_limiter: Optional[SendLimiter] = _default_rate_limiter()
_strike_policy = StrikePolicy.from_settings()

_rooms: ChatRoomStore
_blocks: BlockRegistry
_links: ContextLinkResolver
_pipeline: MessagePipeline
_attachments: AttachmentService
_chat_service: ChatService
_enforcer: ModerationEnforcer
_ledger: ModerationLedger
_reports: ReportWorkflow
_dashboard: ModerationDashboard


def _build() -> None:
    global _rooms, _blocks, _links, _pipeline, _attachments, _chat_service
    global _enforcer, _ledger, _reports, _dashboard
    _rooms = ChatRoomStore(_chat_repository)
    _blocks = BlockRegistry(_block_repository)
    _links = ContextLinkResolver(_chat_repository, _rooms, _directory)
    _pipeline = MessagePipeline(_rooms, _blocks, _scanner, _chat_repository, rate_limiter=_rate_limiter)
    _attachments = AttachmentService(_chat_repository, _rooms, _file_scanner)
    _chat_service = ChatService(_rooms, _blocks, _links)
    _enforcer = ModerationEnforcer(_rooms, _pipeline, _blocks)
    _ledger = ModerationLedger(_ledger_repository, _enforcer, _strike_policy)
    _reports = ReportWorkflow(_report_repository, _rooms, _pipeline, _ledger)
    _dashboard = ModerationDashboard(_rooms, _pipeline, _report_repository, _ledger)


def configure(
    *,
    chat_repository: Optional[ChatRepository] = None,
    block_repository: Optional[BlockRepository] = None,
    report_repository: Optional[ReportRepository] = None,
    ledger_repository: Optional[LedgerRepository] = None,
    directory: Optional[ContextDirectory] = None,
    file_scanner: Optional[FileScanner] = None,
    scanner: Optional[ContentSafetyScanner] = None,
    rate_limiter=_UNSET,
    strike_policy: Optional[StrikePolicy] = None,
) -> None:
    """Swap any collaborator and rebuild the component graph.

    ``rate_limiter=None`` disables the per-sender send limit.
    """
    global _chat_repository, _block_repository, _report_repository, _ledger_repository
    global _directory, _file_scanner, _scanner, _rate_limiter, _strike_policy
    if chat_repository is not None:
        _chat_repository = chat_repository
    if block_repository is not None:
        _block_repository = block_repository
    if report_repository is not None:
        _report_repository = report_repository
    if ledger_repository is not None:
        _ledger_repository = ledger_repository
    if directory is not None:
        _directory = directory
    if file_scanner is not None:
        _file_scanner = file_scanner
    if scanner is not None:
        _scanner = scanner
    if rate_limiter is not _UNSET:
        _rate_limiter = rate_limiter
    if strike_policy is not None:
        _strike_policy = strike_policy
    _build()


def _reset_collaborators() -> None:
    global _directory, _file_scanner, _scanner, _rate_limiter, _strike_policy
    _directory = None
    _file_scanner = None
    _scanner = ContentSafetyScanner.from_settings(settings)
    _rate_limiter = _default_rate_limiter()
    _strike_policy = StrikePolicy.from_settings()


def configure_memory(**overrides) -> None:
    """Fresh in-memory repositories and default collaborators; used by tests and ``STORAGE_BACKEND=memory``."""
    _reset_collaborators()
    configure(
        chat_repository=InMemoryChatRepository(),
        block_repository=InMemoryBlockRepository(),
        report_repository=InMemoryReportRepository(),
        ledger_repository=InMemoryLedgerRepository(),
        **overrides,
    )


def configure_postgres(pool: asyncpg.Pool, **overrides) -> None:
    _reset_collaborators()
    configure(
        chat_repository=PostgresChatRepository(pool),
        block_repository=PostgresBlockRepository(pool),
        report_repository=PostgresReportRepository(pool),
        ledger_repository=PostgresLedgerRepository(pool),
        **overrides,
    )


_build()


def get_room_store() -> ChatRoomStore:
    return _rooms


def get_block_registry() -> BlockRegistry:
    return _blocks


def get_context_links() -> ContextLinkResolver:
    return _links


def get_message_pipeline() -> MessagePipeline:
    return _pipeline


def get_attachment_service() -> AttachmentService:
    return _attachments


def get_chat_service() -> ChatService:
    return _chat_service


def get_moderation_ledger() -> ModerationLedger:
    return _ledger


def get_report_workflow() -> ReportWorkflow:
    return _reports


def get_dashboard() -> ModerationDashboard:
    return _dashboard


__all__ = [
    "configure",
    "configure_memory",
    "configure_postgres",
    "get_attachment_service",
    "get_block_registry",
    "get_chat_service",
    "get_context_links",
    "get_dashboard",
    "get_message_pipeline",
    "get_moderation_ledger",
    "get_report_workflow",
    "get_room_store",
]

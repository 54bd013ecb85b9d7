"""Moderator endpoints for chat review, reports and the moderation ledger."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from safechat import container
from safechat.api.schemas import (
    AdminMessageOut,
    AdminRoomOut,
    AttachmentOut,
    BlockOut,
    ContextLinkOut,
    ModerationLogOut,
    ReportOut,
)
from safechat.domain.chat.attachments import AttachmentService
from safechat.domain.chat.blocks import BlockRegistry
from safechat.domain.chat.context_links import ContextLinkResolver
from safechat.domain.chat.exceptions import RateLimited
from safechat.domain.chat.models import ContextType, RoomStatus, ScanStatus
from safechat.domain.chat.pipeline import MessagePipeline
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.infra.auth import AuthenticatedUser, require_moderator
from safechat.infra.rate_limit import allow
from safechat.jobs import sweeps
from safechat.moderation.domain.dashboard import ModerationDashboard
from safechat.moderation.domain.ledger import ModerationLedger
from safechat.moderation.domain.models import AppealDecision, ReportStatus
from safechat.moderation.domain.reports import ReportWorkflow

router = APIRouter(prefix="/admin/chat", tags=["chat-admin"])

_DASHBOARD_RATE_KEY = "chat_admin_dashboard"
_DASHBOARD_RATE_LIMIT = 60
_DASHBOARD_RATE_WINDOW = 10


class CloseRoomIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class ModerateMessageIn(BaseModel):
    action: Literal["hide", "delete"]
    reason: str | None = Field(default=None, max_length=500)


class NotesIn(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class ResolveReportIn(BaseModel):
    decision: Literal["resolved", "dismissed"] = "resolved"
    action: str | None = None
    notes: str | None = Field(default=None, max_length=2000)
    duration_minutes: int | None = Field(default=None, gt=0)


class RecordActionIn(BaseModel):
    target_type: str
    target_id: str
    action: str
    reason: str | None = Field(default=None, max_length=2000)
    duration_minutes: int | None = Field(default=None, gt=0)
    related_report_id: str | None = None
    subject_user_id: str | None = None
    notes: str | None = Field(default=None, max_length=2000)


class AppealDecisionIn(BaseModel):
    decision: AppealDecision


class ScanResultIn(BaseModel):
    scan_status: ScanStatus


class RevokeContextIn(BaseModel):
    context_type: ContextType
    context_id: str


class RoomListOut(BaseModel):
    rooms: list[AdminRoomOut]


class MessageListOut(BaseModel):
    messages: list[AdminMessageOut]


class ReportListOut(BaseModel):
    reports: list[ReportOut]


class ReportDetailOut(BaseModel):
    report: ReportOut
    room: AdminRoomOut
    message: AdminMessageOut | None
    context: list[AdminMessageOut]
    flags: dict[str, bool] | None
    related_logs: list[ModerationLogOut]


class ResolveReportOut(BaseModel):
    report: ReportOut
    log: ModerationLogOut | None


class StrikesOut(BaseModel):
    user_id: str
    strike_count: int
    history: list[ModerationLogOut]


class LogListOut(BaseModel):
    logs: list[ModerationLogOut]


class ReportedUserOut(BaseModel):
    user_id: str
    report_count: int


class RevokeContextOut(BaseModel):
    closed_rooms: list[str]


def get_room_store_dep() -> ChatRoomStore:
    return container.get_room_store()


def get_pipeline_dep() -> MessagePipeline:
    return container.get_message_pipeline()


def get_block_registry_dep() -> BlockRegistry:
    return container.get_block_registry()


def get_context_links_dep() -> ContextLinkResolver:
    return container.get_context_links()


def get_attachments_dep() -> AttachmentService:
    return container.get_attachment_service()


def get_reports_dep() -> ReportWorkflow:
    return container.get_report_workflow()


def get_ledger_dep() -> ModerationLedger:
    return container.get_moderation_ledger()


def get_dashboard_dep() -> ModerationDashboard:
    return container.get_dashboard()


@router.get("/rooms", response_model=RoomListOut)
async def list_rooms(
    status: RoomStatus | None = Query(default=RoomStatus.REPORTED),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    rooms: ChatRoomStore = Depends(get_room_store_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> RoomListOut:
    items = await rooms.list_rooms(status=status, limit=limit, offset=offset)
    return RoomListOut(rooms=[AdminRoomOut.from_room(room) for room in items])


@router.get("/rooms/{room_id}", response_model=AdminRoomOut)
async def get_room(
    room_id: str,
    rooms: ChatRoomStore = Depends(get_room_store_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> AdminRoomOut:
    return AdminRoomOut.from_room(await rooms.get_room(room_id))


@router.get("/rooms/{room_id}/messages", response_model=MessageListOut)
async def room_messages(
    room_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    pipeline: MessagePipeline = Depends(get_pipeline_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> MessageListOut:
    messages = await pipeline.recent_messages(room_id, limit)
    return MessageListOut(messages=[AdminMessageOut.from_message(message) for message in messages])


@router.post("/rooms/{room_id}/close", response_model=AdminRoomOut)
async def close_room(
    room_id: str,
    body: CloseRoomIn,
    rooms: ChatRoomStore = Depends(get_room_store_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> AdminRoomOut:
    room = await rooms.close_room(room_id, body.reason, moderator.id)
    return AdminRoomOut.from_room(room)


@router.get("/rooms/{room_id}/reports", response_model=ReportListOut)
async def room_reports(
    room_id: str,
    reports: ReportWorkflow = Depends(get_reports_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> ReportListOut:
    items = await reports.list_for_room(room_id)
    return ReportListOut(reports=[ReportOut.from_report(report) for report in items])


@router.get("/messages/flagged", response_model=MessageListOut)
async def flagged_messages(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    pipeline: MessagePipeline = Depends(get_pipeline_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> MessageListOut:
    messages = await pipeline.list_flagged(limit=limit, offset=offset)
    return MessageListOut(messages=[AdminMessageOut.from_message(message) for message in messages])


@router.post("/messages/{message_id}/moderate", response_model=AdminMessageOut)
async def moderate_message(
    message_id: str,
    body: ModerateMessageIn,
    pipeline: MessagePipeline = Depends(get_pipeline_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> AdminMessageOut:
    message = await pipeline.moderate_message(message_id, moderator.id, body.action, body.reason)
    return AdminMessageOut.from_message(message)


@router.post("/messages/{message_id}/restore", response_model=AdminMessageOut)
async def restore_message(
    message_id: str,
    pipeline: MessagePipeline = Depends(get_pipeline_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> AdminMessageOut:
    return AdminMessageOut.from_message(await pipeline.restore_message(message_id, moderator.id))


@router.post("/messages/{message_id}/rescan", response_model=AdminMessageOut)
async def rescan_message(
    message_id: str,
    pipeline: MessagePipeline = Depends(get_pipeline_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> AdminMessageOut:
    return AdminMessageOut.from_message(await pipeline.rescan_message(message_id, moderator.id))


@router.get("/reports", response_model=ReportListOut)
async def pending_reports(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    reports: ReportWorkflow = Depends(get_reports_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> ReportListOut:
    items = await reports.list_pending(limit=limit, offset=offset)
    return ReportListOut(reports=[ReportOut.from_report(report) for report in items])


@router.get("/reports/{report_id}", response_model=ReportDetailOut)
async def report_detail(
    report_id: str,
    reports: ReportWorkflow = Depends(get_reports_dep),
    ledger: ModerationLedger = Depends(get_ledger_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> ReportDetailOut:
    bundle = await reports.build_evidence_bundle(report_id)
    logs = await ledger.logs_for_target("chat_room", bundle.room.room_id)
    return ReportDetailOut(
        report=ReportOut.from_report(bundle.report),
        room=AdminRoomOut.from_room(bundle.room),
        message=AdminMessageOut.from_message(bundle.message) if bundle.message else None,
        context=[AdminMessageOut.from_message(message) for message in bundle.context],
        flags=bundle.flags.to_dict() if bundle.flags else None,
        related_logs=[ModerationLogOut.from_log(log) for log in logs if log.related_report_id == report_id],
    )


@router.post("/reports/{report_id}/investigate", response_model=ReportOut)
async def investigate_report(
    report_id: str,
    reports: ReportWorkflow = Depends(get_reports_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ReportOut:
    return ReportOut.from_report(await reports.investigate(report_id, moderator.id))


@router.post("/reports/{report_id}/resolve", response_model=ResolveReportOut)
async def resolve_report(
    report_id: str,
    body: ResolveReportIn,
    reports: ReportWorkflow = Depends(get_reports_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ResolveReportOut:
    report, log = await reports.resolve(
        report_id,
        moderator.id,
        ReportStatus(body.decision),
        body.action,
        body.notes,
        duration_minutes=body.duration_minutes,
    )
    return ResolveReportOut(
        report=ReportOut.from_report(report),
        log=ModerationLogOut.from_log(log) if log else None,
    )


@router.post("/reports/{report_id}/dismiss", response_model=ReportOut)
async def dismiss_report(
    report_id: str,
    body: NotesIn,
    reports: ReportWorkflow = Depends(get_reports_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ReportOut:
    return ReportOut.from_report(await reports.dismiss(report_id, moderator.id, body.notes))


@router.post("/reports/{report_id}/escalate", response_model=ReportOut)
async def escalate_report(
    report_id: str,
    body: NotesIn,
    reports: ReportWorkflow = Depends(get_reports_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ReportOut:
    return ReportOut.from_report(await reports.escalate_to_legal(report_id, moderator.id, body.notes))


@router.post("/actions", response_model=ModerationLogOut, status_code=201)
async def record_action(
    body: RecordActionIn,
    ledger: ModerationLedger = Depends(get_ledger_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ModerationLogOut:
    log = await ledger.record_action(
        moderator.id,
        body.target_type,
        body.target_id,
        body.action,
        reason=body.reason,
        duration_minutes=body.duration_minutes,
        related_report_id=body.related_report_id,
        notes=body.notes,
        subject_user_id=body.subject_user_id,
    )
    return ModerationLogOut.from_log(log)


@router.get("/logs", response_model=LogListOut)
async def logs_for_target(
    target_type: str = Query(...),
    target_id: str = Query(...),
    ledger: ModerationLedger = Depends(get_ledger_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> LogListOut:
    logs = await ledger.logs_for_target(target_type, target_id)
    return LogListOut(logs=[ModerationLogOut.from_log(log) for log in logs])


@router.post("/logs/{log_id}/appeal-decision", response_model=ModerationLogOut)
async def decide_appeal(
    log_id: str,
    body: AppealDecisionIn,
    ledger: ModerationLedger = Depends(get_ledger_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ModerationLogOut:
    return ModerationLogOut.from_log(await ledger.decide_appeal(log_id, moderator.id, body.decision))


@router.get("/users/frequently-reported", response_model=list[ReportedUserOut])
async def frequently_reported(
    min_reports: int = Query(default=3, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    reports: ReportWorkflow = Depends(get_reports_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> list[ReportedUserOut]:
    rows = await reports.frequently_reported(min_reports, limit=limit)
    return [ReportedUserOut(user_id=user_id, report_count=count) for user_id, count in rows]


@router.get("/users/{user_id}/strikes", response_model=StrikesOut)
async def user_strikes(
    user_id: str,
    ledger: ModerationLedger = Depends(get_ledger_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> StrikesOut:
    history = await ledger.strike_history(user_id)
    return StrikesOut(
        user_id=user_id,
        strike_count=await ledger.strike_count(user_id),
        history=[ModerationLogOut.from_log(log) for log in history],
    )


@router.get("/users/{user_id}/reports", response_model=ReportListOut)
async def user_reports(
    user_id: str,
    reports: ReportWorkflow = Depends(get_reports_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> ReportListOut:
    items = await reports.list_about_user(user_id)
    return ReportListOut(reports=[ReportOut.from_report(report) for report in items])


@router.delete("/blocks/{block_id}", response_model=BlockOut)
async def lift_block(
    block_id: str,
    registry: BlockRegistry = Depends(get_block_registry_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> BlockOut:
    return BlockOut.from_block(await registry.unblock(block_id, moderator.id, moderator=True))


@router.post("/attachments/{attachment_id}/scan", response_model=AttachmentOut)
async def scan_attachment(
    attachment_id: str,
    attachments: AttachmentService = Depends(get_attachments_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> AttachmentOut:
    return AttachmentOut.from_attachment(await attachments.scan(attachment_id))


@router.post("/attachments/{attachment_id}/scan-result", response_model=AttachmentOut)
async def apply_scan_result(
    attachment_id: str,
    body: ScanResultIn,
    attachments: AttachmentService = Depends(get_attachments_dep),
    _: AuthenticatedUser = Depends(require_moderator),
) -> AttachmentOut:
    return AttachmentOut.from_attachment(await attachments.apply_scan_result(attachment_id, body.scan_status))


@router.post("/context-links/{link_id}/approve", response_model=ContextLinkOut)
async def approve_context(
    link_id: str,
    links: ContextLinkResolver = Depends(get_context_links_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> ContextLinkOut:
    return ContextLinkOut.from_link(await links.approve(link_id, moderator.id, moderator=True))


@router.post("/contexts/revoke", response_model=RevokeContextOut)
async def revoke_context(
    body: RevokeContextIn,
    links: ContextLinkResolver = Depends(get_context_links_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> RevokeContextOut:
    closed = await links.revoke_context(body.context_type, body.context_id, moderator.id)
    return RevokeContextOut(closed_rooms=closed)


@router.get("/dashboard")
async def dashboard(
    offenders: int = Query(default=10, ge=1, le=100),
    board: ModerationDashboard = Depends(get_dashboard_dep),
    moderator: AuthenticatedUser = Depends(require_moderator),
) -> dict[str, Any]:
    allowed = await allow(
        _DASHBOARD_RATE_KEY,
        moderator.id,
        limit=_DASHBOARD_RATE_LIMIT,
        window_seconds=_DASHBOARD_RATE_WINDOW,
    )
    if not allowed:
        raise RateLimited()
    stats = await board.stats(offenders=offenders)
    return stats.to_dict()


@router.post("/sweeps/run")
async def run_sweeps(_: AuthenticatedUser = Depends(require_moderator)) -> dict[str, int]:
    return await sweeps.run_once()


__all__ = ["router"]

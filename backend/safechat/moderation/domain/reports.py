"""Abuse reports: filing, review and resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Mapping, Optional, Sequence
from uuid import uuid4

import pydantic

from safechat.domain.chat.exceptions import (
    AlreadyFinal,
    InvalidTransition,
    MessageNotFound,
    ReportCooldown,
    ReportNotFound,
    RoomNotFound,
    SelfReport,
    ValidationError,
)
from safechat.domain.chat.models import ChatMessage, ChatRoom, RoomStatus, SafetyFlags, utcnow
from safechat.domain.chat.pipeline import MessagePipeline
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.moderation.domain.ledger import ModerationLedger, parse_action
from safechat.moderation.domain.models import (
    ChatReport,
    ModerationAction,
    ModerationLog,
    ReportEvidence,
    ReportStatus,
    ReportType,
    TargetType,
)
from safechat.moderation.domain.repository import OPEN_STATUSES, ReportRepository
from safechat.obs import metrics as obs_metrics
from safechat.settings import settings

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 2000

# Review vocabulary used by the admin console
ACTION_ALIASES: Mapping[str, Optional[ModerationAction]] = {
    "none": None,
    "warning": ModerationAction.USER_WARN,
    "mute": ModerationAction.USER_MUTE,
    "ban": ModerationAction.USER_BAN,
}


@dataclass(slots=True)
class EvidenceBundle:
    report: ChatReport
    room: ChatRoom
    message: Optional[ChatMessage]
    context: list[ChatMessage] = field(default_factory=list)
    flags: Optional[SafetyFlags] = None


def parse_report_type(value: str | ReportType) -> ReportType:
    try:
        return ReportType(value)
    except ValueError:
        raise ValidationError("invalid_report_type") from None


def parse_evidence(value: Any) -> Optional[ReportEvidence]:
    if value is None or isinstance(value, ReportEvidence):
        return value
    try:
        return ReportEvidence.model_validate(value)
    except pydantic.ValidationError:
        raise ValidationError("invalid_evidence") from None


def resolve_action(value: Optional[str | ModerationAction]) -> Optional[ModerationAction]:
    if value is None:
        return None
    if isinstance(value, str) and value in ACTION_ALIASES:
        return ACTION_ALIASES[value]
    return parse_action(value)


class ReportWorkflow:
    """Drives reports from pending through investigation to a final decision.

    Status only moves forward. Final reports (resolved or dismissed) reject any
    further decision with ``AlreadyFinal``.
    """

    def __init__(
        self,
        repository: ReportRepository,
        rooms: ChatRoomStore,
        messages: MessagePipeline,
        ledger: ModerationLedger,
    ) -> None:
        self._repo = repository
        self._rooms = rooms
        self._messages = messages
        self._ledger = ledger

    async def file_report(
        self,
        room_id: str,
        reporter_id: str,
        reported_user_id: str,
        report_type: str | ReportType,
        description: str = "",
        message_id: Optional[str] = None,
        evidence: Any = None,
    ) -> ChatReport:
        if reporter_id == reported_user_id:
            raise SelfReport()
        kind = parse_report_type(report_type)
        text = (description or "").strip()
        if len(text) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError("description_too_long")
        document = parse_evidence(evidence)

        room = await self._rooms.get_room_for(room_id, reporter_id)
        if room.counterpart(reporter_id) != reported_user_id:
            raise ValidationError("reported_user_not_participant")
        if message_id:
            message = await self._messages.get_message(message_id)
            if message.room_id != room_id:
                raise MessageNotFound()
            if message.sender_id != reported_user_id:
                raise ValidationError("message_not_from_reported_user")

        now = utcnow()
        since = now - timedelta(hours=settings.report_cooldown_hours)
        if await self._repo.latest_by_reporter(reporter_id, room_id, since) is not None:
            raise ReportCooldown()

        report = ChatReport(
            report_id=str(uuid4()),
            room_id=room_id,
            reported_by=reporter_id,
            reported_user=reported_user_id,
            report_type=kind,
            description=text,
            message_id=message_id or None,
            evidence=document,
            created_at=now,
            updated_at=now,
        )
        created = await self._repo.insert(report)
        if message_id:
            await self._messages.increment_report_count(message_id)
        await self._rooms.mark_reported(room_id, reporter_id, kind.value)
        obs_metrics.inc_report_filed(kind.value)
        logger.info(
            "chat_report_filed",
            extra={
                "report_id": created.report_id,
                "room_id": room_id,
                "reporter_id": reporter_id,
                "reported_user": reported_user_id,
                "report_type": kind.value,
            },
        )
        return created

    async def get_report(self, report_id: str) -> ChatReport:
        report = await self._repo.get(report_id)
        if report is None:
            raise ReportNotFound()
        return report

    async def investigate(self, report_id: str, reviewer_id: str) -> ChatReport:
        now = utcnow()

        def _mutate(draft: ChatReport) -> None:
            if draft.status.is_final:
                raise AlreadyFinal()
            if draft.status != ReportStatus.PENDING:
                raise InvalidTransition("report_not_pending")
            draft.status = ReportStatus.INVESTIGATING
            draft.reviewed_by = reviewer_id
            draft.reviewed_at = now
            draft.updated_at = now

        updated = await self._repo.update(report_id, _mutate)
        logger.info("chat_report_investigating", extra={"report_id": report_id, "reviewer_id": reviewer_id})
        return updated

    async def resolve(
        self,
        report_id: str,
        reviewer_id: str,
        decision: str | ReportStatus = ReportStatus.RESOLVED,
        action_taken: Optional[str | ModerationAction] = None,
        notes: Optional[str] = None,
        *,
        duration_minutes: Optional[int] = None,
    ) -> tuple[ChatReport, Optional[ModerationLog]]:
        """Finalise a report; a resolution with an action writes one ledger entry for it."""
        try:
            outcome = ReportStatus(decision)
        except ValueError:
            raise ValidationError("invalid_decision") from None
        if not outcome.is_final:
            raise ValidationError("invalid_decision")
        report = await self.get_report(report_id)
        if report.status.is_final:
            raise AlreadyFinal()
        action = resolve_action(action_taken) if outcome == ReportStatus.RESOLVED else None
        target = self._action_target(report, action) if action else None
        if action is not None and target is not None:
            restorable = await self._room_to_restore(report)
            await self._ledger.check_action(
                target[0],
                target[1],
                action,
                duration_minutes,
                subject_user_id=report.reported_user if target[0] == TargetType.ROOM else None,
                room_status=(restorable.status_before_report or RoomStatus.ACTIVE) if restorable else None,
            )

        now = utcnow()

        def _mutate(draft: ChatReport) -> None:
            if draft.status.is_final:
                raise AlreadyFinal()
            draft.status = outcome
            draft.reviewed_by = reviewer_id
            draft.reviewed_at = now
            draft.review_notes = notes
            draft.action_taken = action.value if action else "none"
            draft.resolved_at = now
            draft.updated_at = now

        updated = await self._repo.update(report_id, _mutate)
        reported_room = await self._restore_room(updated)

        entry: Optional[ModerationLog] = None
        try:
            if action is not None and target is not None:
                entry = await self._ledger.record_action(
                    reviewer_id,
                    target[0],
                    target[1],
                    action,
                    reason=notes or f"report:{updated.report_type.value}",
                    duration_minutes=duration_minutes,
                    related_report_id=report_id,
                    related_room_id=updated.room_id,
                    related_message_id=updated.message_id,
                    subject_user_id=updated.reported_user if target[0] == TargetType.ROOM else None,
                )
            else:
                bookkeeping = (
                    ModerationAction.REPORT_RESOLVE
                    if outcome == ReportStatus.RESOLVED
                    else ModerationAction.REPORT_DISMISS
                )
                await self._ledger.record_action(
                    reviewer_id,
                    TargetType.ROOM,
                    updated.room_id,
                    bookkeeping,
                    reason=notes,
                    related_report_id=report_id,
                    enforce=False,
                )
        except Exception:
            await self._reopen(report, reported_room)
            raise

        obs_metrics.inc_report_decision(outcome.value)
        logger.info(
            "chat_report_decided",
            extra={
                "report_id": report_id,
                "reviewer_id": reviewer_id,
                "decision": outcome.value,
                "action": action.value if action else "none",
            },
        )
        return updated, entry

    async def dismiss(self, report_id: str, reviewer_id: str, notes: Optional[str] = None) -> ChatReport:
        report, _ = await self.resolve(report_id, reviewer_id, ReportStatus.DISMISSED, notes=notes)
        return report

    def _action_target(self, report: ChatReport, action: ModerationAction) -> tuple[TargetType, str]:
        if action in (
            ModerationAction.MESSAGE_DELETE,
            ModerationAction.MESSAGE_HIDE,
            ModerationAction.CONTENT_REMOVE,
        ):
            if not report.message_id:
                raise ValidationError("report_has_no_message")
            return TargetType.MESSAGE, report.message_id
        if action in (
            ModerationAction.USER_WARN,
            ModerationAction.USER_MUTE,
            ModerationAction.USER_BAN,
            ModerationAction.USER_UNBAN,
        ):
            return TargetType.USER, report.reported_user
        return TargetType.ROOM, report.room_id

    async def _room_to_restore(self, report: ChatReport) -> Optional[ChatRoom]:
        """The REPORTED room that finalising ``report`` would restore, if any."""
        if await self._repo.count_open_for_room(report.room_id, exclude_report_id=report.report_id):
            return None
        try:
            room = await self._rooms.get_room(report.room_id)
        except RoomNotFound:
            return None
        return room if room.status == RoomStatus.REPORTED else None

    async def _restore_room(self, report: ChatReport) -> Optional[ChatRoom]:
        """Return the room to its pre-report status once no open report references it.

        Returns the room as it was while reported when a restore happened.
        """
        room = await self._room_to_restore(report)
        if room is None:
            return None
        restored = await self._rooms.restore_after_report(report.room_id)
        return room if restored.status != RoomStatus.REPORTED else None

    async def _reopen(self, previous: ChatReport, reported_room: Optional[ChatRoom]) -> None:
        """Put a report, and the room it restored, back the way they were before a failed decision."""

        def _mutate(draft: ChatReport) -> None:
            draft.status = previous.status
            draft.reviewed_by = previous.reviewed_by
            draft.reviewed_at = previous.reviewed_at
            draft.review_notes = previous.review_notes
            draft.action_taken = previous.action_taken
            draft.resolved_at = previous.resolved_at
            draft.updated_at = previous.updated_at

        await self._repo.update(previous.report_id, _mutate)
        if reported_room is not None:
            await self._rooms.reinstate_report(reported_room.room_id, reported_room)
        logger.warning("chat_report_decision_rolled_back", extra={"report_id": previous.report_id})

    async def escalate_to_legal(self, report_id: str, actor_id: str, notes: Optional[str] = None) -> ChatReport:
        """Flag a report for legal review without changing its status."""
        now = utcnow()

        def _mutate(draft: ChatReport) -> None:
            draft.escalated_to_legal = True
            draft.legal_notes = notes
            draft.escalated_at = draft.escalated_at or now
            draft.updated_at = now

        updated = await self._repo.update(report_id, _mutate)
        await self._ledger.record_action(
            actor_id,
            TargetType.ROOM,
            updated.room_id,
            ModerationAction.REPORT_ESCALATE,
            reason=notes,
            related_report_id=report_id,
            enforce=False,
        )
        logger.warning("chat_report_escalated", extra={"report_id": report_id, "actor_id": actor_id})
        return updated

    async def build_evidence_bundle(self, report_id: str) -> EvidenceBundle:
        report = await self.get_report(report_id)
        room = await self._rooms.get_room(report.room_id)
        message = None
        if report.message_id:
            message = await self._messages.get_message(report.message_id)
        context = await self._messages.recent_messages(report.room_id, settings.report_context_messages)
        return EvidenceBundle(
            report=report,
            room=room,
            message=message,
            context=list(context),
            flags=message.flags if message else None,
        )

    async def list_pending(self, *, limit: int = 50, offset: int = 0) -> Sequence[ChatReport]:
        return await self._repo.list_by_status(OPEN_STATUSES, limit=limit, offset=offset)

    async def list_for_room(self, room_id: str) -> Sequence[ChatReport]:
        return await self._repo.list_for_room(room_id)

    async def list_about_user(self, user_id: str) -> Sequence[ChatReport]:
        return await self._repo.list_about_user(user_id)

    async def frequently_reported(self, min_reports: int = 3, *, limit: int = 50) -> Sequence[tuple[str, int]]:
        return await self._repo.frequently_reported(min_reports, limit)


__all__ = [
    "ACTION_ALIASES",
    "EvidenceBundle",
    "ReportWorkflow",
    "parse_evidence",
    "parse_report_type",
    "resolve_action",
]

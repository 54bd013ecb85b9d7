"""Response schemas shared by the chat and admin routers."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from safechat.domain.chat.models import (
    BlockType,
    ChatAttachment,
    ChatContextLink,
    ChatMessage,
    ChatRoom,
    ContextType,
    FlaggedBy,
    MessageType,
    MessageView,
    RoomStatus,
    ScanStatus,
    UserBlock,
)
from safechat.moderation.domain.models import (
    AppealDecision,
    ChatReport,
    ModerationAction,
    ModerationLog,
    ReportStatus,
    ReportType,
    TargetType,
)


class RoomOut(BaseModel):
    room_id: str
    participants: list[str]
    counterpart_id: str | None = None
    context_type: ContextType
    context_id: str | None
    status: RoomStatus
    last_message_id: str | None
    last_message_at: datetime | None
    message_count: int
    unread_count: int | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_room(cls, room: ChatRoom, viewer_id: str | None = None) -> "RoomOut":
        """Render a room; with a viewer the counterpart and that viewer's unread count are included."""
        return cls(
            room_id=room.room_id,
            participants=[room.user_id_a, room.user_id_b],
            counterpart_id=room.counterpart(viewer_id) if viewer_id else None,
            context_type=room.context_type,
            context_id=room.context_id,
            status=room.status,
            last_message_id=room.last_message_id,
            last_message_at=room.last_message_at,
            message_count=room.message_count,
            unread_count=room.unread_for(viewer_id) if viewer_id else None,
            created_at=room.created_at,
            updated_at=room.updated_at,
        )


class AdminRoomOut(RoomOut):
    muted_by: str | None = None
    blocked_by: str | None = None
    reported_by: str | None = None
    reported_at: datetime | None = None
    report_reason: str | None = None
    closed_by: str | None = None
    close_reason: str | None = None
    is_deleted: bool = False

    @classmethod
    def from_room(cls, room: ChatRoom, viewer_id: str | None = None) -> "AdminRoomOut":
        base = RoomOut.from_room(room).model_dump()
        return cls(
            **base,
            muted_by=room.muted_by,
            blocked_by=room.blocked_by,
            reported_by=room.reported_by,
            reported_at=room.reported_at,
            report_reason=room.report_reason,
            closed_by=room.closed_by,
            close_reason=room.close_reason,
            is_deleted=room.is_deleted,
        )


class MessageOut(BaseModel):
    message_id: str
    room_id: str
    sender_id: str
    message_type: MessageType
    content: str | None
    sent_at: datetime
    reply_to_id: str | None
    is_flagged: bool
    removed: bool
    retracted: bool
    read_at: datetime | None
    edited_at: datetime | None

    @classmethod
    def from_view(cls, view: MessageView) -> "MessageOut":
        return cls(
            message_id=view.message_id,
            room_id=view.room_id,
            sender_id=view.sender_id,
            message_type=view.message_type,
            content=view.content,
            sent_at=view.sent_at,
            reply_to_id=view.reply_to_id,
            is_flagged=view.is_flagged,
            removed=view.removed,
            retracted=view.retracted,
            read_at=view.read_at,
            edited_at=view.edited_at,
        )

    @classmethod
    def from_message(cls, message: ChatMessage) -> "MessageOut":
        return cls.from_view(MessageView.render(message))


class AdminMessageOut(BaseModel):
    """Moderators see stored content and flags regardless of removal."""

    message_id: str
    room_id: str
    sender_id: str
    message_type: MessageType
    content: str
    sent_at: datetime
    flags: dict[str, bool]
    is_flagged: bool
    flagged_by: FlaggedBy | None
    flagged_reason: str | None
    report_count: int
    is_hidden: bool
    is_deleted: bool
    deleted_by: str | None
    deleted_reason: str | None
    is_retracted: bool

    @classmethod
    def from_message(cls, message: ChatMessage) -> "AdminMessageOut":
        return cls(
            message_id=message.message_id,
            room_id=message.room_id,
            sender_id=message.sender_id,
            message_type=message.message_type,
            content=message.content,
            sent_at=message.sent_at,
            flags=message.flags.to_dict(),
            is_flagged=message.is_flagged,
            flagged_by=message.flagged_by,
            flagged_reason=message.flagged_reason,
            report_count=message.report_count,
            is_hidden=message.is_hidden,
            is_deleted=message.is_deleted,
            deleted_by=message.deleted_by,
            deleted_reason=message.deleted_reason,
            is_retracted=message.is_retracted,
        )


class BlockOut(BaseModel):
    block_id: str
    blocker_id: str
    blocked_id: str
    block_type: BlockType
    block_reason: str | None
    is_permanent: bool
    expires_at: datetime | None
    is_active: bool
    unblocked_at: datetime | None
    created_at: datetime

    @classmethod
    def from_block(cls, block: UserBlock) -> "BlockOut":
        return cls(
            block_id=block.block_id,
            blocker_id=block.blocker_id,
            blocked_id=block.blocked_id,
            block_type=block.block_type,
            block_reason=block.block_reason,
            is_permanent=block.is_permanent,
            expires_at=block.expires_at,
            is_active=block.is_active,
            unblocked_at=block.unblocked_at,
            created_at=block.created_at,
        )


class ContextLinkOut(BaseModel):
    link_id: str
    room_id: str
    context_type: ContextType
    context_id: str
    requires_approval: bool
    approved_at: datetime | None
    approved_by: str | None
    expires_at: datetime | None
    is_active: bool
    deactivation_reason: str | None

    @classmethod
    def from_link(cls, link: ChatContextLink) -> "ContextLinkOut":
        return cls(
            link_id=link.link_id,
            room_id=link.room_id,
            context_type=link.context_type,
            context_id=link.context_id,
            requires_approval=link.requires_approval,
            approved_at=link.approved_at,
            approved_by=link.approved_by,
            expires_at=link.expires_at,
            is_active=link.is_active,
            deactivation_reason=link.deactivation_reason,
        )


class AttachmentOut(BaseModel):
    attachment_id: str
    message_id: str
    room_id: str
    uploaded_by: str
    file_name: str
    file_type: str
    file_size: int
    mime_type: str | None
    scan_status: ScanStatus
    download_allowed: bool
    download_count: int
    expiry_at: datetime | None
    created_at: datetime

    @classmethod
    def from_attachment(cls, attachment: ChatAttachment) -> "AttachmentOut":
        return cls(
            attachment_id=attachment.attachment_id,
            message_id=attachment.message_id,
            room_id=attachment.room_id,
            uploaded_by=attachment.uploaded_by,
            file_name=attachment.file_name,
            file_type=attachment.file_type,
            file_size=attachment.file_size,
            mime_type=attachment.mime_type,
            scan_status=attachment.scan_status,
            download_allowed=attachment.download_allowed,
            download_count=attachment.download_count,
            expiry_at=attachment.expiry_at,
            created_at=attachment.created_at,
        )


class ReportOut(BaseModel):
    report_id: str
    room_id: str
    message_id: str | None
    reported_by: str
    reported_user: str
    report_type: ReportType
    description: str
    evidence: dict[str, Any] | None
    status: ReportStatus
    reviewed_by: str | None
    reviewed_at: datetime | None
    review_notes: str | None
    action_taken: str | None
    resolved_at: datetime | None
    escalated_to_legal: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_report(cls, report: ChatReport) -> "ReportOut":
        return cls(
            report_id=report.report_id,
            room_id=report.room_id,
            message_id=report.message_id,
            reported_by=report.reported_by,
            reported_user=report.reported_user,
            report_type=report.report_type,
            description=report.description,
            evidence=report.evidence.model_dump(mode="json") if report.evidence else None,
            status=report.status,
            reviewed_by=report.reviewed_by,
            reviewed_at=report.reviewed_at,
            review_notes=report.review_notes,
            action_taken=report.action_taken,
            resolved_at=report.resolved_at,
            escalated_to_legal=report.escalated_to_legal,
            created_at=report.created_at,
            updated_at=report.updated_at,
        )


class ModerationLogOut(BaseModel):
    log_id: str
    admin_id: str
    target_type: TargetType
    target_id: str
    action: ModerationAction
    reason: str | None
    duration_minutes: int | None
    related_report_id: str | None
    strike_user_id: str | None
    accrued_strike: bool
    user_strike_count: int
    is_system: bool
    appeal_allowed: bool
    appeal_deadline: datetime | None
    appealed_at: datetime | None
    appeal_reason: str | None
    appeal_decision: AppealDecision | None
    appeal_reviewed_by: str | None
    created_at: datetime

    @classmethod
    def from_log(cls, log: ModerationLog) -> "ModerationLogOut":
        return cls(
            log_id=log.log_id,
            admin_id=log.admin_id,
            target_type=log.target_type,
            target_id=log.target_id,
            action=log.action,
            reason=log.reason,
            duration_minutes=log.duration_minutes,
            related_report_id=log.related_report_id,
            strike_user_id=log.strike_user_id,
            accrued_strike=log.accrued_strike,
            user_strike_count=log.user_strike_count,
            is_system=log.is_system,
            appeal_allowed=log.appeal_allowed,
            appeal_deadline=log.appeal_deadline,
            appealed_at=log.appealed_at,
            appeal_reason=log.appeal_reason,
            appeal_decision=log.appeal_decision,
            appeal_reviewed_by=log.appeal_reviewed_by,
            created_at=log.created_at,
        )


__all__ = [
    "AdminMessageOut",
    "AdminRoomOut",
    "AttachmentOut",
    "BlockOut",
    "ContextLinkOut",
    "MessageOut",
    "ModerationLogOut",
    "ReportOut",
    "RoomOut",
]

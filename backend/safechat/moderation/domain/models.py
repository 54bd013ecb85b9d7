"""Report and moderation-ledger models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from safechat.domain.chat.models import decode_json, utcnow

EVIDENCE_SCHEMA_VERSION = 1


class ReportType(str, Enum):
    ABUSE = "abuse"
    HARASSMENT = "harassment"
    SCAM = "scam"
    HATE_SPEECH = "hate_speech"
    SEXUAL_CONTENT = "sexual_content"
    SPAM = "spam"
    FRAUD = "fraud"
    IMPERSONATION = "impersonation"
    OTHER = "other"


class ReportStatus(str, Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"

    @property
    def is_final(self) -> bool:
        return self in (ReportStatus.RESOLVED, ReportStatus.DISMISSED)

    @property
    def is_open(self) -> bool:
        return not self.is_final


class ModerationAction(str, Enum):
    CHAT_WARNING = "chat_warning"
    CHAT_MUTE = "chat_mute"
    CHAT_CLOSE = "chat_close"
    MESSAGE_DELETE = "message_delete"
    MESSAGE_HIDE = "message_hide"
    USER_WARN = "user_warn"
    USER_MUTE = "user_mute"
    USER_BAN = "user_ban"
    USER_UNBAN = "user_unban"
    CONTENT_REMOVE = "content_remove"
    REPORT_RESOLVE = "report_resolve"
    REPORT_DISMISS = "report_dismiss"
    REPORT_ESCALATE = "report_escalate"


# Actions that count against the affected user
STRIKE_ACTIONS = frozenset(
    {
        ModerationAction.USER_WARN,
        ModerationAction.USER_MUTE,
        ModerationAction.USER_BAN,
        ModerationAction.CHAT_WARNING,
        ModerationAction.MESSAGE_DELETE,
        ModerationAction.MESSAGE_HIDE,
        ModerationAction.CONTENT_REMOVE,
    }
)


class TargetType(str, Enum):
    ROOM = "chat_room"
    MESSAGE = "message"
    USER = "user"


class AppealDecision(str, Enum):
    UPHELD = "upheld"
    OVERTURNED = "overturned"


class ReportEvidence(BaseModel):
    """Versioned evidence document attached to a report."""

    model_config = ConfigDict(extra="forbid")

    schema_version: int = Field(default=EVIDENCE_SCHEMA_VERSION, ge=1, le=EVIDENCE_SCHEMA_VERSION)
    screenshot_url: Optional[str] = Field(default=None, max_length=2048)
    message_ids: List[str] = Field(default_factory=list, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=2000)
    attributes: Dict[str, str] = Field(default_factory=dict)


@dataclass(slots=True)
class ChatReport:
    report_id: str
    room_id: str
    reported_by: str
    reported_user: str
    report_type: ReportType
    description: str
    message_id: Optional[str] = None
    evidence: Optional[ReportEvidence] = None
    status: ReportStatus = ReportStatus.PENDING
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    action_taken: Optional[str] = None
    resolved_at: Optional[datetime] = None
    escalated_to_legal: bool = False
    legal_notes: Optional[str] = None
    escalated_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ChatReport":
        evidence = decode_json(record.get("evidence"))
        return cls(
            report_id=str(record["id"]),
            room_id=str(record["chat_id"]),
            reported_by=str(record["reported_by"]),
            reported_user=str(record["reported_user"]),
            report_type=ReportType(record["report_type"]),
            description=record.get("description") or "",
            message_id=record.get("message_id"),
            evidence=ReportEvidence.model_validate(evidence) if evidence else None,
            status=ReportStatus(record["status"]),
            reviewed_by=record.get("reviewed_by"),
            reviewed_at=record.get("reviewed_at"),
            review_notes=record.get("review_notes"),
            action_taken=record.get("action_taken"),
            resolved_at=record.get("resolved_at"),
            escalated_to_legal=bool(record.get("escalated_to_legal")),
            legal_notes=record.get("legal_notes"),
            escalated_at=record.get("escalated_at"),
            created_at=record["created_at"],
            updated_at=record["updated_at"],
        )


@dataclass(slots=True)
class ModerationLog:
    log_id: str
    admin_id: str
    target_type: TargetType
    target_id: str
    action: ModerationAction
    reason: Optional[str] = None
    duration_minutes: Optional[int] = None
    notes: Optional[str] = None
    related_report_id: Optional[str] = None
    related_room_id: Optional[str] = None
    related_message_id: Optional[str] = None
    strike_user_id: Optional[str] = None
    accrued_strike: bool = False
    user_strike_count: int = 0
    is_system: bool = False
    appeal_allowed: bool = True
    appeal_deadline: Optional[datetime] = None
    appealed_at: Optional[datetime] = None
    appeal_reason: Optional[str] = None
    appeal_decision: Optional[AppealDecision] = None
    appeal_reviewed_by: Optional[str] = None
    appeal_reviewed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def overturned(self) -> bool:
        return self.appeal_decision == AppealDecision.OVERTURNED

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "ModerationLog":
        decision = record.get("appeal_decision")
        return cls(
            log_id=str(record["id"]),
            admin_id=str(record["admin_id"]),
            target_type=TargetType(record["target_type"]),
            target_id=str(record["target_id"]),
            action=ModerationAction(record["action"]),
            reason=record.get("reason"),
            duration_minutes=record.get("duration_minutes"),
            notes=record.get("notes"),
            related_report_id=record.get("related_report_id"),
            related_room_id=record.get("related_chat_id"),
            related_message_id=record.get("related_message_id"),
            strike_user_id=record.get("strike_user_id"),
            accrued_strike=bool(record.get("accrued_strike")),
            user_strike_count=int(record.get("user_strike_count") or 0),
            is_system=bool(record.get("is_system")),
            appeal_allowed=bool(record.get("appeal_allowed")),
            appeal_deadline=record.get("appeal_deadline"),
            appealed_at=record.get("appealed_at"),
            appeal_reason=record.get("appeal_reason"),
            appeal_decision=AppealDecision(decision) if decision else None,
            appeal_reviewed_by=record.get("appeal_reviewed_by"),
            appeal_reviewed_at=record.get("appeal_reviewed_at"),
            created_at=record["created_at"],
        )


__all__ = [
    "AppealDecision",
    "ChatReport",
    "EVIDENCE_SCHEMA_VERSION",
    "ModerationAction",
    "ModerationLog",
    "ReportEvidence",
    "ReportStatus",
    "ReportType",
    "STRIKE_ACTIONS",
    "TargetType",
]

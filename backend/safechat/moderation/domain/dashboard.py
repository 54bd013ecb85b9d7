"""Aggregate counters for the moderation admin dashboard."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from safechat.domain.chat.models import RoomStatus
from safechat.domain.chat.pipeline import MessagePipeline
from safechat.domain.chat.rooms import ChatRoomStore
from safechat.moderation.domain.ledger import ModerationLedger
from safechat.moderation.domain.models import ReportStatus
from safechat.moderation.domain.repository import ReportRepository


@dataclass(slots=True)
class DashboardStats:
    total_rooms: int = 0
    active_rooms: int = 0
    reported_rooms: int = 0
    total_messages: int = 0
    flagged_messages: int = 0
    total_reports: int = 0
    pending_reports: int = 0
    resolved_reports: int = 0
    reports_by_type: dict[str, int] = field(default_factory=dict)
    top_offenders: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ModerationDashboard:
    def __init__(
        self,
        rooms: ChatRoomStore,
        messages: MessagePipeline,
        reports: ReportRepository,
        ledger: ModerationLedger,
    ) -> None:
        self._rooms = rooms
        self._messages = messages
        self._reports = reports
        self._ledger = ledger

    async def stats(self, *, offenders: int = 10) -> DashboardStats:
        pending = await self._reports.count(status=ReportStatus.PENDING)
        pending += await self._reports.count(status=ReportStatus.INVESTIGATING)
        top = await self._ledger.top_offenders(offenders)
        return DashboardStats(
            total_rooms=await self._rooms.count_rooms(),
            active_rooms=await self._rooms.count_rooms(status=RoomStatus.ACTIVE),
            reported_rooms=await self._rooms.count_rooms(status=RoomStatus.REPORTED),
            total_messages=await self._messages.count_messages(),
            flagged_messages=await self._messages.count_messages(flagged_only=True),
            total_reports=await self._reports.count(),
            pending_reports=pending,
            resolved_reports=await self._reports.count(status=ReportStatus.RESOLVED),
            reports_by_type=await self._reports.count_by_type(),
            top_offenders=[{"user_id": user_id, "strike_count": count} for user_id, count in top],
        )


__all__ = ["DashboardStats", "ModerationDashboard"]

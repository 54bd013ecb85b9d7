"""Storage contracts for reports and the moderation ledger."""

from __future__ import annotations

import asyncio
import copy
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, MutableMapping, Optional, Protocol, Sequence

from safechat.domain.chat.exceptions import LogNotFound, ReportNotFound
from safechat.moderation.domain.models import (
    ChatReport,
    ModerationLog,
    ReportStatus,
    TargetType,
)

ReportMutation = Callable[[ChatReport], None]
LogMutation = Callable[[ModerationLog], None]

OPEN_STATUSES = (ReportStatus.PENDING, ReportStatus.INVESTIGATING)


class ReportRepository(Protocol):
    async def insert(self, report: ChatReport) -> ChatReport:
        """Persist a new report."""

    async def get(self, report_id: str) -> Optional[ChatReport]:
        """Fetch a report by id."""

    async def update(self, report_id: str, mutate: ReportMutation) -> ChatReport:
        """Apply ``mutate`` under the report row lock and persist it."""

    async def latest_by_reporter(self, reporter_id: str, room_id: str, since: datetime) -> Optional[ChatReport]:
        """Most recent non-dismissed report by a reporter on a room since ``since``."""

    async def count_open_for_room(self, room_id: str, *, exclude_report_id: Optional[str] = None) -> int:
        """Pending or investigating reports on a room."""

    async def list_by_status(
        self, statuses: Iterable[ReportStatus], *, limit: int, offset: int
    ) -> Sequence[ChatReport]:
        """Reports in the given statuses, newest first."""

    async def list_for_room(self, room_id: str) -> Sequence[ChatReport]:
        """All reports on a room, newest first."""

    async def list_about_user(self, user_id: str) -> Sequence[ChatReport]:
        """All reports naming a user, newest first."""

    async def frequently_reported(self, min_reports: int, limit: int) -> Sequence[tuple[str, int]]:
        """Users with at least ``min_reports`` reports, most reported first."""

    async def count(self, *, status: Optional[ReportStatus] = None) -> int:
        """Count reports, optionally by status."""

    async def count_by_type(self) -> dict[str, int]:
        """Report totals keyed by report type."""


class LedgerRepository(Protocol):
    async def append(self, log: ModerationLog) -> ModerationLog:
        """Insert an entry, computing ``user_strike_count`` under a per-user lock.

        The stored count is the number of strike-accruing entries for
        ``strike_user_id`` including this one when ``log.accrued_strike`` is set.
        """

    async def get(self, log_id: str) -> Optional[ModerationLog]:
        """Fetch an entry by id."""

    async def update(self, log_id: str, mutate: LogMutation) -> ModerationLog:
        """Apply ``mutate`` under the entry row lock and persist it."""

    async def strike_history(self, user_id: str) -> Sequence[ModerationLog]:
        """Entries attributed to a user, oldest first."""

    async def list_for_target(self, target_type: TargetType, target_id: str) -> Sequence[ModerationLog]:
        """Entries against a target, newest first."""

    async def top_offenders(self, limit: int) -> Sequence[tuple[str, int]]:
        """Users ordered by their latest strike count."""


def _newest_first(reports: Iterable[ChatReport]) -> list[ChatReport]:
    return sorted(reports, key=lambda r: r.created_at, reverse=True)


@dataclass
class InMemoryReportRepository(ReportRepository):
    reports: MutableMapping[str, ChatReport] = field(default_factory=dict)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def insert(self, report: ChatReport) -> ChatReport:
        async with self._lock:
            self.reports[report.report_id] = copy.deepcopy(report)
            return copy.deepcopy(report)

    async def get(self, report_id: str) -> Optional[ChatReport]:
        report = self.reports.get(report_id)
        return copy.deepcopy(report) if report else None

    async def update(self, report_id: str, mutate: ReportMutation) -> ChatReport:
        async with self._lock:
            current = self.reports.get(report_id)
            if current is None:
                raise ReportNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.reports[report_id] = draft
            return copy.deepcopy(draft)

    async def latest_by_reporter(self, reporter_id: str, room_id: str, since: datetime) -> Optional[ChatReport]:
        matches = [
            r
            for r in self.reports.values()
            if r.reported_by == reporter_id
            and r.room_id == room_id
            and r.status != ReportStatus.DISMISSED
            and r.created_at >= since
        ]
        ordered = _newest_first(matches)
        return copy.deepcopy(ordered[0]) if ordered else None

    async def count_open_for_room(self, room_id: str, *, exclude_report_id: Optional[str] = None) -> int:
        return sum(
            1
            for r in self.reports.values()
            if r.room_id == room_id and r.status in OPEN_STATUSES and r.report_id != exclude_report_id
        )

    async def list_by_status(
        self, statuses: Iterable[ReportStatus], *, limit: int, offset: int
    ) -> Sequence[ChatReport]:
        wanted = set(statuses)
        reports = _newest_first(r for r in self.reports.values() if r.status in wanted)
        return [copy.deepcopy(r) for r in reports[offset : offset + limit]]

    async def list_for_room(self, room_id: str) -> Sequence[ChatReport]:
        return [copy.deepcopy(r) for r in _newest_first(r for r in self.reports.values() if r.room_id == room_id)]

    async def list_about_user(self, user_id: str) -> Sequence[ChatReport]:
        return [
            copy.deepcopy(r) for r in _newest_first(r for r in self.reports.values() if r.reported_user == user_id)
        ]

    async def frequently_reported(self, min_reports: int, limit: int) -> Sequence[tuple[str, int]]:
        counts = Counter(r.reported_user for r in self.reports.values())
        ranked = [(user, total) for user, total in counts.most_common() if total >= min_reports]
        return ranked[:limit]

    async def count(self, *, status: Optional[ReportStatus] = None) -> int:
        return sum(1 for r in self.reports.values() if status is None or r.status == status)

    async def count_by_type(self) -> dict[str, int]:
        return dict(Counter(r.report_type.value for r in self.reports.values()))


@dataclass
class InMemoryLedgerRepository(LedgerRepository):
    logs: MutableMapping[str, ModerationLog] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    _user_locks: MutableMapping[str, asyncio.Lock] = field(default_factory=lambda: defaultdict(asyncio.Lock))

    def _current_count(self, user_id: str) -> int:
        return sum(1 for log in self.logs.values() if log.strike_user_id == user_id and log.accrued_strike)

    async def append(self, log: ModerationLog) -> ModerationLog:
        if log.strike_user_id is None:
            async with self._lock:
                return self._store(log, 0)
        async with self._user_locks[log.strike_user_id]:
            async with self._lock:
                count = self._current_count(log.strike_user_id) + (1 if log.accrued_strike else 0)
                return self._store(log, count)

    def _store(self, log: ModerationLog, count: int) -> ModerationLog:
        stored = copy.deepcopy(log)
        stored.user_strike_count = count
        self.logs[stored.log_id] = stored
        self.order.append(stored.log_id)
        return copy.deepcopy(stored)

    async def get(self, log_id: str) -> Optional[ModerationLog]:
        log = self.logs.get(log_id)
        return copy.deepcopy(log) if log else None

    async def update(self, log_id: str, mutate: LogMutation) -> ModerationLog:
        async with self._lock:
            current = self.logs.get(log_id)
            if current is None:
                raise LogNotFound()
            draft = copy.deepcopy(current)
            mutate(draft)
            self.logs[log_id] = draft
            return copy.deepcopy(draft)

    async def strike_history(self, user_id: str) -> Sequence[ModerationLog]:
        return [copy.deepcopy(self.logs[i]) for i in self.order if self.logs[i].strike_user_id == user_id]

    async def list_for_target(self, target_type: TargetType, target_id: str) -> Sequence[ModerationLog]:
        return [
            copy.deepcopy(self.logs[i])
            for i in reversed(self.order)
            if self.logs[i].target_type == target_type and self.logs[i].target_id == target_id
        ]

    async def top_offenders(self, limit: int) -> Sequence[tuple[str, int]]:
        latest: dict[str, int] = {}
        for log_id in self.order:
            log = self.logs[log_id]
            if log.strike_user_id:
                latest[log.strike_user_id] = log.user_strike_count
        ranked = sorted(((u, c) for u, c in latest.items() if c > 0), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]


__all__ = [
    "InMemoryLedgerRepository",
    "InMemoryReportRepository",
    "LedgerRepository",
    "LogMutation",
    "OPEN_STATUSES",
    "ReportMutation",
    "ReportRepository",
]

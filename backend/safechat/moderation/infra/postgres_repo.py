"""PostgreSQL-backed repositories for chat reports and the moderation ledger."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Iterable, Optional, Sequence

import asyncpg

from safechat.domain.chat.exceptions import LogNotFound, ReportNotFound
from safechat.infra.postgres import run_with_retry
from safechat.moderation.domain.models import ChatReport, ModerationLog, ReportStatus, TargetType
from safechat.moderation.domain.repository import (
    OPEN_STATUSES,
    LedgerRepository,
    LogMutation,
    ReportMutation,
    ReportRepository,
)

REPORT_COLUMNS = """
    id, chat_id, message_id, reported_by, reported_user, report_type, description, evidence,
    status, reviewed_by, reviewed_at, review_notes, action_taken, resolved_at,
    escalated_to_legal, legal_notes, escalated_at, created_at, updated_at
"""

LOG_COLUMNS = """
    id, admin_id, target_type, target_id, action, reason, duration_minutes, notes,
    related_report_id, related_chat_id, related_message_id, strike_user_id, accrued_strike,
    user_strike_count, is_system, appeal_allowed, appeal_deadline, appealed_at, appeal_reason,
    appeal_decision, appeal_reviewed_by, appeal_reviewed_at, created_at
"""


def _evidence_json(report: ChatReport) -> Optional[str]:
    if report.evidence is None:
        return None
    return json.dumps(report.evidence.model_dump(mode="json"))


def _statuses(values: Iterable[ReportStatus]) -> list[str]:
    return [status.value for status in values]


class PostgresReportRepository(ReportRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def insert(self, report: ChatReport) -> ChatReport:
        record = await self.pool.fetchrow(
            f"""
            INSERT INTO chat_reports (
                id, chat_id, message_id, reported_by, reported_user, report_type, description,
                evidence, status, created_at, updated_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10, $11)
            RETURNING {REPORT_COLUMNS}
            """,
            report.report_id,
            report.room_id,
            report.message_id,
            report.reported_by,
            report.reported_user,
            report.report_type.value,
            report.description,
            _evidence_json(report),
            report.status.value,
            report.created_at,
            report.updated_at,
        )
        assert record is not None
        return ChatReport.from_record(record)

    async def get(self, report_id: str) -> Optional[ChatReport]:
        record = await self.pool.fetchrow(f"SELECT {REPORT_COLUMNS} FROM chat_reports WHERE id = $1", report_id)
        return ChatReport.from_record(record) if record else None

    async def update(self, report_id: str, mutate: ReportMutation) -> ChatReport:
        async def _op() -> ChatReport:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    record = await conn.fetchrow(
                        f"SELECT {REPORT_COLUMNS} FROM chat_reports WHERE id = $1 FOR UPDATE",
                        report_id,
                    )
                    if record is None:
                        raise ReportNotFound()
                    report = ChatReport.from_record(record)
                    mutate(report)
                    updated = await conn.fetchrow(
                        f"""
                        UPDATE chat_reports SET
                            status = $2, reviewed_by = $3, reviewed_at = $4, review_notes = $5,
                            action_taken = $6, resolved_at = $7, escalated_to_legal = $8,
                            legal_notes = $9, escalated_at = $10, updated_at = $11
                        WHERE id = $1
                        RETURNING {REPORT_COLUMNS}
                        """,
                        report_id,
                        report.status.value,
                        report.reviewed_by,
                        report.reviewed_at,
                        report.review_notes,
                        report.action_taken,
                        report.resolved_at,
                        report.escalated_to_legal,
                        report.legal_notes,
                        report.escalated_at,
                        report.updated_at,
                    )
                    return ChatReport.from_record(updated)

        return await run_with_retry(_op, label="chat_report_update")

    async def latest_by_reporter(self, reporter_id: str, room_id: str, since: datetime) -> Optional[ChatReport]:
        record = await self.pool.fetchrow(
            f"""
            SELECT {REPORT_COLUMNS} FROM chat_reports
            WHERE reported_by = $1 AND chat_id = $2 AND status <> 'dismissed' AND created_at >= $3
            ORDER BY created_at DESC
            LIMIT 1
            """,
            reporter_id,
            room_id,
            since,
        )
        return ChatReport.from_record(record) if record else None

    async def count_open_for_room(self, room_id: str, *, exclude_report_id: Optional[str] = None) -> int:
        value = await self.pool.fetchval(
            """
            SELECT COUNT(*) FROM chat_reports
            WHERE chat_id = $1 AND status = ANY($2::text[]) AND ($3::text IS NULL OR id <> $3)
            """,
            room_id,
            _statuses(OPEN_STATUSES),
            exclude_report_id,
        )
        return int(value or 0)

    async def list_by_status(
        self, statuses: Iterable[ReportStatus], *, limit: int, offset: int
    ) -> Sequence[ChatReport]:
        records = await self.pool.fetch(
            f"""
            SELECT {REPORT_COLUMNS} FROM chat_reports
            WHERE status = ANY($1::text[])
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            _statuses(statuses),
            limit,
            offset,
        )
        return [ChatReport.from_record(record) for record in records]

    async def list_for_room(self, room_id: str) -> Sequence[ChatReport]:
        records = await self.pool.fetch(
            f"SELECT {REPORT_COLUMNS} FROM chat_reports WHERE chat_id = $1 ORDER BY created_at DESC",
            room_id,
        )
        return [ChatReport.from_record(record) for record in records]

    async def list_about_user(self, user_id: str) -> Sequence[ChatReport]:
        records = await self.pool.fetch(
            f"SELECT {REPORT_COLUMNS} FROM chat_reports WHERE reported_user = $1 ORDER BY created_at DESC",
            user_id,
        )
        return [ChatReport.from_record(record) for record in records]

    async def frequently_reported(self, min_reports: int, limit: int) -> Sequence[tuple[str, int]]:
        records = await self.pool.fetch(
            """
            SELECT reported_user, COUNT(*) AS total
            FROM chat_reports
            GROUP BY reported_user
            HAVING COUNT(*) >= $1
            ORDER BY total DESC, reported_user
            LIMIT $2
            """,
            min_reports,
            limit,
        )
        return [(record["reported_user"], int(record["total"])) for record in records]

    async def count(self, *, status: Optional[ReportStatus] = None) -> int:
        value = await self.pool.fetchval(
            "SELECT COUNT(*) FROM chat_reports WHERE ($1::text IS NULL OR status = $1)",
            status.value if status else None,
        )
        return int(value or 0)

    async def count_by_type(self) -> dict[str, int]:
        records = await self.pool.fetch(
            "SELECT report_type, COUNT(*) AS total FROM chat_reports GROUP BY report_type"
        )
        return {record["report_type"]: int(record["total"]) for record in records}


class PostgresLedgerRepository(LedgerRepository):
    """Strike counts are computed under a transaction-scoped advisory lock per user."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def append(self, log: ModerationLog) -> ModerationLog:
        async def _op() -> ModerationLog:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    count = 0
                    if log.strike_user_id is not None:
                        await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", log.strike_user_id)
                        prior = await conn.fetchval(
                            """
                            SELECT COUNT(*) FROM chat_moderation_logs
                            WHERE strike_user_id = $1 AND accrued_strike = TRUE
                            """,
                            log.strike_user_id,
                        )
                        count = int(prior or 0) + (1 if log.accrued_strike else 0)
                    record = await conn.fetchrow(
                        f"""
                        INSERT INTO chat_moderation_logs (
                            id, admin_id, target_type, target_id, action, reason, duration_minutes, notes,
                            related_report_id, related_chat_id, related_message_id, strike_user_id,
                            accrued_strike, user_strike_count, is_system, appeal_allowed, appeal_deadline,
                            created_at
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17, $18)
                        RETURNING {LOG_COLUMNS}
                        """,
                        log.log_id,
                        log.admin_id,
                        log.target_type.value,
                        log.target_id,
                        log.action.value,
                        log.reason,
                        log.duration_minutes,
                        log.notes,
                        log.related_report_id,
                        log.related_room_id,
                        log.related_message_id,
                        log.strike_user_id,
                        log.accrued_strike,
                        count,
                        log.is_system,
                        log.appeal_allowed,
                        log.appeal_deadline,
                        log.created_at,
                    )
                    return ModerationLog.from_record(record)

        return await run_with_retry(_op, label="moderation_log_append")

    async def get(self, log_id: str) -> Optional[ModerationLog]:
        record = await self.pool.fetchrow(f"SELECT {LOG_COLUMNS} FROM chat_moderation_logs WHERE id = $1", log_id)
        return ModerationLog.from_record(record) if record else None

    async def update(self, log_id: str, mutate: LogMutation) -> ModerationLog:
        async def _op() -> ModerationLog:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    record = await conn.fetchrow(
                        f"SELECT {LOG_COLUMNS} FROM chat_moderation_logs WHERE id = $1 FOR UPDATE",
                        log_id,
                    )
                    if record is None:
                        raise LogNotFound()
                    log = ModerationLog.from_record(record)
                    mutate(log)
                    updated = await conn.fetchrow(
                        f"""
                        UPDATE chat_moderation_logs SET
                            appealed_at = $2, appeal_reason = $3, appeal_decision = $4,
                            appeal_reviewed_by = $5, appeal_reviewed_at = $6
                        WHERE id = $1
                        RETURNING {LOG_COLUMNS}
                        """,
                        log_id,
                        log.appealed_at,
                        log.appeal_reason,
                        log.appeal_decision.value if log.appeal_decision else None,
                        log.appeal_reviewed_by,
                        log.appeal_reviewed_at,
                    )
                    return ModerationLog.from_record(updated)

        return await run_with_retry(_op, label="moderation_log_update")

    async def strike_history(self, user_id: str) -> Sequence[ModerationLog]:
        records = await self.pool.fetch(
            f"""
            SELECT {LOG_COLUMNS} FROM chat_moderation_logs
            WHERE strike_user_id = $1
            ORDER BY created_at, user_strike_count
            """,
            user_id,
        )
        return [ModerationLog.from_record(record) for record in records]

    async def list_for_target(self, target_type: TargetType, target_id: str) -> Sequence[ModerationLog]:
        records = await self.pool.fetch(
            f"""
            SELECT {LOG_COLUMNS} FROM chat_moderation_logs
            WHERE target_type = $1 AND target_id = $2
            ORDER BY created_at DESC
            """,
            target_type.value,
            target_id,
        )
        return [ModerationLog.from_record(record) for record in records]

    async def top_offenders(self, limit: int) -> Sequence[tuple[str, int]]:
        records = await self.pool.fetch(
            """
            SELECT strike_user_id, MAX(user_strike_count) AS strikes
            FROM chat_moderation_logs
            WHERE strike_user_id IS NOT NULL
            GROUP BY strike_user_id
            HAVING MAX(user_strike_count) > 0
            ORDER BY strikes DESC, strike_user_id
            LIMIT $1
            """,
            limit,
        )
        return [(record["strike_user_id"], int(record["strikes"])) for record in records]


__all__ = ["PostgresLedgerRepository", "PostgresReportRepository"]

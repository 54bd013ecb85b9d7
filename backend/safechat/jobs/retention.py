"""Physically purge rows that have been soft-deleted longer than the retention window."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

import asyncpg

from safechat.domain.chat.models import utcnow
from safechat.settings import settings

logger = logging.getLogger(__name__)

# Children first so a room is only removed once its subtree is gone
_PURGES = (
    (
        "attachments",
        """
        DELETE FROM chat_attachments WHERE id IN (
            SELECT id FROM chat_attachments
            WHERE is_deleted = TRUE AND deleted_at < $1
            LIMIT $2
        )
        """,
    ),
    (
        "messages",
        """
        DELETE FROM chat_messages WHERE id IN (
            SELECT m.id FROM chat_messages m
            WHERE m.is_deleted = TRUE AND m.deleted_at < $1
              AND NOT EXISTS (SELECT 1 FROM chat_attachments a WHERE a.message_id = m.id)
            LIMIT $2
        )
        """,
    ),
    (
        "rooms",
        """
        DELETE FROM chat_rooms WHERE id IN (
            SELECT r.id FROM chat_rooms r
            WHERE r.is_deleted = TRUE AND r.deleted_at < $1
              AND NOT EXISTS (SELECT 1 FROM chat_messages m WHERE m.chat_id = r.id)
            LIMIT $2
        )
        """,
    ),
)


def _deleted_count(status: str) -> int:
    # asyncpg returns the command tag, e.g. "DELETE 12"
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0


async def run(
    pool: asyncpg.Pool,
    *,
    now: Optional[datetime] = None,
    retention_days: Optional[int] = None,
    batch_size: Optional[int] = None,
) -> dict[str, int]:
    """Purge one batch per table and return the number of rows removed per kind."""

    now = now or utcnow()
    cutoff = now - timedelta(days=retention_days if retention_days is not None else settings.retention_days)
    limit = batch_size or settings.sweep_batch_size
    removed: dict[str, int] = {}
    async with pool.acquire() as conn:
        for kind, query in _PURGES:
            removed[kind] = _deleted_count(await conn.execute(query, cutoff, limit))
    logger.info("retention_purge_completed", extra={"cutoff": cutoff.isoformat(), **removed})
    return removed


__all__ = ["run"]

"""Periodic expiry sweeps for context links, temporary blocks and attachments."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional

from safechat import container
from safechat.domain.chat.models import utcnow
from safechat.settings import settings

logger = logging.getLogger(__name__)


async def run_once(now: Optional[datetime] = None, *, batch_size: Optional[int] = None) -> dict[str, int]:
    """Run every sweep once over a bounded batch and return per-kind counts."""

    now = now or utcnow()
    closed_rooms = await container.get_context_links().sweep_expired(now, batch_size=batch_size)
    blocks = await container.get_block_registry().sweep_expired(now, batch_size=batch_size)
    attachments = await container.get_attachment_service().sweep_expired(now, batch_size=batch_size)
    counts = {"context_links": len(closed_rooms), "blocks": blocks, "attachments": attachments}
    if any(counts.values()):
        logger.info("expiry_sweep_completed", extra=counts)
    return counts


async def run_forever(interval: Optional[float] = None) -> None:
    delay = interval if interval is not None else settings.sweep_interval_seconds
    while True:
        try:
            await run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("expiry_sweep_failed")
        await asyncio.sleep(delay)


def spawn_sweepers(*, interval: Optional[float] = None) -> list[asyncio.Task]:
    """Start the sweep loop when enabled; the caller cancels the returned tasks on shutdown."""

    if not settings.sweepers_enabled:
        return []
    loop = asyncio.get_running_loop()
    return [loop.create_task(run_forever(interval), name="chat-expiry-sweeps")]


__all__ = ["run_forever", "run_once", "spawn_sweepers"]

"""Per-actor action budgets counted in Redis.

Each (kind, actor) pair gets one counter per fixed window; the counter expires
when its window closes.
"""

from __future__ import annotations

import time
from typing import Optional

from safechat.infra.redis import redis_client

KEY_PREFIX = "safechat:budget"


def budget_key(kind: str, actor_id: str, window_seconds: int, now: float) -> tuple[str, int]:
	"""Counter key for the window containing ``now`` and the seconds left in it."""
	window_index, elapsed = divmod(int(now), window_seconds)
	return f"{KEY_PREFIX}:{kind}:{window_seconds}:{window_index}:{actor_id}", window_seconds - elapsed


async def allow(
	kind: str,
	actor_id: str,
	*,
	limit: int,
	window_seconds: int = 60,
	now: Optional[float] = None,
) -> bool:
	"""Spend one unit of ``actor_id``'s ``kind`` budget; False once it is used up."""
	if limit <= 0:
		return False
	window_seconds = max(1, int(window_seconds))
	key, ttl = budget_key(kind, actor_id, window_seconds, time.time() if now is None else now)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, ttl)
		used, _ = await pipe.execute()
	return int(used) <= limit


class FixedWindowLimiter:
	"""A budget bound to one kind so callers pass only the actor."""

	def __init__(self, kind: str, *, limit: int, window_seconds: int = 60) -> None:
		self.kind = kind
		self.limit = limit
		self.window_seconds = window_seconds

	async def __call__(self, actor_id: str) -> bool:
		return await allow(self.kind, actor_id, limit=self.limit, window_seconds=self.window_seconds)

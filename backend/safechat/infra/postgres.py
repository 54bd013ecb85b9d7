"""AsyncPG pool management and transaction retry helper."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import asyncpg

from safechat.domain.chat.exceptions import Conflict
from safechat.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool: Optional[asyncpg.pool.Pool] = None

_RETRYABLE = (
	asyncpg.exceptions.SerializationError,
	asyncpg.exceptions.DeadlockDetectedError,
)


async def init_pool() -> asyncpg.pool.Pool:
	global _pool
	if _pool is None:
		_pool = await asyncpg.create_pool(
			dsn=settings.postgres_url,
			min_size=settings.postgres_min_pool_size,
			max_size=settings.postgres_max_pool_size,
		)
	return _pool


def set_pool(pool: Optional[asyncpg.pool.Pool]) -> None:
	global _pool
	_pool = pool


async def get_pool() -> asyncpg.pool.Pool:
	if _pool is None:
		await init_pool()
	assert _pool is not None
	return _pool


async def close_pool() -> None:
	global _pool
	if _pool is not None:
		await _pool.close()
		_pool = None


async def run_with_retry(
	operation: Callable[[], Awaitable[T]],
	*,
	attempts: Optional[int] = None,
	label: str = "transaction",
) -> T:
	"""Run ``operation`` and retry it on serialization failures and deadlocks.

	``operation`` must open its own transaction so each attempt starts clean.
	When every attempt fails the caller sees ``Conflict("concurrent_update")``.
	"""
	total = max(1, attempts or settings.aggregate_retry_attempts)
	for attempt in range(1, total + 1):
		try:
			return await operation()
		except _RETRYABLE as exc:
			logger.warning(
				"postgres_retry",
				extra={"label": label, "attempt": attempt, "error": type(exc).__name__},
			)
			if attempt == total:
				raise Conflict("concurrent_update") from exc
			await asyncio.sleep(0.01 * attempt)
	raise Conflict("concurrent_update")

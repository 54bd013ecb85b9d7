"""Redis connection management.

Exposes a stable proxy so ``from safechat.infra.redis import redis_client`` keeps
working after the underlying client is swapped (fakeredis in tests).
"""

from __future__ import annotations

import redis.asyncio as redis

from safechat.settings import settings


class RedisProxy:
	"""Forward attribute access to a swappable Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)

"""
Redis client wrapper.

Responsibilities:
  • Page cache — STRING keyed by feedpage:{fingerprint}
                 value = serialised feed response JSON
                 expiry = cache TTL (milliseconds precision)

Used instead of the process-local cache when CACHE_BACKEND=redis so that
every API replica replays the same page for a fingerprint.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis

from feed_ranker.config import settings
from feed_ranker.ranking.cache import PageCache

logger = logging.getLogger(__name__)

PAGE_KEY = "feedpage:{fingerprint}"


async def init_redis() -> aioredis.Redis:
    client = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        decode_responses=True,
    )
    await client.ping()
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)
    return client


class RedisPageCache(PageCache):
    def __init__(self, client: aioredis.Redis, ttl_seconds: float) -> None:
        self._redis = client
        self._ttl_ms = max(1, int(ttl_seconds * 1000))

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(PAGE_KEY.format(fingerprint=key))

    async def set(self, key: str, payload: str) -> None:
        await self._redis.set(PAGE_KEY.format(fingerprint=key), payload, px=self._ttl_ms)

    async def close(self) -> None:
        await self._redis.aclose()

"""Redis client for webhook idempotency keys.

Usage:
    from geo_escrow.infrastructure.redis_client import init_redis, RedisIdempotencyStore

    redis = await init_redis(settings)
    store = RedisIdempotencyStore(redis, ttl_seconds=86400)
    if await store.claim("evt_123"):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as aioredis

from geo_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from geo_escrow.config import Settings

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis(settings: Settings) -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency ---


class RedisIdempotencyStore:
    """IdempotencyStore on Redis ``SET NX`` with a TTL.

    ``claim`` is atomic: of two concurrent deliveries of the same event id,
    exactly one gets True.
    """

    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int,
        prefix: str = "idempotency:webhook",
    ) -> None:
        self._client = client
        self._ttl_seconds = ttl_seconds
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def claim(self, key: str) -> bool:
        """Mark ``key`` as seen. Returns False if it was already claimed."""
        created = await self._client.set(self._key(key), "1", nx=True, ex=self._ttl_seconds)
        return bool(created)

    async def release(self, key: str) -> None:
        """Forget ``key`` so a redelivery is processed again."""
        await self._client.delete(self._key(key))

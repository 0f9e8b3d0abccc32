"""
Redis cache for instant views.

InstantCache stores the serialized instant snapshot of a location under
``instant:{location}`` with a short TTL. Every operation is best-effort:
connection failures are logged and treated as a cache miss, so requests
and ingestion are never blocked by cache infrastructure issues. A cache
built without a client is a no-op.

CHANGELOG:
- 2026-03-10: Wrap the client in InstantCache created once at startup;
  cache instant views per location (STORY-112)
- 2026-02-14: Initial creation (STORY-007)
"""

import json
import logging

import redis.asyncio as redis

logger = logging.getLogger(__name__)


def cache_key(location: str) -> str:
    """Return the Redis key for a location's instant view."""
    return f"instant:{location}"


class InstantCache:
    """Best-effort JSON cache of instant views.

    Args:
        client: Async Redis client, or None to disable caching.
        ttl_s: Expiry for cached entries in seconds.
    """

    def __init__(self, client: redis.Redis | None, ttl_s: int = 5) -> None:
        self._client = client
        self._ttl_s = ttl_s

    @classmethod
    def from_url(cls, url: str, ttl_s: int = 5) -> "InstantCache":
        """Build a cache from a Redis URL; an empty URL disables caching."""
        if not url:
            logger.info("REDIS_URL not set, instant cache disabled")
            return cls(None, ttl_s)
        return cls(redis.from_url(url), ttl_s)

    @property
    def enabled(self) -> bool:
        """True when a Redis client is configured."""
        return self._client is not None

    async def get(self, location: str) -> dict | None:
        """Return the cached view for *location*, or None on miss or failure."""
        if self._client is None:
            return None
        key = cache_key(location)
        try:
            cached = await self._client.get(key)
        except Exception:
            logger.warning("Redis read failed for key %s", key, exc_info=True)
            return None
        if cached is None:
            return None
        return json.loads(cached)

    async def set(self, location: str, view: dict) -> None:
        """Cache *view* for *location* with the configured TTL."""
        if self._client is None:
            return
        key = cache_key(location)
        try:
            await self._client.set(key, json.dumps(view), ex=self._ttl_s)
        except Exception:
            logger.warning("Redis write failed for key %s", key, exc_info=True)

    async def invalidate(self, location: str) -> None:
        """Drop the cached view for *location*."""
        if self._client is None:
            return
        key = cache_key(location)
        try:
            await self._client.delete(key)
        except Exception:
            logger.warning(
                "Failed to invalidate cache for location %s",
                location,
                exc_info=True,
            )

    async def aclose(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()

"""Read-through cache with group invalidation.

Progress reads are cached per (student, course).  The enrolled-courses
listing is cached per query shape (page, filters, ...), so one student
can own many listing keys; those keys are registered in a named GROUP
(a "registry") and dropped together when any of the student's progress
changes.

Two invalidation strategies cover each other:

  1. TTL: every entry expires on its own, so a missed invalidation
     only serves stale data for a bounded time.
  2. Explicit: every successful progress write calls ``invalidate`` on
     the progress key and ``invalidate_group`` on the student's
     enrolled-courses group.

Cache failures never fail a request: reads degrade to a miss and the
caller queries the store.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from progress_service.core.metrics import CACHE_OPERATIONS
from progress_service.db.redis import redis_pool

logger = logging.getLogger(__name__)


@runtime_checkable
class CacheInvalidator(Protocol):
    """The slice of the cache the completion engine depends on."""

    async def invalidate(self, key: str) -> None: ...

    async def invalidate_group(self, group: str) -> int: ...


@runtime_checkable
class CacheService(CacheInvalidator, Protocol):
    async def get(self, key: str) -> str | None:
        """Fetch a cached value.  Returns None on cache miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def set_in_group(
        self, key: str, value: str, ttl_seconds: int, group: str
    ) -> None:
        """Store a value and register its key in ``group``."""
        ...


class InMemoryCacheService:
    """In-memory cache for dev and tests; no TTL enforcement."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._groups: dict[str, set[str]] = {}

    async def get(self, key: str) -> str | None:
        value = self._store.get(key)
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = value

    async def set_in_group(
        self, key: str, value: str, ttl_seconds: int, group: str
    ) -> None:
        self._store[key] = value
        self._groups.setdefault(group, set()).add(key)

    async def invalidate(self, key: str) -> None:
        CACHE_OPERATIONS.labels(operation="invalidate").inc()
        self._store.pop(key, None)

    async def invalidate_group(self, group: str) -> int:
        CACHE_OPERATIONS.labels(operation="invalidate_group").inc()
        keys = self._groups.pop(group, set())
        deleted = 0
        for key in keys:
            if self._store.pop(key, None) is not None:
                deleted += 1
        return deleted


class RedisCacheService:
    """Redis-backed cache, shared by the API and the worker."""

    _PREFIX = "cache:"
    _REGISTRY_PREFIX = "registry:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            value = await self._redis.get(f"{self._PREFIX}{key}")
        except Exception:
            logger.warning("Cache read failed key=%s", key, exc_info=True)
            value = None
        CACHE_OPERATIONS.labels(operation="hit" if value is not None else "miss").inc()
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except Exception:
            logger.warning("Cache write failed key=%s", key, exc_info=True)

    async def set_in_group(
        self, key: str, value: str, ttl_seconds: int, group: str
    ) -> None:
        try:
            # Registry first: a key stored outside its group could not be
            # invalidated with it.
            await self._redis.sadd(f"{self._REGISTRY_PREFIX}{group}", key)
            await self._redis.setex(f"{self._PREFIX}{key}", ttl_seconds, value)
        except Exception:
            logger.warning(
                "Cache write failed key=%s group=%s", key, group, exc_info=True
            )

    async def invalidate(self, key: str) -> None:
        CACHE_OPERATIONS.labels(operation="invalidate").inc()
        await self._redis.delete(f"{self._PREFIX}{key}")

    async def invalidate_group(self, group: str) -> int:
        CACHE_OPERATIONS.labels(operation="invalidate_group").inc()
        registry_key = f"{self._REGISTRY_PREFIX}{group}"
        keys = await self._redis.smembers(registry_key)
        deleted = 0
        # One DEL per key: members may hash to different cluster slots.
        for key in keys:
            deleted += await self._redis.delete(f"{self._PREFIX}{key}")
        await self._redis.delete(registry_key)
        logger.debug("Invalidated group=%s keys=%d", group, deleted)
        return deleted


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()

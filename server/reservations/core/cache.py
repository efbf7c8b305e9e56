"""Read-through cache backends and best-effort invalidation."""

import fnmatch
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Iterable
from uuid import UUID

from redis.asyncio import Redis

from .config import Settings

logger = logging.getLogger(__name__)


def user_reservations_key(user_id: str) -> str:
    return f"user:{user_id}:reservations"


def owner_reservations_key(owner_id: str) -> str:
    return f"host:{owner_id}:reservations"


def resource_units_key(resource_id: UUID | str) -> str:
    return f"resource:{resource_id}:units"


class CacheBackend(ABC):
    """Key-value store holding JSON-serializable listings."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value or None on a miss."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value for ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        """Remove the given keys; missing keys are ignored."""

    @abstractmethod
    async def invalidate(self, pattern: str) -> int:
        """Remove every key matching a glob pattern and return how many were removed."""

    async def close(self) -> None:
        return None


class InMemoryCache(CacheBackend):
    """Process-local cache used in development and tests."""

    def __init__(self):
        self._entries: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, raw = entry
        if expires_at <= time.monotonic():
            self._entries.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (time.monotonic() + ttl_seconds, json.dumps(value, default=str))

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._entries.pop(key, None)

    async def invalidate(self, pattern: str) -> int:
        matched = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
        for key in matched:
            del self._entries[key]
        return len(matched)

    def __contains__(self, key: str) -> bool:
        return key in self._entries


class RedisCache(CacheBackend):
    """Redis-backed cache shared across service instances."""

    def __init__(self, client: Redis):
        self.client = client

    @classmethod
    def from_url(cls, redis_url: str) -> "RedisCache":
        return cls(Redis.from_url(redis_url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Any | None:
        raw = await self.client.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.client.set(key, json.dumps(value, default=str), ex=ttl_seconds)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.client.delete(*keys)

    async def invalidate(self, pattern: str) -> int:
        removed = 0
        async for key in self.client.scan_iter(match=pattern, count=100):
            removed += await self.client.delete(key)
        return removed

    async def close(self) -> None:
        await self.client.aclose()


async def read_through(
    cache: CacheBackend | None,
    key: str,
    ttl_seconds: int,
    loader: Callable[[], Awaitable[Any]],
) -> Any:
    """Return the cached value for ``key`` or load and store it; cache errors fall through to the loader."""
    if cache is not None:
        try:
            cached = await cache.get(key)
        except Exception as exc:
            logger.warning("Cache read failed", extra={"key": key, "error": str(exc)})
            cached = None
        if cached is not None:
            return cached

    value = await loader()

    if cache is not None:
        try:
            await cache.set(key, value, ttl_seconds)
        except Exception as exc:
            logger.warning("Cache write failed", extra={"key": key, "error": str(exc)})

    return value


def build_cache(settings: Settings) -> CacheBackend:
    """Select the cache backend from settings."""
    if settings.redis_url:
        logger.info("Using Redis cache backend")
        return RedisCache.from_url(settings.redis_url)
    logger.info("Using in-memory cache backend")
    return InMemoryCache()


class CacheInvalidator:
    """
    Drops cached listings after a successful write.

    Failures are logged and never raised; stale entries age out on their TTL.
    """

    def __init__(self, cache: CacheBackend | None):
        self.cache = cache

    async def invalidate_keys(self, keys: Iterable[str]) -> None:
        keys = [key for key in keys if key]
        if self.cache is None or not keys:
            return
        try:
            await self.cache.delete(*keys)
        except Exception as exc:
            logger.warning(
                "Cache invalidation failed",
                extra={"keys": keys, "error": str(exc)}
            )

    async def invalidate_reservation_views(
        self,
        user_id: str,
        owner_id: str,
        resource_id: UUID | str,
        inventory_changed: bool = True,
    ) -> None:
        keys = [user_reservations_key(user_id), owner_reservations_key(owner_id)]
        if inventory_changed:
            keys.append(resource_units_key(resource_id))
        await self.invalidate_keys(keys)

    async def invalidate_resource(self, resource_id: UUID | str, owner_id: str | None = None) -> None:
        keys = [resource_units_key(resource_id)]
        if owner_id:
            keys.append(owner_reservations_key(owner_id))
        await self.invalidate_keys(keys)

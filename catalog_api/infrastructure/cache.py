"""Cache backends.

Two implementations of the same capability:
  - RedisCacheBackend: shared cache over redis.asyncio.
  - InMemoryCacheBackend: per-process cache over cachetools, used when no
    cache endpoint is configured and as a test double.

Backends raise StorageTransient on I/O failure. Deciding whether a failure
matters is left to the caller.
"""

import time
from typing import Protocol

import structlog
from cachetools import TLRUCache
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from catalog_api.domain.exceptions import StorageTransient
from catalog_api.infrastructure.config import Settings

logger = structlog.get_logger()


def cache_key(resource_type: str, resource_id: str) -> str:
    """Build the cache key for a resource.

    Args:
        resource_type: Resource type (e.g. "catalog_item").
        resource_id: Resource identifier.

    Returns:
        Key in the form resource:{type}:{id}.
    """
    return f"resource:{resource_type}:{resource_id}"


class CacheBackend(Protocol):
    """Key/value cache with per-entry TTL."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class RedisCacheBackend:
    """Redis-backed cache.

    The underlying client keeps its own connection pool and is safe to
    share between concurrent requests.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str, socket_timeout: float = 1.0) -> "RedisCacheBackend":
        """Create a backend from a redis:// URL.

        Args:
            url: Redis connection URL.
            socket_timeout: Connect and read timeout in seconds.

        Returns:
            RedisCacheBackend instance.
        """
        client = aioredis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout,
            socket_timeout=socket_timeout,
        )
        return cls(client)

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except (RedisError, OSError) as e:
            raise StorageTransient(f"Cache GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except (RedisError, OSError) as e:
            raise StorageTransient(f"Cache SET failed: {e}", details={"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except (RedisError, OSError) as e:
            raise StorageTransient(f"Cache DEL failed: {e}", details={"key": key}) from e

    async def close(self) -> None:
        """Close the connection pool."""
        await self._redis.aclose()


def _entry_expiry(_key: str, value: tuple[str, int], now: float) -> float:
    return now + value[1]


class InMemoryCacheBackend:
    """Process-local cache honouring per-entry TTLs."""

    def __init__(self, maxsize: int = 1024, timer=time.monotonic) -> None:
        """Initialize cache.

        Args:
            maxsize: Maximum number of entries kept.
            timer: Clock used for expiry; injectable for tests.
        """
        self._entries: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_entry_expiry, timer=timer)

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def close(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self._entries.get(key) is not None


def build_cache_backend(settings: Settings) -> CacheBackend:
    """Select the cache backend from settings.

    Args:
        settings: Application settings.

    Returns:
        Redis backend when a cache URL is configured, in-memory otherwise.
    """
    if settings.redis_url:
        logger.info("Using Redis cache backend", url=settings.redis_url)
        return RedisCacheBackend.from_url(
            settings.redis_url, socket_timeout=settings.cache_socket_timeout_seconds
        )
    logger.info("No cache endpoint configured, using in-memory cache")
    return InMemoryCacheBackend()

"""Redis cache client using native asyncio (Redis 7.x).

Cache key format: autocomplete:{collection}:{role}:{query_hash}

The cache is an optimization only: every failure reads as a miss.
"""

import hashlib
import json
from typing import Any, Protocol

import logfire
import redis.asyncio as redis
from redis.exceptions import RedisError

from logistics_search.config import get_settings

CACHE_PREFIX = "autocomplete"


def generate_cache_key(
    collection: str,
    role: str,
    query: str,
    scope: str = "",
    limit: int | None = None,
) -> str:
    """Generate a cache key for an autocomplete query.

    Format: autocomplete:{collection}:{role}:{query_hash}

    ``scope`` and ``limit`` go into the hash so that callers of the same role
    with different row visibility, or different page sizes, never share an
    entry.
    """
    digest_input = f"{scope}|{limit if limit is not None else ''}|{query}"
    query_hash = hashlib.md5(digest_input.encode()).hexdigest()

    return f"{CACHE_PREFIX}:{collection}:{role}:{query_hash}"


class SearchCache(Protocol):
    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        ...


class CacheClient:
    """Async Redis cache client.

    Uses Redis 7.x native asyncio support.

    Usage:
        client = CacheClient()
        await client.connect()
        await client.set("key", {"data": "value"})
        result = await client.get("key")
        await client.disconnect()
    """

    def __init__(self, redis_url: str | None = None, default_ttl: int | None = None):
        """Initialize the cache client.

        Args:
            redis_url: Redis connection URL. Defaults to config.
            default_ttl: TTL in seconds when ``set`` gets none. Defaults to config.
        """
        settings = get_settings()
        self._redis_url = redis_url or settings.redis_url
        self._default_ttl = default_ttl or settings.search_cache_ttl_seconds
        self._client: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is not None:
            return

        self._client = redis.from_url(
            self._redis_url,
            encoding="utf-8",
            decode_responses=True,
        )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def ping(self) -> bool:
        """Check if Redis is reachable."""
        if self._client is None:
            return False

        try:
            return await self._client.ping()
        except (RedisError, OSError):
            return False

    async def get(self, key: str) -> Any | None:
        """Get a value from cache.

        Returns:
            Cached value (deserialized from JSON) or None if not found
        """
        if self._client is None:
            return None

        try:
            value = await self._client.get(key)
            if value is None:
                return None
            return json.loads(value)
        except (RedisError, OSError, ValueError) as e:
            logfire.warn("Cache read failed for {key}: {error}", key=key, error=str(e))
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> bool:
        """Set a value in cache.

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Time-to-live in seconds (default: configured search cache TTL)

        Returns:
            True if successful
        """
        if self._client is None:
            return False

        try:
            serialized = json.dumps(value, default=str)
            await self._client.set(
                key,
                serialized,
                ex=ttl or self._default_ttl,
            )
            return True
        except (RedisError, OSError, TypeError) as e:
            logfire.warn("Cache write failed for {key}: {error}", key=key, error=str(e))
            return False

    async def __aenter__(self) -> "CacheClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()

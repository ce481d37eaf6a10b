"""Response cache backends.

Provides a pluggable cache backend system with in-memory and Redis
implementations behind one async contract. Lookups return a
:class:`CacheLookup` so callers can tell a fresh hit from a stale one.
"""

import asyncio
import json
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from erlc.core.config import CacheConfig
from erlc.core.logging import get_logger
from erlc.exceptions import CacheBackendError

logger = get_logger(__name__)

EvictionCallback = Callable[[str, Any], None]


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: Any
    expires_at: Optional[float] = None
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) > self.expires_at


@dataclass(frozen=True)
class CacheLookup:
    """Result of a cache lookup.

    Attributes:
        found: Whether a value was returned
        value: The cached value (None on a miss)
        is_stale: True when the value is past its expiration
    """

    found: bool
    value: Any = None
    is_stale: bool = False


MISS = CacheLookup(found=False)


@dataclass
class CacheStats:
    """Counters kept by the in-memory cache."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    deletes: int = 0
    evictions: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "deletes": self.deletes,
            "evictions": self.evictions,
            "size": self.size,
            "hit_rate": self.hit_rate,
        }


class CacheBackend(ABC):
    """Abstract base class for cache backends.

    All cache implementations must inherit from this class and implement
    the abstract methods.
    """

    @abstractmethod
    async def get(self, key: str, allow_stale: bool = False) -> CacheLookup:
        """Retrieve a value from the cache.

        Args:
            key: The cache key to look up.
            allow_stale: Return expired-but-present entries marked as stale
                instead of treating them as a miss.

        Returns:
            A CacheLookup describing the result.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float) -> None:
        """Store a value in the cache.

        Args:
            key: The cache key.
            value: The value to store (must be JSON serializable for Redis).
            ttl: Time-to-live in seconds; <= 0 means never expire.
        """

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a value from the cache."""

    @abstractmethod
    async def clear(self) -> None:
        """Clear all entries from the cache."""

    @abstractmethod
    async def size(self) -> int:
        """Return the number of entries currently stored."""

    async def close(self) -> None:
        """Release background tasks and connections."""

    def stats(self) -> Optional[CacheStats]:
        """Return hit/miss statistics, if the backend keeps them."""
        return None

    def get_raw_entry(self, key: str) -> Optional[_CacheEntry]:
        raise NotImplementedError(f"{type(self).__name__} does not expose raw entries")

    def keys(self) -> List[str]:
        raise NotImplementedError(f"{type(self).__name__} does not expose its keys")


class InMemoryCache(CacheBackend):
    """Bounded in-memory cache with TTL support.

    When full, inserting a new key evicts the oldest entry by insertion
    order. A background task sweeps expired entries every
    ``sweep_interval`` seconds; it starts lazily on the first write made
    from inside a running event loop.

    Note: This cache is not distributed and data is lost when the
    process restarts.
    """

    def __init__(
        self,
        max_items: int = 1000,
        sweep_interval: float = 60.0,
        on_evict: Optional[EvictionCallback] = None,
    ) -> None:
        """Initialize the in-memory cache.

        Args:
            max_items: Maximum number of entries kept
            sweep_interval: Seconds between expiry sweeps (<= 0 disables)
            on_evict: Called with (key, value) on capacity or sweep eviction
        """
        self.max_items = max(1, max_items)
        self.sweep_interval = sweep_interval
        self._data: Dict[str, _CacheEntry] = {}
        self._stats = CacheStats()
        self._on_evict = on_evict
        self._sweep_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._closed = False

    async def get(self, key: str, allow_stale: bool = False) -> CacheLookup:
        entry = self._data.get(key)
        if entry is None:
            self._stats.misses += 1
            return MISS

        if entry.is_expired():
            if not allow_stale:
                del self._data[key]
                self._stats.misses += 1
                return MISS
            self._stats.hits += 1
            return CacheLookup(found=True, value=entry.value, is_stale=True)

        self._stats.hits += 1
        return CacheLookup(found=True, value=entry.value)

    async def set(self, key: str, value: Any, ttl: float) -> None:
        self._ensure_sweeper()

        if len(self._data) >= self.max_items and key not in self._data:
            self.evict_oldest()

        expires_at = time.time() + ttl if ttl > 0 else None
        self._data[key] = _CacheEntry(value=value, expires_at=expires_at)
        self._stats.sets += 1

    async def delete(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._stats.deletes += 1

    async def clear(self) -> None:
        self._stats.deletes += len(self._data)
        self._data.clear()

    async def size(self) -> int:
        return len(self._data)

    def stats(self) -> CacheStats:
        self._stats.size = len(self._data)
        return CacheStats(**self._stats.__dict__)

    def get_raw_entry(self, key: str) -> Optional[_CacheEntry]:
        return self._data.get(key)

    def keys(self) -> List[str]:
        return list(self._data)

    def set_eviction_callback(self, callback: Optional[EvictionCallback]) -> None:
        self._on_evict = callback

    def evict_oldest(self) -> None:
        """Evict the oldest entry by insertion order."""
        if not self._data:
            return
        key = next(iter(self._data))
        entry = self._data.pop(key)
        self._stats.evictions += 1
        if self._on_evict is not None:
            self._on_evict(key, entry.value)

    def cleanup_expired(self) -> int:
        """Remove all expired entries from the cache.

        Returns:
            Number of entries removed.
        """
        now = time.time()
        expired = [key for key, entry in self._data.items() if entry.is_expired(now)]
        for key in expired:
            entry = self._data.pop(key)
            self._stats.evictions += 1
            if self._on_evict is not None:
                self._on_evict(key, entry.value)
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def _ensure_sweeper(self) -> None:
        if self._sweep_task is not None or self._closed or self.sweep_interval <= 0:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        """Background task that periodically removes expired entries."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                pass

            if self._stop_event.is_set():
                break
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.error(f"Error during cache sweep: {e}")

    async def close(self) -> None:
        """Stop the sweep task and drop all entries. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._stop_event.set()

        task, self._sweep_task = self._sweep_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self.clear()


class ConnectionState(str, Enum):
    """Lifecycle of the Redis connection."""

    DISABLED = "disabled"
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class RedisCache(CacheBackend):
    """Redis-based cache implementation.

    Values are stored as JSON text. Expiry is enforced by Redis itself, so
    stale reads are never possible and there is no capacity bound beyond
    the server's own policy. Connection and decoding failures raise
    :class:`CacheBackendError`; callers decide whether to treat them as
    misses.

    Example:
        >>> cache = RedisCache("redis://localhost:6379/0", key_prefix="erlc:")
        >>> await cache.set("server", {"Name": "My Server"}, ttl=60)
    """

    SCAN_COUNT = 200

    def __init__(self, redis_url: Optional[str], key_prefix: str = "") -> None:
        """Initialize the Redis cache.

        Args:
            redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
            key_prefix: Prefix applied to every key stored by this cache
        """
        self._redis_url = redis_url
        self._key_prefix = key_prefix or ""
        self._redis: Optional[aioredis.Redis] = None
        self._connect_lock = asyncio.Lock()
        self._state = ConnectionState.IDLE if redis_url else ConnectionState.DISABLED
        self._last_error: Optional[BaseException] = None

    def _full_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def _get_client(self) -> aioredis.Redis:
        """Get or create the Redis client connection, connecting on first use."""
        if self._redis is not None:
            return self._redis
        if not self._redis_url:
            raise CacheBackendError("Redis cache is not configured with a URL")

        async with self._connect_lock:
            if self._redis is not None:
                return self._redis

            self._state = ConnectionState.CONNECTING
            self._last_error = None
            client = aioredis.from_url(self._redis_url, decode_responses=True)
            try:
                await client.ping()
            except (RedisError, OSError) as e:
                self._state = ConnectionState.ERROR
                self._last_error = e
                await client.aclose()
                raise CacheBackendError(f"Could not connect to Redis: {e}") from e

            self._redis = client
            self._state = ConnectionState.CONNECTED
            logger.debug("Connected to Redis cache")
            return client

    def _fail(self, operation: str, error: BaseException) -> CacheBackendError:
        self._state = ConnectionState.ERROR
        self._last_error = error
        return CacheBackendError(f"Redis {operation} failed: {error}")

    def connection_status(self) -> dict:
        """Read-only view of the connection lifecycle."""
        return {
            "enabled": bool(self._redis_url),
            "state": self._state.value,
            "connected": self._redis is not None and self._state == ConnectionState.CONNECTED,
            "error": str(self._last_error) if self._last_error else None,
        }

    async def get(self, key: str, allow_stale: bool = False) -> CacheLookup:
        client = await self._get_client()
        try:
            data = await client.get(self._full_key(key))
        except (RedisError, OSError) as e:
            raise self._fail("GET", e) from e

        if data is None:
            return MISS
        try:
            return CacheLookup(found=True, value=json.loads(data))
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable cache value for key: {key}")
            return MISS

    async def set(self, key: str, value: Any, ttl: float) -> None:
        client = await self._get_client()
        payload = json.dumps(value)
        try:
            if ttl > 0:
                await client.setex(self._full_key(key), max(1, math.ceil(ttl)), payload)
            else:
                await client.set(self._full_key(key), payload)
        except (RedisError, OSError) as e:
            raise self._fail("SET", e) from e

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        try:
            await client.delete(self._full_key(key))
        except (RedisError, OSError) as e:
            raise self._fail("DEL", e) from e

    async def clear(self) -> None:
        """Clear all entries from the cache.

        WARNING: Without a key prefix this uses FLUSHDB, which clears the
        entire Redis database.
        """
        client = await self._get_client()
        try:
            if not self._key_prefix:
                await client.flushdb()
                return
            keys = [key async for key in client.scan_iter(match=f"{self._key_prefix}*", count=self.SCAN_COUNT)]
            if keys:
                await client.delete(*keys)
        except (RedisError, OSError) as e:
            raise self._fail("clear", e) from e

    async def size(self) -> int:
        client = await self._get_client()
        try:
            if not self._key_prefix:
                return await client.dbsize()
            count = 0
            async for _ in client.scan_iter(match=f"{self._key_prefix}*", count=self.SCAN_COUNT):
                count += 1
            return count
        except (RedisError, OSError) as e:
            raise self._fail("size", e) from e

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self._state = ConnectionState.DISCONNECTED


def create_cache(config: CacheConfig, on_evict: Optional[EvictionCallback] = None) -> CacheBackend:
    """Build the cache backend described by a cache config.

    Args:
        config: Cache settings; ``redis_url`` selects the Redis backend.
        on_evict: Eviction callback for the in-memory backend.

    Returns:
        A CacheBackend instance (InMemoryCache or RedisCache).
    """
    if config.redis_url:
        return RedisCache(config.redis_url, key_prefix=config.redis_key_prefix)
    return InMemoryCache(
        max_items=config.max_items,
        sweep_interval=config.sweep_interval,
        on_evict=on_evict,
    )

"""Tests for the cache abstraction layer."""

import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from erlc.core.cache import (
    MISS,
    CacheBackend,
    ConnectionState,
    InMemoryCache,
    RedisCache,
    _CacheEntry,
    create_cache,
)
from erlc.core.config import CacheConfig
from erlc.exceptions import CacheBackendError


class TestCacheEntry:
    """Tests for the internal _CacheEntry class."""

    def test_cache_entry_no_expiry(self):
        """Entry without expiry never expires."""
        entry = _CacheEntry(value="test", expires_at=None)
        assert not entry.is_expired()

    def test_cache_entry_expired(self):
        """Entry with past expiry is expired."""
        entry = _CacheEntry(value="test", expires_at=time.time() - 1)
        assert entry.is_expired()

    def test_cache_entry_not_expired(self):
        """Entry with future expiry is not expired."""
        entry = _CacheEntry(value="test", expires_at=time.time() + 10)
        assert not entry.is_expired()


class TestInMemoryCache:
    """Tests for the InMemoryCache implementation."""

    @pytest.mark.asyncio
    async def test_set_and_get(self):
        """Can store and retrieve values."""
        cache = InMemoryCache()
        await cache.set("key1", {"Name": "Server"}, ttl=60)

        result = await cache.get("key1")
        assert result.found is True
        assert result.is_stale is False
        assert result.value == {"Name": "Server"}
        await cache.close()

    @pytest.mark.asyncio
    async def test_get_nonexistent_key(self):
        """Getting a missing key is a miss."""
        cache = InMemoryCache()
        assert await cache.get("nonexistent") == MISS

    @pytest.mark.asyncio
    async def test_delete(self):
        """Deleted values are gone and counted."""
        cache = InMemoryCache()
        await cache.set("key1", "value1", ttl=60)
        await cache.delete("key1")
        await cache.delete("nonexistent")

        assert (await cache.get("key1")).found is False
        assert cache.stats().deletes == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self):
        """Inserting max_items + 1 keys evicts exactly the oldest one."""
        evicted = []
        cache = InMemoryCache(max_items=3, on_evict=lambda k, v: evicted.append((k, v)))
        for i in range(4):
            await cache.set(f"k{i}", i, ttl=60)

        assert await cache.size() == 3
        assert cache.keys() == ["k1", "k2", "k3"]
        assert evicted == [("k0", 0)]
        assert cache.stats().evictions == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_eviction_callback_can_be_replaced(self):
        """set_eviction_callback swaps the listener; None disables it."""
        first, second = [], []
        cache = InMemoryCache(max_items=1, on_evict=lambda k, v: first.append(k))
        cache.set_eviction_callback(lambda k, v: second.append((k, v)))

        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)
        cache.set_eviction_callback(None)
        await cache.set("c", 3, ttl=60)

        assert first == []
        assert second == [("a", 1)]
        assert cache.stats().evictions == 2
        await cache.close()

    @pytest.mark.asyncio
    async def test_size_never_exceeds_capacity(self):
        cache = InMemoryCache(max_items=5)
        for i in range(50):
            await cache.set(f"k{i}", i, ttl=60)
            assert await cache.size() <= 5
        await cache.close()

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self):
        """Overwriting an existing key at capacity keeps every entry."""
        cache = InMemoryCache(max_items=2)
        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)
        await cache.set("a", 3, ttl=60)

        assert await cache.size() == 2
        assert (await cache.get("a")).value == 3
        assert cache.stats().evictions == 0
        await cache.close()

    @pytest.mark.asyncio
    async def test_expired_entry_is_miss_and_removed(self):
        """A plain lookup never returns an expired entry."""
        cache = InMemoryCache()
        await cache.set("key", "value", ttl=0.01)
        await asyncio.sleep(0.015)

        assert (await cache.get("key")).found is False
        assert cache.get_raw_entry("key") is None
        await cache.close()

    @pytest.mark.asyncio
    async def test_stale_lookup_returns_expired_entry(self):
        """The stale variant returns expired entries marked stale without deleting them."""
        cache = InMemoryCache(sweep_interval=60)
        await cache.set("key", "value", ttl=0.01)
        await asyncio.sleep(0.015)

        result = await cache.get("key", allow_stale=True)
        assert result.found is True
        assert result.is_stale is True
        assert result.value == "value"
        assert await cache.size() == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_stale_lookup_of_fresh_entry(self):
        cache = InMemoryCache()
        await cache.set("key", "value", ttl=60)
        result = await cache.get("key", allow_stale=True)
        assert result.is_stale is False
        await cache.close()

    @pytest.mark.asyncio
    async def test_non_positive_ttl_never_expires(self):
        cache = InMemoryCache()
        await cache.set("forever", "value", ttl=0)
        await cache.set("also_forever", "value", ttl=-1)
        assert cache.get_raw_entry("forever").expires_at is None
        assert cache.get_raw_entry("also_forever").expires_at is None
        await cache.close()

    @pytest.mark.asyncio
    async def test_background_sweep_removes_expired(self):
        """The sweep task evicts expired entries without any access."""
        evicted = []
        cache = InMemoryCache(sweep_interval=0.02, on_evict=lambda k, v: evicted.append(k))
        await cache.set("short", 1, ttl=0.01)
        await cache.set("long", 2, ttl=60)
        await asyncio.sleep(0.1)

        assert cache.keys() == ["long"]
        assert evicted == ["short"]
        assert cache.stats().evictions == 1
        await cache.close()

    @pytest.mark.asyncio
    async def test_cleanup_expired(self):
        cache = InMemoryCache(sweep_interval=0)
        await cache.set("a", 1, ttl=0.01)
        await cache.set("b", 2, ttl=60)
        await asyncio.sleep(0.015)

        assert cache.cleanup_expired() == 1
        assert cache.keys() == ["b"]

    @pytest.mark.asyncio
    async def test_delete_does_not_call_eviction_callback(self):
        callback = MagicMock()
        cache = InMemoryCache(on_evict=callback)
        await cache.set("a", 1, ttl=60)
        await cache.delete("a")
        callback.assert_not_called()
        await cache.close()

    @pytest.mark.asyncio
    async def test_stats(self):
        """Hits, misses and hit rate are tracked."""
        cache = InMemoryCache()
        assert cache.stats().hit_rate == 0.0

        await cache.set("a", 1, ttl=60)
        await cache.get("a")
        await cache.get("a")
        await cache.get("missing")

        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.sets == 1
        assert stats.size == 1
        assert stats.hit_rate == pytest.approx(2 / 3)
        assert stats.to_dict()["hit_rate"] == pytest.approx(2 / 3)
        await cache.close()

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = InMemoryCache()
        await cache.set("a", 1, ttl=60)
        await cache.set("b", 2, ttl=60)
        await cache.clear()
        assert await cache.size() == 0
        await cache.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        """Closing twice stops the sweeper once and leaves the cache empty."""
        cache = InMemoryCache(sweep_interval=0.01)
        await cache.set("a", 1, ttl=60)
        task = cache._sweep_task
        assert task is not None

        await cache.close()
        await cache.close()

        assert task.done()
        assert await cache.size() == 0


def _redis_client(**methods):
    client = MagicMock()
    client.ping = AsyncMock(return_value=True)
    client.aclose = AsyncMock()
    for name, value in methods.items():
        setattr(client, name, value)
    return client


async def _async_iter(items):
    for item in items:
        yield item


class TestRedisCache:
    """Tests for the RedisCache implementation with a mocked client."""

    @pytest.mark.asyncio
    async def test_get_decodes_json(self):
        client = _redis_client(get=AsyncMock(return_value=json.dumps([{"Player": "A:1"}])))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0", key_prefix="erlc:")
            result = await cache.get("server")

        assert result.found is True
        assert result.value == [{"Player": "A:1"}]
        client.get.assert_awaited_once_with("erlc:server")
        assert cache.connection_status()["state"] == ConnectionState.CONNECTED.value

    @pytest.mark.asyncio
    async def test_get_missing_key(self):
        client = _redis_client(get=AsyncMock(return_value=None))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            assert await cache.get("missing") == MISS

    @pytest.mark.asyncio
    async def test_undecodable_value_is_miss(self):
        client = _redis_client(get=AsyncMock(return_value="not json"))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            assert (await cache.get("bad")).found is False

    @pytest.mark.asyncio
    async def test_set_uses_setex_with_whole_seconds(self):
        client = _redis_client(setex=AsyncMock(), set=AsyncMock())
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0", key_prefix="p:")
            await cache.set("k", {"a": 1}, ttl=1.5)
            await cache.set("forever", [1], ttl=0)

        client.setex.assert_awaited_once_with("p:k", 2, json.dumps({"a": 1}))
        client.set.assert_awaited_once_with("p:forever", json.dumps([1]))

    @pytest.mark.asyncio
    async def test_clear_without_prefix_flushes(self):
        client = _redis_client(flushdb=AsyncMock())
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            await cache.clear()
        client.flushdb.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_clear_and_size_with_prefix_scan(self):
        client = _redis_client(delete=AsyncMock(), flushdb=AsyncMock())
        client.scan_iter = MagicMock(side_effect=lambda **kwargs: _async_iter(["p:a", "p:b"]))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0", key_prefix="p:")
            assert await cache.size() == 2
            await cache.clear()

        client.delete.assert_awaited_once_with("p:a", "p:b")
        client.flushdb.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_failure_raises_backend_error(self):
        """A failed connect surfaces as CacheBackendError and records the error state."""
        client = _redis_client()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            with pytest.raises(CacheBackendError):
                await cache.get("key")

        status = cache.connection_status()
        assert status["state"] == ConnectionState.ERROR.value
        assert status["connected"] is False
        assert "refused" in status["error"]

    @pytest.mark.asyncio
    async def test_operation_failure_raises_backend_error(self):
        client = _redis_client(get=AsyncMock(side_effect=RedisConnectionError("lost")))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            with pytest.raises(CacheBackendError):
                await cache.get("key")

    @pytest.mark.asyncio
    async def test_close_disconnects(self):
        client = _redis_client(get=AsyncMock(return_value=None))
        with patch("erlc.core.cache.aioredis.from_url", return_value=client):
            cache = RedisCache("redis://localhost:6379/0")
            await cache.get("key")
            await cache.close()

        client.aclose.assert_awaited_once()
        assert cache.connection_status()["state"] == ConnectionState.DISCONNECTED.value

    def test_disabled_without_url(self):
        cache = RedisCache(None)
        assert cache.connection_status()["state"] == ConnectionState.DISABLED.value

    def test_introspection_is_unsupported(self):
        """Raw entries and key listing are in-memory only."""
        cache = RedisCache("redis://localhost:6379/0")
        assert cache.stats() is None
        with pytest.raises(NotImplementedError):
            cache.get_raw_entry("key")
        with pytest.raises(NotImplementedError):
            cache.keys()


class TestCreateCache:
    """Tests for backend selection."""

    def test_in_memory_by_default(self):
        cache = create_cache(CacheConfig(enabled=True, max_items=7))
        assert isinstance(cache, InMemoryCache)
        assert cache.max_items == 7

    def test_redis_when_url_given(self):
        cache = create_cache(CacheConfig(enabled=True, redis_url="redis://localhost:6379/0"))
        assert isinstance(cache, RedisCache)
        assert isinstance(cache, CacheBackend)

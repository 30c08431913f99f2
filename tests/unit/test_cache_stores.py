"""
Unit Tests for Cache Stores
===========================
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from og_image.core.cache.stores import (
    FileSystemCacheStore,
    MemoryCacheStore,
    RedisCacheStore,
    create_store,
    entry_age_seconds,
)
from og_image.core.errors import CacheStoreError
from og_image.models.schemas import CacheEntry, ImageFormat, RendererMode

from tests.utils.mocks import MockRedisClient

NAMESPACE = "og-image/og-image@1.0.0-abcdef12"


def make_entry(fingerprint: str = "f" * 64, ttl: int = 3600, **kwargs) -> CacheEntry:
    return CacheEntry(
        fingerprint=fingerprint,
        data=kwargs.pop("data", b"\x89PNG-bytes"),
        content_type="image/png",
        format=ImageFormat.PNG,
        requested_format=kwargs.pop("requested_format", ImageFormat.PNG),
        renderer=RendererMode.VECTOR,
        ttl=ttl,
        **kwargs,
    )


class TestMemoryCacheStore:
    """Test the in-process store."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self):
        store = MemoryCacheStore(NAMESPACE)
        entry = make_entry()

        await store.set(entry)
        assert await store.get(entry.fingerprint) == entry

        await store.delete(entry.fingerprint)
        assert await store.get(entry.fingerprint) is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_evicted(self):
        store = MemoryCacheStore(NAMESPACE)
        old = make_entry(ttl=60, created_at=datetime.now(timezone.utc) - timedelta(minutes=5))

        await store.set(old)

        assert await store.get(old.fingerprint) is None
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_clear(self):
        store = MemoryCacheStore(NAMESPACE)
        await store.set(make_entry("a"))
        await store.set(make_entry("b"))

        assert await store.clear() == 2
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_distinct_fingerprints_stay_bounded(self):
        store = MemoryCacheStore(NAMESPACE, max_entries=50)

        for i in range(500):
            await store.set(make_entry(f"junk-{i}"))

        assert len(store) == 50
        assert await store.get("junk-0") is None
        assert await store.get("junk-499") is not None

    @pytest.mark.asyncio
    async def test_full_store_drops_expired_before_oldest(self):
        store = MemoryCacheStore(NAMESPACE, max_entries=3)
        stale = datetime.now(timezone.utc) - timedelta(minutes=5)
        await store.set(make_entry("oldest"))
        await store.set(make_entry("expired", ttl=60, created_at=stale))
        await store.set(make_entry("recent"))

        await store.set(make_entry("new"))

        assert len(store) == 3
        assert await store.get("oldest") is not None
        assert await store.get("new") is not None

    @pytest.mark.asyncio
    async def test_rewrite_refreshes_position(self):
        store = MemoryCacheStore(NAMESPACE, max_entries=2)
        await store.set(make_entry("a"))
        await store.set(make_entry("b"))
        await store.set(make_entry("a", data=b"newer"))

        await store.set(make_entry("c"))

        assert await store.get("b") is None
        assert (await store.get("a")).data == b"newer"

    def test_rejects_empty_bound(self):
        with pytest.raises(ValueError):
            MemoryCacheStore(NAMESPACE, max_entries=0)

    def test_key_is_namespaced(self):
        assert MemoryCacheStore(NAMESPACE).key("abc") == f"{NAMESPACE}/abc"


class TestFileSystemCacheStore:
    """Test the on-disk store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, tmp_path):
        store = FileSystemCacheStore(tmp_path, NAMESPACE)
        entry = make_entry(requested_format=ImageFormat.JPEG)

        await store.set(entry)
        loaded = await store.get(entry.fingerprint)

        assert loaded is not None
        assert loaded.data == entry.data
        assert loaded.requested_format is ImageFormat.JPEG
        assert (tmp_path / NAMESPACE / f"{entry.fingerprint}.bin").exists()
        assert (tmp_path / NAMESPACE / f"{entry.fingerprint}.json").exists()

    @pytest.mark.asyncio
    async def test_missing_entry(self, tmp_path):
        store = FileSystemCacheStore(tmp_path, NAMESPACE)

        assert await store.get("nothing") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_removed(self, tmp_path):
        store = FileSystemCacheStore(tmp_path, NAMESPACE)
        entry = make_entry(ttl=1, created_at=datetime.now(timezone.utc) - timedelta(hours=1))

        await store.set(entry)

        assert await store.get(entry.fingerprint) is None
        assert not (tmp_path / NAMESPACE / f"{entry.fingerprint}.bin").exists()

    @pytest.mark.asyncio
    async def test_corrupt_metadata_raises_store_error(self, tmp_path):
        store = FileSystemCacheStore(tmp_path, NAMESPACE)
        entry = make_entry()
        await store.set(entry)
        (tmp_path / NAMESPACE / f"{entry.fingerprint}.json").write_text("{not json")

        with pytest.raises(CacheStoreError):
            await store.get(entry.fingerprint)

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        store = FileSystemCacheStore(tmp_path, NAMESPACE)
        await store.set(make_entry("a"))
        await store.set(make_entry("b"))

        assert await store.clear() == 2
        assert list((tmp_path / NAMESPACE).iterdir()) == []


class TestRedisCacheStore:
    """Test the Redis store against a mock client."""

    @pytest.mark.asyncio
    async def test_round_trip_sets_expiry(self):
        client = MockRedisClient()
        store = RedisCacheStore(NAMESPACE, client=client)
        entry = make_entry(ttl=120)

        await store.set(entry)
        loaded = await store.get(entry.fingerprint)

        assert loaded is not None
        assert loaded.data == entry.data
        assert client.ttl_of(store.key(entry.fingerprint)) is not None

    @pytest.mark.asyncio
    async def test_zero_ttl_is_not_written(self):
        client = MockRedisClient()
        store = RedisCacheStore(NAMESPACE, client=client)

        await store.set(make_entry(ttl=0))

        assert await store.get("f" * 64) is None

    @pytest.mark.asyncio
    async def test_clear_only_touches_namespace(self):
        client = MockRedisClient()
        store = RedisCacheStore(NAMESPACE, client=client)
        other = RedisCacheStore("og-image/og-image@0.9.0-00000000", client=client)
        await store.set(make_entry("a"))
        await store.set(make_entry("b"))
        await other.set(make_entry("c"))

        assert await store.clear() == 2
        assert await other.get("c") is not None

    @pytest.mark.asyncio
    async def test_redis_errors_are_wrapped(self):
        client = AsyncMock()
        client.hgetall.side_effect = redis.ConnectionError("connection refused")
        client.hset.side_effect = redis.ConnectionError("connection refused")
        store = RedisCacheStore(NAMESPACE, client=client)

        with pytest.raises(CacheStoreError):
            await store.get("abc")
        with pytest.raises(CacheStoreError):
            await store.set(make_entry())

    @pytest.mark.asyncio
    async def test_close(self):
        client = MockRedisClient()
        store = RedisCacheStore(NAMESPACE, client=client)

        await store.close()

        assert client.closed

    def test_requires_url_or_client(self):
        with pytest.raises(ValueError):
            RedisCacheStore(NAMESPACE)


class TestCreateStore:
    """Test store construction from settings values."""

    def test_memory(self, tmp_path):
        store = create_store("memory", NAMESPACE, tmp_path, "redis://localhost:6379/0")

        assert isinstance(store, MemoryCacheStore)

    def test_filesystem(self, tmp_path):
        store = create_store("filesystem", NAMESPACE, tmp_path, "redis://localhost:6379/0")

        assert isinstance(store, FileSystemCacheStore)
        assert store.directory == tmp_path / "cache" / NAMESPACE

    def test_redis(self, tmp_path):
        store = create_store("redis", NAMESPACE, tmp_path, "redis://localhost:6379/0")

        assert isinstance(store, RedisCacheStore)

    def test_entry_age(self):
        entry = make_entry(created_at=datetime.now(timezone.utc) - timedelta(seconds=30))

        assert 29 <= entry_age_seconds(entry) < 60

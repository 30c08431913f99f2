"""
Cache Stores
============

Backends holding ``CacheEntry`` values under ``<namespace>/<fingerprint>``.
Every backend wraps its I/O errors in ``CacheStoreError`` so the cache manager
can fall back to plain rendering.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import redis.asyncio as redis  # type: ignore[import-untyped]

from og_image.config.logging import get_logger
from og_image.core.errors import CacheStoreError
from og_image.models.schemas import CacheEntry

logger = get_logger(__name__)


def _entry_metadata(entry: CacheEntry) -> Dict[str, Any]:
    return entry.model_dump(mode="json")


def _entry_from_metadata(metadata: Dict[str, Any], data: bytes) -> CacheEntry:
    return CacheEntry.model_validate({**metadata, "data": data})


class CacheStore(ABC):
    """Abstract cache entry store."""

    def __init__(self, namespace: str):
        self.namespace = namespace

    def key(self, fingerprint: str) -> str:
        return f"{self.namespace}/{fingerprint}"

    @abstractmethod
    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        """Return the live entry for a fingerprint, or None."""
        pass

    @abstractmethod
    async def set(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, fingerprint: str) -> None:
        pass

    @abstractmethod
    async def clear(self) -> int:
        """Remove every entry in this namespace and return how many were removed."""
        pass

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """
    In-process store holding at most ``max_entries`` entries.

    Reads are lock-free; writes are serialized. A write into a full store
    first drops expired entries, then the oldest ones.
    """

    def __init__(self, namespace: str, max_entries: int = 1000):
        super().__init__(namespace)
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        entry = self._entries.get(self.key(fingerprint))
        if entry is None:
            return None
        if entry.is_expired():
            async with self._lock:
                if self._entries.get(self.key(fingerprint)) is entry:
                    del self._entries[self.key(fingerprint)]
            return None
        return entry

    async def set(self, entry: CacheEntry) -> None:
        key = self.key(entry.fingerprint)
        async with self._lock:
            # re-inserting moves the key to the newest position
            self._entries.pop(key, None)
            if len(self._entries) >= self.max_entries:
                self._evict()
            self._entries[key] = entry

    def _evict(self) -> None:
        expired = [key for key, entry in self._entries.items() if entry.is_expired()]
        for key in expired:
            del self._entries[key]
        # dicts keep insertion order, so the first keys are the oldest
        overflow = len(self._entries) - self.max_entries + 1
        for key in list(self._entries)[: max(overflow, 0)]:
            del self._entries[key]
        logger.debug(
            "Memory cache evicted entries",
            expired=len(expired),
            oldest=max(overflow, 0),
            namespace=self.namespace,
        )

    async def delete(self, fingerprint: str) -> None:
        async with self._lock:
            self._entries.pop(self.key(fingerprint), None)

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._entries)
            self._entries.clear()
        return count

    def __len__(self) -> int:
        return len(self._entries)


class FileSystemCacheStore(CacheStore):
    """Stores ``<fingerprint>.bin`` with a ``<fingerprint>.json`` metadata sidecar."""

    def __init__(self, root: Path, namespace: str):
        super().__init__(namespace)
        self.directory = Path(root) / namespace
        self.directory.mkdir(parents=True, exist_ok=True)

    def _paths(self, fingerprint: str) -> "tuple[Path, Path]":
        return self.directory / f"{fingerprint}.bin", self.directory / f"{fingerprint}.json"

    def _read(self, fingerprint: str) -> Optional[CacheEntry]:
        data_path, meta_path = self._paths(fingerprint)
        if not meta_path.exists() or not data_path.exists():
            return None
        metadata = json.loads(meta_path.read_text(encoding="utf-8"))
        return _entry_from_metadata(metadata, data_path.read_bytes())

    def _write(self, entry: CacheEntry) -> None:
        data_path, meta_path = self._paths(entry.fingerprint)
        for path, content in (
            (data_path, entry.data),
            (meta_path, json.dumps(_entry_metadata(entry)).encode("utf-8")),
        ):
            tmp_path = path.with_suffix(path.suffix + ".tmp")
            tmp_path.write_bytes(content)
            os.replace(tmp_path, path)

    def _delete(self, fingerprint: str) -> None:
        for path in self._paths(fingerprint):
            path.unlink(missing_ok=True)

    def _clear(self) -> int:
        count = 0
        for path in self.directory.glob("*.json"):
            self._delete(path.stem)
            count += 1
        return count

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        try:
            entry = await asyncio.to_thread(self._read, fingerprint)
        except (OSError, ValueError) as e:
            raise CacheStoreError(f"Failed to read cache entry {fingerprint}: {e}") from e
        if entry is not None and entry.is_expired():
            await self.delete(fingerprint)
            return None
        return entry

    async def set(self, entry: CacheEntry) -> None:
        try:
            await asyncio.to_thread(self._write, entry)
        except OSError as e:
            raise CacheStoreError(f"Failed to write cache entry {entry.fingerprint}: {e}") from e

    async def delete(self, fingerprint: str) -> None:
        try:
            await asyncio.to_thread(self._delete, fingerprint)
        except OSError as e:
            raise CacheStoreError(f"Failed to delete cache entry {fingerprint}: {e}") from e

    async def clear(self) -> int:
        try:
            return await asyncio.to_thread(self._clear)
        except OSError as e:
            raise CacheStoreError(f"Failed to clear cache namespace: {e}") from e


class RedisCacheStore(CacheStore):
    """Redis hash per entry, expiring with the entry TTL."""

    def __init__(self, namespace: str, redis_url: Optional[str] = None, client: Any = None):
        super().__init__(namespace)
        if client is None:
            if redis_url is None:
                raise ValueError("redis_url or client is required")
            client = redis.Redis.from_url(redis_url, decode_responses=False)
        self._client = client

    @staticmethod
    def _decode(raw: Dict[Any, Any]) -> Dict[str, Any]:
        decoded = {}
        for key, value in raw.items():
            name = key.decode("utf-8") if isinstance(key, bytes) else key
            decoded[name] = value
        return decoded

    async def get(self, fingerprint: str) -> Optional[CacheEntry]:
        try:
            raw = await self._client.hgetall(self.key(fingerprint))
        except redis.RedisError as e:
            raise CacheStoreError(f"Failed to read cache entry {fingerprint}: {e}") from e
        if not raw:
            return None

        fields = self._decode(raw)
        try:
            metadata = json.loads(fields["meta"])
            entry = _entry_from_metadata(metadata, bytes(fields["data"]))
        except (KeyError, ValueError) as e:
            raise CacheStoreError(f"Corrupt cache entry {fingerprint}: {e}") from e
        return None if entry.is_expired() else entry

    async def set(self, entry: CacheEntry) -> None:
        if entry.ttl <= 0:
            return
        key = self.key(entry.fingerprint)
        try:
            await self._client.hset(
                key,
                mapping={"meta": json.dumps(_entry_metadata(entry)), "data": entry.data},
            )
            await self._client.expire(key, entry.ttl)
        except redis.RedisError as e:
            raise CacheStoreError(f"Failed to write cache entry {entry.fingerprint}: {e}") from e

    async def delete(self, fingerprint: str) -> None:
        try:
            await self._client.delete(self.key(fingerprint))
        except redis.RedisError as e:
            raise CacheStoreError(f"Failed to delete cache entry {fingerprint}: {e}") from e

    async def clear(self) -> int:
        count = 0
        try:
            async for key in self._client.scan_iter(match=f"{self.namespace}/*"):
                count += await self._client.delete(key)
        except redis.RedisError as e:
            raise CacheStoreError(f"Failed to clear cache namespace: {e}") from e
        return count

    async def close(self) -> None:
        await self._client.aclose()


def create_store(
    driver: str,
    namespace: str,
    storage_path: Path,
    redis_url: str,
    max_entries: int = 1000,
) -> CacheStore:
    """Build the configured cache store."""
    if driver == "redis":
        return RedisCacheStore(namespace, redis_url=redis_url)
    if driver == "filesystem":
        return FileSystemCacheStore(storage_path / "cache", namespace)
    return MemoryCacheStore(namespace, max_entries=max_entries)


def entry_age_seconds(entry: CacheEntry, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(entry.created_at.tzinfo)
    return (now - entry.created_at).total_seconds()

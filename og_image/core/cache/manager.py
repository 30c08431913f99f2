"""
Cache Manager
=============

Memoizing front door of the render pipeline. Concurrent misses for the same
fingerprint share one in-flight render; waiters await it through
``asyncio.shield`` so an abandoned request never cancels a render other
callers (or the cache) still need. Store failures degrade to pass-through
rendering.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

from og_image.config.logging import get_logger
from og_image.core.cache.fingerprint import FingerprintInputs, compute_fingerprint
from og_image.core.cache.stores import CacheStore, entry_age_seconds
from og_image.core.errors import CacheStoreError, RenderFailed
from og_image.models.schemas import CacheEntry, ImageResult

logger = get_logger(__name__)

RenderFn = Callable[[], Awaitable[ImageResult]]


class CacheManager:
    """Fingerprint-keyed, single-flight render cache."""

    def __init__(self, store: Optional[CacheStore], enabled: bool = True):
        self.store = store
        self.enabled = enabled and store is not None
        self._inflight: Dict[str, "asyncio.Task[ImageResult]"] = {}
        self.stats: Dict[str, int] = {"hits": 0, "misses": 0, "renders": 0, "store_errors": 0}
        self.logger: Any = logger.bind(component="cache_manager")

    @property
    def namespace(self) -> Optional[str]:
        return self.store.namespace if self.store is not None else None

    async def get_or_render(
        self, inputs: FingerprintInputs, render_fn: RenderFn, purge: bool = False
    ) -> ImageResult:
        """
        Return a cached image or render it once.

        Args:
            inputs: Fingerprint inputs (template hash, requested options, namespace)
            render_fn: Full dispatch and rasterize pipeline
            purge: Drop any stored entry and render fresh

        Returns:
            ImageResult from the cache or a fresh render
        """
        if not self.enabled:
            self.stats["renders"] += 1
            return await render_fn()

        fingerprint = compute_fingerprint(inputs)

        if purge:
            await self.invalidate(inputs)
        else:
            entry = await self._safe_get(fingerprint)
            if entry is not None:
                self.stats["hits"] += 1
                self.logger.debug("Cache hit", fingerprint=fingerprint)
                result = entry.to_result()
                result.metadata["age"] = int(entry_age_seconds(entry))
                return result

        self.stats["misses"] += 1
        task = self._inflight.get(fingerprint)
        if task is None:
            task = asyncio.ensure_future(self._render_and_store(fingerprint, inputs, render_fn))
            self._inflight[fingerprint] = task
            task.add_done_callback(lambda t, fp=fingerprint: self._on_done(fp, t))
        else:
            self.logger.debug("Joining in-flight render", fingerprint=fingerprint)

        result = await asyncio.shield(task)
        return result.model_copy(update={"metadata": dict(result.metadata)})

    def _on_done(self, fingerprint: str, task: "asyncio.Task[ImageResult]") -> None:
        if self._inflight.get(fingerprint) is task:
            del self._inflight[fingerprint]
        if not task.cancelled() and task.exception() is not None:
            # retrieved so detached renders do not log "exception never retrieved"
            self.logger.debug("In-flight render failed", fingerprint=fingerprint)

    async def _render_and_store(
        self, fingerprint: str, inputs: FingerprintInputs, render_fn: RenderFn
    ) -> ImageResult:
        self.stats["renders"] += 1
        result = await render_fn()
        if not result.data:
            raise RenderFailed("Renderer returned an empty image")

        entry = CacheEntry(
            fingerprint=fingerprint,
            data=result.data,
            content_type=result.content_type,
            format=result.format,
            requested_format=result.requested_format,
            renderer=result.renderer,
            ttl=inputs.options.cache_ttl,
        )
        await self._safe_set(entry)
        metadata = {**result.metadata, "cache": "miss", "fingerprint": fingerprint}
        return result.model_copy(update={"metadata": metadata})

    async def _safe_get(self, fingerprint: str) -> Optional[CacheEntry]:
        try:
            return await self.store.get(fingerprint)  # type: ignore[union-attr]
        except CacheStoreError as e:
            self.stats["store_errors"] += 1
            self.logger.warning("Cache read failed, rendering without cache", error=str(e))
            return None

    async def _safe_set(self, entry: CacheEntry) -> None:
        try:
            await self.store.set(entry)  # type: ignore[union-attr]
        except CacheStoreError as e:
            self.stats["store_errors"] += 1
            self.logger.warning("Cache write failed, result not cached", error=str(e))

    async def _safe_delete(self, fingerprint: str) -> None:
        try:
            await self.store.delete(fingerprint)  # type: ignore[union-attr]
        except CacheStoreError as e:
            self.stats["store_errors"] += 1
            self.logger.warning("Cache delete failed", error=str(e))

    async def invalidate(self, inputs: FingerprintInputs) -> None:
        """Remove the stored entry for these inputs, if any."""
        if self.enabled:
            fingerprint = compute_fingerprint(inputs)
            await self._safe_delete(fingerprint)
            self.logger.info("Cache entry invalidated", fingerprint=fingerprint)

    async def purge(self) -> int:
        """Remove every entry in the namespace."""
        if not self.enabled:
            return 0
        try:
            return await self.store.clear()  # type: ignore[union-attr]
        except CacheStoreError as e:
            self.logger.warning("Cache purge failed", error=str(e))
            return 0

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()

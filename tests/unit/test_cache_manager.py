"""
Unit Tests for Cache Manager
============================

Fingerprinting, single-flight rendering and store failure handling.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from og_image.core.cache.fingerprint import (
    FingerprintInputs,
    cache_namespace,
    compute_fingerprint,
    namespace_version,
)
from og_image.core.cache.manager import CacheManager
from og_image.core.cache.stores import MemoryCacheStore
from og_image.core.errors import CacheStoreError, RenderFailed
from og_image.models.schemas import ImageFormat, ImageResult, RendererMode, RenderOptions

NAMESPACE = cache_namespace("og-image", "og-image@1.0.0-abcdef12")


class SlowRender:
    """Render function counting calls, optionally slow or failing."""

    def __init__(self, delay: float = 0.0, fail: bool = False, data: bytes = b"PNGDATA"):
        self.calls = 0
        self.delay = delay
        self.fail = fail
        self.data = data
        self.produced = ImageFormat.PNG
        self.requested = ImageFormat.PNG

    async def __call__(self) -> ImageResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("engine crashed")
        return ImageResult(
            data=self.data,
            format=self.produced,
            requested_format=self.requested,
            renderer=RendererMode.VECTOR,
        )


def inputs_for(options: RenderOptions = None, template_hash: str = "tmpl-hash") -> FingerprintInputs:
    return FingerprintInputs(
        template_hash=template_hash, options=options or RenderOptions(), namespace=NAMESPACE
    )


@pytest.fixture
def store() -> MemoryCacheStore:
    return MemoryCacheStore(NAMESPACE)


@pytest.fixture
def manager(store: MemoryCacheStore) -> CacheManager:
    return CacheManager(store)


class TestFingerprint:
    """Test fingerprint inputs."""

    def test_identical_inputs_match(self):
        assert compute_fingerprint(inputs_for()) == compute_fingerprint(inputs_for())

    def test_options_change_fingerprint(self):
        assert compute_fingerprint(inputs_for(RenderOptions(width=800))) != compute_fingerprint(
            inputs_for()
        )

    def test_props_change_fingerprint(self):
        first = inputs_for(RenderOptions(props={"title": "A"}))
        second = inputs_for(RenderOptions(props={"title": "B"}))

        assert compute_fingerprint(first) != compute_fingerprint(second)

    def test_template_hash_changes_fingerprint(self):
        assert compute_fingerprint(inputs_for(template_hash="v2")) != compute_fingerprint(
            inputs_for()
        )

    def test_namespace_changes_fingerprint(self):
        other = FingerprintInputs(
            template_hash="tmpl-hash", options=RenderOptions(), namespace="og-image/other"
        )

        assert compute_fingerprint(other) != compute_fingerprint(inputs_for())

    def test_engine_upgrade_changes_namespace_version(self):
        old = namespace_version("1.0.0", {"cairosvg": "2.7.0", "pillow": "10.0.0"})
        new = namespace_version("1.0.0", {"cairosvg": "2.7.1", "pillow": "10.0.0"})

        assert old.startswith("og-image@1.0.0-")
        assert old != new

    def test_cache_namespace_layout(self):
        assert cache_namespace("og-image/", "og-image@1.0.0-x") == "og-image/og-image@1.0.0-x"


class TestCacheManager:
    """Test get-or-render behaviour."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, manager):
        render = SlowRender()

        first = await manager.get_or_render(inputs_for(), render)
        second = await manager.get_or_render(inputs_for(), render)

        assert render.calls == 1
        assert first.data == second.data == b"PNGDATA"
        assert first.metadata["cache"] == "miss"
        assert second.metadata["cache"] == "hit"
        assert manager.stats["hits"] == 1
        assert manager.stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_different_options_render_separately(self, manager):
        render = SlowRender()

        await manager.get_or_render(inputs_for(RenderOptions(width=800)), render)
        await manager.get_or_render(inputs_for(RenderOptions(width=900)), render)

        assert render.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_misses_render_once(self, manager):
        render = SlowRender(delay=0.05)

        results = await asyncio.gather(
            *(manager.get_or_render(inputs_for(), render) for _ in range(20))
        )

        assert render.calls == 1
        assert all(result.data == b"PNGDATA" for result in results)

    @pytest.mark.asyncio
    async def test_abandoned_request_still_populates_cache(self, manager, store):
        render = SlowRender(delay=0.05)

        request = asyncio.ensure_future(manager.get_or_render(inputs_for(), render))
        await asyncio.sleep(0.01)
        request.cancel()
        with pytest.raises(asyncio.CancelledError):
            await request
        await asyncio.sleep(0.1)

        assert len(store) == 1
        result = await manager.get_or_render(inputs_for(), render)
        assert result.metadata["cache"] == "hit"
        assert render.calls == 1

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, manager, store):
        render = SlowRender(fail=True)

        with pytest.raises(RuntimeError):
            await manager.get_or_render(inputs_for(), render)
        assert len(store) == 0

        render.fail = False
        result = await manager.get_or_render(inputs_for(), render)

        assert result.data == b"PNGDATA"
        assert render.calls == 2

    @pytest.mark.asyncio
    async def test_empty_result_is_render_failed(self, manager, store):
        with pytest.raises(RenderFailed):
            await manager.get_or_render(inputs_for(), SlowRender(data=b""))

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_purge_forces_render(self, manager):
        render = SlowRender()

        await manager.get_or_render(inputs_for(), render)
        result = await manager.get_or_render(inputs_for(), render, purge=True)

        assert render.calls == 2
        assert result.metadata["cache"] == "miss"

    @pytest.mark.asyncio
    async def test_invalidate_drops_only_that_entry(self, manager, store):
        kept = inputs_for(RenderOptions(width=800))
        dropped = inputs_for(RenderOptions(width=900))
        await manager.get_or_render(kept, SlowRender())
        await manager.get_or_render(dropped, SlowRender())

        await manager.invalidate(dropped)

        assert len(store) == 1
        assert await store.get(compute_fingerprint(kept)) is not None
        assert await store.get(compute_fingerprint(dropped)) is None

    @pytest.mark.asyncio
    async def test_zero_ttl_is_not_served(self, manager):
        render = SlowRender()
        options = RenderOptions(cache_ttl=0)

        await manager.get_or_render(inputs_for(options), render)
        await manager.get_or_render(inputs_for(options), render)

        assert render.calls == 2

    @pytest.mark.asyncio
    async def test_downgraded_result_cached_under_requested_options(self, manager):
        render = SlowRender()
        render.requested = ImageFormat.JPEG
        options = RenderOptions(format="jpeg")

        await manager.get_or_render(inputs_for(options), render)
        cached = await manager.get_or_render(inputs_for(options), render)

        assert render.calls == 1
        assert cached.format is ImageFormat.PNG
        assert cached.requested_format is ImageFormat.JPEG
        assert cached.downgraded

    @pytest.mark.asyncio
    async def test_disabled_cache_passes_through(self, store):
        manager = CacheManager(store, enabled=False)
        render = SlowRender()

        await manager.get_or_render(inputs_for(), render)
        await manager.get_or_render(inputs_for(), render)

        assert render.calls == 2
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_store_errors_degrade_to_pass_through(self):
        store = AsyncMock()
        store.namespace = NAMESPACE
        store.get.side_effect = CacheStoreError("redis down")
        store.set.side_effect = CacheStoreError("redis down")
        manager = CacheManager(store)
        render = SlowRender()

        result = await manager.get_or_render(inputs_for(), render)

        assert result.data == b"PNGDATA"
        assert manager.stats["store_errors"] == 2

    @pytest.mark.asyncio
    async def test_purge_all(self, manager, store):
        await manager.get_or_render(inputs_for(RenderOptions(width=800)), SlowRender())
        await manager.get_or_render(inputs_for(RenderOptions(width=900)), SlowRender())

        assert await manager.purge() == 2
        assert len(store) == 0

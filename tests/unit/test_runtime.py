"""
Unit Tests for Settings and Runtime Wiring
==========================================
"""

from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError

from og_image.config.logging import get_logging_config
from og_image.config.settings import Settings
from og_image.core.cache.stores import FileSystemCacheStore, MemoryCacheStore
from og_image.core.compat.probes import EnvironmentProbe
from og_image.core.rendering.engines import BrowserEngine, load_browser_engine
from og_image.core.runtime import build_runtime
from og_image.models.schemas import ImageFormat, Phase, RendererMode

from tests.utils.mocks import fake_engines, full_probe, make_loaders


def settings_for(tmp_path, **overrides) -> Settings:
    kwargs = {"environment": "testing", "storage_path": tmp_path / "storage", **overrides}
    return Settings(**kwargs)


def build(tmp_path, **overrides):
    return build_runtime(
        settings_for(tmp_path, **overrides),
        probe=full_probe(),
        loaders=make_loaders(fake_engines()),
    )


class TestSettingsValidation:
    """Test settings validators."""

    def test_defaults(self, tmp_path):
        settings = settings_for(tmp_path)

        assert settings.default_template == "fallback"
        assert settings.default_width == 1200
        assert settings.default_height == 600
        assert settings.cache_ttl == 259200
        assert settings.browser_enabled is False

    @pytest.mark.parametrize(
        "field,value",
        [
            ("phase", "build"),
            ("cache_driver", "memcached"),
            ("environment", "staging"),
            ("cache_max_entries", 0),
        ],
    )
    def test_invalid_choices(self, tmp_path, field, value):
        with pytest.raises(ValidationError):
            settings_for(tmp_path, **{field: value})

    def test_allowed_hosts_from_string(self, tmp_path):
        settings = settings_for(tmp_path, allowed_hosts="a.example, b.example")

        assert settings.allowed_hosts == ["a.example", "b.example"]

    def test_env_prefix(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OG_IMAGE_DEPLOYMENT_TARGET", "netlify")

        assert settings_for(tmp_path).deployment_target == "netlify"


class TestBuildRuntime:
    """Test runtime assembly."""

    def test_unset_format_defaults_to_jpeg_with_encoder(self, tmp_path):
        runtime = build(tmp_path)

        assert runtime.defaults.format is ImageFormat.JPEG
        assert runtime.phase is Phase.RUNTIME

    def test_edge_target_defaults_to_svg(self, tmp_path):
        runtime = build(tmp_path, deployment_target="vercel-edge")

        assert runtime.defaults.format is ImageFormat.SVG

    def test_screenshot_default_without_browser(self, tmp_path):
        runtime = build(tmp_path, default_renderer="screenshot")

        assert runtime.defaults.renderer is RendererMode.VECTOR

    def test_filesystem_driver(self, tmp_path):
        runtime = build(tmp_path, cache_driver="filesystem")

        assert isinstance(runtime.cache.store, FileSystemCacheStore)
        assert runtime.cache.namespace.startswith("og-image/og-image@")

    def test_cache_disabled_has_no_store(self, tmp_path):
        runtime = build(tmp_path, cache_enabled=False)

        assert runtime.cache.store is None
        assert not runtime.cache.enabled

    def test_debug_payload_shape(self, tmp_path):
        payload = build(tmp_path, deployment_target="stackblitz").debug_payload()

        assert payload["compatibility"]["remote_fonts"]["runtime"] is False
        assert payload["cache"]["driver"] == "memory"
        assert payload["engines"] == []

    def test_memory_store_bound_from_settings(self, tmp_path):
        runtime = build(tmp_path, cache_max_entries=5)

        assert isinstance(runtime.cache.store, MemoryCacheStore)
        assert runtime.cache.store.max_entries == 5

    def test_dispatcher_shares_the_font_loader(self, tmp_path):
        runtime = build(tmp_path)

        assert runtime.dispatcher.font_loader is runtime.font_loader


class TestDefaultFonts:
    """The built-in font pair resolves on a default install."""

    @pytest.mark.asyncio
    async def test_default_font_fetched_remotely_on_server(self, tmp_path):
        runtime = build(tmp_path)

        assert [f.label for f in runtime.fonts] == ["Inter:400", "Inter:700"]
        with patch.object(
            runtime.font_loader, "_fetch_remote", AsyncMock(return_value=(b"TTF", "font/ttf"))
        ) as fetch:
            assert await runtime.font_loader.load("Inter", 400) == (b"TTF", "font/ttf")

        assert fetch.await_args.args[0].remote_key == "Inter:400"

    @pytest.mark.asyncio
    async def test_default_font_shipped_for_offline_targets(self, tmp_path):
        runtime = build(tmp_path, deployment_target="stackblitz")

        data, content_type = await runtime.font_loader.load("DejaVu Sans", 400)

        assert data[:4] == b"\x00\x01\x00\x00"
        assert content_type == "font/ttf"


class TestBrowserLoader:
    """Chromium executable selection for the browser engine."""

    def probe_with(self, chromium_path) -> EnvironmentProbe:
        return EnvironmentProbe(modules={"playwright": True}, chromium_path=chromium_path)

    @pytest.mark.asyncio
    async def test_detected_executable_is_launched(self, tmp_path):
        chromium = tmp_path / "chromium"
        chromium.write_text("#!/bin/sh\n")
        chromium.chmod(0o755)

        with patch.object(BrowserEngine, "initialize", AsyncMock()):
            engine = await load_browser_engine(settings_for(tmp_path), self.probe_with(str(chromium)))

        assert engine.executable_path == str(chromium)

    @pytest.mark.asyncio
    async def test_configured_executable_wins(self, tmp_path):
        configured = tmp_path / "configured-chrome"
        settings = settings_for(tmp_path, chromium_executable_path=configured)

        with patch.object(BrowserEngine, "initialize", AsyncMock()):
            engine = await load_browser_engine(settings, self.probe_with("/usr/bin/chromium"))

        assert engine.executable_path == str(configured)

    @pytest.mark.asyncio
    async def test_playwright_cache_directory_uses_bundled_browser(self, tmp_path):
        with patch.object(BrowserEngine, "initialize", AsyncMock()):
            engine = await load_browser_engine(settings_for(tmp_path), self.probe_with(str(tmp_path)))

        assert engine.executable_path is None


class TestLoggingConfig:
    def test_testing_logs_to_console_only(self, tmp_path):
        config = get_logging_config(settings_for(tmp_path))

        assert list(config["handlers"]) == ["console"]
        assert config["root"]["handlers"] == ["console"]

    def test_render_log_outside_testing(self, tmp_path):
        settings = settings_for(tmp_path).model_copy(update={"environment": "production"})
        config = get_logging_config(settings)

        handler = config["handlers"]["file"]
        assert handler["filename"] == str(tmp_path / "storage" / "logs" / "render.log")
        assert handler["formatter"] == "json"
        assert config["handlers"]["console"]["formatter"] == "json"
        assert set(config["root"]["handlers"]) == {"console", "file"}
        assert set(config["loggers"]) == {"playwright", "uvicorn.access"}

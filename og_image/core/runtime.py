"""
Runtime Wiring
==============

Builds the process-wide render runtime once at startup: probes the
environment, resolves the compatibility matrix, reconciles defaults, normalizes
fonts and connects registry, dispatcher, raster pipeline and cache.
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from og_image.config.logging import get_logger
from og_image.config.settings import Settings
from og_image.core.bindings.registry import BindingRegistry
from og_image.core.cache.fingerprint import cache_namespace, namespace_version
from og_image.core.cache.manager import CacheManager
from og_image.core.cache.stores import CacheStore, create_store
from og_image.core.compat.probes import EnvironmentProbe, probe_environment
from og_image.core.compat.resolver import reconcile_defaults, resolve
from og_image.core.fonts.loader import FontLoader
from og_image.core.fonts.resolver import normalize_fonts, prefetch_routes
from og_image.core.rendering.dispatcher import RendererDispatcher
from og_image.core.rendering.engines import default_loaders
from og_image.core.rendering.options import RouteRules
from og_image.core.rendering.raster import RasterPipeline
from og_image.core.rendering.service import ImageService
from og_image.core.templates.registry import TemplateRegistry
from og_image.models.schemas import (
    CompatibilityMatrix,
    EngineKind,
    FontDescriptor,
    Phase,
    RenderOptions,
)

logger = get_logger(__name__)


@dataclass
class ImageRuntime:
    """Everything a request needs, resolved once per process."""

    settings: Settings
    probe: EnvironmentProbe
    matrix: CompatibilityMatrix
    phase: Phase
    defaults: RenderOptions
    fonts: List[FontDescriptor]
    registry: BindingRegistry
    templates: TemplateRegistry
    dispatcher: RendererDispatcher
    cache: CacheManager
    service: ImageService
    font_loader: FontLoader
    route_rules: RouteRules
    namespace_version: str

    def debug_payload(self) -> Dict[str, Any]:
        return {
            "version": self.settings.app_version,
            "phase": self.phase.value,
            "compatibility": self.matrix.to_dict(),
            "probe": self.probe.to_dict(),
            "defaults": self.defaults.model_dump(mode="json"),
            "templates": self.templates.describe(),
            "fonts": [font.model_dump(mode="json") for font in self.fonts],
            "font_prefetch": prefetch_routes(self.fonts),
            "engines": [kind.value for kind in self.registry.initialized_kinds],
            "cache": {
                "enabled": self.cache.enabled,
                "driver": self.settings.cache_driver,
                "namespace": self.cache.namespace,
                "namespace_version": self.namespace_version,
                "stats": dict(self.cache.stats),
            },
        }

    async def close(self) -> None:
        await self.registry.close()
        await self.font_loader.close()
        await self.cache.close()


def build_defaults(settings: Settings, matrix: CompatibilityMatrix, phase: Phase) -> RenderOptions:
    defaults = RenderOptions(
        template=settings.default_template,
        width=settings.default_width,
        height=settings.default_height,
        renderer=settings.default_renderer,  # type: ignore[arg-type]
        format=settings.default_format or "png",  # type: ignore[arg-type]
        engine_options=settings.engine_options,
        cache_ttl=settings.cache_ttl,
        emojis=settings.default_emojis,
    )
    return reconcile_defaults(
        defaults, matrix, phase, format_configured=settings.default_format is not None
    )


def build_runtime(
    settings: Settings,
    probe: Optional[EnvironmentProbe] = None,
    loaders: Optional[Mapping[EngineKind, Callable[[], Awaitable[Any]]]] = None,
    store: Optional[CacheStore] = None,
) -> ImageRuntime:
    """
    Assemble the render runtime.

    Args:
        settings: Application settings
        probe: Environment probe results, probed when omitted
        loaders: Engine loaders, the real engines when omitted
        store: Cache store, built from settings when omitted
    """
    phase = Phase(settings.phase)
    probe = probe or probe_environment(settings)
    matrix = resolve(
        settings.deployment_target,
        probe,
        overrides=settings.compatibility,
        browser_enabled=settings.browser_enabled,
    )
    defaults = build_defaults(settings, matrix, phase)
    fonts = normalize_fonts(settings.fonts, matrix, phase)

    font_loader = FontLoader(
        fonts, matrix, phase, settings.font_assets_path, remote_api=settings.remote_font_api
    )

    registry = BindingRegistry(
        loaders if loaders is not None else default_loaders(settings, probe)
    )
    templates = TemplateRegistry(settings.template_dirs)
    raster = RasterPipeline(registry, matrix, phase)
    dispatcher = RendererDispatcher(
        registry,
        matrix,
        phase,
        raster,
        templates,
        fonts,
        render_timeout=settings.render_timeout,
        screenshot_timeout=settings.screenshot_timeout,
        max_width=settings.max_width,
        max_height=settings.max_height,
        font_loader=font_loader,
    )

    version = namespace_version(settings.app_version)
    namespace = cache_namespace(settings.cache_key_root, version)
    if settings.cache_enabled and store is None:
        store = create_store(
            settings.cache_driver,
            namespace,
            settings.storage_path,
            settings.redis_url,
            max_entries=settings.cache_max_entries,
        )
    cache = CacheManager(store, enabled=settings.cache_enabled)

    runtime = ImageRuntime(
        settings=settings,
        probe=probe,
        matrix=matrix,
        phase=phase,
        defaults=defaults,
        fonts=fonts,
        registry=registry,
        templates=templates,
        dispatcher=dispatcher,
        cache=cache,
        service=ImageService(dispatcher, cache, templates, namespace),
        font_loader=font_loader,
        route_rules=RouteRules(settings.route_rules),
        namespace_version=version,
    )
    logger.info(
        "Render runtime ready",
        target=matrix.target,
        phase=phase.value,
        default_format=defaults.format.value,
        default_renderer=defaults.renderer.value,
        fonts=[font.label for font in fonts],
        cache_enabled=cache.enabled,
    )
    return runtime

"""
Image Service
=============

Cache-fronted render entry point used by the HTTP routes.
"""

from typing import Any

from og_image.config.logging import get_logger
from og_image.core.cache.fingerprint import FingerprintInputs
from og_image.core.cache.manager import CacheManager
from og_image.core.rendering.dispatcher import RendererDispatcher
from og_image.core.templates.registry import TemplateRegistry
from og_image.models.schemas import ImageResult, RenderOptions

logger = get_logger(__name__)


class ImageService:
    """Validates, fingerprints and renders through the cache."""

    def __init__(
        self,
        dispatcher: RendererDispatcher,
        cache: CacheManager,
        templates: TemplateRegistry,
        namespace: str,
    ):
        self.dispatcher = dispatcher
        self.cache = cache
        self.templates = templates
        self.namespace = namespace
        self.logger: Any = logger.bind(component="image_service")

    def fingerprint_inputs(self, options: RenderOptions) -> FingerprintInputs:
        template = self.templates.get(options.template)
        return FingerprintInputs(
            template_hash=template.content_hash, options=options, namespace=self.namespace
        )

    async def render(self, options: RenderOptions, purge: bool = False) -> ImageResult:
        """
        Render an image, serving unchanged inputs from the cache.

        The cache key is derived from the requested options, so a downgraded
        result is stored under the options the caller asked for.
        """
        self.dispatcher.validate(options)
        inputs = self.fingerprint_inputs(options)
        return await self.cache.get_or_render(
            inputs, lambda: self.dispatcher.dispatch(options), purge=purge
        )

"""
Raster Pipeline
===============

Converts a rendered SVG into the requested encoded image. Rasterization always
goes through the vector rasterizer (PNG); the bitmap encoder transcodes when the
target needs another codec. When the encoder is unavailable the pipeline keeps
the best lossless format it has and reports the format actually produced, so
callers must use the returned content type.
"""

from typing import Any, Dict, Optional

from og_image.config.logging import get_logger
from og_image.core.bindings.registry import BindingRegistry
from og_image.core.errors import EngineUnavailable
from og_image.models.schemas import (
    CompatibilityMatrix,
    EngineKind,
    ImageFormat,
    ImageResult,
    Phase,
    RendererMode,
)

logger = get_logger(__name__)


class RasterPipeline:
    """Vector rasterization plus optional transcoding."""

    def __init__(self, registry: BindingRegistry, matrix: CompatibilityMatrix, phase: Phase):
        self.registry = registry
        self.matrix = matrix
        self.phase = phase
        self.logger: Any = logger.bind(component="raster_pipeline")

    async def rasterize(
        self,
        svg: str,
        target: ImageFormat,
        width: int,
        height: int,
        engine_options: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> ImageResult:
        """
        Convert SVG markup to the target format.

        Args:
            svg: SVG document
            target: Requested output format
            width: Output width in pixels
            height: Output height in pixels
            engine_options: Per-engine options keyed by engine kind

        Returns:
            ImageResult tagged with the format actually produced

        Raises:
            EngineUnavailable: If a raster target is requested and no rasterizer is usable
        """
        engine_options = engine_options or {}
        if target is ImageFormat.SVG:
            return ImageResult(
                data=svg.encode("utf-8"),
                format=ImageFormat.SVG,
                requested_format=target,
                renderer=RendererMode.VECTOR,
            )

        if not self.matrix.is_available(self.phase, EngineKind.VECTOR_RASTERIZER):
            raise EngineUnavailable(
                EngineKind.VECTOR_RASTERIZER.value, f"not supported on {self.matrix.target}"
            )

        handle = await self.registry.acquire(EngineKind.VECTOR_RASTERIZER)
        png = await handle.engine.rasterize(
            svg, width, height, engine_options.get(EngineKind.VECTOR_RASTERIZER.value)
        )
        self.logger.debug("Rasterized SVG", width=width, height=height, size=len(png))

        result = await self.transcode(
            png,
            ImageFormat.PNG,
            target,
            engine_options.get(EngineKind.BITMAP_ENCODER.value),
        )
        return result.model_copy(update={"renderer": RendererMode.VECTOR})

    async def transcode(
        self,
        data: bytes,
        source: ImageFormat,
        target: ImageFormat,
        options: Optional[Dict[str, Any]] = None,
    ) -> ImageResult:
        """
        Re-encode a bitmap when the target differs from the source format.

        A target that cannot be produced leaves the bitmap in its source format.
        """
        if target is source:
            return ImageResult(data=data, format=source, requested_format=target)

        if target is ImageFormat.SVG:
            self._log_downgrade(target, source, "bitmaps cannot be converted to SVG")
            return ImageResult(data=data, format=source, requested_format=target)

        if not self.matrix.is_available(self.phase, EngineKind.BITMAP_ENCODER):
            self._log_downgrade(target, source, f"bitmap encoder not supported on {self.matrix.target}")
            return ImageResult(data=data, format=source, requested_format=target)

        try:
            handle = await self.registry.acquire(EngineKind.BITMAP_ENCODER)
        except EngineUnavailable as e:
            self._log_downgrade(target, source, str(e))
            return ImageResult(data=data, format=source, requested_format=target)

        encoded = await handle.engine.transcode(data, target, options)
        return ImageResult(data=encoded, format=target, requested_format=target)

    def _log_downgrade(self, requested: ImageFormat, produced: ImageFormat, reason: str) -> None:
        self.logger.warning(
            "Image format downgraded",
            requested=requested.value,
            produced=produced.value,
            reason=reason,
        )

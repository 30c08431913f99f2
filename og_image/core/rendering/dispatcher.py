"""
Renderer Dispatcher
===================

Per-request state machine that picks a render strategy, runs it, and makes at
most one fallback attempt when an engine fails::

    SelectStrategy -> Render -> Complete
                         |
                         v
                     Fallback -> Render -> Complete
                                    |
                                    v
                                 Failed(RenderFailed)

Validation (dimensions, template) happens before any engine is touched. Font
binaries are then loaded once per process and inlined into the render context.
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from og_image.config.logging import get_logger
from og_image.core.bindings.registry import BindingRegistry
from og_image.core.errors import (
    FontNotFound,
    InvalidDimensions,
    NoRendererAvailable,
    OgImageError,
    RenderFailed,
)
from og_image.core.fonts.loader import FontLoader
from og_image.core.rendering.engines import wrap_svg_document
from og_image.core.rendering.raster import RasterPipeline
from og_image.core.templates.registry import TemplateRegistry
from og_image.models.schemas import (
    CompatibilityMatrix,
    EngineKind,
    FontDescriptor,
    ImageFormat,
    ImageResult,
    Phase,
    RendererMode,
    RenderContext,
    RenderOptions,
)

logger = get_logger(__name__)


# States
@dataclass(frozen=True)
class SelectStrategy:
    pass


@dataclass(frozen=True)
class Render:
    mode: RendererMode
    reduced: bool = False


@dataclass(frozen=True)
class Fallback:
    failed: Render
    error: BaseException


@dataclass(frozen=True)
class Complete:
    result: ImageResult


@dataclass(frozen=True)
class Failed:
    error: OgImageError


DispatchState = Union[SelectStrategy, Render, Fallback, Complete, Failed]


class RendererDispatcher:
    """Chooses and runs a render strategy for each request."""

    def __init__(
        self,
        registry: BindingRegistry,
        matrix: CompatibilityMatrix,
        phase: Phase,
        raster: RasterPipeline,
        templates: TemplateRegistry,
        fonts: List[FontDescriptor],
        render_timeout: float = 10.0,
        screenshot_timeout: float = 30.0,
        max_width: Optional[int] = None,
        max_height: Optional[int] = None,
        font_loader: Optional[FontLoader] = None,
    ):
        self.registry = registry
        self.matrix = matrix
        self.phase = phase
        self.raster = raster
        self.templates = templates
        self.fonts = tuple(fonts)
        self.render_timeout = render_timeout
        self.screenshot_timeout = screenshot_timeout
        self.max_width = max_width
        self.max_height = max_height
        self.font_loader = font_loader
        self._font_sources: Dict[str, str] = {}
        self.logger: Any = logger.bind(component="dispatcher")

    def validate(self, options: RenderOptions) -> None:
        """
        Reject requests that can never render, before any engine work.

        Raises:
            InvalidDimensions: If width or height is not positive or exceeds the limits
            TemplateNotFound: If the template is not registered
        """
        if options.width <= 0 or options.height <= 0:
            raise InvalidDimensions(options.width, options.height)
        if (self.max_width and options.width > self.max_width) or (
            self.max_height and options.height > self.max_height
        ):
            raise InvalidDimensions(
                options.width,
                options.height,
                f"exceeds maximum {self.max_width}x{self.max_height}",
            )
        self.templates.get(options.template)

    def build_context(self, options: RenderOptions) -> RenderContext:
        self.validate(options)
        return RenderContext(
            template=self.templates.get(options.template),
            props=dict(options.props),
            fonts=self.fonts,
            width=options.width,
            height=options.height,
            options=options,
        )

    async def _load_font_source(self, font: FontDescriptor) -> None:
        try:
            data, content_type = await self.font_loader.load(font.name, font.weight)  # type: ignore[union-attr]
        except FontNotFound as e:
            self.logger.warning("Font not inlined", font=font.label, error=str(e))
            return
        encoded = base64.b64encode(data).decode("ascii")
        self._font_sources[font.label] = f"data:{content_type};base64,{encoded}"

    async def embed_fonts(self, context: RenderContext) -> RenderContext:
        """
        Attach inlined font binaries to a render context.

        Fonts that cannot be loaded are skipped and retried on the next
        request; the template then falls back to the font endpoint URL.
        """
        if self.font_loader is None or not context.fonts:
            return context

        missing = {f.label: f for f in context.fonts if f.label not in self._font_sources}
        if missing:
            try:
                await asyncio.wait_for(
                    asyncio.gather(*(self._load_font_source(f) for f in missing.values())),
                    timeout=self.render_timeout,
                )
            except asyncio.TimeoutError:
                self.logger.warning("Font loading timed out", fonts=sorted(missing))

        sources = {
            f.label: self._font_sources[f.label]
            for f in context.fonts
            if f.label in self._font_sources
        }
        return context.model_copy(update={"font_sources": sources})

    def is_usable(self, mode: RendererMode, fmt: ImageFormat) -> bool:
        if mode is RendererMode.SCREENSHOT:
            return self.matrix.is_available(self.phase, EngineKind.BROWSER_ENGINE)
        if not self.matrix.is_available(self.phase, EngineKind.VECTOR_RENDERER):
            return False
        return fmt is ImageFormat.SVG or self.matrix.is_available(
            self.phase, EngineKind.VECTOR_RASTERIZER
        )

    def select_strategy(self, options: RenderOptions) -> RendererMode:
        """Requested mode if usable, else the alternate mode."""
        requested = options.renderer
        if self.is_usable(requested, options.format):
            return requested
        if self.is_usable(requested.alternate, options.format):
            self.logger.info(
                "Requested renderer unavailable, using alternate",
                requested=requested.value,
                selected=requested.alternate.value,
                target=self.matrix.target,
            )
            return requested.alternate
        raise NoRendererAvailable(
            f"No renderer can produce {options.format.value} on {self.matrix.target} "
            f"({self.phase.value})"
        )

    def _fallback_plan(self, failed: Render, fmt: ImageFormat) -> Render:
        """Alternate mode if usable, otherwise a reduced-fidelity retry."""
        if self.is_usable(failed.mode.alternate, fmt):
            return Render(mode=failed.mode.alternate)
        return Render(mode=failed.mode, reduced=True)

    async def dispatch(self, options: RenderOptions) -> ImageResult:
        """
        Render an image for the given options.

        Returns:
            ImageResult tagged with the renderer and format actually used

        Raises:
            InvalidDimensions, TemplateNotFound: Request validation failures
            NoRendererAvailable: No strategy is usable on this target
            RenderFailed: The engine failed and the single fallback failed too
        """
        context = await self.embed_fonts(self.build_context(options))
        state: DispatchState = SelectStrategy()
        fallback_used = False

        while True:
            if isinstance(state, SelectStrategy):
                try:
                    state = Render(mode=self.select_strategy(options))
                except NoRendererAvailable as e:
                    state = Failed(e)

            elif isinstance(state, Render):
                try:
                    result = await self._run(state, context)
                    state = Complete(result.model_copy(update={"renderer": state.mode}))
                except (InvalidDimensions, NoRendererAvailable):
                    raise
                except Exception as e:
                    self.logger.warning(
                        "Render attempt failed",
                        mode=state.mode.value,
                        reduced=state.reduced,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    if fallback_used:
                        state = Failed(self._render_failed(state, e))
                    else:
                        state = Fallback(failed=state, error=e)

            elif isinstance(state, Fallback):
                fallback_used = True
                state = self._fallback_plan(state.failed, options.format)
                self.logger.info("Falling back", mode=state.mode.value, reduced=state.reduced)

            elif isinstance(state, Complete):
                self.logger.info(
                    "Render completed",
                    template=options.template,
                    renderer=state.result.renderer.value if state.result.renderer else None,
                    format=state.result.format.value,
                    downgraded=state.result.downgraded,
                    size=len(state.result.data),
                )
                return state.result

            else:
                raise state.error

    def _render_failed(self, attempt: Render, error: BaseException) -> RenderFailed:
        timed_out = isinstance(error, asyncio.TimeoutError)
        reason = "timed out" if timed_out else f"{type(error).__name__}: {error}"
        failed = RenderFailed(
            f"Rendering failed after fallback ({attempt.mode.value}): {reason}",
            timed_out=timed_out,
        )
        failed.__cause__ = error
        return failed

    async def _run(self, attempt: Render, context: RenderContext) -> ImageResult:
        if attempt.mode is RendererMode.VECTOR:
            result = await asyncio.wait_for(
                self._render_vector(context, attempt.reduced), timeout=self.render_timeout
            )
        else:
            result = await asyncio.wait_for(
                self._render_screenshot(context, attempt.reduced), timeout=self.screenshot_timeout
            )
        if not result.data:
            raise ValueError("engine produced no image data")
        return result

    async def _render_vector(self, context: RenderContext, reduced: bool) -> ImageResult:
        handle = await self.registry.acquire(EngineKind.VECTOR_RENDERER)
        svg = await handle.engine.render(context, reduced=reduced)
        return await self.raster.rasterize(
            svg,
            context.options.format,
            context.width,
            context.height,
            context.options.engine_options,
        )

    async def _render_screenshot(self, context: RenderContext, reduced: bool) -> ImageResult:
        options = context.options
        browser = await self.registry.acquire(EngineKind.BROWSER_ENGINE)

        html = None
        if not options.url:
            renderer = await self.registry.acquire(EngineKind.VECTOR_RENDERER)
            svg = await renderer.engine.render(context, reduced=reduced)
            html = wrap_svg_document(svg, context.width, context.height)

        captured = ImageFormat.JPEG if options.format is ImageFormat.JPEG else ImageFormat.PNG
        browser_options = options.engine_options_for(EngineKind.BROWSER_ENGINE)
        data = await browser.engine.screenshot(
            width=context.width,
            height=context.height,
            html=html,
            url=options.url,
            image_type=captured.value,
            quality=browser_options.get("quality"),
            wait_for_network_idle=not reduced,
            timeout_ms=int(self.screenshot_timeout * 1000),
        )
        return await self.raster.transcode(
            data,
            captured,
            options.format,
            options.engine_options_for(EngineKind.BITMAP_ENCODER),
        )

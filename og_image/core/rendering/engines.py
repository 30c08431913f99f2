"""
Rendering Engines
=================

Engine implementations behind the binding registry:

- ``SvgTemplateEngine`` renders Jinja2 SVG templates (vector renderer)
- ``CairoRasterizer`` converts SVG to PNG with cairosvg (vector rasterizer)
- ``PillowEncoder`` transcodes bitmaps with Pillow (bitmap encoder)
- ``BrowserEngine`` captures screenshots with Playwright chromium (browser engine)

Native libraries are imported inside the loaders so that a missing library
surfaces as ``EngineUnavailable`` instead of an import error at startup.

Font binaries reach the SVG as inlined ``@font-face`` rules, which the
browser engine honours. cairosvg ignores ``@font-face`` and resolves
``font-family`` through fontconfig, so fonts used with the vector rasterizer
must also be installed on the host (the embedded DejaVu Sans default usually
is).
"""

import asyncio
import importlib
import io
import textwrap
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

import jinja2
from markupsafe import Markup
from playwright.async_api import async_playwright, Browser

from og_image.config.logging import get_logger
from og_image.models.schemas import EngineKind, FontDescriptor, ImageFormat, RenderContext

if TYPE_CHECKING:
    from og_image.config.settings import Settings
    from og_image.core.compat.probes import EnvironmentProbe

logger = get_logger(__name__)


def font_face_css(
    fonts: List[FontDescriptor], sources: Optional[Dict[str, str]] = None
) -> str:
    """
    @font-face rules for the font manifest.

    Fonts with an inlined binary in ``sources`` use their ``data:`` URI, the
    rest point at the font endpoint.
    """
    sources = sources or {}
    rules = []
    for font in fonts:
        url = sources.get(font.label)
        if url is None:
            source = font.path or font.key or ""
            extension = source.rsplit(".", 1)[-1] if "." in source else "ttf"
            url = f"/font/{font.name}/{font.weight}.{extension}"
        rules.append(
            f"@font-face {{ font-family: '{font.name}'; font-weight: {font.weight}; "
            f"src: url('{url}'); }}"
        )
    return "\n".join(rules)


class SvgTemplateEngine:
    """Renders a template and its props into an SVG document."""

    def __init__(self) -> None:
        self.env = jinja2.Environment(
            autoescape=jinja2.select_autoescape(default_for_string=True, default=True),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["wrap"] = self._wrap
        self.env.filters["px"] = lambda value: f"{value}px"
        self._compiled: Dict[str, jinja2.Template] = {}
        self.logger: Any = logger.bind(engine=EngineKind.VECTOR_RENDERER.value)

    @staticmethod
    def _wrap(text: Any, width: int = 40, max_lines: int = 3) -> List[str]:
        """Split text into lines, SVG text does not wrap by itself."""
        lines = textwrap.wrap(str(text or ""), width=width)
        if len(lines) > max_lines:
            lines = lines[:max_lines]
            lines[-1] = lines[-1].rstrip(".") + "…"
        return lines

    def _template(self, context: RenderContext) -> jinja2.Template:
        key = context.template.content_hash
        template = self._compiled.get(key)
        if template is None:
            template = self.env.from_string(context.template.source)
            self._compiled[key] = template
        return template

    def render_sync(self, context: RenderContext, reduced: bool = False) -> str:
        fonts = [] if reduced else list(context.fonts)
        family = ", ".join([f"'{f.name}'" for f in fonts[:1]] + ["sans-serif"])
        return self._template(context).render(
            width=context.width,
            height=context.height,
            props=context.props,
            fonts=fonts,
            font_family=family,
            font_faces=Markup(font_face_css(fonts, context.font_sources)),
            emojis=None if reduced else context.options.emojis,
        )

    async def render(self, context: RenderContext, reduced: bool = False) -> str:
        """Render the context's template to SVG markup."""
        svg = await asyncio.to_thread(self.render_sync, context, reduced)
        self.logger.debug("Rendered SVG", template=context.template.name, size=len(svg))
        return svg


class CairoRasterizer:
    """SVG to PNG conversion with cairosvg."""

    SUPPORTED_OPTIONS = ("background_color", "dpi", "scale", "unsafe")

    def __init__(self, cairosvg: Any):
        self._cairosvg = cairosvg

    async def rasterize(
        self, svg: str, width: int, height: int, options: Optional[Dict[str, Any]] = None
    ) -> bytes:
        kwargs = {k: v for k, v in (options or {}).items() if k in self.SUPPORTED_OPTIONS}
        return await asyncio.to_thread(
            self._cairosvg.svg2png,
            bytestring=svg.encode("utf-8"),
            output_width=width,
            output_height=height,
            **kwargs,
        )


class PillowEncoder:
    """Bitmap transcoding with Pillow."""

    PIL_FORMATS = {ImageFormat.PNG: "PNG", ImageFormat.JPEG: "JPEG", ImageFormat.WEBP: "WEBP"}

    def __init__(self, image_module: Any):
        self._image = image_module

    def transcode_sync(
        self, data: bytes, target: ImageFormat, options: Optional[Dict[str, Any]] = None
    ) -> bytes:
        options = options or {}
        image = self._image.open(io.BytesIO(data))
        save_kwargs: Dict[str, Any] = {"format": self.PIL_FORMATS[target]}

        if target is ImageFormat.JPEG:
            # JPEG has no alpha channel, flatten onto the background
            if image.mode in ("RGBA", "LA", "P"):
                image = image.convert("RGBA")
                background = self._image.new("RGB", image.size, options.get("background", "white"))
                background.paste(image, mask=image.split()[-1])
                image = background
            elif image.mode != "RGB":
                image = image.convert("RGB")
            save_kwargs["quality"] = int(options.get("quality", 90))
            save_kwargs["optimize"] = True
        elif target is ImageFormat.WEBP:
            save_kwargs["quality"] = int(options.get("quality", 90))
        else:
            save_kwargs["optimize"] = True
            save_kwargs["compress_level"] = int(options.get("compress_level", 6))

        output = io.BytesIO()
        image.save(output, **save_kwargs)
        return output.getvalue()

    async def transcode(
        self, data: bytes, target: ImageFormat, options: Optional[Dict[str, Any]] = None
    ) -> bytes:
        if target not in self.PIL_FORMATS:
            raise ValueError(f"Bitmap encoder cannot produce {target.value}")
        return await asyncio.to_thread(self.transcode_sync, data, target, options)


class BrowserEngine:
    """Single shared chromium instance; concurrent captures are bounded by a semaphore."""

    def __init__(
        self,
        headless: bool = True,
        executable_path: Optional[str] = None,
        max_pages: int = 4,
    ):
        self.headless = headless
        self.executable_path = executable_path
        self._semaphore = asyncio.Semaphore(max_pages)
        self._playwright: Any = None
        self._browser: Optional[Browser] = None
        self.logger: Any = logger.bind(engine=EngineKind.BROWSER_ENGINE.value)

    async def initialize(self) -> None:
        self._playwright = await async_playwright().start()
        launch_options: Dict[str, Any] = {
            "headless": self.headless,
            "args": [
                "--no-sandbox",
                "--disable-setuid-sandbox",
                "--disable-dev-shm-usage",
                "--disable-features=VizDisplayCompositor",
            ],
        }
        if self.executable_path:
            launch_options["executable_path"] = self.executable_path
        try:
            self._browser = await self._playwright.chromium.launch(**launch_options)
        except Exception:
            await self._playwright.stop()
            self._playwright = None
            raise
        self.logger.info("Browser launched", headless=self.headless)

    async def close(self) -> None:
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self.logger.info("Browser closed")

    async def screenshot(
        self,
        width: int,
        height: int,
        html: Optional[str] = None,
        url: Optional[str] = None,
        image_type: str = "png",
        quality: Optional[int] = None,
        wait_for_network_idle: bool = True,
        timeout_ms: int = 30000,
    ) -> bytes:
        """Capture a width x height viewport of a URL or an HTML document."""
        if self._browser is None:
            raise RuntimeError("Browser not initialized")

        async with self._semaphore:
            context = await self._browser.new_context(viewport={"width": width, "height": height})
            try:
                page = await context.new_page()
                page.set_default_timeout(timeout_ms)
                wait_until = "networkidle" if wait_for_network_idle else "domcontentloaded"
                if url:
                    await page.goto(url, wait_until=wait_until)
                else:
                    await page.set_content(html or "", wait_until=wait_until)

                screenshot_options: Dict[str, Any] = {
                    "type": image_type,
                    "clip": {"x": 0, "y": 0, "width": width, "height": height},
                }
                if image_type == "jpeg" and quality is not None:
                    screenshot_options["quality"] = quality
                return await page.screenshot(**screenshot_options)
            finally:
                await context.close()


def wrap_svg_document(svg: str, width: int, height: int) -> str:
    """Minimal HTML page hosting an SVG for browser capture."""
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<style>html,body{{margin:0;padding:0;width:{width}px;height:{height}px;overflow:hidden}}</style>"
        f"</head><body>{svg}</body></html>"
    )


async def load_vector_renderer() -> SvgTemplateEngine:
    return SvgTemplateEngine()


async def load_vector_rasterizer() -> CairoRasterizer:
    # cairosvg raises OSError at import time when libcairo is missing
    cairosvg = await asyncio.to_thread(importlib.import_module, "cairosvg")
    return CairoRasterizer(cairosvg)


async def load_bitmap_encoder() -> PillowEncoder:
    image_module = importlib.import_module("PIL.Image")
    return PillowEncoder(image_module)


async def load_browser_engine(
    settings: "Settings", probe: Optional["EnvironmentProbe"] = None
) -> BrowserEngine:
    """Launch chromium, preferring the configured executable over the probed one."""
    executable_path = None
    if settings.chromium_executable_path:
        executable_path = str(settings.chromium_executable_path)
    elif probe is not None:
        executable_path = probe.chromium_executable
    engine = BrowserEngine(headless=settings.playwright_headless, executable_path=executable_path)
    await engine.initialize()
    return engine


def default_loaders(
    settings: "Settings", probe: Optional["EnvironmentProbe"] = None
) -> Dict[EngineKind, Callable[[], Awaitable[Any]]]:
    """Binding loaders for every engine kind."""
    return {
        EngineKind.VECTOR_RENDERER: load_vector_renderer,
        EngineKind.VECTOR_RASTERIZER: load_vector_rasterizer,
        EngineKind.BITMAP_ENCODER: load_bitmap_encoder,
        EngineKind.BROWSER_ENGINE: partial(load_browser_engine, settings, probe),
    }

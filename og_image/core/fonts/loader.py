"""
Font Loader
===========

Resolves font binaries for the font endpoint and for render contexts.
Sources are tried in order: local path, embedded asset, remote fetch.
"""

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from og_image.config.logging import get_logger
from og_image.core.errors import FontNotFound
from og_image.models.schemas import CompatibilityMatrix, FontDescriptor, Phase

logger = get_logger(__name__)

FONT_CONTENT_TYPES = {
    "ttf": "font/ttf",
    "otf": "font/otf",
    "woff": "font/woff",
    "woff2": "font/woff2",
}

# An old user agent makes the CSS API answer with plain TrueType sources
_TTF_USER_AGENT = "Mozilla/5.0 (Macintosh; U; Intel Mac OS X 10_6_8; de-at) AppleWebKit/533.21.1"
_CSS_SRC = re.compile(r"src:\s*url\((?P<url>[^)]+)\)")


def font_content_type(path_or_ext: str) -> str:
    ext = path_or_ext.rsplit(".", 1)[-1].lower()
    return FONT_CONTENT_TYPES.get(ext, "application/octet-stream")


class FontLoader:
    """Loads and memoizes font binaries."""

    def __init__(
        self,
        fonts: List[FontDescriptor],
        matrix: CompatibilityMatrix,
        phase: Phase,
        assets_path: Path,
        remote_api: str = "https://fonts.googleapis.com/css2",
        timeout: float = 15.0,
    ):
        self.fonts = list(fonts)
        self.matrix = matrix
        self.phase = phase
        self.assets_path = assets_path
        self.remote_api = remote_api
        self.timeout = timeout
        self._cache: Dict[str, Tuple[bytes, str]] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self.logger: Any = logger.bind(component="font_loader")

    def find(self, name: str, weight: int) -> Optional[FontDescriptor]:
        """Last manifest entry for name and weight, since later entries override."""
        for font in reversed(self.fonts):
            if font.name == name and font.weight == weight:
                return font
        return None

    async def load(self, name: str, weight: int) -> Tuple[bytes, str]:
        """
        Load a font binary.

        Args:
            name: Font family name
            weight: Font weight

        Returns:
            Tuple of font bytes and content type

        Raises:
            FontNotFound: If no source could provide the font
        """
        descriptor = self.find(name, weight)
        if descriptor is None:
            if not self.matrix.has_remote_fonts(self.phase):
                raise FontNotFound(name, weight, "not configured")
            descriptor = FontDescriptor(name=name, weight=weight, remote_key=f"{name}:{weight}")

        cached = self._cache.get(descriptor.label)
        if cached is not None:
            return cached

        if descriptor.source == "path":
            result = await self._read_file(Path(descriptor.path), descriptor)  # type: ignore[arg-type]
        elif descriptor.source == "key":
            result = await self._read_asset(descriptor)
        else:
            result = await self._fetch_remote(descriptor)

        self._cache[descriptor.label] = result
        return result

    async def _read_file(self, path: Path, descriptor: FontDescriptor) -> Tuple[bytes, str]:
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            self.logger.warning(
                "Font file not readable", font=descriptor.label, path=str(path), error=str(e)
            )
            raise FontNotFound(descriptor.name, descriptor.weight, "font file not readable") from e
        return data, font_content_type(path.name)

    async def _read_asset(self, descriptor: FontDescriptor) -> Tuple[bytes, str]:
        root = self.assets_path.resolve()
        path = (root / str(descriptor.key)).resolve()
        if root not in path.parents:
            raise FontNotFound(descriptor.name, descriptor.weight, "asset outside assets directory")
        return await self._read_file(path, descriptor)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout, connect=5)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def _fetch_remote(self, descriptor: FontDescriptor) -> Tuple[bytes, str]:
        if not self.matrix.has_remote_fonts(self.phase):
            raise FontNotFound(descriptor.name, descriptor.weight, "remote fonts unavailable")

        family = f"{descriptor.name}:wght@{descriptor.weight}"
        try:
            session = await self._get_session()
            async with session.get(
                self.remote_api,
                params={"family": family},
                headers={"User-Agent": _TTF_USER_AGENT},
            ) as response:
                if response.status != 200:
                    raise FontNotFound(
                        descriptor.name, descriptor.weight, f"font API returned {response.status}"
                    )
                css = await response.text()

            match = _CSS_SRC.search(css)
            if match is None:
                raise FontNotFound(descriptor.name, descriptor.weight, "no source in font CSS")
            url = match.group("url").strip("'\"")

            async with session.get(url) as response:
                if response.status != 200:
                    raise FontNotFound(
                        descriptor.name, descriptor.weight, f"font download returned {response.status}"
                    )
                data = await response.read()

        except aiohttp.ClientError as e:
            raise FontNotFound(descriptor.name, descriptor.weight, str(e)) from e
        except asyncio.TimeoutError as e:
            raise FontNotFound(descriptor.name, descriptor.weight, "remote fetch timed out") from e

        self.logger.info("Fetched remote font", font=descriptor.label, size=len(data))
        return data, font_content_type(url)

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

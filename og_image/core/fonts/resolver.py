"""
Font Resolution
===============

Normalizes heterogeneous font inputs (``"Name:weight"`` shorthand strings and
explicit records) into an ordered list of ``FontDescriptor``.
"""

from typing import Any, Dict, Iterable, List, Union

from og_image.config.logging import get_logger
from og_image.models.schemas import CompatibilityMatrix, FontDescriptor, Phase

logger = get_logger(__name__)

FontInput = Union[str, Dict[str, Any], FontDescriptor]

DEFAULT_FONT_FAMILY = "Inter"
DEFAULT_FONT_WEIGHTS = (400, 700)

# Shipped in og_image/assets/fonts for targets without remote font access
EMBEDDED_FONT_FAMILY = "DejaVu Sans"
EMBEDDED_FONT_KEYS = {400: "DejaVuSans.ttf", 700: "DejaVuSans-Bold.ttf"}


def default_fonts(remote: bool = True) -> List[FontDescriptor]:
    """
    Built-in default pair.

    Remote-capable targets fetch Inter by shorthand. Other targets use the
    embedded DejaVu Sans files.
    """
    if remote:
        return [
            FontDescriptor(
                name=DEFAULT_FONT_FAMILY,
                weight=weight,
                remote_key=f"{DEFAULT_FONT_FAMILY}:{weight}",
            )
            for weight in DEFAULT_FONT_WEIGHTS
        ]
    return [
        FontDescriptor(name=EMBEDDED_FONT_FAMILY, weight=weight, key=key)
        for weight, key in EMBEDDED_FONT_KEYS.items()
    ]


def parse_shorthand(value: str) -> List[FontDescriptor]:
    """Expand ``"Name:400,700"`` into one remote descriptor per weight."""
    name, _, weights = value.partition(":")
    name = name.strip()
    if not name:
        raise ValueError(f"Invalid font shorthand: {value!r}")
    parsed = [w.strip() for w in weights.split(",") if w.strip()] or ["400"]
    return [
        FontDescriptor(name=name, weight=int(weight), remote_key=f"{name}:{int(weight)}")
        for weight in parsed
    ]


def _expand(font: FontInput) -> List[FontDescriptor]:
    if isinstance(font, FontDescriptor):
        return [font]
    if isinstance(font, str):
        return parse_shorthand(font)
    descriptor = FontDescriptor.model_validate(font)
    if descriptor.source is None:
        # records without a source are fetched remotely by name and weight
        descriptor = descriptor.model_copy(update={"remote_key": descriptor.label})
    return [descriptor]


def normalize_fonts(
    fonts: Iterable[FontInput], matrix: CompatibilityMatrix, phase: Phase
) -> List[FontDescriptor]:
    """
    Normalize font inputs into a font manifest.

    Input order is preserved and duplicates are kept. Fonts that can only be
    fetched remotely are dropped with a warning when the target cannot reach
    remote font sources. The built-in default is used when nothing remains.

    Args:
        fonts: Shorthand strings, dicts or descriptors
        matrix: Resolved compatibility matrix
        phase: Active execution phase

    Returns:
        Ordered list of FontDescriptor
    """
    inputs = list(fonts)
    remote_ok = matrix.has_remote_fonts(phase)
    if not inputs:
        return default_fonts(remote_ok)

    manifest: List[FontDescriptor] = []
    for font in inputs:
        for descriptor in _expand(font):
            if descriptor.source == "remote" and not remote_ok:
                logger.warning(
                    "Font skipped because remote fonts are not available on this target, "
                    "use a local font",
                    font=descriptor.label,
                    target=matrix.target,
                )
                continue
            manifest.append(descriptor)

    if not manifest:
        logger.warning("No usable fonts remain, using the built-in default")
        return default_fonts(remote_ok)
    return manifest


def prefetch_routes(fonts: Iterable[FontDescriptor], extension: str = "ttf") -> List[str]:
    """Font endpoint routes to warm at build time for remote-only fonts."""
    return [
        f"/font/{font.name}/{font.weight}.{extension}"
        for font in fonts
        if font.source == "remote"
    ]

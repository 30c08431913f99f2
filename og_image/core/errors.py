"""
Error Taxonomy
==============

Exceptions raised by the render pipeline. Validation errors are raised before
any engine work; engine failures get one fallback attempt before surfacing as
``RenderFailed``. A produced format that differs from the requested one is not
an error and is reported on ``ImageResult`` instead.
"""

from typing import Optional


class OgImageError(Exception):
    """Base class for render pipeline errors."""

    error_code = "OG_IMAGE_ERROR"
    status_code = 500


class EngineUnavailable(OgImageError):
    """An engine binding failed to initialize. A later acquire may retry."""

    error_code = "ENGINE_UNAVAILABLE"
    status_code = 503

    def __init__(self, kind: str, reason: str):
        self.kind = kind
        self.reason = reason
        super().__init__(f"Engine {kind} unavailable: {reason}")


class NoRendererAvailable(OgImageError):
    """No render strategy is usable for the request on this target."""

    error_code = "NO_RENDERER_AVAILABLE"
    status_code = 503


class InvalidDimensions(OgImageError):
    """Requested width or height is not a positive size within limits."""

    error_code = "INVALID_DIMENSIONS"
    status_code = 400

    def __init__(self, width: int, height: int, reason: str = "must be positive"):
        self.width = width
        self.height = height
        super().__init__(f"Invalid dimensions {width}x{height}: {reason}")


class TemplateNotFound(OgImageError):
    """Requested template identifier is not registered."""

    error_code = "TEMPLATE_NOT_FOUND"
    status_code = 404

    def __init__(self, template: str):
        self.template = template
        super().__init__(f"Template not found: {template}")


class RenderFailed(OgImageError):
    """Engine-level failure after the single fallback attempt."""

    error_code = "RENDER_FAILED"
    status_code = 500

    def __init__(self, message: str, timed_out: bool = False):
        self.timed_out = timed_out
        super().__init__(message)

    @property
    def http_status(self) -> int:
        return 504 if self.timed_out else self.status_code


class FontNotFound(OgImageError):
    """A font binary could not be resolved from any source."""

    error_code = "FONT_NOT_FOUND"
    status_code = 404

    def __init__(self, name: str, weight: int, reason: Optional[str] = None):
        self.name = name
        self.weight = weight
        message = f"Font not found: {name}:{weight}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class CacheStoreError(OgImageError):
    """A cache store read or write failed. Never reaches callers."""

    error_code = "CACHE_STORE_ERROR"

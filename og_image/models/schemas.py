"""
Pydantic Models and Schemas
===========================

Core data models for render requests, compatibility, fonts, cache entries and
API responses. Request-scoped models are frozen once constructed.
"""

from typing import Optional, List, Dict, Any, Literal, Tuple
from datetime import datetime, timedelta, timezone
from enum import Enum
import json

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Enums
class EngineKind(str, Enum):
    """Pluggable rendering/encoding engines."""
    VECTOR_RENDERER = "vector_renderer"
    VECTOR_RASTERIZER = "vector_rasterizer"
    BROWSER_ENGINE = "browser_engine"
    BITMAP_ENCODER = "bitmap_encoder"


class Phase(str, Enum):
    """Execution phases a compatibility matrix distinguishes."""
    RUNTIME = "runtime"
    DEV = "dev"
    PRERENDER = "prerender"


class RendererMode(str, Enum):
    """Render strategies."""
    VECTOR = "vector"
    SCREENSHOT = "screenshot"

    @property
    def alternate(self) -> "RendererMode":
        return RendererMode.SCREENSHOT if self is RendererMode.VECTOR else RendererMode.VECTOR


class ImageFormat(str, Enum):
    """Output image formats."""
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"
    SVG = "svg"

    @property
    def content_type(self) -> str:
        return {
            ImageFormat.PNG: "image/png",
            ImageFormat.JPEG: "image/jpeg",
            ImageFormat.WEBP: "image/webp",
            ImageFormat.SVG: "image/svg+xml",
        }[self]

    @property
    def is_raster(self) -> bool:
        return self is not ImageFormat.SVG

    @classmethod
    def parse(cls, value: Any) -> "ImageFormat":
        """Parse a format name or file extension, accepting ``jpg``."""
        if isinstance(value, ImageFormat):
            return value
        text = str(value).lower().lstrip(".")
        if text == "jpg":
            text = "jpeg"
        return cls(text)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# Rendering Models
class RenderOptions(BaseModel):
    """Options for rendering a preview image. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    template: str = Field("fallback", min_length=1, description="Template identifier")
    width: int = Field(1200, description="Render width in pixels")
    height: int = Field(600, description="Render height in pixels")
    renderer: RendererMode = Field(RendererMode.VECTOR, description="Renderer mode")
    format: ImageFormat = Field(ImageFormat.PNG, description="Output format")
    engine_options: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-engine option overrides keyed by engine kind"
    )
    cache_ttl: int = Field(60 * 60 * 24 * 3, ge=0, description="Cache TTL in seconds")
    emojis: str = Field("noto", description="Emoji rendering set")
    props: Dict[str, Any] = Field(default_factory=dict, description="Template props")
    url: Optional[str] = Field(None, description="Page URL captured in screenshot mode")

    @field_validator("format", mode="before")
    @classmethod
    def parse_format(cls, v: Any) -> ImageFormat:
        """Accept extensions such as ``jpg``."""
        return ImageFormat.parse(v)

    def merged(self, *overrides: Optional[Dict[str, Any]]) -> "RenderOptions":
        """Return new options with overrides applied in order, later wins."""
        data = self.model_dump()
        for override in overrides:
            if override:
                data = _deep_merge(data, override)
        return RenderOptions.model_validate(data)

    def engine_options_for(self, kind: EngineKind) -> Dict[str, Any]:
        return dict(self.engine_options.get(kind.value, {}))

    def canonical_json(self) -> str:
        """Stable serialization used for cache fingerprints."""
        return json.dumps(
            self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"), default=str
        )


class CompatibilityMatrix(BaseModel):
    """Engine availability per execution phase for one deployment target.

    Lookups are fail-closed: a phase/engine pair that is not present is
    reported unavailable.
    """

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., description="Deployment target the matrix was resolved for")
    phases: Dict[Phase, Dict[EngineKind, bool]] = Field(default_factory=dict)
    remote_fonts: Dict[Phase, bool] = Field(default_factory=dict)

    def is_available(self, phase: Phase, kind: EngineKind) -> bool:
        return bool(self.phases.get(phase, {}).get(kind, False))

    def has_remote_fonts(self, phase: Phase) -> bool:
        return bool(self.remote_fonts.get(phase, False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "phases": {
                phase.value: {kind.value: flag for kind, flag in engines.items()}
                for phase, engines in self.phases.items()
            },
            "remote_fonts": {phase.value: flag for phase, flag in self.remote_fonts.items()},
        }


class FontDescriptor(BaseModel):
    """A font family/weight with at most one source."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Font family name")
    weight: int = Field(400, ge=1, le=1000, description="Font weight")
    path: Optional[str] = Field(None, description="Local file path")
    key: Optional[str] = Field(None, description="Embedded asset key")
    remote_key: Optional[str] = Field(None, description="Remote fetch key")

    @model_validator(mode="after")
    def check_single_source(self) -> "FontDescriptor":
        """At most one source field may be set."""
        sources = [s for s in (self.path, self.key, self.remote_key) if s]
        if len(sources) > 1:
            raise ValueError(f"Font {self.name}:{self.weight} declares more than one source")
        return self

    @property
    def source(self) -> Optional[Literal["path", "key", "remote"]]:
        """Source in resolution order: local path, embedded asset, remote."""
        if self.path:
            return "path"
        if self.key:
            return "key"
        if self.remote_key:
            return "remote"
        return None

    @property
    def label(self) -> str:
        return f"{self.name}:{self.weight}"


class TemplateRef(BaseModel):
    """A registered template and the hash of its source content."""

    model_config = ConfigDict(frozen=True)

    name: str
    source: str = Field(..., repr=False)
    content_hash: str
    path: Optional[str] = None
    category: Literal["builtin", "app"] = "app"
    credits: Optional[str] = None


class RenderContext(BaseModel):
    """Fully resolved input to a single render call."""

    model_config = ConfigDict(frozen=True)

    template: TemplateRef
    props: Dict[str, Any] = Field(default_factory=dict)
    fonts: Tuple[FontDescriptor, ...] = ()
    font_sources: Dict[str, str] = Field(
        default_factory=dict, description="Font label to inline data: URI"
    )
    width: int
    height: int
    options: RenderOptions


class ImageResult(BaseModel):
    """Encoded image bytes plus the format actually produced."""

    data: bytes = Field(..., description="Encoded image bytes", exclude=True)
    format: ImageFormat = Field(..., description="Format actually produced")
    requested_format: ImageFormat = Field(..., description="Format that was requested")
    renderer: Optional[RendererMode] = Field(None, description="Strategy that produced the image")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Render metadata")

    @property
    def content_type(self) -> str:
        return self.format.content_type

    @property
    def downgraded(self) -> bool:
        """True when the produced format differs from the requested one."""
        return self.format is not self.requested_format


# Cache Models
class CacheEntry(BaseModel):
    """Stored render output. Entries are never patched, only replaced."""

    model_config = ConfigDict(frozen=True)

    fingerprint: str
    data: bytes = Field(..., exclude=True)
    content_type: str
    format: ImageFormat
    requested_format: ImageFormat
    renderer: Optional[RendererMode] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl: int = Field(..., ge=0, description="Time to live in seconds")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.created_at + timedelta(seconds=self.ttl)

    def to_result(self) -> ImageResult:
        return ImageResult(
            data=self.data,
            format=self.format,
            requested_format=self.requested_format,
            renderer=self.renderer,
            metadata={"cache": "hit", "fingerprint": self.fingerprint},
        )


# Health Check Models
class HealthStatus(BaseModel):
    """Health check status."""
    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp"
    )
    version: str = Field(..., description="Application version")
    target: str = Field(..., description="Deployment target")
    engines: List[str] = Field(default_factory=list, description="Initialized engine kinds")
    cache_enabled: bool = Field(..., description="Whether the render cache is enabled")


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""
    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp"
    )
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")

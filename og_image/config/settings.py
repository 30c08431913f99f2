"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional, List, Dict, Any, Union
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import json
from pathlib import Path

from og_image import __version__


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="OG Image Render Service", description="Application name")
    app_version: str = Field(default=__version__, description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=False, description="Debug mode, enables /debug.json")
    enabled: bool = Field(default=True, description="Whether images are generated at all")

    # Server Configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Deployment Target
    deployment_target: str = Field(
        default="server", description="Named deployment preset (server, docker, vercel, ...)"
    )
    phase: str = Field(default="runtime", description="Execution phase: runtime, dev, prerender")
    browser_enabled: bool = Field(
        default=False, description="Opt in to chromium screenshot rendering"
    )
    chromium_executable_path: Optional[Path] = Field(
        default=None, description="Explicit chromium executable used for screenshots"
    )
    compatibility: Dict[str, Dict[str, bool]] = Field(
        default_factory=dict,
        description="Per-phase engine overrides, e.g. {'runtime': {'bitmap_encoder': false}}",
    )

    # Default Render Options
    default_template: str = Field(default="fallback", description="Default template")
    default_width: int = Field(default=1200, description="Default render width")
    default_height: int = Field(default=600, description="Default render height")
    default_renderer: str = Field(default="vector", description="Default renderer mode")
    default_format: Optional[str] = Field(
        default=None, description="Default output format, resolved from compatibility when unset"
    )
    default_emojis: str = Field(default="noto", description="Emoji rendering set")
    max_width: int = Field(default=2400, description="Maximum render width")
    max_height: int = Field(default=2400, description="Maximum render height")
    engine_options: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict, description="Per-engine option overrides keyed by engine kind"
    )
    route_rules: Dict[str, Union[bool, Dict[str, Any]]] = Field(
        default_factory=dict,
        description="Route glob to option overrides, false disables images for the route",
    )

    # Templates and Fonts
    template_dirs: List[Path] = Field(
        default_factory=list, description="Extra directories scanned for SVG templates"
    )
    fonts: List[Union[str, Dict[str, Any]]] = Field(
        default_factory=list, description="Fonts, e.g. ['Inter:400,700', {'name': ..., 'path': ...}]"
    )
    font_assets_path: Path = Field(
        default=Path(__file__).resolve().parent.parent / "assets" / "fonts",
        description="Directory holding embedded font assets",
    )
    remote_font_api: str = Field(
        default="https://fonts.googleapis.com/css2", description="Remote font CSS API"
    )

    # Rendering Timeouts
    render_timeout: float = Field(default=10.0, description="Vector render timeout in seconds")
    screenshot_timeout: float = Field(
        default=30.0, description="Browser screenshot timeout in seconds"
    )
    playwright_headless: bool = Field(default=True, description="Run browser in headless mode")

    # Cache Configuration
    cache_enabled: bool = Field(default=True, description="Enable the render cache")
    cache_driver: str = Field(default="memory", description="Cache store: memory, filesystem, redis")
    cache_ttl: int = Field(default=60 * 60 * 24 * 3, description="Cache TTL in seconds")
    cache_max_entries: int = Field(
        default=1000, ge=1, description="Maximum entries held by the memory cache store"
    )
    storage_path: Path = Field(default=Path("./storage"), description="Storage directory path")
    cache_key_root: str = Field(default="og-image", description="Cache key namespace root")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")

    # Security Configuration
    allowed_hosts: List[str] = Field(default=["*"], description="Allowed hosts for CORS")

    # Monitoring Configuration
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("phase")
    @classmethod
    def validate_phase(cls, v: str) -> str:
        """Validate execution phase."""
        allowed = {"runtime", "dev", "prerender"}
        if v not in allowed:
            raise ValueError(f"Phase must be one of: {allowed}")
        return v

    @field_validator("cache_driver")
    @classmethod
    def validate_cache_driver(cls, v: str) -> str:
        """Validate cache driver."""
        allowed = {"memory", "filesystem", "redis"}
        if v not in allowed:
            raise ValueError(f"Cache driver must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("allowed_hosts", mode="before")
    @classmethod
    def parse_allowed_hosts(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse allowed hosts from string or list."""
        if isinstance(v, str):
            # Handle JSON-like string: ["*"] or ["host1", "host2"]
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            # Handle comma-separated string: "*" or "host1,host2"
            return [host.strip() for host in v.split(",") if host.strip()]
        return v

    @field_validator("storage_path")
    @classmethod
    def create_directories(cls, v: Path) -> Path:
        """Ensure directories exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="OG_IMAGE_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings

"""
Environment Probes
==================

Checks what is actually installed on this machine. Probe results can only
narrow what a deployment preset claims, never widen it.
"""

import ctypes.util
import importlib.util
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Optional, TYPE_CHECKING

from og_image.models.schemas import EngineKind

if TYPE_CHECKING:
    from og_image.config.settings import Settings

PROBED_MODULES = ("jinja2", "cairosvg", "PIL", "playwright")

CHROMIUM_EXECUTABLES = (
    "chromium",
    "chromium-browser",
    "google-chrome",
    "google-chrome-stable",
    "chrome",
)


@dataclass(frozen=True)
class EnvironmentProbe:
    """Snapshot of local capabilities."""

    modules: Dict[str, bool] = field(default_factory=dict)
    cairo_library: bool = False
    chromium_path: Optional[str] = None

    def has_module(self, name: str) -> bool:
        return self.modules.get(name, False)

    def confirmed_engines(self) -> FrozenSet[EngineKind]:
        """Engine kinds whose dependencies are present locally."""
        confirmed = set()
        if self.has_module("jinja2"):
            confirmed.add(EngineKind.VECTOR_RENDERER)
        if self.has_module("cairosvg") and self.cairo_library:
            confirmed.add(EngineKind.VECTOR_RASTERIZER)
        if self.has_module("PIL"):
            confirmed.add(EngineKind.BITMAP_ENCODER)
        if self.has_module("playwright") and self.chromium_path:
            confirmed.add(EngineKind.BROWSER_ENGINE)
        return frozenset(confirmed)

    @property
    def chromium_executable(self) -> Optional[str]:
        """Probed chromium when it is a runnable file, not a playwright cache directory."""
        if self.chromium_path and os.path.isfile(self.chromium_path) and os.access(
            self.chromium_path, os.X_OK
        ):
            return self.chromium_path
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "modules": dict(self.modules),
            "cairo_library": self.cairo_library,
            "chromium_path": self.chromium_path,
        }


def module_available(name: str) -> bool:
    """Check a module is importable without importing it."""
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def find_cairo_library() -> bool:
    return any(ctypes.util.find_library(name) for name in ("cairo", "cairo-2", "libcairo-2"))


def find_chromium(explicit_path: Optional[Path] = None) -> Optional[str]:
    """Locate a chromium executable: explicit path, PATH, then playwright's cache."""
    if explicit_path is not None:
        return str(explicit_path) if explicit_path.exists() else None

    for executable in CHROMIUM_EXECUTABLES:
        found = shutil.which(executable)
        if found:
            return found

    browsers_root = Path(
        os.environ.get("PLAYWRIGHT_BROWSERS_PATH", Path.home() / ".cache" / "ms-playwright")
    )
    if browsers_root.is_dir():
        for candidate in sorted(browsers_root.glob("chromium*")):
            if candidate.is_dir():
                return str(candidate)
    return None


def probe_environment(settings: Optional["Settings"] = None) -> EnvironmentProbe:
    """Probe the local environment once."""
    explicit = settings.chromium_executable_path if settings is not None else None
    return EnvironmentProbe(
        modules={name: module_available(name) for name in PROBED_MODULES},
        cairo_library=find_cairo_library(),
        chromium_path=find_chromium(explicit),
    )

"""
Template Registry
=================

Maps template identifiers to Jinja2 SVG template sources. Each template carries
a hash of its source so that editing a template changes every cache
fingerprint derived from it. Files are re-read when their modification time
changes.
"""

import hashlib
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from og_image.config.logging import get_logger
from og_image.core.errors import TemplateNotFound
from og_image.models.schemas import TemplateRef

logger = get_logger(__name__)

TEMPLATE_SUFFIX = ".svg.j2"
BUILTIN_TEMPLATE_DIR = Path(__file__).resolve().parents[2] / "templates"


def hash_source(source: str) -> str:
    return hashlib.sha256(source.encode("utf-8")).hexdigest()[:16]


def extract_credits(source: str) -> Optional[str]:
    """Return the text following ``@credits`` in the template source, if any."""
    for line in source.splitlines():
        marker = line.find("@credits")
        if marker != -1:
            credits = line[marker + len("@credits"):].split("#}", 1)[0].strip()
            return credits or None
    return None


class TemplateRegistry:
    """Registry of available templates, app directories overriding built-ins."""

    def __init__(self, template_dirs: Iterable[Path] = (), include_builtin: bool = True):
        self._sources: Dict[str, Tuple[Path, str]] = {}
        self._refs: Dict[str, Tuple[float, TemplateRef]] = {}
        self._inline: Dict[str, TemplateRef] = {}
        self.logger: Any = logger.bind(component="template_registry")

        if include_builtin:
            self._scan(BUILTIN_TEMPLATE_DIR, "builtin")
        for directory in template_dirs:
            self._scan(Path(directory), "app")

    def _scan(self, directory: Path, category: str) -> None:
        if not directory.is_dir():
            self.logger.warning("Template directory not found", directory=str(directory))
            return
        for path in sorted(directory.glob(f"*{TEMPLATE_SUFFIX}")):
            name = path.name[: -len(TEMPLATE_SUFFIX)]
            self._sources[name] = (path, category)
        self.logger.debug("Scanned template directory", directory=str(directory), category=category)

    def register(self, name: str, source: str, category: str = "app") -> TemplateRef:
        """Register an in-memory template, replacing any previous one."""
        ref = TemplateRef(
            name=name,
            source=source,
            content_hash=hash_source(source),
            category=category,  # type: ignore[arg-type]
            credits=extract_credits(source),
        )
        self._inline[name] = ref
        return ref

    def names(self) -> List[str]:
        return sorted(set(self._sources) | set(self._inline))

    def __contains__(self, name: object) -> bool:
        return name in self._inline or name in self._sources

    def get(self, name: str) -> TemplateRef:
        """
        Get a template by identifier.

        Raises:
            TemplateNotFound: If the identifier is not registered
        """
        if name in self._inline:
            return self._inline[name]
        if name not in self._sources:
            raise TemplateNotFound(name)

        path, category = self._sources[name]
        try:
            mtime = path.stat().st_mtime
        except OSError as e:
            self.logger.warning("Template file disappeared", template=name, error=str(e))
            raise TemplateNotFound(name) from e

        cached = self._refs.get(name)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        source = path.read_text(encoding="utf-8")
        ref = TemplateRef(
            name=name,
            source=source,
            content_hash=hash_source(source),
            path=str(path),
            category=category,  # type: ignore[arg-type]
            credits=extract_credits(source),
        )
        if cached is not None and cached[1].content_hash != ref.content_hash:
            self.logger.info("Template changed", template=name, content_hash=ref.content_hash)
        self._refs[name] = (mtime, ref)
        return ref

    def describe(self) -> List[Dict[str, Any]]:
        """Template summaries for diagnostics."""
        summaries = []
        for name in self.names():
            ref = self.get(name)
            summaries.append(
                {
                    "name": ref.name,
                    "category": ref.category,
                    "hash": ref.content_hash,
                    "credits": ref.credits,
                }
            )
        return summaries

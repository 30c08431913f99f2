"""
Cache Fingerprints
==================

A fingerprint combines the template content hash, the requested render options
and the cache namespace version. The namespace version includes the versions of
the engine libraries, so upgrading an engine starts a fresh namespace without a
manual purge.
"""

import hashlib
from dataclasses import dataclass
from importlib import metadata as importlib_metadata
from typing import Dict, Iterable, Optional

from og_image import __version__
from og_image.models.schemas import RenderOptions

ENGINE_DISTRIBUTIONS = ("jinja2", "cairosvg", "pillow", "playwright")


@dataclass(frozen=True)
class FingerprintInputs:
    """Everything that affects the output bytes of a render."""

    template_hash: str
    options: RenderOptions
    namespace: str


def compute_fingerprint(inputs: FingerprintInputs) -> str:
    payload = "\n".join(
        (inputs.namespace, inputs.template_hash, inputs.options.canonical_json())
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def engine_versions(distributions: Iterable[str] = ENGINE_DISTRIBUTIONS) -> Dict[str, str]:
    versions = {}
    for name in distributions:
        try:
            versions[name] = importlib_metadata.version(name)
        except importlib_metadata.PackageNotFoundError:
            versions[name] = "missing"
    return versions


def namespace_version(
    package_version: str = __version__, engines: Optional[Dict[str, str]] = None
) -> str:
    """``og-image@<version>-<engine digest>``."""
    engines = engine_versions() if engines is None else engines
    digest_source = ",".join(f"{name}={version}" for name, version in sorted(engines.items()))
    digest = hashlib.sha256(digest_source.encode("utf-8")).hexdigest()[:8]
    return f"og-image@{package_version}-{digest}"


def cache_namespace(storage_root: str, version: str) -> str:
    """Key namespace ``<storage-root>/<namespace-version>``."""
    return f"{storage_root.rstrip('/')}/{version}"

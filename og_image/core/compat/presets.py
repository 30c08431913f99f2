"""
Deployment Presets
==================

Static table of known deployment targets. Each preset lists, per execution
phase, the engine kinds the platform can run and whether remote font sources
are reachable. Anything a preset does not list is unavailable.
"""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable

from og_image.models.schemas import EngineKind, Phase

DEFAULT_TARGET = "server"

_ALL_ENGINES = frozenset(EngineKind)
_NO_BROWSER = _ALL_ENGINES - {EngineKind.BROWSER_ENGINE}


@dataclass(frozen=True)
class Preset:
    """Known constraints of one deployment target."""

    name: str
    engines: Dict[Phase, FrozenSet[EngineKind]]
    remote_fonts: FrozenSet[Phase] = field(default_factory=lambda: frozenset(Phase))
    description: str = ""

    def supports(self, phase: Phase, kind: EngineKind) -> bool:
        return kind in self.engines.get(phase, frozenset())


def _build_machine(runtime: Iterable[EngineKind]) -> Dict[Phase, FrozenSet[EngineKind]]:
    """Dev and prerender run on the build machine; only runtime is constrained."""
    return {
        Phase.RUNTIME: frozenset(runtime),
        Phase.DEV: _ALL_ENGINES,
        Phase.PRERENDER: _ALL_ENGINES,
    }


PRESETS: Dict[str, Preset] = {
    preset.name: preset
    for preset in (
        Preset(
            name="server",
            engines=_build_machine(_ALL_ENGINES),
            description="Long-running server process with native libraries",
        ),
        Preset(
            name="docker",
            engines=_build_machine(_ALL_ENGINES),
            description="Container image with native libraries",
        ),
        Preset(
            name="aws-lambda",
            engines=_build_machine(_NO_BROWSER),
            description="Serverless function, no browser process at runtime",
        ),
        Preset(
            name="netlify",
            engines=_build_machine(_NO_BROWSER),
            description="Serverless function, no browser process at runtime",
        ),
        Preset(
            name="vercel",
            engines=_build_machine({EngineKind.VECTOR_RENDERER, EngineKind.VECTOR_RASTERIZER}),
            description="Serverless function without native image codecs",
        ),
        Preset(
            name="vercel-edge",
            engines=_build_machine({EngineKind.VECTOR_RENDERER}),
            description="Edge runtime, markup rendering only",
        ),
        Preset(
            name="cloudflare",
            engines=_build_machine({EngineKind.VECTOR_RENDERER}),
            description="Worker runtime, markup rendering only",
        ),
        Preset(
            name="stackblitz",
            engines={
                Phase.RUNTIME: frozenset(
                    {EngineKind.VECTOR_RENDERER, EngineKind.VECTOR_RASTERIZER}
                ),
                Phase.DEV: frozenset({EngineKind.VECTOR_RENDERER, EngineKind.VECTOR_RASTERIZER}),
                Phase.PRERENDER: frozenset(
                    {EngineKind.VECTOR_RENDERER, EngineKind.VECTOR_RASTERIZER}
                ),
            },
            remote_fonts=frozenset(),
            description="In-browser sandbox, no remote fonts and no native processes",
        ),
    )
}


def get_preset(name: str) -> Preset:
    """Look up a preset by name. Raises KeyError for unknown targets."""
    return PRESETS[name]

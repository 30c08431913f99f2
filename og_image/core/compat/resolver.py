"""
Compatibility Resolver
======================

Turns a deployment target name plus environment probe results into an
immutable ``CompatibilityMatrix``. Resolution is a pure function of its inputs;
the application resolves once at startup and threads the matrix through every
component that needs it.

Browser policy: the browser engine is available only when explicitly opted in
(``browser_enabled``), listed by the preset, and confirmed by the probes. The
one exception is an explicit ``dev`` phase override for a locally confirmed
engine.
"""

from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from og_image.config.logging import get_logger
from og_image.core.compat.presets import DEFAULT_TARGET, PRESETS, Preset
from og_image.core.compat.probes import EnvironmentProbe, probe_environment
from og_image.models.schemas import (
    CompatibilityMatrix,
    EngineKind,
    ImageFormat,
    Phase,
    RendererMode,
    RenderOptions,
)

if TYPE_CHECKING:
    from og_image.config.settings import Settings

logger = get_logger(__name__)

Overrides = Mapping[str, Mapping[str, bool]]


def resolve(
    target: str,
    probe: EnvironmentProbe,
    overrides: Optional[Overrides] = None,
    browser_enabled: bool = False,
) -> CompatibilityMatrix:
    """
    Resolve the compatibility matrix for a deployment target.

    Args:
        target: Deployment preset name
        probe: Local environment probe results
        overrides: Per-phase engine overrides from configuration
        browser_enabled: Explicit opt-in for browser screenshot rendering

    Returns:
        Immutable CompatibilityMatrix
    """
    preset = PRESETS.get(target)
    if preset is None:
        logger.warning(
            "Unknown deployment target, using default preset",
            target=target,
            default=DEFAULT_TARGET,
        )
        preset = PRESETS[DEFAULT_TARGET]

    confirmed = probe.confirmed_engines()
    phases: Dict[Phase, Dict[EngineKind, bool]] = {}
    for phase in Phase:
        engines: Dict[EngineKind, bool] = {}
        for kind in EngineKind:
            available = preset.supports(phase, kind) and kind in confirmed
            if kind is EngineKind.BROWSER_ENGINE and not browser_enabled:
                available = False
            engines[kind] = available
        phases[phase] = engines

    if overrides:
        _apply_overrides(phases, overrides, preset, confirmed)

    matrix = CompatibilityMatrix(
        target=preset.name,
        phases=phases,
        remote_fonts={phase: phase in preset.remote_fonts for phase in Phase},
    )
    logger.debug("Compatibility resolved", **matrix.to_dict())
    return matrix


def _apply_overrides(
    phases: Dict[Phase, Dict[EngineKind, bool]],
    overrides: Overrides,
    preset: Preset,
    confirmed: Any,
) -> None:
    for phase_name, engines in overrides.items():
        try:
            phase = Phase(phase_name)
        except ValueError:
            logger.warning("Ignoring compatibility override for unknown phase", phase=phase_name)
            continue

        for kind_name, enabled in engines.items():
            try:
                kind = EngineKind(kind_name)
            except ValueError:
                logger.warning(
                    "Ignoring compatibility override for unknown engine",
                    phase=phase.value,
                    engine=kind_name,
                )
                continue

            if not enabled:
                phases[phase][kind] = False
            elif phase is Phase.DEV and preset.supports(phase, kind) and kind in confirmed:
                phases[phase][kind] = True
            elif not phases[phase][kind]:
                logger.warning(
                    "Compatibility override cannot enable engine",
                    phase=phase.value,
                    engine=kind.value,
                    target=preset.name,
                )


def default_format(matrix: CompatibilityMatrix, phase: Phase) -> ImageFormat:
    """JPEG when the bitmap encoder is usable, PNG otherwise."""
    if matrix.is_available(phase, EngineKind.BITMAP_ENCODER):
        return ImageFormat.JPEG
    return ImageFormat.PNG


def reconcile_defaults(
    defaults: RenderOptions,
    matrix: CompatibilityMatrix,
    phase: Phase,
    format_configured: bool = True,
) -> RenderOptions:
    """
    Downgrade configured defaults the matrix cannot honor.

    Never raises: inconsistent choices are replaced and logged as warnings.
    """
    updates: Dict[str, Any] = {}

    if not format_configured:
        updates["format"] = default_format(matrix, phase)

    renderer = defaults.renderer
    if renderer is RendererMode.SCREENSHOT and not matrix.is_available(
        phase, EngineKind.BROWSER_ENGINE
    ):
        logger.warning(
            "Screenshot rendering is not available on this target, defaulting to vector",
            target=matrix.target,
            phase=phase.value,
        )
        updates["renderer"] = RendererMode.VECTOR
        renderer = RendererMode.VECTOR

    fmt = updates.get("format", defaults.format)
    if fmt in (ImageFormat.JPEG, ImageFormat.WEBP) and not matrix.is_available(
        phase, EngineKind.BITMAP_ENCODER
    ):
        logger.warning(
            "Requested format needs the bitmap encoder which is unavailable, images will be PNG",
            requested=fmt.value,
            target=matrix.target,
            phase=phase.value,
        )
        fmt = ImageFormat.PNG
        updates["format"] = fmt

    if (
        renderer is RendererMode.VECTOR
        and fmt.is_raster
        and not matrix.is_available(phase, EngineKind.VECTOR_RASTERIZER)
        and not matrix.is_available(phase, EngineKind.BROWSER_ENGINE)
    ):
        logger.warning(
            "No rasterizer is available on this target, images will be SVG",
            requested=fmt.value,
            target=matrix.target,
            phase=phase.value,
        )
        updates["format"] = ImageFormat.SVG

    if not updates:
        return defaults
    return defaults.model_copy(update=updates)


def resolve_from_settings(
    settings: "Settings", probe: Optional[EnvironmentProbe] = None
) -> CompatibilityMatrix:
    """Probe the environment (unless given) and resolve for the configured target."""
    probe = probe or probe_environment(settings)
    return resolve(
        settings.deployment_target,
        probe,
        overrides=settings.compatibility,
        browser_enabled=settings.browser_enabled,
    )

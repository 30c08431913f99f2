"""
Health Routes
=============

FastAPI routes for health check endpoints.
"""

from fastapi import APIRouter, Depends

from og_image.core.runtime import ImageRuntime
from og_image.models.schemas import EngineKind, HealthStatus
from og_image.api.routes import get_runtime

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(runtime: ImageRuntime = Depends(get_runtime)) -> HealthStatus:
    """Healthy when some renderer can run in the active phase."""
    can_render = runtime.matrix.is_available(
        runtime.phase, EngineKind.VECTOR_RENDERER
    ) or runtime.matrix.is_available(runtime.phase, EngineKind.BROWSER_ENGINE)
    return HealthStatus(
        status="healthy" if can_render else "degraded",
        version=runtime.settings.app_version,
        target=runtime.matrix.target,
        engines=[kind.value for kind in runtime.registry.initialized_kinds],
        cache_enabled=runtime.cache.enabled,
    )

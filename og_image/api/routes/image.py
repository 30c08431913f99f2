"""
Image Routes
============

Serves rendered preview images. The path is the page route, optionally ending
in ``og.<ext>`` to pick the format; query parameters are per-page overrides.
"""

from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from og_image.config.logging import get_logger
from og_image.core.rendering.options import parse_image_path, query_overrides, resolve_options
from og_image.core.runtime import ImageRuntime
from og_image.models.schemas import ImageResult, RenderOptions
from og_image.api.routes import get_runtime

logger = get_logger(__name__)

router = APIRouter(tags=["Images"])


def image_headers(result: ImageResult, options: RenderOptions, cache_enabled: bool) -> Dict[str, str]:
    """Response headers: TTL-based caching plus the format actually produced."""
    if cache_enabled and options.cache_ttl > 0:
        cache_control = f"public, max-age={options.cache_ttl}, s-maxage={options.cache_ttl}"
    else:
        cache_control = "no-store"

    headers = {
        "Cache-Control": cache_control,
        "X-OG-Image-Format": result.format.value,
    }
    if result.renderer is not None:
        headers["X-OG-Image-Renderer"] = result.renderer.value
    if result.downgraded:
        headers["X-OG-Image-Downgraded"] = f"{result.requested_format.value}->{result.format.value}"
    cache_state = result.metadata.get("cache")
    if cache_state:
        headers["X-OG-Image-Cache"] = str(cache_state)
    return headers


@router.get("/image/{path:path}")
async def get_image(
    path: str, request: Request, runtime: ImageRuntime = Depends(get_runtime)
) -> Response:
    """Render (or serve from cache) the preview image for a page route."""
    query = dict(request.query_params)
    purge = "purge" in query

    try:
        route, fmt = parse_image_path(path)
        overrides = query_overrides(query)
        overrides["props"] = {"path": route, **overrides.get("props", {})}
        options = resolve_options(runtime.defaults, runtime.route_rules, route, fmt, overrides)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid image options: {e}")

    if options is None:
        raise HTTPException(status_code=404, detail=f"Image generation is disabled for {route}")

    result = await runtime.service.render(options, purge=purge)
    return Response(
        content=result.data,
        media_type=result.content_type,
        headers=image_headers(result, options, runtime.cache.enabled),
    )

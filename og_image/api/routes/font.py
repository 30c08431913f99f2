"""
Font Routes
===========

Serves font binaries for the configured font manifest.
"""

from fastapi import APIRouter, Depends, Path
from fastapi.responses import Response

from og_image.core.runtime import ImageRuntime
from og_image.api.routes import get_runtime

router = APIRouter(tags=["Fonts"])


@router.get("/font/{name}/{weight}.{extension}")
async def get_font(
    name: str,
    extension: str,
    weight: int = Path(..., ge=1, le=1000),
    runtime: ImageRuntime = Depends(get_runtime),
) -> Response:
    """Font binary resolved from local path, embedded asset or remote source."""
    data, content_type = await runtime.font_loader.load(name, weight)
    return Response(
        content=data,
        media_type=content_type,
        headers={"Cache-Control": "public, max-age=31536000, immutable"},
    )

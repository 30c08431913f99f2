"""
Debug Routes
============

Diagnostics endpoint, registered only in debug mode.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from og_image.core.runtime import ImageRuntime
from og_image.api.routes import get_runtime

router = APIRouter(tags=["Debug"])


@router.get("/debug.json")
async def debug_json(runtime: ImageRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    """Resolved compatibility matrix, templates, fonts and cache namespace."""
    return runtime.debug_payload()

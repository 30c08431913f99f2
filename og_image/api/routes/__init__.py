"""
API Routes
==========

- image: GET /image/<route>/og.<ext>
- font: GET /font/<name>/<weight>.<extension>
- debug: GET /debug.json (debug mode only)
- health: GET /health
"""

from fastapi import Request

from og_image.core.runtime import ImageRuntime


def get_runtime(request: Request) -> ImageRuntime:
    """Render runtime created by the application lifespan."""
    return request.app.state.runtime

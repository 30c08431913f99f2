"""
FastAPI Application
==================

HTTP surface of the OG image render service: image and font endpoints, health
and (in debug mode) diagnostics. The render runtime is built once in the
lifespan and shared by every request.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from og_image.config.settings import get_settings, Settings
from og_image.config.logging import get_logger
from og_image.core.errors import OgImageError, RenderFailed
from og_image.core.runtime import ImageRuntime, build_runtime
from og_image.models.schemas import ErrorResponse
from og_image.api.routes import debug, font, health, image

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting OG image service")

    if getattr(app.state, "runtime", None) is None:
        try:
            app.state.runtime = build_runtime(app.state.settings)
        except Exception as e:
            logger.error("Failed to build render runtime", error=str(e))
            raise RuntimeError(f"Render runtime initialization failed: {e}")

    try:
        yield
    finally:
        logger.info("Shutting down OG image service")
        try:
            await app.state.runtime.close()
            logger.info("Render runtime closed")
        except Exception as e:
            logger.error("Error closing render runtime", error=str(e))


def _error_response(
    request: Request, status_code: int, error: str, error_code: str, details=None
) -> JSONResponse:
    error_response = ErrorResponse(
        error=error,
        error_code=error_code,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump(mode="json"))


def create_app(
    settings: Optional[Settings] = None, runtime: Optional[ImageRuntime] = None
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Application settings, the global settings when omitted
        runtime: Prebuilt render runtime, built in the lifespan when omitted

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Render social preview images from templates",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
        )
        return _error_response(request, exc.status_code, str(exc.detail), str(exc.status_code))

    @app.exception_handler(OgImageError)
    async def og_image_exception_handler(request: Request, exc: OgImageError) -> JSONResponse:
        """Map render pipeline errors to their HTTP status."""
        status_code = exc.http_status if isinstance(exc, RenderFailed) else exc.status_code
        details = None
        if settings.debug and exc.__cause__ is not None:
            details = {"cause": repr(exc.__cause__)}

        log = logger.error if status_code >= 500 else logger.warning
        log(
            "Render pipeline error",
            error_code=exc.error_code,
            status_code=status_code,
            error=str(exc),
            path=request.url.path,
        )
        return _error_response(request, status_code, str(exc), exc.error_code, details)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        logger.error(
            "Unhandled exception",
            exception=str(exc),
            path=request.url.path,
            exc_info=True,
        )
        return _error_response(
            request,
            500,
            "Internal server error",
            "INTERNAL_ERROR",
            {"exception": str(exc)} if settings.debug else None,
        )

    app.include_router(health.router)
    if settings.enabled:
        app.include_router(image.router)
        app.include_router(font.router)
    else:
        logger.info("Image generation disabled, image routes not registered")
    if settings.debug:
        app.include_router(debug.router)

    return app


app = create_app()


def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "og_image.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()

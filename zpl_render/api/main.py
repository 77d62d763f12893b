"""
FastAPI Application
==================

Main FastAPI application exposing ZPL label preview, document rendering,
label diagnostics and health endpoints on top of the render engine.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from zpl_render import __version__
from zpl_render.api.routes.health import router as health_router
from zpl_render.api.routes.render import router as render_router
from zpl_render.config.settings import get_settings, Settings
from zpl_render.config.logging import get_logger
from zpl_render.core.errors import (
    AssemblyError,
    ExhaustedRetries,
    RenderError,
    ValidationError,
)
from zpl_render.core.rendering.engine import RenderEngine
from zpl_render.models.schemas import ErrorResponse, HealthStatus

logger = get_logger(__name__)


def status_code_for(exc: RenderError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ExhaustedRetries):
        return 503
    if isinstance(exc, AssemblyError):
        return 500
    # FatalUpstreamError and any other upstream failure
    return 502


def _error_details(exc: RenderError) -> dict[str, Any]:
    details: dict[str, Any] = {}
    if exc.label_count is not None:
        details["label_count"] = exc.label_count
    for name in ("status", "attempts", "rate_limited", "stage"):
        value = getattr(exc, name, None)
        if value is not None:
            details[name] = value
    return details


def create_app(
    settings: Optional[Settings] = None, engine: Optional[RenderEngine] = None
) -> FastAPI:
    """
    Application factory function for creating FastAPI app instance.

    Args:
        settings: Settings to use instead of the global instance
        engine: Pre-built engine, e.g. one backed by a fake upstream client.
            An injected engine is not closed on shutdown.

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info("Starting FastAPI application", environment=settings.environment)
        app.state.engine = engine or RenderEngine(settings)
        try:
            yield
        finally:
            logger.info("Shutting down FastAPI application")
            if engine is None:
                await app.state.engine.close()

    app = FastAPI(
        title="ZPL Render Engine",
        description="Render ZPL label documents to PNG previews and multi-page PDFs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.middleware("http")
    async def add_request_id(request: Request, call_next) -> JSONResponse:  # type: ignore
        """Add request ID to all requests."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)  # type: ignore
        response.headers["X-Request-ID"] = request_id  # type: ignore

        return response  # type: ignore

    @app.exception_handler(RenderError)
    async def render_exception_handler(request: Request, exc: RenderError) -> JSONResponse:
        """Map engine errors to structured error responses."""
        status_code = status_code_for(exc)
        error_response = ErrorResponse(
            error=exc.message,
            error_code=exc.error_code,
            details=_error_details(exc) or None,
            request_id=getattr(request.state, "request_id", None),
        )

        log = logger.warning if status_code < 500 else logger.error
        log(
            "Render request failed",
            status_code=status_code,
            error_code=exc.error_code,
            error=exc.message,
            request_id=error_response.request_id,
        )

        return JSONResponse(status_code=status_code, content=error_response.model_dump(mode="json"))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Malformed request bodies use the same error shape as engine validation errors."""
        error_response = ErrorResponse(
            error="Invalid render request",
            error_code=ValidationError.error_code,
            details={"errors": jsonable_errors(exc)},
            request_id=getattr(request.state, "request_id", None),
        )
        logger.warning(
            "Request validation failed",
            errors=len(exc.errors()),
            request_id=error_response.request_id,
        )
        return JSONResponse(status_code=422, content=error_response.model_dump(mode="json"))

    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        error_response = ErrorResponse(
            error=str(exc.detail),
            error_code=str(exc.status_code),
            details=None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=error_response.request_id,
        )

        return JSONResponse(status_code=exc.status_code, content=error_response.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={"exception": str(exc)} if settings.debug else None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "Unhandled exception",
            exception=str(exc),
            request_id=error_response.request_id,
            exc_info=True,
        )

        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(request: Request) -> HealthStatus:
        """
        Liveness check.

        Reports cache and concurrency gate statistics without calling the
        upstream service; see ``/api/v1/health/upstream`` for that.
        """
        stats = request.app.state.engine.stats()
        return HealthStatus(
            status="healthy", version=__version__, cache=stats["cache"], gate=stats["gate"]
        )

    @app.get("/", tags=["General"])
    async def root() -> dict[str, Any]:
        """Root endpoint with basic API information."""
        return {
            "name": "ZPL Render Engine",
            "version": __version__,
            "docs_url": "/docs" if settings.debug else None,
            "health_check": "/health",
            "endpoints": {
                "preview": "POST /api/v1/render/preview",
                "document": "POST /api/v1/render/document",
                "analyze": "POST /api/v1/labels/analyze",
                "upstream_health": "GET /api/v1/health/upstream",
            },
        }

    app.include_router(render_router)
    app.include_router(health_router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(p) for p in err.get("loc", ())], "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


app = create_app()


# Development server runner
def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "zpl_render.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()

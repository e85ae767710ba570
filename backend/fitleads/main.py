"""
FitLeads Backend - FastAPI Application Entry Point

Lead tracking and sales-funnel analytics for a fitness-training business.
Leads move through New -> Contacted -> Follow Up -> Consulted -> Closed
Won/Lost; status corrections are applied on every write and by the
maintenance passes that run before each analytics read.
"""

import time
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .core.config import settings
from .core.database import engine, init_db
from .core.logging import configure_logging
from .api import health_router, leads_router, analytics_router
from .services.cache import get_cache
from .schemas.common import ErrorResponse


configure_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# Performance Monitoring Middleware
# =============================================================================

class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track API response times and log slow requests.

    Logs warnings for requests exceeding 500ms.
    Adds X-Response-Time header to all responses.
    """

    SLOW_REQUEST_THRESHOLD_MS = 500

    async def dispatch(self, request: Request, call_next):
        """Process request with timing."""
        start_time = time.time()

        response = await call_next(request)

        process_time_ms = (time.time() - start_time) * 1000
        response.headers["X-Response-Time"] = f"{process_time_ms:.2f}ms"

        if process_time_ms > self.SLOW_REQUEST_THRESHOLD_MS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time_ms:.2f}ms"
            )

        if settings.debug:
            logger.debug(
                f"{request.method} {request.url.path} - {process_time_ms:.2f}ms"
            )

        return response


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Creates tables in development and reports cache availability.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Environment: {settings.environment}")

    # Production schemas are managed outside the app
    if settings.is_development:
        init_db()
        logger.info("Development mode - database tables created")

    cache = get_cache()
    if cache.is_connected:
        logger.info("Redis cache connected")
    else:
        logger.info("Redis cache not available - operating without cache")

    yield

    logger.info("Shutting down...")
    engine.dispose()


# =============================================================================
# Exception Handlers
# =============================================================================

async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    """
    Handle ValueError exceptions.

    Returns user-friendly error response without exposing internals.
    """
    body = ErrorResponse(error="validation_error", message=str(exc))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unhandled exceptions.

    Logs the error and returns a generic message.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}",
        exc_info=exc,
    )

    body = ErrorResponse(
        error="internal_error",
        message="An unexpected error occurred. Please try again later.",
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(),
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Lead lifecycle and sales-funnel analytics API "
            "for a fitness-training business."
        ),
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Add GZip compression middleware (compress responses > 1KB)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(PerformanceMonitoringMiddleware)

    cors_origins = settings.cors_origins_list
    allow_all = "*" in cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if allow_all else cors_origins,
        allow_credentials=not allow_all,  # credentials not compatible with wildcard
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Response-Time"],
    )

    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Register routers
    app.include_router(health_router)
    app.include_router(leads_router)
    app.include_router(analytics_router)

    return app


app = create_application()


# =============================================================================
# Root Endpoint
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint returning API information.
    """
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "docs": "/docs" if settings.is_development else "disabled",
    }


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "fitleads.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )

"""
Health check endpoints for monitoring.

Endpoints:
- /health: Database connectivity and overall status
- /health/live: Simple alive check (no dependencies)
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import get_db
from ..schemas.common import HealthResponse
from ..services.cache import get_cache


logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Returns the health status of the API and its dependencies.",
)
async def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Health check endpoint for monitoring systems.

    Checks:
    - API is responding
    - Database connection is healthy
    - Redis cache status (optional, never fails the check)

    Returns:
        HealthResponse with status and component health
    """
    db_status = "connected"

    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        db_response_time_ms = int((time.time() - start) * 1000)

        if db_response_time_ms > 100:
            logger.warning(f"Slow database response: {db_response_time_ms}ms")
    except SQLAlchemyError as e:
        db_status = "disconnected"
        logger.error(f"Database health check failed: {e}")

    return HealthResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc),
        database=db_status,
        cache=get_cache().health_check().get("status", "unknown"),
        environment=settings.environment,
    )


@router.get(
    "/health/live",
    summary="Liveness Check",
    description="Simple liveness check to verify the API is running.",
)
async def liveness_check() -> dict:
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

"""
Common Pydantic schemas shared across the application.

Contains health check and error schemas.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# =============================================================================
# Health Check Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """
    Health check response schema.

    Used by monitoring systems to verify service health.
    """

    status: str = Field(
        ...,
        description="Overall health status (healthy, unhealthy)"
    )
    version: str = Field(
        ...,
        description="Application version"
    )
    timestamp: datetime = Field(
        ...,
        description="Current server timestamp"
    )
    database: str = Field(
        ...,
        description="Database connection status"
    )
    cache: str = Field(
        default="disabled",
        description="Redis cache status (healthy, unhealthy, disabled)"
    )
    environment: str = Field(
        ...,
        description="Runtime environment (development, production)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "version": "1.0.0",
                "timestamp": "2024-06-15T01:30:00Z",
                "database": "connected",
                "cache": "disabled",
                "environment": "development"
            }
        }
    }


# =============================================================================
# Error Schemas
# =============================================================================

class ErrorResponse(BaseModel):
    """
    Standard error response schema.

    Used for consistent error formatting across all endpoints.
    """

    success: bool = Field(
        default=False,
        description="Always false for errors"
    )
    error: str = Field(
        ...,
        description="Error type or category"
    )
    message: str = Field(
        ...,
        description="Human-readable error message"
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Request ID for support/debugging"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "success": False,
                "error": "validation_error",
                "message": "Invalid date: '31/02/2024' (expected DD/MM/YYYY)",
                "request_id": "req_abc123"
            }
        }
    }

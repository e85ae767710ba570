"""
API route controllers for FitLeads.

Contains FastAPI routers for different endpoints.
Routes handle HTTP requests and delegate to services for business logic.
"""

from .health import router as health_router
from .leads import router as leads_router
from .analytics import router as analytics_router

__all__ = [
    "health_router",
    "leads_router",
    "analytics_router",
]

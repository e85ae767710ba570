"""
Pydantic validation schemas for FitLeads.

Contains request/response DTOs with validation rules.
These schemas enforce data integrity at API boundaries.
"""

from .lead import (
    LeadCreate,
    LeadUpdate,
    LeadResponse,
    LeadListResponse,
    LeadHistoryResponse,
    LeadOptionsResponse,
    StatusHistoryEntryResponse,
)
from .common import (
    HealthResponse,
    ErrorResponse,
)

__all__ = [
    # Lead schemas
    "LeadCreate",
    "LeadUpdate",
    "LeadResponse",
    "LeadListResponse",
    "LeadHistoryResponse",
    "LeadOptionsResponse",
    "StatusHistoryEntryResponse",
    # Common schemas
    "HealthResponse",
    "ErrorResponse",
]

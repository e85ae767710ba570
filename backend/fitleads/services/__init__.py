"""
Business logic services for FitLeads.

Contains all business logic separated from API layer.
Services handle status rules, maintenance, history and reporting.
"""

from .status import normalize_status, derive_effective_status
from .status_history import StatusHistoryService
from .status_maintenance import (
    MaintenanceError,
    MaintenanceResult,
    run_status_maintenance,
    get_maintenance_stats,
)
from .lead_mutations import LeadMutationService, LeadNotFoundError, LeadValidationError
from .funnel import FunnelService
from .cache import CacheService, get_cache

__all__ = [
    "normalize_status",
    "derive_effective_status",
    "StatusHistoryService",
    "MaintenanceError",
    "MaintenanceResult",
    "run_status_maintenance",
    "get_maintenance_stats",
    "LeadMutationService",
    "LeadNotFoundError",
    "LeadValidationError",
    "FunnelService",
    "CacheService",
    "get_cache",
]

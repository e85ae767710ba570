"""
Analytics API endpoints.

Funnel and summary reads run status maintenance first so the numbers
reflect corrected statuses (sales-implies-won, stale-contact promotion,
backfilled dates). A failed maintenance run is logged and the read goes
ahead on the data as it is. Responses are cached in Redis per filter
combination when caching is enabled.
"""

import time
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from ..core.config import settings
from ..core.database import get_db, get_session_factory
from ..services.cache import get_cache
from ..services.funnel import FunnelService
from ..services.status_maintenance import (
    MaintenanceError,
    MaintenanceResult,
    get_maintenance_stats,
    run_status_maintenance,
)


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


# =============================================================================
# Response Models
# =============================================================================

class LeadsSummary(BaseModel):
    """Dashboard header totals."""
    total_leads: int = Field(..., description="Total number of leads")
    total_consults: int = Field(..., description="Leads that reached Consulted or beyond")
    total_closed: int = Field(..., description="Leads currently Closed Won")
    total_sales: float = Field(..., description="Sum of sales over all leads")
    conversion_rate: float = Field(..., description="Closed Won as a percentage of all leads")
    cache_hit: bool = Field(default=False, description="Whether data came from cache")
    query_time_ms: float = Field(default=0, description="Query execution time in milliseconds")


class StatusBucket(BaseModel):
    """Leads currently in one status."""
    status: str = Field(..., description="Canonical status")
    count: int = Field(..., description="Leads in this status")
    percentage: float = Field(..., description="Share of all leads")
    total_sales: float = Field(..., description="Sales attached to these leads")
    platforms: Dict[str, int] = Field(default_factory=dict, description="Lead count per platform")


class StatusFunnelResponse(BaseModel):
    """Current status distribution."""
    total_leads: int = Field(..., description="Total leads counted")
    stages: List[StatusBucket] = Field(..., description="One entry per status, pipeline order")
    cache_hit: bool = Field(default=False, description="Whether data came from cache")
    query_time_ms: float = Field(default=0, description="Query execution time in milliseconds")


class CumulativeStage(BaseModel):
    """Leads that ever reached one pipeline stage."""
    status: str = Field(..., description="Pipeline stage")
    count: int = Field(..., description="Leads that reached this stage or a later one")
    percentage: float = Field(..., description="Share of all leads")
    conversion_from_previous: float = Field(..., description="Percentage of the previous stage that got here")


class CumulativeFunnelResponse(BaseModel):
    """Cumulative funnel built from status history."""
    total_leads: int = Field(..., description="Total leads counted")
    closed_lost: int = Field(..., description="Leads currently Closed Lost")
    stages: List[CumulativeStage] = Field(..., description="Stages New through Closed Won")
    cache_hit: bool = Field(default=False, description="Whether data came from cache")
    query_time_ms: float = Field(default=0, description="Query execution time in milliseconds")


class PlatformBreakdownItem(BaseModel):
    platform: str = Field(..., description="Platform name (Unknown if unset)")
    count: int = Field(..., description="Leads from this platform")
    closed_won: int = Field(..., description="Closed Won leads from this platform")
    total_sales: float = Field(..., description="Sales from this platform")


class PlatformBreakdownResponse(BaseModel):
    platforms: List[PlatformBreakdownItem] = Field(..., description="Platforms, largest first")
    cache_hit: bool = Field(default=False, description="Whether data came from cache")
    query_time_ms: float = Field(default=0, description="Query execution time in milliseconds")


class MaintenanceResponse(BaseModel):
    """Result of a maintenance run."""
    promoted_to_follow_up: int = Field(..., description="Contacted leads moved to Follow Up")
    synced_sales_status: int = Field(..., description="Leads closed as won because of sales")
    updated_activity_dates: int = Field(..., description="Leads with backfilled dates")
    execution_time_ms: float = Field(..., description="Run time in milliseconds")


class MaintenanceStatsResponse(BaseModel):
    """Leads each maintenance pass would currently touch."""
    stale_contacted_leads: int = Field(..., description="Contacted leads past the follow-up window")
    leads_with_sales_not_won: int = Field(..., description="Leads with sales that are not Closed Won")
    leads_without_activity_date: int = Field(..., description="Leads missing a last activity date")
    follow_up_days: int = Field(..., description="Follow-up window in days")


# =============================================================================
# Helper Functions
# =============================================================================

def refresh_lead_statuses(session_factory) -> Optional[MaintenanceResult]:
    """
    Run maintenance ahead of an analytics read.

    Returns:
        The result, or None if maintenance failed (the read continues)
    """
    try:
        result = run_status_maintenance(session_factory, settings.follow_up_days)
    except MaintenanceError as e:
        logger.error(f"Maintenance before analytics read failed: {e}")
        return None

    if result.total_changes:
        get_cache().invalidate_on_lead_change()
    return result


def elapsed_ms(start_time: float) -> float:
    return round((time.time() - start_time) * 1000, 2)


# =============================================================================
# Lead Analytics Endpoints
# =============================================================================

@router.get(
    "/leads/summary",
    response_model=LeadsSummary,
    summary="Get Leads Summary",
    description="Total leads, consults, closed and sales for the selected period.",
)
async def get_leads_summary(
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    month: Optional[str] = Query(default=None, description="Month name or number"),
    year: Optional[str] = Query(default=None, description="Four-digit year"),
    platform: Optional[str] = Query(default=None, description="Platform name"),
) -> LeadsSummary:
    start_time = time.time()
    refresh_lead_statuses(session_factory)

    cache = get_cache()
    cached_data = cache.get_analytics("summary", month=month, year=year, platform=platform)
    if cached_data:
        return LeadsSummary(**cached_data, cache_hit=True, query_time_ms=elapsed_ms(start_time))

    result = FunnelService(db).get_summary(month=month, year=year, platform=platform)
    cache.set_analytics("summary", result, month=month, year=year, platform=platform)

    return LeadsSummary(**result, cache_hit=False, query_time_ms=elapsed_ms(start_time))


@router.get(
    "/leads/funnel",
    response_model=StatusFunnelResponse,
    summary="Get Status Funnel",
    description="Current status distribution with per-platform counts and sales.",
)
async def get_status_funnel(
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    month: Optional[str] = Query(default=None, description="Month name or number"),
    year: Optional[str] = Query(default=None, description="Four-digit year"),
    platform: Optional[str] = Query(default=None, description="Platform name"),
) -> StatusFunnelResponse:
    start_time = time.time()
    refresh_lead_statuses(session_factory)

    cache = get_cache()
    cached_data = cache.get_analytics("funnel", month=month, year=year, platform=platform)
    if cached_data:
        return StatusFunnelResponse(**cached_data, cache_hit=True, query_time_ms=elapsed_ms(start_time))

    result = FunnelService(db).get_status_distribution(month=month, year=year, platform=platform)
    cache.set_analytics("funnel", result, month=month, year=year, platform=platform)

    return StatusFunnelResponse(**result, cache_hit=False, query_time_ms=elapsed_ms(start_time))


@router.get(
    "/leads/funnel/v2",
    response_model=CumulativeFunnelResponse,
    summary="Get Cumulative Funnel",
    description="Leads that ever reached each stage, from status history and current status.",
)
async def get_cumulative_funnel(
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    month: Optional[str] = Query(default=None, description="Month name or number"),
    year: Optional[str] = Query(default=None, description="Four-digit year"),
    platform: Optional[str] = Query(default=None, description="Platform name"),
) -> CumulativeFunnelResponse:
    start_time = time.time()
    refresh_lead_statuses(session_factory)

    cache = get_cache()
    cached_data = cache.get_analytics("funnel_v2", month=month, year=year, platform=platform)
    if cached_data:
        return CumulativeFunnelResponse(**cached_data, cache_hit=True, query_time_ms=elapsed_ms(start_time))

    result = FunnelService(db).get_cumulative_funnel(month=month, year=year, platform=platform)
    cache.set_analytics("funnel_v2", result, month=month, year=year, platform=platform)

    return CumulativeFunnelResponse(**result, cache_hit=False, query_time_ms=elapsed_ms(start_time))


@router.get(
    "/leads/by-platform",
    response_model=PlatformBreakdownResponse,
    summary="Get Platform Breakdown",
    description="Lead count, Closed Won count and sales per platform.",
)
async def get_platform_breakdown(
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
    month: Optional[str] = Query(default=None, description="Month name or number"),
    year: Optional[str] = Query(default=None, description="Four-digit year"),
) -> PlatformBreakdownResponse:
    start_time = time.time()
    refresh_lead_statuses(session_factory)

    cache = get_cache()
    cached_data = cache.get_analytics("by_platform", month=month, year=year)
    if cached_data:
        return PlatformBreakdownResponse(platforms=cached_data, cache_hit=True, query_time_ms=elapsed_ms(start_time))

    result = FunnelService(db).get_platform_breakdown(month=month, year=year)
    cache.set_analytics("by_platform", result, month=month, year=year)

    return PlatformBreakdownResponse(platforms=result, cache_hit=False, query_time_ms=elapsed_ms(start_time))


# =============================================================================
# Maintenance Endpoints
# =============================================================================

@router.post(
    "/maintenance",
    response_model=MaintenanceResponse,
    summary="Run Status Maintenance",
    description="Run all status maintenance passes now and return what changed.",
)
async def run_maintenance(
    session_factory=Depends(get_session_factory),
) -> MaintenanceResponse:
    try:
        result = run_status_maintenance(session_factory, settings.follow_up_days)
    except MaintenanceError as e:
        logger.error(f"On-demand maintenance failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Status maintenance failed",
        )

    if result.total_changes:
        get_cache().invalidate_on_lead_change()
    return MaintenanceResponse(**result.to_dict())


@router.get(
    "/maintenance/stats",
    response_model=MaintenanceStatsResponse,
    summary="Maintenance Statistics",
    description="Read-only count of leads each maintenance pass would touch.",
)
async def maintenance_stats(db: Session = Depends(get_db)) -> MaintenanceStatsResponse:
    stats = get_maintenance_stats(db, settings.follow_up_days)
    return MaintenanceStatsResponse(**stats, follow_up_days=settings.follow_up_days)

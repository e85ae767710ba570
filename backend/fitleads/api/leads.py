"""
Lead management endpoints.

Create, list, read and partially update leads, plus the status history of
a single lead and the option lists used by the create/edit dialogs. Status
rules are applied by ``LeadMutationService``; this module only maps HTTP
to service calls and service errors to HTTP errors.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import get_db
from ..models.catalog import Platform, Trainer
from ..schemas.lead import (
    LeadCreate,
    LeadUpdate,
    LeadResponse,
    LeadListResponse,
    LeadHistoryResponse,
    LeadOptionsResponse,
    PlatformOption,
    StatusHistoryEntryResponse,
    TrainerOption,
)
from ..services.cache import get_cache
from ..services.lead_mutations import (
    LeadMutationService,
    LeadNotFoundError,
    LeadValidationError,
)
from ..services.status import LEAD_STATUSES
from ..services.status_history import StatusHistoryService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/leads", tags=["Leads"])


# =============================================================================
# Helper Functions
# =============================================================================

def get_lead_service(db: Session = Depends(get_db)) -> LeadMutationService:
    return LeadMutationService(db, settings.follow_up_days)


def invalidate_analytics_cache() -> None:
    """Drop cached analytics after a lead write. Never fails the request."""
    try:
        get_cache().invalidate_on_lead_change()
    except Exception as e:
        logger.warning(f"Cache invalidation failed: {e}")


# =============================================================================
# Lead Endpoints
# =============================================================================

@router.post(
    "",
    response_model=LeadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Lead",
    description="Create a lead. Positive sales close it as won immediately.",
)
async def create_lead(
    payload: LeadCreate,
    service: LeadMutationService = Depends(get_lead_service),
) -> LeadResponse:
    """
    Create a new lead.

    Args:
        payload: Validated lead data
        service: Lead mutation service

    Returns:
        The persisted lead with derived status and dates

    Raises:
        HTTPException: 400 on invalid references or dates
    """
    try:
        lead = service.create_lead(payload)
    except LeadValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    invalidate_analytics_cache()
    return LeadResponse.model_validate(lead)


@router.get(
    "",
    response_model=LeadListResponse,
    summary="List Leads",
    description="List leads, newest first, optionally filtered by status and platform.",
)
async def list_leads(
    lead_status: Optional[str] = Query(default=None, alias="status", description="Filter by status"),
    platform: Optional[str] = Query(default=None, description="Filter by platform name"),
    service: LeadMutationService = Depends(get_lead_service),
) -> LeadListResponse:
    leads = service.list_leads(status=lead_status, platform=platform)
    return LeadListResponse(
        items=[LeadResponse.model_validate(lead) for lead in leads],
        total=len(leads),
    )


@router.get(
    "/options",
    response_model=LeadOptionsResponse,
    summary="Lead Form Options",
    description="Statuses, active platforms and active trainers for lead forms.",
)
async def get_lead_options(db: Session = Depends(get_db)) -> LeadOptionsResponse:
    platforms = (
        db.query(Platform)
        .filter(Platform.active.is_(True))
        .order_by(Platform.name)
        .all()
    )
    trainers = (
        db.query(Trainer)
        .filter(Trainer.active.is_(True))
        .order_by(Trainer.handle)
        .all()
    )

    return LeadOptionsResponse(
        statuses=[lead_status.value for lead_status in LEAD_STATUSES],
        platforms=[PlatformOption.model_validate(p) for p in platforms],
        trainers=[TrainerOption.model_validate(t) for t in trainers],
    )


@router.get(
    "/{lead_id}",
    response_model=LeadResponse,
    summary="Get Lead",
)
async def get_lead(
    lead_id: int,
    service: LeadMutationService = Depends(get_lead_service),
) -> LeadResponse:
    try:
        lead = service.get_lead(lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    return LeadResponse.model_validate(lead)


@router.patch(
    "/{lead_id}",
    response_model=LeadResponse,
    summary="Update Lead",
    description="Partially update a lead. Only fields present in the body are applied.",
)
async def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    service: LeadMutationService = Depends(get_lead_service),
    changed_by: Optional[str] = Header(default=None, alias="X-Changed-By"),
) -> LeadResponse:
    """
    Update a lead and re-derive its status and lifecycle dates.

    Args:
        lead_id: Lead to update
        payload: Fields to change
        service: Lead mutation service
        changed_by: Optional actor recorded on the status history entry

    Returns:
        The persisted, corrected lead

    Raises:
        HTTPException: 404 if not found, 400 on invalid input
    """
    try:
        lead = service.update_lead(lead_id, payload, changed_by=changed_by)
    except LeadNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
    except LeadValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    invalidate_analytics_cache()
    return LeadResponse.model_validate(lead)


@router.get(
    "/{lead_id}/history",
    response_model=LeadHistoryResponse,
    summary="Lead Status History",
    description="All recorded status transitions for a lead, oldest first.",
)
async def get_lead_history(
    lead_id: int,
    db: Session = Depends(get_db),
    service: LeadMutationService = Depends(get_lead_service),
) -> LeadHistoryResponse:
    try:
        service.get_lead(lead_id)
    except LeadNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")

    entries = StatusHistoryService(db).get_lead_history(lead_id)
    return LeadHistoryResponse(
        lead_id=lead_id,
        entries=[StatusHistoryEntryResponse.model_validate(entry) for entry in entries],
    )

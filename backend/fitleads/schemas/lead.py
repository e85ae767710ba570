"""
Lead Pydantic schemas for request/response validation.

Defines DTOs for lead creation, partial update and retrieval.
Status values are accepted as free text and normalized by the service
layer, so legacy values such as "Consult" are never rejected here.
"""

import re
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field, field_validator


def _normalize_phone(v: Optional[str]) -> Optional[str]:
    """
    Validate and normalize a phone number.

    Accepts local and international formats, e.g.
    - 012-345 6789
    - +60 12-345 6789

    Normalizes to digits with an optional leading +.
    """
    if v is None or not v.strip():
        return None

    has_plus = v.strip().startswith("+")
    digits_only = re.sub(r"[^\d]", "", v)

    if len(digits_only) < 7:
        raise ValueError("Phone number must be at least 7 digits")
    if len(digits_only) > 15:
        raise ValueError("Phone number too long (max 15 digits)")

    if has_plus:
        return f"+{digits_only}"
    return digits_only


def _normalize_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    # Strip and collapse whitespace
    return " ".join(v.split())


# =============================================================================
# Lead Creation Schema
# =============================================================================

class LeadCreate(BaseModel):
    """
    Schema for creating a new lead.

    Only ``name`` is required. ``sales`` above zero closes the lead as won
    regardless of the requested status.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Lead name (required)"
    )
    phone_number: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Contact phone number"
    )
    remark: Optional[str] = Field(
        default=None,
        max_length=2000,
        description="Free-text notes"
    )

    # Attribution
    platform: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Platform name (matched case-insensitively)"
    )
    platform_id: Optional[int] = Field(
        default=None,
        description="Platform id (takes precedence over platform name)"
    )
    trainer_handle: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Trainer handle (matched case-insensitively)"
    )
    trainer_id: Optional[int] = Field(
        default=None,
        description="Trainer id (takes precedence over handle)"
    )

    # Pipeline
    status: Optional[str] = Field(
        default=None,
        max_length=50,
        description="Requested status (normalized; defaults to New)"
    )
    sales: Optional[float] = Field(
        default=None,
        ge=0,
        description="Sales amount; positive values force Closed Won"
    )
    date: Optional[str] = Field(
        default=None,
        description="Arrival date in DD/MM/YYYY (defaults to today)"
    )
    closed_date: Optional[str] = Field(
        default=None,
        description="Closing date (DD/MM/YYYY or ISO) for closed leads"
    )

    # ==========================================================================
    # Validators
    # ==========================================================================

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = _normalize_name(v)
        if not v:
            raise ValueError("Name cannot be blank")
        return v

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_phone(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Jane Tan",
                "phone_number": "012-345 6789",
                "platform": "Facebook",
                "trainer_handle": "coach_amir",
                "status": "New",
                "date": "15/06/2024",
                "remark": "Interested in 12-session package",
            }
        }
    }


# =============================================================================
# Lead Update Schema
# =============================================================================

class LeadUpdate(BaseModel):
    """
    Schema for partially updating a lead.

    Only fields present in the request body are applied; omitted fields are
    left unchanged. Sending ``sales: 0`` on a Closed Won lead reverts it to
    Consulted unless ``status: "Closed Won"`` is sent in the same request.
    """

    name: Optional[str] = Field(default=None, max_length=200, description="Lead name")
    phone_number: Optional[str] = Field(default=None, max_length=50, description="Contact phone number")
    remark: Optional[str] = Field(default=None, max_length=2000, description="Free-text notes")
    platform: Optional[str] = Field(default=None, max_length=100, description="Platform name")
    platform_id: Optional[int] = Field(default=None, description="Platform id")
    trainer_handle: Optional[str] = Field(default=None, max_length=100, description="Trainer handle")
    trainer_id: Optional[int] = Field(default=None, description="Trainer id")
    status: Optional[str] = Field(default=None, max_length=50, description="New status")
    sales: Optional[float] = Field(default=None, ge=0, description="Sales amount")
    date: Optional[str] = Field(default=None, description="Arrival date in DD/MM/YYYY")
    closed_date: Optional[str] = Field(default=None, description="Closing date (DD/MM/YYYY or ISO)")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_name(v)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_phone(v)

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "Consulted",
                "remark": "Trial session booked",
            }
        }
    }


# =============================================================================
# Response Schemas
# =============================================================================

class LeadResponse(BaseModel):
    """Persisted lead as returned by the API."""

    id: int
    name: str
    phone_number: Optional[str] = None
    remark: Optional[str] = None
    platform: Optional[str] = None
    platform_id: Optional[int] = None
    trainer_handle: Optional[str] = None
    trainer_id: Optional[int] = None
    status: str
    sales: Optional[float] = None
    date: str
    month: Optional[str] = None
    closed_date: Optional[str] = None
    closed_month: Optional[str] = None
    closed_year: Optional[str] = None
    contacted_date: Optional[str] = None
    last_activity_date: Optional[str] = None
    next_follow_up_date: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class LeadListResponse(BaseModel):
    """List of leads with total count."""
    items: List[LeadResponse] = Field(..., description="Leads, newest first")
    total: int = Field(..., ge=0, description="Number of leads returned")


class StatusHistoryEntryResponse(BaseModel):
    """One status transition from the history ledger."""

    id: int
    lead_id: int
    from_status: str
    to_status: str
    changed_at: str = Field(..., description="+08:00 ISO timestamp")
    source: str = Field(..., description="api or maintenance")
    changed_by: Optional[str] = None
    note: Optional[str] = None

    model_config = {"from_attributes": True}

    @field_validator("source", mode="before")
    @classmethod
    def source_value(cls, v):
        return getattr(v, "value", v)


class LeadHistoryResponse(BaseModel):
    lead_id: int
    entries: List[StatusHistoryEntryResponse]


# =============================================================================
# Edit Dialog Options
# =============================================================================

class PlatformOption(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class TrainerOption(BaseModel):
    id: int
    handle: str
    name: Optional[str] = None

    model_config = {"from_attributes": True}


class LeadOptionsResponse(BaseModel):
    """Choices offered when creating or editing a lead."""
    statuses: List[str] = Field(..., description="Canonical statuses in pipeline order")
    platforms: List[PlatformOption] = Field(..., description="Active platforms")
    trainers: List[TrainerOption] = Field(..., description="Active trainers")

"""
Lead create/update handlers.

Apply the status rules synchronously on every write so the persisted row is
always consistent: positive sales close the lead as won, terminal statuses
carry closed-date fields and no follow-up date, open statuses carry a
follow-up date and no closed-date fields. Each status transition is then
recorded in the status history ledger.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.datetime_utils import (
    extract_date_from_iso,
    get_month_from_date,
    migrate_ddmmyyyy_to_iso,
    now_my_iso,
    standardize_date,
    convert_to_my_iso,
    to_my_iso,
)
from ..core.transactions import transaction
from ..models.catalog import Platform, Trainer
from ..models.lead import Lead, LeadStatus
from ..models.lead_status_history import StatusChangeSource
from .status import (
    closed_fields,
    compute_next_follow_up,
    derive_effective_status,
    is_closed_status,
    normalize_status,
)
from .status_history import StatusHistoryService


logger = logging.getLogger(__name__)


class LeadValidationError(ValueError):
    """Input rejected before any state change."""


class LeadNotFoundError(LookupError):
    """No lead with the requested id."""

    def __init__(self, lead_id: int):
        self.lead_id = lead_id
        super().__init__(f"Lead {lead_id} not found")


def _normalize_lead_date(value: str) -> str:
    """Accept DD/MM/YYYY (padding D/M/YYYY) or an ISO timestamp."""
    standardized = standardize_date(value)
    if standardized:
        return standardized

    converted = convert_to_my_iso(value) if "/" not in value else None
    if converted:
        return extract_date_from_iso(converted)

    raise LeadValidationError(f"Invalid date: {value!r} (expected DD/MM/YYYY)")


def _parse_closed_date(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    parsed = migrate_ddmmyyyy_to_iso(value)
    if parsed is None:
        raise LeadValidationError(f"Invalid closed date: {value!r}")
    return parsed


class LeadMutationService:
    """
    Service for creating, updating and reading leads.

    Example usage:
        service = LeadMutationService(db)
        lead = service.create_lead(LeadCreate(name="Jane", sales=500))
        assert lead.status == "Closed Won"
    """

    def __init__(self, db: Session, follow_up_days: Optional[int] = None):
        """
        Initialize with database session.

        Args:
            db: SQLAlchemy session for database operations
            follow_up_days: Days before a Contacted lead is due for follow-up
        """
        self.db = db
        self.follow_up_days = follow_up_days or settings.follow_up_days
        self.history = StatusHistoryService(db)

    # ==========================================================================
    # Reads
    # ==========================================================================

    def get_lead(self, lead_id: int) -> Lead:
        lead = self.db.query(Lead).filter(Lead.id == lead_id).first()
        if not lead:
            raise LeadNotFoundError(lead_id)
        return lead

    def list_leads(
        self,
        status: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> List[Lead]:
        """List leads, newest first, optionally filtered by status and platform."""
        query = self.db.query(Lead)

        if status:
            query = query.filter(Lead.status == normalize_status(status).value)
        if platform:
            query = query.filter(func.lower(Lead.platform) == platform.strip().lower())

        return query.order_by(Lead.created_at.desc(), Lead.id.desc()).all()

    # ==========================================================================
    # Writes
    # ==========================================================================

    def create_lead(self, data, now: Optional[datetime] = None) -> Lead:
        """
        Create a lead with status and lifecycle dates derived from the input.

        Args:
            data: LeadCreate payload
            now: Reference time (defaults to the current time)

        Returns:
            The persisted lead

        Raises:
            LeadValidationError: Missing name, bad date or unknown reference id
        """
        now_iso = to_my_iso(now) if now else now_my_iso()

        name = (data.name or "").strip()
        if not name:
            raise LeadValidationError("Lead name is required")

        platform_id, platform_name = self._resolve_platform(data.platform_id, data.platform)
        trainer_id, trainer_handle = self._resolve_trainer(data.trainer_id, data.trainer_handle)

        if data.date:
            lead_date = _normalize_lead_date(data.date)
            date_iso = migrate_ddmmyyyy_to_iso(lead_date)
        else:
            lead_date = extract_date_from_iso(now_iso)
            date_iso = None
        explicit_closed = _parse_closed_date(data.closed_date)

        sales = data.sales if data.sales is not None else 0
        status = derive_effective_status(None, data.status, sales)

        lead = Lead(
            name=name,
            phone_number=data.phone_number,
            remark=data.remark,
            platform=platform_name,
            platform_id=platform_id,
            trainer_handle=trainer_handle,
            trainer_id=trainer_id,
            status=status.value,
            sales=sales,
            date=lead_date,
            month=get_month_from_date(lead_date),
            last_activity_date=now_iso,
        )

        if is_closed_status(status):
            self._stamp_closed(lead, explicit_closed or date_iso or now_iso)
        else:
            lead.next_follow_up_date = compute_next_follow_up(status, now_iso, self.follow_up_days)
        if status == LeadStatus.CONTACTED:
            lead.contacted_date = now_iso

        with transaction(self.db):
            self.db.add(lead)
        self.db.refresh(lead)

        logger.info(f"Lead {lead.id} created with status {status.value}")

        self.history.record_status_change(
            lead.id,
            LeadStatus.NEW,
            status,
            changed_at=now_iso,
            source=StatusChangeSource.API,
        )
        return lead

    def update_lead(
        self,
        lead_id: int,
        data,
        changed_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Lead:
        """
        Apply a partial update and re-derive status and lifecycle dates.

        Only fields explicitly present in ``data`` are applied. Status is
        layered: requested status, then positive sales force Closed Won,
        then removing all sales from a Closed Won lead reverts it to
        Consulted (unless Closed Won was requested in the same write).

        Args:
            lead_id: Lead to update
            data: LeadUpdate payload
            changed_by: Actor recorded on the history entry
            now: Reference time (defaults to the current time)

        Returns:
            The persisted, corrected lead

        Raises:
            LeadNotFoundError: Lead does not exist
            LeadValidationError: Invalid field values
        """
        lead = self.get_lead(lead_id)
        now_iso = to_my_iso(now) if now else now_my_iso()
        fields = data.model_fields_set

        previous_status = normalize_status(lead.status)
        previous_sales = lead.sales

        # Validate everything before touching the row
        name = None
        if "name" in fields:
            name = (data.name or "").strip()
            if not name:
                raise LeadValidationError("Lead name cannot be empty")

        platform = None
        if fields & {"platform", "platform_id"}:
            platform = self._resolve_platform(data.platform_id, data.platform)

        trainer = None
        if fields & {"trainer_handle", "trainer_id"}:
            trainer = self._resolve_trainer(data.trainer_id, data.trainer_handle)

        lead_date = None
        if "date" in fields:
            if not data.date:
                raise LeadValidationError("Lead date cannot be empty")
            lead_date = _normalize_lead_date(data.date)

        explicit_closed = _parse_closed_date(data.closed_date) if "closed_date" in fields else None

        sales_given = "sales" in fields
        new_sales = (data.sales if data.sales is not None else 0) if sales_given else previous_sales
        requested = data.status if "status" in fields else None

        new_status = derive_effective_status(
            lead.status,
            requested,
            new_sales,
            previous_sales if sales_given else None,
        )

        with transaction(self.db):
            if name is not None:
                lead.name = name
            if "phone_number" in fields:
                lead.phone_number = data.phone_number
            if "remark" in fields:
                lead.remark = data.remark
            if platform is not None:
                lead.platform_id, lead.platform = platform
            if trainer is not None:
                lead.trainer_id, lead.trainer_handle = trainer
            if lead_date is not None:
                lead.date = lead_date
                lead.month = get_month_from_date(lead_date)
            if sales_given:
                lead.sales = new_sales

            lead.status = new_status.value

            if new_status != previous_status:
                lead.last_activity_date = now_iso
                if is_closed_status(new_status):
                    self._stamp_closed(
                        lead,
                        explicit_closed
                        or migrate_ddmmyyyy_to_iso(lead.closed_date)
                        or migrate_ddmmyyyy_to_iso(lead.date)
                        or now_iso,
                    )
                    lead.next_follow_up_date = None
                else:
                    lead.next_follow_up_date = compute_next_follow_up(
                        new_status, now_iso, self.follow_up_days
                    )
                    self._clear_closed(lead)
                if new_status == LeadStatus.CONTACTED and not lead.contacted_date:
                    lead.contacted_date = now_iso
            elif explicit_closed:
                if is_closed_status(new_status):
                    self._stamp_closed(lead, explicit_closed)
                else:
                    logger.debug(f"Ignoring closed date for open lead {lead_id}")

        self.db.refresh(lead)

        if new_status != previous_status:
            logger.info(
                f"Lead {lead_id} status changed: {previous_status.value} -> {new_status.value}"
            )
            self.history.record_status_change(
                lead.id,
                previous_status,
                new_status,
                changed_at=now_iso,
                source=StatusChangeSource.API,
                changed_by=changed_by,
            )
        return lead

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _resolve_platform(
        self,
        platform_id: Optional[int],
        platform_name: Optional[str],
    ) -> Tuple[Optional[int], Optional[str]]:
        """
        Resolve a platform reference to (id, name).

        Explicit id wins, then a case-insensitive name match; an unknown
        name is kept as free text with no id.
        """
        if platform_id is not None:
            platform = self.db.query(Platform).filter(Platform.id == platform_id).first()
            if not platform:
                raise LeadValidationError(f"Unknown platform id: {platform_id}")
            return platform.id, platform.name

        name = (platform_name or "").strip()
        if not name:
            return None, None

        platform = (
            self.db.query(Platform)
            .filter(func.lower(Platform.name) == name.lower())
            .first()
        )
        if platform:
            return platform.id, platform.name
        return None, name

    def _resolve_trainer(
        self,
        trainer_id: Optional[int],
        trainer_handle: Optional[str],
    ) -> Tuple[Optional[int], Optional[str]]:
        """Same resolution order as platforms, matching on handle."""
        if trainer_id is not None:
            trainer = self.db.query(Trainer).filter(Trainer.id == trainer_id).first()
            if not trainer:
                raise LeadValidationError(f"Unknown trainer id: {trainer_id}")
            return trainer.id, trainer.handle

        handle = (trainer_handle or "").strip()
        if not handle:
            return None, None

        trainer = (
            self.db.query(Trainer)
            .filter(func.lower(Trainer.handle) == handle.lower())
            .first()
        )
        if trainer:
            return trainer.id, trainer.handle
        return None, handle

    @staticmethod
    def _stamp_closed(lead: Lead, closed_iso: str) -> None:
        lead.closed_date, lead.closed_month, lead.closed_year = closed_fields(closed_iso)
        lead.next_follow_up_date = None

    @staticmethod
    def _clear_closed(lead: Lead) -> None:
        lead.closed_date = None
        lead.closed_month = None
        lead.closed_year = None

"""
Status maintenance engine.

Reconciles lead status and lifecycle dates without user action:

(a) Contacted leads idle longer than ``follow_up_days`` move to Follow Up.
(b) Leads with recorded sales that are not Closed Won are closed as won.
(c) Missing last-activity / next-follow-up dates are backfilled.

The three sub-passes run concurrently, one worker thread and one session
each. Their selection predicates are mutually exclusive (a lead matching
(b) is never (a), and (c) skips anything matching (a) or (b)), so no lead is
written by two passes in the same run. Every lead is updated and committed
on its own with a status guard, and a second consecutive run changes
nothing.

Called before every analytics read; target latency is under 100ms.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.datetime_utils import (
    add_business_days_my,
    add_days_my,
    compare_iso_strings,
    days_between_iso,
    migrate_ddmmyyyy_to_iso,
    now_my_iso,
    to_my_iso,
)
from ..core.transactions import safe_rollback
from ..models.lead import Lead, LeadStatus
from ..models.lead_status_history import StatusChangeSource
from .status import (
    closed_fields,
    compute_next_follow_up,
    derive_effective_status,
    has_sales,
    is_closed_status,
    normalize_status,
)
from .status_history import StatusHistoryService


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


class MaintenanceError(RuntimeError):
    """Raised when the maintenance run as a whole could not complete."""


@dataclass
class MaintenanceResult:
    """Counts of leads changed by each sub-pass."""
    promoted_to_follow_up: int
    synced_sales_status: int
    updated_activity_dates: int
    execution_time_ms: float

    @property
    def total_changes(self) -> int:
        return self.promoted_to_follow_up + self.synced_sales_status + self.updated_activity_dates

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LeadSnapshot(NamedTuple):
    """Columns the maintenance predicates look at."""
    id: int
    status: Optional[str]
    sales: Optional[float]
    date: Optional[str]
    created_at: Optional[datetime]
    last_activity_date: Optional[str]
    next_follow_up_date: Optional[str]


_SNAPSHOT_COLUMNS = (
    Lead.id,
    Lead.status,
    Lead.sales,
    Lead.date,
    Lead.created_at,
    Lead.last_activity_date,
    Lead.next_follow_up_date,
)


# =============================================================================
# Selection Predicates
# =============================================================================

def needs_sales_sync(lead: LeadSnapshot) -> bool:
    """Sales recorded but status is not Closed Won."""
    return has_sales(lead.sales) and lead.status != LeadStatus.CLOSED_WON.value


def effective_activity_date(lead: LeadSnapshot) -> Optional[str]:
    """
    Last activity as the backfill pass would set it: the stored value, else
    the lead date, else created_at. None when none of them is usable.
    """
    return (
        lead.last_activity_date
        or migrate_ddmmyyyy_to_iso(lead.date)
        or (to_my_iso(lead.created_at) if lead.created_at else None)
    )


def is_stale_contact(lead: LeadSnapshot, cutoff_iso: str) -> bool:
    """
    Contacted (including legacy labels), no sales, and effective last
    activity before the cutoff.
    """
    if normalize_status(lead.status) != LeadStatus.CONTACTED or needs_sales_sync(lead):
        return False
    activity = effective_activity_date(lead)
    if not activity:
        return False
    try:
        return compare_iso_strings(activity, cutoff_iso) < 0
    except ValueError:
        return False


def needs_activity_backfill(lead: LeadSnapshot, cutoff_iso: str) -> bool:
    """Missing activity or follow-up date, and not owned by passes (a)/(b)."""
    if lead.last_activity_date and lead.next_follow_up_date:
        return False
    return not needs_sales_sync(lead) and not is_stale_contact(lead, cutoff_iso)


def stale_cutoff(now_iso: str, follow_up_days: int) -> str:
    return add_days_my(now_iso, -follow_up_days)


# =============================================================================
# Helpers
# =============================================================================

def _may_be_contacted():
    """Rows whose stored status could normalize to Contacted."""
    other_values = [status.value for status in LeadStatus if status != LeadStatus.CONTACTED]
    return Lead.status.notin_(other_values)


def _load_snapshots(db: Session, *criteria) -> List[LeadSnapshot]:
    rows = db.query(*_SNAPSHOT_COLUMNS).filter(*criteria).all()
    return [LeadSnapshot(*row) for row in rows]


def _guarded_update(db: Session, lead: LeadSnapshot, values: Dict[str, Any]) -> bool:
    """
    Update one lead only if its status is still what was read.

    Returns:
        True if the row was updated and committed
    """
    try:
        updated = (
            db.query(Lead)
            .filter(Lead.id == lead.id, Lead.status == lead.status)
            .update(values, synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        safe_rollback(db)
        logger.warning(f"Maintenance update failed for lead {lead.id}: {e}")
        return False

    if updated != 1:
        logger.info(f"Lead {lead.id} changed during maintenance, skipping")
        return False
    return True


# =============================================================================
# Sub-passes
# =============================================================================

def promote_stale_contacted_leads(
    session_factory: SessionFactory,
    now_iso: str,
    follow_up_days: int,
) -> int:
    """
    Move Contacted leads idle for more than ``follow_up_days`` to Follow Up.

    Returns:
        Number of leads promoted (0 if the pass failed)
    """
    db = session_factory()
    try:
        cutoff = stale_cutoff(now_iso, follow_up_days)
        candidates = _load_snapshots(db, _may_be_contacted())
        if not candidates:
            return 0

        history = StatusHistoryService(db)
        next_follow_up = add_business_days_my(now_iso, 2)
        promoted = 0

        for lead in candidates:
            if not is_stale_contact(lead, cutoff):
                continue

            idle_days = days_between_iso(effective_activity_date(lead), now_iso)
            updated = _guarded_update(db, lead, {
                "status": LeadStatus.FOLLOW_UP.value,
                "last_activity_date": now_iso,
                "next_follow_up_date": next_follow_up,
            })
            if not updated:
                continue

            promoted += 1
            history.record_status_change(
                lead.id,
                LeadStatus.CONTACTED,
                LeadStatus.FOLLOW_UP,
                changed_at=now_iso,
                source=StatusChangeSource.MAINTENANCE,
                note=(
                    f"Auto-promoted: no activity for {idle_days} days "
                    f"(threshold {follow_up_days} days)"
                ),
            )

        return promoted
    except Exception as e:
        logger.error(f"Failed to promote stale contacted leads: {e}", exc_info=True)
        return 0
    finally:
        db.close()


def sync_sales_with_status(
    session_factory: SessionFactory,
    now_iso: str,
    follow_up_days: int,
) -> int:
    """
    Close as won every lead that has sales but a different status.

    Returns:
        Number of leads synced (0 if the pass failed)
    """
    db = session_factory()
    try:
        candidates = _load_snapshots(
            db,
            Lead.sales > 0,
            or_(Lead.status.is_(None), Lead.status != LeadStatus.CLOSED_WON.value),
        )
        if not candidates:
            return 0

        history = StatusHistoryService(db)
        closed_date, closed_month, closed_year = closed_fields(now_iso)
        synced = 0

        for lead in candidates:
            if not needs_sales_sync(lead):
                continue

            previous = normalize_status(lead.status)
            target = derive_effective_status(lead.status, None, lead.sales)
            updated = _guarded_update(db, lead, {
                "status": target.value,
                "last_activity_date": now_iso,
                "closed_date": closed_date,
                "closed_month": closed_month,
                "closed_year": closed_year,
                "next_follow_up_date": None,
            })
            if not updated:
                continue

            synced += 1
            history.record_status_change(
                lead.id,
                previous,
                target,
                changed_at=now_iso,
                source=StatusChangeSource.MAINTENANCE,
                note=f"Auto-closed: sales of {lead.sales:g} recorded",
            )

        return synced
    except Exception as e:
        logger.error(f"Failed to sync sales with status: {e}", exc_info=True)
        return 0
    finally:
        db.close()


def backfill_activity_dates(
    session_factory: SessionFactory,
    now_iso: str,
    follow_up_days: int,
) -> int:
    """
    Fill in missing last-activity and next-follow-up dates.

    Last activity falls back to the lead date, then created_at, then now.
    The follow-up date comes from the status offset table; terminal leads
    get NULL. Legacy status labels are rewritten to their canonical value.
    Only leads whose values actually change are written.

    Returns:
        Number of leads updated (0 if the pass failed)
    """
    db = session_factory()
    try:
        cutoff = stale_cutoff(now_iso, follow_up_days)
        candidates = _load_snapshots(
            db,
            or_(Lead.last_activity_date.is_(None), Lead.next_follow_up_date.is_(None)),
        )
        updated_count = 0

        for lead in candidates:
            if not needs_activity_backfill(lead, cutoff):
                continue

            last_activity = effective_activity_date(lead) or now_iso

            status = normalize_status(lead.status)
            if is_closed_status(status):
                next_follow_up = None
            else:
                try:
                    next_follow_up = lead.next_follow_up_date or compute_next_follow_up(
                        status, last_activity, follow_up_days
                    )
                except ValueError:
                    logger.warning(
                        f"Lead {lead.id} has an unparseable last activity date "
                        f"{last_activity!r}, skipping"
                    )
                    continue

            values: Dict[str, Any] = {}
            if status.value != lead.status:
                values["status"] = status.value
            if last_activity != lead.last_activity_date:
                values["last_activity_date"] = last_activity
            if next_follow_up != lead.next_follow_up_date:
                values["next_follow_up_date"] = next_follow_up
            if not values:
                continue

            if _guarded_update(db, lead, values):
                updated_count += 1

        return updated_count
    except Exception as e:
        logger.error(f"Failed to update activity dates: {e}", exc_info=True)
        return 0
    finally:
        db.close()


# =============================================================================
# Entry Points
# =============================================================================

def run_status_maintenance(
    session_factory: SessionFactory,
    follow_up_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> MaintenanceResult:
    """
    Run all maintenance sub-passes concurrently and wait for them.

    A failing sub-pass contributes 0 and does not stop the others.

    Args:
        session_factory: Callable returning a new Session (one per worker)
        follow_up_days: Idle days before Contacted becomes Follow Up
        now: Reference time (defaults to the current time)

    Returns:
        MaintenanceResult with per-pass counts and execution time

    Raises:
        MaintenanceError: If the run could not be completed at all
    """
    start_time = time.perf_counter()
    follow_up_days = follow_up_days or settings.follow_up_days
    now_iso = to_my_iso(now) if now else now_my_iso()

    passes = (
        promote_stale_contacted_leads,
        sync_sales_with_status,
        backfill_activity_dates,
    )

    try:
        with ThreadPoolExecutor(
            max_workers=settings.maintenance_workers,
            thread_name_prefix="status_maintenance",
        ) as executor:
            futures = [
                executor.submit(sub_pass, session_factory, now_iso, follow_up_days)
                for sub_pass in passes
            ]
            promoted, synced, backfilled = (future.result() for future in futures)
    except Exception as e:
        logger.error(f"Status maintenance failed: {e}", exc_info=True)
        raise MaintenanceError("Failed to complete status maintenance") from e

    result = MaintenanceResult(
        promoted_to_follow_up=promoted,
        synced_sales_status=synced,
        updated_activity_dates=backfilled,
        execution_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
    )

    if result.total_changes:
        logger.info(
            f"Status maintenance: promoted={promoted} synced={synced} "
            f"backfilled={backfilled} in {result.execution_time_ms}ms"
        )
    if result.execution_time_ms > 100:
        logger.warning(f"Slow status maintenance: {result.execution_time_ms}ms")

    return result


def get_maintenance_stats(
    db: Session,
    follow_up_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[str, int]:
    """
    Count leads each maintenance pass would currently touch (read-only).

    Returns:
        Dict with stale_contacted_leads, leads_with_sales_not_won and
        leads_without_activity_date; zeros if the query fails
    """
    follow_up_days = follow_up_days or settings.follow_up_days
    now_iso = to_my_iso(now) if now else now_my_iso()
    cutoff = stale_cutoff(now_iso, follow_up_days)

    try:
        leads = _load_snapshots(
            db,
            or_(
                _may_be_contacted(),
                Lead.sales > 0,
                Lead.last_activity_date.is_(None),
            ),
        )
    except SQLAlchemyError as e:
        logger.error(f"Failed to get maintenance stats: {e}")
        safe_rollback(db)
        return {
            "stale_contacted_leads": 0,
            "leads_with_sales_not_won": 0,
            "leads_without_activity_date": 0,
        }

    return {
        "stale_contacted_leads": sum(1 for lead in leads if is_stale_contact(lead, cutoff)),
        "leads_with_sales_not_won": sum(1 for lead in leads if needs_sales_sync(lead)),
        "leads_without_activity_date": sum(1 for lead in leads if not lead.last_activity_date),
    }

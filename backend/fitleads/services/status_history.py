"""
Status history ledger service.

Appends one immutable row per observed status transition. The ledger is
advisory: a failed write is logged and reported as ``False`` but never
raised, so it cannot fail the lead write that triggered it.
"""

import logging
from datetime import timedelta
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.datetime_utils import parse_iso_datetime, now_my_iso
from ..core.transactions import safe_commit, safe_rollback
from ..models.lead_status_history import LeadStatusHistory, StatusChangeSource


logger = logging.getLogger(__name__)

# Keeps IN (...) lists under the bound-parameter limit of the smallest
# supported backend
HISTORY_QUERY_CHUNK_SIZE = 90

DEFAULT_DEDUP_WINDOW_SECONDS = 60


def _status_value(status) -> str:
    return status.value if hasattr(status, "value") else str(status)


class StatusHistoryService:
    """
    Service for the lead_status_history ledger.

    Example usage:
        history = StatusHistoryService(db)
        history.record_status_change(lead.id, "New", "Contacted")
    """

    def __init__(self, db: Session):
        """
        Initialize ledger service with database session.

        Args:
            db: SQLAlchemy session for database operations
        """
        self.db = db

    # ==========================================================================
    # Writes
    # ==========================================================================

    def record_status_change(
        self,
        lead_id: int,
        from_status,
        to_status,
        changed_at: Optional[str] = None,
        source: StatusChangeSource = StatusChangeSource.API,
        changed_by: Optional[str] = None,
        note: Optional[str] = None,
    ) -> bool:
        """
        Record a status transition.

        No row is written when from and to are equal, or when the same
        transition was already recorded for the lead within the dedup window.
        Commits its own row; call it after the lead itself is committed.

        Args:
            lead_id: Lead the transition belongs to
            from_status: Previous status
            to_status: New status
            changed_at: +08:00 ISO timestamp, defaults to now
            source: api or maintenance
            changed_by: Optional actor identifier
            note: Optional free-text reason

        Returns:
            True if a row was written
        """
        from_value = _status_value(from_status)
        to_value = _status_value(to_status)

        if from_value == to_value:
            return False

        changed_at = changed_at or now_my_iso()

        try:
            if not self.ensure_single_transition(lead_id, to_value, changed_at, from_status=from_value):
                logger.info(
                    f"Skipping duplicate status transition for lead {lead_id}: "
                    f"{from_value} -> {to_value}"
                )
                return False

            self.db.add(
                LeadStatusHistory(
                    lead_id=lead_id,
                    from_status=from_value,
                    to_status=to_value,
                    changed_at=changed_at,
                    source=source,
                    changed_by=changed_by,
                    note=note,
                )
            )
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Error recording status change for lead {lead_id}: {e}")
            safe_rollback(self.db)
            return False

        if not safe_commit(self.db):
            logger.warning(f"Status history write failed for lead {lead_id}: {from_value} -> {to_value}")
            return False

        return True

    def ensure_single_transition(
        self,
        lead_id: int,
        to_status,
        changed_at: str,
        window_seconds: int = DEFAULT_DEDUP_WINDOW_SECONDS,
        from_status=None,
    ) -> bool:
        """
        Check that the candidate is not a repeat of the lead's latest entry.

        A repeat is the same transition as the most recent ledger row for the
        lead (same ``to_status``, and same ``from_status`` when given) within
        ``window_seconds`` of it. A return to an earlier status is not a
        repeat.

        Args:
            lead_id: Lead to check
            to_status: Target status of the transition
            changed_at: +08:00 ISO timestamp of the candidate transition
            window_seconds: Half-width of the window
            from_status: Optional source status of the transition

        Returns:
            True if it is safe to record (no duplicate within the window)
        """
        target = parse_iso_datetime(changed_at)

        latest = (
            self.db.query(LeadStatusHistory)
            .filter(LeadStatusHistory.lead_id == lead_id)
            .order_by(LeadStatusHistory.id.desc())
            .first()
        )
        if latest is None or latest.to_status != _status_value(to_status):
            return True
        if from_status is not None and latest.from_status != _status_value(from_status):
            return True

        try:
            recorded_at = parse_iso_datetime(latest.changed_at)
        except ValueError:
            return True
        return abs(recorded_at - target) > timedelta(seconds=window_seconds)

    # ==========================================================================
    # Reads
    # ==========================================================================

    def get_status_transitions(
        self,
        lead_ids: Iterable[int],
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> List[Tuple[int, str, str]]:
        """
        Fetch (lead_id, to_status, changed_at) for a set of leads.

        Queried in chunks of ``HISTORY_QUERY_CHUNK_SIZE`` ids. ``start`` and
        ``end`` are inclusive bounds on ``changed_at``, compared as instants.

        Args:
            lead_ids: Leads to fetch history for
            start: Optional lower bound (+08:00 ISO)
            end: Optional upper bound (+08:00 ISO)

        Returns:
            List of transition triples ordered by lead then time
        """
        ids = list(dict.fromkeys(lead_ids))
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None

        transitions: List[Tuple[int, str, str]] = []
        for offset in range(0, len(ids), HISTORY_QUERY_CHUNK_SIZE):
            chunk = ids[offset:offset + HISTORY_QUERY_CHUNK_SIZE]
            rows = (
                self.db.query(
                    LeadStatusHistory.lead_id,
                    LeadStatusHistory.to_status,
                    LeadStatusHistory.changed_at,
                )
                .filter(LeadStatusHistory.lead_id.in_(chunk))
                .order_by(LeadStatusHistory.lead_id, LeadStatusHistory.id)
                .all()
            )
            for lead_id, to_status, changed_at in rows:
                if start_dt or end_dt:
                    try:
                        moment = parse_iso_datetime(changed_at)
                    except ValueError:
                        continue
                    if start_dt and moment < start_dt:
                        continue
                    if end_dt and moment > end_dt:
                        continue
                transitions.append((lead_id, to_status, changed_at))

        return transitions

    def get_lead_history(self, lead_id: int) -> List[LeadStatusHistory]:
        """All ledger entries for one lead, oldest first."""
        return (
            self.db.query(LeadStatusHistory)
            .filter(LeadStatusHistory.lead_id == lead_id)
            .order_by(LeadStatusHistory.id)
            .all()
        )

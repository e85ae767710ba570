"""
Funnel and summary reporting over leads and the status history ledger.

Two funnel views:

- Distribution (v1): how many leads currently sit in each status, with a
  per-platform breakdown and the sales attached to each status.
- Cumulative (v2): how many leads ever reached each pipeline stage, using
  the ledger plus the current status. Reaching a later stage counts as
  having passed the earlier ones, so the counts never increase down the
  funnel. Closed Lost is reported separately since it is not a stage.

Filters apply to the lead's arrival date (``month``, ``year``) and platform.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from ..core.datetime_utils import MONTH_NAMES
from ..models.lead import Lead, LeadStatus
from .status import LEAD_STATUSES, normalize_status
from .status_history import StatusHistoryService


logger = logging.getLogger(__name__)

FUNNEL_STAGES = (
    LeadStatus.NEW,
    LeadStatus.CONTACTED,
    LeadStatus.FOLLOW_UP,
    LeadStatus.CONSULTED,
    LeadStatus.CLOSED_WON,
)

UNKNOWN_PLATFORM = "Unknown"


def normalize_month(month: Optional[str]) -> Optional[str]:
    """
    Accept a month name ("june", "Jun") or number ("6", "06").

    Raises:
        ValueError: If the value is not a recognizable month
    """
    if not month:
        return None

    cleaned = month.strip()
    if cleaned.isdigit():
        index = int(cleaned)
        if 1 <= index <= 12:
            return MONTH_NAMES[index - 1]
    else:
        for name in MONTH_NAMES:
            if name.lower() == cleaned.lower() or name[:3].lower() == cleaned.lower():
                return name

    raise ValueError(f"Invalid month: {month!r}")


def _percentage(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def _stage_index(status: Any) -> int:
    canonical = normalize_status(status)
    if canonical in FUNNEL_STAGES:
        return FUNNEL_STAGES.index(canonical)
    # Closed Lost does not advance a lead
    return 0


class FunnelService:
    """
    Read-only reporting service.

    Example usage:
        funnel = FunnelService(db)
        stages = funnel.get_cumulative_funnel(month="June", year="2024")
    """

    def __init__(self, db: Session):
        self.db = db

    def _filtered(
        self,
        query: Query,
        month: Optional[str] = None,
        year: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Query:
        month_name = normalize_month(month)
        if month_name:
            query = query.filter(Lead.month == month_name)
        if year:
            year = year.strip()
            if not (year.isdigit() and len(year) == 4):
                raise ValueError(f"Invalid year: {year!r}")
            query = query.filter(Lead.date.like(f"%/{year}"))
        if platform:
            query = query.filter(func.lower(Lead.platform) == platform.strip().lower())
        return query

    # ==========================================================================
    # Distribution funnel
    # ==========================================================================

    def get_status_distribution(
        self,
        month: Optional[str] = None,
        year: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Current status distribution.

        Returns:
            Dict with total_leads and one entry per status carrying count,
            percentage, total_sales and per-platform counts
        """
        rows = self._filtered(
            self.db.query(
                Lead.status,
                Lead.platform,
                func.count(Lead.id),
                func.coalesce(func.sum(Lead.sales), 0),
            ),
            month, year, platform,
        ).group_by(Lead.status, Lead.platform).all()

        buckets = {
            status: {"count": 0, "total_sales": 0.0, "platforms": {}}
            for status in LEAD_STATUSES
        }
        for status, lead_platform, count, sales in rows:
            bucket = buckets[normalize_status(status)]
            bucket["count"] += count
            bucket["total_sales"] += float(sales or 0)
            platform_name = lead_platform or UNKNOWN_PLATFORM
            bucket["platforms"][platform_name] = bucket["platforms"].get(platform_name, 0) + count

        total = sum(bucket["count"] for bucket in buckets.values())
        return {
            "total_leads": total,
            "stages": [
                {
                    "status": status.value,
                    "count": bucket["count"],
                    "percentage": _percentage(bucket["count"], total),
                    "total_sales": round(bucket["total_sales"], 2),
                    "platforms": bucket["platforms"],
                }
                for status, bucket in buckets.items()
            ],
        }

    # ==========================================================================
    # Cumulative funnel
    # ==========================================================================

    def get_furthest_stages(
        self,
        month: Optional[str] = None,
        year: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Dict[int, int]:
        """Map lead id to the index of the furthest funnel stage it reached."""
        leads = self._filtered(
            self.db.query(Lead.id, Lead.status), month, year, platform
        ).all()

        furthest = {lead_id: _stage_index(status) for lead_id, status in leads}
        if not furthest:
            return furthest

        transitions = StatusHistoryService(self.db).get_status_transitions(furthest.keys())
        for lead_id, to_status, _changed_at in transitions:
            furthest[lead_id] = max(furthest[lead_id], _stage_index(to_status))

        return furthest

    def get_cumulative_funnel(
        self,
        month: Optional[str] = None,
        year: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Leads that ever reached each stage.

        Returns:
            Dict with total_leads, closed_lost and one entry per stage with
            count, percentage of total and conversion from the previous stage
        """
        furthest = self.get_furthest_stages(month, year, platform)
        total = len(furthest)

        closed_lost = self._filtered(
            self.db.query(func.count(Lead.id)), month, year, platform
        ).filter(Lead.status == LeadStatus.CLOSED_LOST.value).scalar() or 0

        stages: List[Dict[str, Any]] = []
        previous_count = total
        for index, stage in enumerate(FUNNEL_STAGES):
            count = sum(1 for reached in furthest.values() if reached >= index)
            stages.append({
                "status": stage.value,
                "count": count,
                "percentage": _percentage(count, total),
                "conversion_from_previous": 100.0 if index == 0 and total else _percentage(count, previous_count),
            })
            previous_count = count

        return {"total_leads": total, "closed_lost": closed_lost, "stages": stages}

    # ==========================================================================
    # Summary
    # ==========================================================================

    def get_summary(
        self,
        month: Optional[str] = None,
        year: Optional[str] = None,
        platform: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Totals for the dashboard header."""
        furthest = self.get_furthest_stages(month, year, platform)
        consulted_index = FUNNEL_STAGES.index(LeadStatus.CONSULTED)

        totals = self._filtered(
            self.db.query(
                func.count(Lead.id),
                func.coalesce(func.sum(Lead.sales), 0),
            ),
            month, year, platform,
        ).one()
        total_closed = self._filtered(
            self.db.query(func.count(Lead.id)), month, year, platform
        ).filter(Lead.status == LeadStatus.CLOSED_WON.value).scalar() or 0

        total_leads = totals[0] or 0
        return {
            "total_leads": total_leads,
            "total_consults": sum(1 for reached in furthest.values() if reached >= consulted_index),
            "total_closed": total_closed,
            "total_sales": round(float(totals[1] or 0), 2),
            "conversion_rate": _percentage(total_closed, total_leads),
        }

    def get_platform_breakdown(
        self,
        month: Optional[str] = None,
        year: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Lead count, won count and sales per platform, largest first."""
        rows = self._filtered(
            self.db.query(
                Lead.platform,
                func.count(Lead.id),
                func.count(Lead.id).filter(Lead.status == LeadStatus.CLOSED_WON.value),
                func.coalesce(func.sum(Lead.sales), 0),
            ),
            month, year,
        ).group_by(Lead.platform).all()

        breakdown: Dict[str, Dict[str, Any]] = {}
        for lead_platform, count, won, sales in rows:
            name = lead_platform or UNKNOWN_PLATFORM
            entry = breakdown.setdefault(name, {"platform": name, "count": 0, "closed_won": 0, "total_sales": 0.0})
            entry["count"] += count
            entry["closed_won"] += won or 0
            entry["total_sales"] = round(entry["total_sales"] + float(sales or 0), 2)

        return sorted(breakdown.values(), key=lambda entry: entry["count"], reverse=True)

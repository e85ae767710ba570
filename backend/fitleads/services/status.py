"""
Lead status taxonomy and transition rules.

Normalization is the only place free-text status values are accepted;
everything past it works with ``LeadStatus`` members. The rule functions
here are pure so the create/update handlers and the maintenance engine
share one implementation.
"""

from typing import Any, Dict, Optional, Tuple

from ..core.datetime_utils import (
    add_business_days_my,
    add_days_my,
    get_month_from_iso,
    get_year_from_iso,
)
from ..models.lead import LeadStatus


LEAD_STATUSES = tuple(LeadStatus)

# Pipeline position for sorting (lower = earlier)
STATUS_ORDER: Dict[LeadStatus, int] = {
    LeadStatus.NEW: 1,
    LeadStatus.CONTACTED: 2,
    LeadStatus.FOLLOW_UP: 3,
    LeadStatus.CONSULTED: 4,
    LeadStatus.CLOSED_WON: 5,
    LeadStatus.CLOSED_LOST: 6,
}

# Values written by older versions of the dashboard and CSV imports
LEGACY_STATUS_ALIASES: Dict[str, LeadStatus] = {
    "Consult": LeadStatus.CONSULTED,
    "No Reply": LeadStatus.CONTACTED,
}

_CANONICAL_BY_VALUE = {status.value: status for status in LeadStatus}


# =============================================================================
# Normalization & Predicates
# =============================================================================

def normalize_status(raw: Any) -> LeadStatus:
    """
    Map any stored or submitted status value to a canonical status.

    Never raises. Empty input and unrecognized values become ``New`` so an
    unknown string can never reach the status column.

    Example:
        >>> normalize_status("Consult")
        <LeadStatus.CONSULTED: 'Consulted'>
        >>> normalize_status("garbage")
        <LeadStatus.NEW: 'New'>
    """
    if isinstance(raw, LeadStatus):
        return raw
    if not isinstance(raw, str):
        return LeadStatus.NEW

    trimmed = raw.strip()
    if not trimmed:
        return LeadStatus.NEW

    if trimmed in _CANONICAL_BY_VALUE:
        return _CANONICAL_BY_VALUE[trimmed]

    return LEGACY_STATUS_ALIASES.get(trimmed, LeadStatus.NEW)


def is_closed_status(status: LeadStatus) -> bool:
    """Terminal statuses: Closed Won and Closed Lost."""
    return status in (LeadStatus.CLOSED_WON, LeadStatus.CLOSED_LOST)


def is_won_status(status: LeadStatus) -> bool:
    return status == LeadStatus.CLOSED_WON


def get_next_status(current: LeadStatus) -> Optional[LeadStatus]:
    """
    Suggested next step in the pipeline (UI hint, not enforced).

    Consulted suggests Closed Won; it can be changed to Closed Lost by hand.
    """
    return {
        LeadStatus.NEW: LeadStatus.CONTACTED,
        LeadStatus.CONTACTED: LeadStatus.FOLLOW_UP,
        LeadStatus.FOLLOW_UP: LeadStatus.CONSULTED,
        LeadStatus.CONSULTED: LeadStatus.CLOSED_WON,
    }.get(current)


def has_sales(sales: Optional[float]) -> bool:
    return sales is not None and sales > 0


# =============================================================================
# Transition Rules
# =============================================================================

def derive_effective_status(
    current: Any,
    requested: Any = None,
    sales: Optional[float] = None,
    previous_sales: Optional[float] = None,
) -> LeadStatus:
    """
    Compute the status a lead must end up in.

    Layers, in order:
    1. The requested status if one was given, else the current status.
    2. Positive sales force Closed Won.
    3. Sales removed (previously positive, now zero) on a Closed Won lead
       revert it to Consulted, unless Closed Won was explicitly requested
       in the same write.

    Args:
        current: Stored status (any value, normalized here); None for new leads
        requested: Status submitted by the caller, or None
        sales: Sales figure after the write
        previous_sales: Sales figure before the write

    Returns:
        Canonical status to persist
    """
    status = normalize_status(requested if requested is not None else current)

    if has_sales(sales):
        return LeadStatus.CLOSED_WON

    sales_removed = has_sales(previous_sales) and sales is not None and sales <= 0
    explicitly_won = requested is not None and normalize_status(requested) == LeadStatus.CLOSED_WON
    if sales_removed and status == LeadStatus.CLOSED_WON and not explicitly_won:
        return LeadStatus.CONSULTED

    return status


def compute_next_follow_up(
    status: LeadStatus,
    from_iso: str,
    follow_up_days: int,
) -> Optional[str]:
    """
    Next follow-up timestamp for a status, counted from ``from_iso``.

    New and Consulted: +1 business day. Contacted: +follow_up_days calendar
    days. Follow Up: +2 business days. Terminal statuses: None.
    """
    if status in (LeadStatus.NEW, LeadStatus.CONSULTED):
        return add_business_days_my(from_iso, 1)
    if status == LeadStatus.CONTACTED:
        return add_days_my(from_iso, follow_up_days)
    if status == LeadStatus.FOLLOW_UP:
        return add_business_days_my(from_iso, 2)
    return None


def closed_fields(closed_iso: str) -> Tuple[str, str, str]:
    """(closed_date, closed_month, closed_year) for a closing timestamp."""
    return closed_iso, get_month_from_iso(closed_iso), get_year_from_iso(closed_iso)

"""
Lead database model.

Represents a sales prospect moving through the training-sales pipeline.
Lifecycle dates are stored as ISO 8601 strings with a fixed +08:00 offset
(see ``core.datetime_utils``); the arrival ``date`` keeps the DD/MM/YYYY
display form used by the business.
"""

import enum

from sqlalchemy import (
    Column,
    String,
    Integer,
    Float,
    Text,
    DateTime,
    ForeignKey,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base


# =============================================================================
# Enum Definitions
# =============================================================================

class LeadStatus(str, enum.Enum):
    """Canonical lead statuses, in pipeline order."""
    NEW = "New"
    CONTACTED = "Contacted"
    FOLLOW_UP = "Follow Up"
    CONSULTED = "Consulted"
    CLOSED_WON = "Closed Won"
    CLOSED_LOST = "Closed Lost"


# =============================================================================
# Lead Model
# =============================================================================

class Lead(Base):
    """
    Sales lead.

    The status column holds the canonical status string. Derived fields
    (closed_*, next_follow_up_date) are kept consistent with the status by
    the mutation handlers and the maintenance engine:

    - sales > 0 implies status "Closed Won"
    - terminal status implies closed_date/closed_month/closed_year are set
      and next_follow_up_date is NULL; non-terminal implies the reverse
    """

    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Contact
    name = Column(String(200), nullable=False)
    phone_number = Column(String(50), nullable=True)
    remark = Column(Text, nullable=True)

    # Attribution (free-text copies kept in sync with the lookup tables)
    platform = Column(String(100), nullable=True, index=True)
    platform_id = Column(Integer, ForeignKey("platforms.id"), nullable=True)
    trainer_handle = Column(String(100), nullable=True)
    trainer_id = Column(Integer, ForeignKey("trainers.id"), nullable=True)

    # Pipeline
    status = Column(String(20), nullable=False, default="New", index=True)
    sales = Column(Float, nullable=True, default=0)

    # Arrival date (DD/MM/YYYY) and its month name
    date = Column(String(10), nullable=False)
    month = Column(String(20), nullable=True)

    # Lifecycle timestamps (+08:00 ISO strings)
    closed_date = Column(String(40), nullable=True)
    closed_month = Column(String(20), nullable=True)
    closed_year = Column(String(4), nullable=True)
    contacted_date = Column(String(40), nullable=True)
    last_activity_date = Column(String(40), nullable=True, index=True)
    next_follow_up_date = Column(String(40), nullable=True, index=True)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.current_timestamp(),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.current_timestamp(),
        onupdate=func.current_timestamp(),
    )

    # Relationships
    platform_ref = relationship("Platform", foreign_keys=[platform_id])
    trainer_ref = relationship("Trainer", foreign_keys=[trainer_id])

    def __repr__(self) -> str:
        return (
            f"<Lead(id={self.id}, "
            f"status={self.status}, "
            f"sales={self.sales})>"
        )

"""
Lead status history model.

Each row is an immutable record of one status transition.
Rows are never updated or deleted; together they form the ledger used to
reconstruct cumulative funnel metrics.
"""

import enum

from sqlalchemy import Column, Integer, String, Text, ForeignKey, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship

from ..core.database import Base


class StatusChangeSource(str, enum.Enum):
    """Who produced the transition."""
    API = "api"                  # Lead create/update handler
    MAINTENANCE = "maintenance"  # Automatic maintenance pass


class LeadStatusHistory(Base):
    """
    Status transition entry for a lead.

    Written by the create/update handlers (source=api) and by the
    maintenance engine (source=maintenance).
    """

    __tablename__ = "lead_status_history"
    __table_args__ = (
        Index("idx_lsh_lead_id", "lead_id"),
        Index("idx_lsh_to_status_changed_at", "to_status", "changed_at"),
        Index("idx_lsh_changed_at", "changed_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    lead_id = Column(
        Integer,
        ForeignKey("leads.id"),
        nullable=False,
    )

    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)

    # +08:00 ISO string
    changed_at = Column(String(40), nullable=False)

    source = Column(
        SQLEnum(
            StatusChangeSource,
            name="status_change_source",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=StatusChangeSource.API,
    )

    # Actor identifier, NULL for system writes
    changed_by = Column(String(255), nullable=True)
    note = Column(Text, nullable=True)

    lead = relationship("Lead", backref="status_history", foreign_keys=[lead_id])

    def __repr__(self) -> str:
        return (
            f"<LeadStatusHistory(id={self.id}, lead_id={self.lead_id}, "
            f"{self.from_status!r}->{self.to_status!r}, source={self.source})>"
        )

"""
SQLAlchemy ORM models for FitLeads.

Contains database table definitions and relationships.
"""

from .lead import Lead, LeadStatus
from .lead_status_history import LeadStatusHistory, StatusChangeSource
from .catalog import Platform, Trainer

__all__ = [
    # Lead model and enums
    "Lead",
    "LeadStatus",
    # Status history
    "LeadStatusHistory",
    "StatusChangeSource",
    # Lookup tables
    "Platform",
    "Trainer",
]

"""
Core module for FitLeads backend.

Contains configuration, database setup, logging and date utilities.
"""

from .config import settings
from .database import get_db, get_session_factory, engine, SessionLocal

__all__ = ["settings", "get_db", "get_session_factory", "engine", "SessionLocal"]

"""
Session commit helpers.

``transaction()`` wraps a lead write: everything inside the block is
committed together or rolled back and re-raised. ``safe_commit()`` is for
writes that must never fail their caller, such as status history rows.

    with transaction(db):
        lead.status = "Contacted"
        lead.last_activity_date = now_iso
"""

import logging
from contextlib import contextmanager
from typing import Generator
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger(__name__)


@contextmanager
def transaction(db: Session) -> Generator[Session, None, None]:
    """
    Commit the session when the block exits cleanly, roll back otherwise.

    Raises:
        Whatever the block raised, after the rollback
    """
    try:
        yield db
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Rolled back lead write: {e}")
        raise


def safe_commit(db: Session) -> bool:
    """
    Commit, reporting failure instead of raising.

    Returns:
        False if the commit failed (the session is rolled back)
    """
    try:
        db.commit()
        return True
    except SQLAlchemyError as e:
        logger.error(f"Commit failed: {e}")
        safe_rollback(db)
        return False


def safe_rollback(db: Session) -> None:
    """Roll back, logging a failure so it does not mask the original error."""
    try:
        db.rollback()
    except Exception as e:
        logger.error(f"Rollback failed: {e}")

"""
Database connection and session management.

Provides SQLAlchemy engine, session factory, and dependency injection
for database sessions in FastAPI endpoints.
"""

from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .config import settings


# =============================================================================
# SQLAlchemy Base
# =============================================================================

Base = declarative_base()


# =============================================================================
# Engine Configuration
# =============================================================================

def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine for the given URL.

    SQLite gets a busy timeout and cross-thread access so the maintenance
    sub-passes can each hold their own connection. Other backends use the
    pooled settings from configuration.

    Args:
        database_url: SQLAlchemy connection string
        echo: Log SQL statements

    Returns:
        Configured SQLAlchemy engine
    """
    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=echo,
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragmas(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            # Readers don't block the maintenance writers
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return create_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,  # Enable connection health checks
        pool_recycle=settings.db_pool_recycle,
        pool_timeout=settings.db_pool_timeout,
        echo=echo,
    )


engine = build_engine(settings.database_url, echo=settings.debug)


# =============================================================================
# Session Factory
# =============================================================================

SessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


# =============================================================================
# Dependency Injection
# =============================================================================

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency for database session injection.

    Creates a new session for each request and ensures proper cleanup.

    Yields:
        SQLAlchemy Session instance
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """
    FastAPI dependency returning the session factory.

    The maintenance engine opens one session per worker thread, so it
    needs the factory rather than a single request session.
    """
    return SessionLocal


# =============================================================================
# Database Utilities
# =============================================================================

def init_db() -> None:
    """
    Initialize database tables.

    Creates all tables defined in models. Intended for development and
    initial setup.
    """
    from .. import models  # noqa: F401  (registers tables on Base.metadata)

    Base.metadata.create_all(bind=engine)

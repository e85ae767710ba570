"""
Test configuration and fixtures.

Each test gets its own SQLite file so the maintenance worker threads can
open separate connections against the same data.
"""
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from fitleads import models  # noqa: F401
from fitleads.core.config import settings
from fitleads.core.database import Base, build_engine, get_db, get_session_factory
from fitleads.core.datetime_utils import MY_TZ
from fitleads.main import app
from fitleads.models.lead import Lead


# Wednesday
FIXED_NOW = datetime(2024, 6, 19, 10, 0, tzinfo=MY_TZ)
FIXED_NOW_ISO = "2024-06-19T10:00:00.000+08:00"


@pytest.fixture(autouse=True)
def disable_cache(monkeypatch):
    """Tests never talk to Redis."""
    monkeypatch.setattr(settings, "cache_enabled", False)


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )


@pytest.fixture
def db_session(session_factory):
    """Create a fresh database session for each test."""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    """Create test client with database overrides."""
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_lead(db_session):
    """Insert a lead row directly, bypassing the mutation rules."""
    def _make_lead(**fields) -> Lead:
        fields.setdefault("name", "Test Lead")
        fields.setdefault("date", "15/06/2024")
        fields.setdefault("status", "New")
        lead = Lead(**fields)
        db_session.add(lead)
        db_session.commit()
        db_session.refresh(lead)
        return lead
    return _make_lead

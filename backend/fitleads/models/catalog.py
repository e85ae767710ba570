"""
Lookup tables referenced by leads.

Platforms are the advertising channels a lead arrived from; trainers are
the staff handling the lead. Leads keep a denormalized copy of the name or
handle alongside the foreign key.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.sql import func

from ..core.database import Base


class Platform(Base):
    """Lead source platform (e.g. Facebook, Instagram, Walk-in)."""

    __tablename__ = "platforms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)

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

    def __repr__(self) -> str:
        return f"<Platform(id={self.id}, name={self.name!r})>"


class Trainer(Base):
    """Trainer assigned to leads, identified by a unique handle."""

    __tablename__ = "trainers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    handle = Column(String(100), nullable=False, unique=True)
    name = Column(String(200), nullable=True)
    active = Column(Boolean, nullable=False, default=True)

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

    def __repr__(self) -> str:
        return f"<Trainer(id={self.id}, handle={self.handle!r})>"

"""
SQLAlchemy ORM models for provider credentials and library snapshots.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class UserService(Base):
    """One OAuth credential per (user, service)."""

    __tablename__ = "user_services"
    __table_args__ = (
        UniqueConstraint("user_id", "service", name="uq_user_services_user_service"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False, index=True)
    service = Column(String(32), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now)


class LibrarySnapshotRecord(Base):
    """Persisted copy of the latest normalized library per (user, service)."""

    __tablename__ = "library_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "service", name="uq_library_snapshots_user_service"),
        Index("ix_library_snapshots_synced", "last_synced_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)
    service = Column(String(32), nullable=False)
    albums = Column(JSON, nullable=False, default=list)
    playlists = Column(JSON, nullable=False, default=list)
    last_synced_at = Column(DateTime(timezone=True), nullable=False)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on round-trip; stored datetimes are always UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

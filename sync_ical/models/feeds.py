"""SQLAlchemy model for subscribed external calendar feeds."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, text
from sqlalchemy.sql import func

from sync_ical.config import SCHEMA
from sync_ical.models.base import Base


class Feed(Base):
    """
    ORM model for one property's calendar export on one booking platform.

    Feeds are never hard-deleted while bookings reference them; owners
    deactivate them instead (is_active=false, deleted_at set). The sync
    columns are rewritten by the orchestrator after every run and are what
    the UI shows as feed health.
    """

    __tablename__ = "feeds"
    __table_args__ = {"schema": SCHEMA}

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    property_id = Column(String(64), nullable=False, index=True)
    url = Column(Text, nullable=False)
    platform = Column(String(16), nullable=False, server_default=text("'other'"))
    timezone = Column(String(64), nullable=False, server_default=text("'UTC'"))
    is_active = Column(Boolean, nullable=False, server_default=text("TRUE"))
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Last run
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_sync_status = Column(String(16), nullable=True)  # success / error
    last_sync_error = Column(Text, nullable=True)
    last_sync_error_kind = Column(String(32), nullable=True)
    last_sync_skipped_events = Column(Integer, nullable=False, server_default=text("0"))

    # Cumulative stats
    consecutive_failures = Column(Integer, nullable=False, server_default=text("0"))
    total_syncs = Column(Integer, nullable=False, server_default=text("0"))
    successful_syncs = Column(Integer, nullable=False, server_default=text("0"))
    failed_syncs = Column(Integer, nullable=False, server_default=text("0"))
    bookings_created = Column(Integer, nullable=False, server_default=text("0"))
    bookings_updated = Column(Integer, nullable=False, server_default=text("0"))
    bookings_cancelled = Column(Integer, nullable=False, server_default=text("0"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

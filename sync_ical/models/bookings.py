# models/bookings.py

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql import func

from sync_ical.config import SCHEMA
from sync_ical.models.base import Base


class Booking(Base):
    """
    ORM model for reservations reconciled from calendar feeds.

    (feed_id, external_id) is the idempotency key: external_id is the VEVENT
    UID, which is stable across re-fetches of the same feed. Bookings that
    disappear from a feed are marked cancelled, not deleted. raw_payload keeps
    the source VEVENT block for debugging.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("feed_id", "external_id", name="uq_bookings_feed_external"),
        {"schema": SCHEMA},
    )

    id = Column(String(36), primary_key=True)
    property_id = Column(String(64), nullable=False, index=True)
    feed_id = Column(
        String(36),
        ForeignKey(f"{SCHEMA}.feeds.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    external_id = Column(String(255), nullable=False)
    guest_name = Column(String(255), nullable=False)
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, server_default=text("'confirmed'"))
    low_confidence = Column(Boolean, nullable=False, server_default=text("FALSE"))
    raw_payload = Column(Text, nullable=False, server_default=text("''"))
    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

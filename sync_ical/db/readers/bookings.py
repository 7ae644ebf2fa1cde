from sqlalchemy import select
from sqlalchemy.engine import Connection

from sync_ical.domain import BookingRecord, BookingStatus
from sync_ical.metrics import db_operations
from sync_ical.models.bookings import Booking


def get_bookings_for_feed(conn: Connection, feed_id: str) -> list[BookingRecord]:
    """
    Load the persisted booking set for one feed, cancelled bookings included.

    This is the prior state handed to reconciliation.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        feed_id (str): Feed ID.

    Returns:
        list[BookingRecord]: Bookings ordered by check-in then external ID.
    """
    rows = conn.execute(
        select(Booking)
        .where(Booking.feed_id == feed_id)
        .order_by(Booking.check_in, Booking.external_id)
    ).fetchall()
    db_operations.labels(operation="select", table="bookings").inc()

    return [
        BookingRecord(
            id=row.id,
            property_id=row.property_id,
            feed_id=row.feed_id,
            external_id=row.external_id,
            guest_name=row.guest_name,
            check_in=row.check_in,
            check_out=row.check_out,
            status=BookingStatus(row.status),
            raw_payload=row.raw_payload,
            low_confidence=row.low_confidence,
            last_synced_at=row.last_synced_at,
        )
        for row in rows
    ]

import json
from typing import Any, Iterable

import structlog
from sqlalchemy.engine import Connection

from sync_ical.config import DEBUG
from sync_ical.db.writers._upsert import upsert_with_distinct_check
from sync_ical.domain import BookingRecord
from sync_ical.metrics import db_operations
from sync_ical.models.bookings import Booking
from sync_ical.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

# Columns whose change is a real booking change; only these move updated_at.
# last_synced_at is rewritten on every sync that sees the booking.
TRACKED_COLUMNS = [
    "check_in",
    "check_out",
    "guest_name",
    "status",
    "low_confidence",
    "raw_payload",
]


def _to_row(record: BookingRecord, now: Any) -> dict[str, Any]:
    return {
        "id": record.id,
        "property_id": record.property_id,
        "feed_id": record.feed_id,
        "external_id": record.external_id,
        "guest_name": record.guest_name,
        "check_in": record.check_in,
        "check_out": record.check_out,
        "status": record.status.value,
        "low_confidence": record.low_confidence,
        "raw_payload": record.raw_payload,
        "last_synced_at": record.last_synced_at or now,
        "created_at": now,
        "updated_at": now,
    }


def upsert_bookings(conn: Connection, records: Iterable[BookingRecord]) -> int:
    """
    Upsert a feed's canonical booking set keyed by (feed_id, external_id).

    Cancelled bookings are written like any other status change; nothing is
    ever deleted here.

    Args:
        conn: Active connection inside the caller's transaction
        records: Canonical booking records for one feed

    Returns:
        int: Number of rows sent to the database
    """
    now = utc_now()
    rows = [_to_row(r, now) for r in records]

    if not rows:
        logger.info("No bookings to upsert")
        return 0

    if DEBUG:
        logger.debug("Sample booking to upsert:\n%s", json.dumps(rows[0], indent=2, default=str))

    upsert_with_distinct_check(
        conn=conn,
        table=Booking,
        rows=rows,
        conflict_columns=["feed_id", "external_id"],
        distinct_columns=[*TRACKED_COLUMNS, "last_synced_at"],
        update_columns=[*TRACKED_COLUMNS, "last_synced_at"],
        stamp_column="updated_at",
        stamp_on=TRACKED_COLUMNS,
    )
    db_operations.labels(operation="upsert", table="bookings").inc()

    logger.info("Upserted %d bookings into DB", len(rows))
    return len(rows)

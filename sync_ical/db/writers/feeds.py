import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Connection

from sync_ical.domain import PlatformTag, SyncResult
from sync_ical.metrics import db_operations
from sync_ical.models.feeds import Feed
from sync_ical.utils.datetime import utc_now

logger = structlog.get_logger(__name__)


def insert_feed(
    conn: Connection,
    property_id: str,
    url: str,
    platform: PlatformTag = PlatformTag.OTHER,
    timezone: str = "UTC",
    is_active: bool = True,
    feed_id: Optional[str] = None,
) -> str:
    """
    Register a new feed for a property.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        property_id (str): Owning property ID.
        url (str): iCalendar export URL.
        platform (PlatformTag): Source platform.
        timezone (str): IANA timezone of the property.
        is_active (bool): Whether the feed joins scheduled passes.
        feed_id (Optional[str]): Explicit ID; generated when omitted.

    Returns:
        str: The feed ID.
    """
    now = utc_now()
    feed_id = feed_id or str(uuid.uuid4())

    conn.execute(
        insert(Feed).values(
            id=feed_id,
            property_id=property_id,
            url=url,
            platform=PlatformTag(platform).value,
            timezone=timezone,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
    )
    db_operations.labels(operation="insert", table="feeds").inc()

    logger.info("feed_registered", feed_id=feed_id, property_id=property_id, platform=platform)
    return feed_id


def update_feed(conn: Connection, feed_id: str, data: dict[str, Any]) -> None:
    """
    Update feed fields for an existing feed.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        feed_id (str): Feed ID.
        data (dict): Fields to update (only non-None values)
    """
    values = dict(data)
    if "platform" in values:
        values["platform"] = PlatformTag(values["platform"]).value
    if values.get("is_active") is True:
        values["deleted_at"] = None
    values["updated_at"] = utc_now()

    conn.execute(update(Feed).where(Feed.id == feed_id).values(**values))
    db_operations.labels(operation="update", table="feeds").inc()


def soft_delete_feed(conn: Connection, feed_id: str) -> None:
    """
    Soft delete a feed by setting is_active to False.

    Bookings keep referencing the feed, so it is never removed.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        feed_id (str): Feed ID.
    """
    now = utc_now()

    conn.execute(
        update(Feed)
        .where(Feed.id == feed_id)
        .values(is_active=False, deleted_at=now, updated_at=now)
    )
    db_operations.labels(operation="update", table="feeds").inc()


def record_sync_success(conn: Connection, feed_id: str, result: SyncResult) -> None:
    """
    Record a successful run: reset the failure streak and add change counts.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        feed_id (str): Feed ID.
        result (SyncResult): Result of the run being recorded.
    """
    now = utc_now()

    conn.execute(
        update(Feed)
        .where(Feed.id == feed_id)
        .values(
            last_sync_at=now,
            last_sync_status="success",
            last_sync_error=None,
            last_sync_error_kind=None,
            last_sync_skipped_events=result.skipped_events,
            consecutive_failures=0,
            total_syncs=Feed.total_syncs + 1,
            successful_syncs=Feed.successful_syncs + 1,
            bookings_created=Feed.bookings_created + result.created,
            bookings_updated=Feed.bookings_updated + result.updated,
            bookings_cancelled=Feed.bookings_cancelled + result.cancelled,
            updated_at=now,
        )
    )
    db_operations.labels(operation="update", table="feeds").inc()


def record_sync_failure(conn: Connection, feed_id: str, result: SyncResult) -> int:
    """
    Record a failed run and extend the consecutive failure streak.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        feed_id (str): Feed ID.
        result (SyncResult): Errored result carrying error_kind and error.

    Returns:
        int: The feed's consecutive failure count after this run.
    """
    now = utc_now()

    conn.execute(
        update(Feed)
        .where(Feed.id == feed_id)
        .values(
            last_sync_at=now,
            last_sync_status="error",
            last_sync_error=result.error,
            last_sync_error_kind=result.error_kind,
            last_sync_skipped_events=result.skipped_events,
            consecutive_failures=Feed.consecutive_failures + 1,
            total_syncs=Feed.total_syncs + 1,
            failed_syncs=Feed.failed_syncs + 1,
            updated_at=now,
        )
    )
    db_operations.labels(operation="update", table="feeds").inc()

    streak = conn.execute(
        select(Feed.consecutive_failures).where(Feed.id == feed_id)
    ).scalar_one_or_none()
    return int(streak or 0)

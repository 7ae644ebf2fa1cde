from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from sync_ical.domain import FeedConfig, PlatformTag
from sync_ical.metrics import db_operations
from sync_ical.models.feeds import Feed


def _to_config(row: Any) -> FeedConfig:
    return FeedConfig(
        id=row.id,
        property_id=row.property_id,
        url=row.url,
        platform=PlatformTag(row.platform),
        timezone=row.timezone,
        is_active=row.is_active,
    )


def feed_exists(conn: Connection, feed_id: str) -> bool:
    """
    Check if a feed exists (active or soft-deleted).

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        feed_id (str): Feed ID to check.

    Returns:
        bool: True if the feed exists, False otherwise.
    """
    result = conn.execute(select(Feed.id).where(Feed.id == feed_id))
    return result.first() is not None


def get_active_feeds(conn: Connection) -> list[FeedConfig]:
    """
    Load all feeds that take part in scheduled sync passes.

    Args:
        conn (Connection): An active SQLAlchemy database connection.

    Returns:
        list[FeedConfig]: Active feeds ordered by ID.
    """
    rows = conn.execute(
        select(Feed).where(Feed.is_active.is_(True)).order_by(Feed.id)
    ).fetchall()
    db_operations.labels(operation="select", table="feeds").inc()
    return [_to_config(row) for row in rows]


def get_feed_config(conn: Connection, feed_id: str) -> Optional[FeedConfig]:
    """
    Load a single feed's sync configuration.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        feed_id (str): Feed ID.

    Returns:
        Optional[FeedConfig]: The feed, or None if it does not exist.
    """
    row = conn.execute(select(Feed).where(Feed.id == feed_id)).first()
    return _to_config(row) if row else None


def get_feed_status(conn: Connection, feed_id: str) -> Optional[dict[str, Any]]:
    """
    Get a feed with its last-sync status and cumulative statistics.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        feed_id (str): Feed ID.

    Returns:
        Optional[dict]: All feed columns, or None if not found.
    """
    row = conn.execute(select(Feed.__table__).where(Feed.id == feed_id)).mappings().first()
    return dict(row) if row else None

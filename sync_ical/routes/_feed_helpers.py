"""
Internal helper functions for feed route handlers.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, status
from sqlalchemy.engine import Connection

from sync_ical.db.readers.feeds import feed_exists
from sync_ical.utils.datetime import is_valid_timezone


def validate_feed_exists_or_404(conn: Connection, feed_id: str) -> None:
    """
    Validate that a feed exists, raise 404 if not.

    Raises:
        HTTPException: 404 if feed doesn't exist
    """
    if not feed_exists(conn, feed_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Feed {feed_id} not found",
        )


def validate_timezone_or_400(tz_name: str | None) -> None:
    """
    Validate an IANA timezone name, raise 400 if unknown.

    None is accepted so partial updates can omit the field.
    """
    if tz_name is not None and not is_valid_timezone(tz_name):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown timezone: {tz_name}",
        )


def should_trigger_sync_on_update(feed_info: dict[str, Any], update_data: dict[str, Any]) -> bool:
    """
    A changed URL on an active feed means the stored booking set describes a
    different calendar, so a fresh sync is scheduled right away.
    """
    if "url" not in update_data or update_data["url"] == feed_info["url"]:
        return False
    return bool(update_data.get("is_active", feed_info["is_active"]))

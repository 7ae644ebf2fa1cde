"""
Integration tests for booking and feed persistence against SQLite.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Callable

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from sync_ical.db.readers.bookings import get_bookings_for_feed
from sync_ical.db.readers.feeds import (
    feed_exists,
    get_active_feeds,
    get_feed_config,
    get_feed_status,
)
from sync_ical.db.writers.bookings import upsert_bookings
from sync_ical.db.writers.feeds import (
    insert_feed,
    record_sync_failure,
    record_sync_success,
    soft_delete_feed,
    update_feed,
)
from sync_ical.domain import (
    BookingRecord,
    BookingStatus,
    FeedConfig,
    PlatformTag,
    SyncOutcome,
    SyncResult,
    SyncStage,
)
from sync_ical.models.bookings import Booking


@pytest.mark.integration
def test_insert_and_read_feed(db_engine: Engine) -> None:
    with db_engine.begin() as conn:
        feed_id = insert_feed(
            conn,
            property_id="prop-9",
            url="https://www.vrbo.com/icalendar/9.ics",
            platform=PlatformTag.VRBO,
            timezone="Europe/Lisbon",
        )

    with db_engine.connect() as conn:
        assert feed_exists(conn, feed_id)
        config = get_feed_config(conn, feed_id)

    assert config == FeedConfig(
        id=feed_id,
        property_id="prop-9",
        url="https://www.vrbo.com/icalendar/9.ics",
        platform=PlatformTag.VRBO,
        timezone="Europe/Lisbon",
    )


@pytest.mark.integration
def test_soft_deleted_feed_leaves_active_set(db_engine: Engine, airbnb_feed: FeedConfig) -> None:
    with db_engine.begin() as conn:
        soft_delete_feed(conn, airbnb_feed.id)

    with db_engine.connect() as conn:
        assert get_active_feeds(conn) == []
        status = get_feed_status(conn, airbnb_feed.id)

    assert status is not None
    assert status["is_active"] is False
    assert status["deleted_at"] is not None


@pytest.mark.integration
def test_reactivating_feed_clears_deleted_at(db_engine: Engine, airbnb_feed: FeedConfig) -> None:
    with db_engine.begin() as conn:
        soft_delete_feed(conn, airbnb_feed.id)
        update_feed(conn, airbnb_feed.id, {"is_active": True})

    with db_engine.connect() as conn:
        status = get_feed_status(conn, airbnb_feed.id)
        active = get_active_feeds(conn)

    assert status is not None
    assert status["deleted_at"] is None
    assert [f.id for f in active] == [airbnb_feed.id]


@pytest.mark.integration
def test_upsert_bookings_inserts_then_updates(
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    booking_factory: Callable[..., BookingRecord],
) -> None:
    original = booking_factory("abc", date(2025, 6, 1), date(2025, 6, 5))

    with db_engine.begin() as conn:
        assert upsert_bookings(conn, [original]) == 1

    moved = booking_factory("abc", date(2025, 6, 1), date(2025, 6, 6), booking_id="ignored-id")
    with db_engine.begin() as conn:
        upsert_bookings(conn, [moved])

    with db_engine.connect() as conn:
        stored = get_bookings_for_feed(conn, airbnb_feed.id)

    assert len(stored) == 1
    assert stored[0].check_out == date(2025, 6, 6)
    # Conflicts resolve on (feed_id, external_id); the original row ID is kept
    assert stored[0].id == "id-abc"


@pytest.mark.integration
def test_upsert_without_changes_keeps_updated_at(
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    booking_factory: Callable[..., BookingRecord],
) -> None:
    booking = booking_factory("abc", date(2025, 6, 1), date(2025, 6, 5))

    with db_engine.begin() as conn:
        upsert_bookings(conn, [booking])
    with db_engine.connect() as conn:
        first = conn.execute(select(Booking.updated_at)).scalar_one()

    with db_engine.begin() as conn:
        upsert_bookings(conn, [booking])
    with db_engine.connect() as conn:
        second = conn.execute(select(Booking.updated_at)).scalar_one()

    assert first == second


@pytest.mark.integration
def test_unchanged_resync_advances_last_synced_at_only(
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    booking_factory: Callable[..., BookingRecord],
) -> None:
    booking = booking_factory("abc", date(2025, 6, 1), date(2025, 6, 5))
    seen_monday = replace(booking, last_synced_at=datetime(2025, 6, 9, 8, tzinfo=timezone.utc))
    seen_tuesday = replace(booking, last_synced_at=datetime(2025, 6, 10, 8, tzinfo=timezone.utc))
    columns = select(Booking.last_synced_at, Booking.updated_at)

    with db_engine.begin() as conn:
        upsert_bookings(conn, [seen_monday])
    with db_engine.connect() as conn:
        first = conn.execute(columns).one()

    with db_engine.begin() as conn:
        upsert_bookings(conn, [seen_tuesday])
    with db_engine.connect() as conn:
        second = conn.execute(columns).one()

    assert second.last_synced_at > first.last_synced_at
    assert second.updated_at == first.updated_at


@pytest.mark.integration
def test_same_uid_on_two_feeds_is_two_bookings(
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    booking_factory: Callable[..., BookingRecord],
) -> None:
    with db_engine.begin() as conn:
        insert_feed(conn, "prop-1", "https://example.com/other.ics", feed_id="feed-2")
        upsert_bookings(
            conn,
            [
                booking_factory("abc", date(2025, 6, 1), date(2025, 6, 5)),
                booking_factory(
                    "abc", date(2025, 6, 1), date(2025, 6, 5), feed_id="feed-2", booking_id="x"
                ),
            ],
        )

    with db_engine.connect() as conn:
        assert len(get_bookings_for_feed(conn, "feed-1")) == 1
        assert len(get_bookings_for_feed(conn, "feed-2")) == 1


@pytest.mark.integration
def test_cancelled_bookings_are_stored_not_deleted(
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    booking_factory: Callable[..., BookingRecord],
) -> None:
    with db_engine.begin() as conn:
        upsert_bookings(conn, [booking_factory("abc", date(2025, 6, 1), date(2025, 6, 5))])
        upsert_bookings(
            conn,
            [
                booking_factory(
                    "abc", date(2025, 6, 1), date(2025, 6, 5), status=BookingStatus.CANCELLED
                )
            ],
        )

    with db_engine.connect() as conn:
        stored = get_bookings_for_feed(conn, airbnb_feed.id)

    assert [b.status for b in stored] == [BookingStatus.CANCELLED]


@pytest.mark.integration
def test_failure_streak_counts_up_and_resets(db_engine: Engine, airbnb_feed: FeedConfig) -> None:
    failed = SyncResult(
        feed_id=airbnb_feed.id,
        outcome=SyncOutcome.ERROR,
        stage=SyncStage.ERRORED,
        failed_stage=SyncStage.FETCHING,
        error_kind="http_status",
        error="HTTP 404 fetching feed",
    )
    ok = SyncResult(
        feed_id=airbnb_feed.id,
        outcome=SyncOutcome.SUCCESS,
        stage=SyncStage.COMPLETED,
        created=2,
        cancelled=1,
    )

    with db_engine.begin() as conn:
        assert record_sync_failure(conn, airbnb_feed.id, failed) == 1
        assert record_sync_failure(conn, airbnb_feed.id, failed) == 2

    with db_engine.connect() as conn:
        status = get_feed_status(conn, airbnb_feed.id)
    assert status is not None
    assert status["last_sync_status"] == "error"
    assert status["last_sync_error_kind"] == "http_status"

    with db_engine.begin() as conn:
        record_sync_success(conn, airbnb_feed.id, ok)

    with db_engine.connect() as conn:
        status = get_feed_status(conn, airbnb_feed.id)

    assert status is not None
    assert status["consecutive_failures"] == 0
    assert status["last_sync_error"] is None
    assert status["total_syncs"] == 3
    assert status["failed_syncs"] == 2
    assert status["successful_syncs"] == 1
    assert status["bookings_created"] == 2
    assert status["bookings_cancelled"] == 1

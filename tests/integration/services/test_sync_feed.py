"""
Integration tests for the feed sync orchestrator.

The network is patched at poll_feed (or fetch_feed for retry behaviour);
storage is a real in-memory SQLite database.
"""

from __future__ import annotations

import threading
from typing import Any, Callable
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from sync_ical.db.readers.bookings import get_bookings_for_feed
from sync_ical.db.readers.feeds import get_feed_status
from sync_ical.domain import (
    BookingStatus,
    ChangeEvent,
    ChangeKind,
    FeedConfig,
    SyncOutcome,
    SyncStage,
)
from sync_ical.errors import FetchHttpStatusError
from sync_ical.locks import FeedLockRegistry
from sync_ical.services.publisher import ChangeEventPublisher
from sync_ical.services.sync import sync_feed, sync_feed_by_id

Loader = Callable[[str], str]


def _status(engine: Engine, feed_id: str) -> dict[str, Any]:
    with engine.connect() as conn:
        status = get_feed_status(conn, feed_id)
    assert status is not None
    return status


def _sync(feed: FeedConfig, engine: Engine, publisher: ChangeEventPublisher, **kwargs: Any) -> Any:
    result = sync_feed(feed, engine, publisher, locks=FeedLockRegistry(), **kwargs)
    assert publisher.flush(timeout=5)
    return result


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_first_sync_creates_bookings_and_publishes(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")

    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.stage == SyncStage.COMPLETED
    assert result.created == 3
    assert [(e.kind, e.booking.external_id) for e in received] == [
        (ChangeKind.CREATED, "abc"),
        (ChangeKind.CREATED, "def"),
        (ChangeKind.CREATED, "ghi"),
    ]

    with db_engine.connect() as conn:
        stored = get_bookings_for_feed(conn, airbnb_feed.id)
    assert [b.external_id for b in stored] == ["abc", "def", "ghi"]

    status = _status(db_engine, airbnb_feed.id)
    assert status["last_sync_status"] == "success"
    assert status["bookings_created"] == 3


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_resync_of_unchanged_feed_emits_nothing(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")
    _sync(airbnb_feed, db_engine, publisher)
    received.clear()

    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.SUCCESS
    assert (result.created, result.updated, result.cancelled) == (0, 0, 0)
    assert result.unchanged == 3
    assert received == []


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_suspected_partial_feed_is_withheld(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    """Two of three bookings vanishing errors the run instead of cancelling them."""
    mock_poll.return_value = ical("airbnb.ics")
    _sync(airbnb_feed, db_engine, publisher)
    received.clear()

    mock_poll.return_value = ical("airbnb_partial.ics")
    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.ERROR
    assert result.stage == SyncStage.ERRORED
    assert result.failed_stage == SyncStage.RECONCILING
    assert result.error_kind == "partial_feed_suspected"
    assert received == []

    with db_engine.connect() as conn:
        stored = get_bookings_for_feed(conn, airbnb_feed.id)
    assert all(b.status != BookingStatus.CANCELLED for b in stored)
    assert _status(db_engine, airbnb_feed.id)["last_sync_error_kind"] == "partial_feed_suspected"


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_partial_feed_override_applies_cancellations(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")
    _sync(airbnb_feed, db_engine, publisher)
    received.clear()

    mock_poll.return_value = ical("airbnb_partial.ics")
    result = _sync(airbnb_feed, db_engine, publisher, override_partial=True)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.cancelled == 2
    assert [(e.kind, e.booking.external_id) for e in received] == [
        (ChangeKind.CANCELLED, "def"),
        (ChangeKind.CANCELLED, "ghi"),
    ]


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_small_drop_cancels_by_absence(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")
    _sync(airbnb_feed, db_engine, publisher)
    received.clear()

    without_ghi = ical("airbnb.ics").split("BEGIN:VEVENT\nDTEND;VALUE=DATE:20250620")[0]
    mock_poll.return_value = without_ghi + "END:VCALENDAR\n"
    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.SUCCESS
    assert [(e.kind, e.booking.external_id) for e in received] == [(ChangeKind.CANCELLED, "ghi")]


@pytest.mark.integration
@patch("sync_ical.pollers.feeds.time.sleep")
@patch("sync_ical.pollers.feeds.fetch_feed")
def test_http_404_errors_without_retry(
    mock_fetch: Mock,
    mock_sleep: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
) -> None:
    mock_fetch.side_effect = FetchHttpStatusError(airbnb_feed.url, 404)

    result = _sync(airbnb_feed, db_engine, publisher)

    assert mock_fetch.call_count == 1
    mock_sleep.assert_not_called()
    assert result.outcome == SyncOutcome.ERROR
    assert result.failed_stage == SyncStage.FETCHING
    assert result.error_kind == "http_status"
    assert result.error == "HTTP 404 fetching feed"
    assert received == []

    status = _status(db_engine, airbnb_feed.id)
    assert status["last_sync_error"] == "HTTP 404 fetching feed"
    assert status["consecutive_failures"] == 1


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_invalid_body_fails_at_parsing(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
) -> None:
    mock_poll.return_value = "<html><body>Please log in</body></html>"

    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.ERROR
    assert result.failed_stage == SyncStage.PARSING
    assert result.error_kind == "invalid_format"
    assert received == []


@pytest.mark.integration
@patch("sync_ical.services.sync.upsert_bookings")
@patch("sync_ical.services.sync.poll_feed")
def test_persist_failure_publishes_nothing(
    mock_poll: Mock,
    mock_upsert: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")
    mock_upsert.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))

    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.ERROR
    assert result.failed_stage == SyncStage.PERSISTING
    assert result.error_kind == "storage"
    assert received == []
    with db_engine.connect() as conn:
        assert get_bookings_for_feed(conn, airbnb_feed.id) == []


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_skipped_events_are_recorded(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("missing_uid.ics")

    result = _sync(airbnb_feed, db_engine, publisher)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.created == 2
    assert result.skipped_events == 1
    assert _status(db_engine, airbnb_feed.id)["last_sync_skipped_events"] == 1


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_dry_run_writes_and_publishes_nothing(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")

    result = _sync(airbnb_feed, db_engine, publisher, dry_run=True)

    assert result.outcome == SyncOutcome.SUCCESS
    assert result.created == 3
    assert received == []
    with db_engine.connect() as conn:
        assert get_bookings_for_feed(conn, airbnb_feed.id) == []
    assert _status(db_engine, airbnb_feed.id)["total_syncs"] == 0


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_concurrent_run_for_same_feed_is_skipped(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
) -> None:
    locks = FeedLockRegistry()
    locks.try_acquire(airbnb_feed.id)

    result = sync_feed(airbnb_feed, db_engine, publisher, locks=locks)

    assert result.outcome == SyncOutcome.SKIPPED
    assert result.error_kind == "already_running"
    mock_poll.assert_not_called()


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_cancelled_before_start_is_skipped(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
) -> None:
    cancel_event = threading.Event()
    cancel_event.set()

    result = _sync(airbnb_feed, db_engine, publisher, cancel_event=cancel_event)

    assert result.outcome == SyncOutcome.SKIPPED
    assert result.error_kind == "cancelled"
    mock_poll.assert_not_called()
    assert _status(db_engine, airbnb_feed.id)["total_syncs"] == 0


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_repeated_failures_are_flagged(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
) -> None:
    mock_poll.side_effect = FetchHttpStatusError(airbnb_feed.url, 410)

    for _ in range(3):
        _sync(airbnb_feed, db_engine, publisher)

    status = _status(db_engine, airbnb_feed.id)
    assert status["consecutive_failures"] == 3
    assert status["is_active"] is True


@pytest.mark.integration
@patch("sync_ical.services.sync.poll_feed")
def test_sync_feed_by_id(
    mock_poll: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")

    result = sync_feed_by_id(airbnb_feed.id, db_engine, publisher)

    assert result is not None
    assert result.created == 3
    assert sync_feed_by_id("no-such-feed", db_engine, publisher) is None


@pytest.mark.integration
@patch("sync_ical.services.sync.parse_feed")
@patch("sync_ical.services.sync.poll_feed")
def test_sync_feed_by_id_records_unexpected_error(
    mock_poll: Mock,
    mock_parse: Mock,
    db_engine: Engine,
    airbnb_feed: FeedConfig,
    publisher: ChangeEventPublisher,
    received: list[ChangeEvent],
    ical: Loader,
) -> None:
    mock_poll.return_value = ical("airbnb.ics")
    mock_parse.side_effect = RuntimeError("parser bug")

    result = sync_feed_by_id(airbnb_feed.id, db_engine, publisher)

    assert result is not None
    assert result.outcome == SyncOutcome.ERROR
    assert result.error_kind == "internal"
    assert received == []

    status = _status(db_engine, airbnb_feed.id)
    assert status["last_sync_status"] == "error"
    assert status["last_sync_error_kind"] == "internal"
    assert status["consecutive_failures"] == 1

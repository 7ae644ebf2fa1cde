"""
Shared fixtures.

Config refuses to load without DATABASE_URL, so a default is set before any
sync_ical module is imported. Database tests run against in-memory SQLite;
the engine maps the cleanbuz schema away.
"""

from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Callable, Generator  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sync_ical.db.engine import create_db_engine  # noqa: E402
from sync_ical.db.writers.feeds import insert_feed  # noqa: E402
from sync_ical.domain import (  # noqa: E402
    BookingRecord,
    BookingStatus,
    ChangeEvent,
    FeedConfig,
    PlatformTag,
)
from sync_ical.models.base import Base  # noqa: E402
from sync_ical.services.publisher import ChangeEventPublisher  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def load_fixture(name: str) -> str:
    return (FIXTURES_DIR / name).read_text(encoding="utf-8")


def _make_booking(
    external_id: str,
    check_in: date,
    check_out: date,
    feed_id: str = "feed-1",
    status: BookingStatus = BookingStatus.CONFIRMED,
    guest_name: str = "Airbnb Guest",
    booking_id: str | None = None,
) -> BookingRecord:
    """Build a BookingRecord with sensible defaults for tests."""
    return BookingRecord(
        id=booking_id or f"id-{external_id}",
        property_id="prop-1",
        feed_id=feed_id,
        external_id=external_id,
        guest_name=guest_name,
        check_in=check_in,
        check_out=check_out,
        status=status,
    )


@pytest.fixture
def db_engine() -> Generator[Engine, None, None]:
    """Fresh in-memory SQLite database with all tables created."""
    engine = create_db_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def airbnb_feed(db_engine: Engine) -> FeedConfig:
    """An active Airbnb feed registered in the test database."""
    with db_engine.begin() as conn:
        feed_id = insert_feed(
            conn,
            property_id="prop-1",
            url="https://www.airbnb.com/calendar/ical/123.ics?s=abc",
            platform=PlatformTag.AIRBNB,
            timezone="America/New_York",
            feed_id="feed-1",
        )
    return FeedConfig(
        id=feed_id,
        property_id="prop-1",
        url="https://www.airbnb.com/calendar/ical/123.ics?s=abc",
        platform=PlatformTag.AIRBNB,
        timezone="America/New_York",
    )


@pytest.fixture
def publisher() -> Generator[ChangeEventPublisher, None, None]:
    """A private publisher so tests never share consumers."""
    pub = ChangeEventPublisher()
    yield pub
    pub.close(wait_for_pending=True)


@pytest.fixture
def received(publisher: ChangeEventPublisher) -> list[ChangeEvent]:
    """Events delivered to a recording consumer subscribed to `publisher`."""
    events: list[ChangeEvent] = []
    publisher.subscribe("recorder", events.append)
    return events


@pytest.fixture
def booking_factory() -> Callable[..., BookingRecord]:
    """Factory for BookingRecords with sensible defaults."""
    return _make_booking


@pytest.fixture
def ical() -> Callable[[str], str]:
    """Loader for .ics files under tests/fixtures."""
    return load_fixture

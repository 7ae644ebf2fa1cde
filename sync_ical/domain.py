"""
Plain data types shared by the parser, reconciliation engine and orchestrator.

These are deliberately free of SQLAlchemy and FastAPI so that the parsing and
reconciliation layers stay pure and can be tested without a database.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


class PlatformTag(str, Enum):
    """Booking platform a feed was exported from."""

    AIRBNB = "airbnb"
    VRBO = "vrbo"
    BOOKINGCOM = "bookingcom"
    OTHER = "other"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ChangeKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class SyncStage(str, Enum):
    """Stages a single feed run moves through, in order."""

    PENDING = "pending"
    FETCHING = "fetching"
    PARSING = "parsing"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass(frozen=True)
class FeedConfig:
    """
    The subset of a registered feed the orchestrator needs for one run.

    Attributes:
        id: Opaque feed identifier
        property_id: Owning property identifier
        url: HTTP(S) URL serving the iCalendar export
        platform: Platform tag used to select parser quirks
        timezone: IANA timezone of the property, used to turn datetimes into dates
        is_active: Only active feeds are part of scheduled passes
    """

    id: str
    property_id: str
    url: str
    platform: PlatformTag = PlatformTag.OTHER
    timezone: str = "UTC"
    is_active: bool = True


@dataclass(frozen=True)
class ParsedEvent:
    """One VEVENT from a feed, normalized to calendar dates."""

    external_id: str
    check_in: date
    check_out: date
    guest_name: str
    status: BookingStatus = BookingStatus.CONFIRMED
    description: Optional[str] = None
    raw_block: str = ""
    low_confidence: bool = False


@dataclass(frozen=True)
class ParsedFeed:
    """Result of parsing one feed body: usable events plus a count of dropped VEVENTs."""

    events: list[ParsedEvent]
    skipped: int = 0

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class BookingRecord:
    """
    Canonical reservation, unique per (feed_id, external_id).

    low_confidence is set when the source omitted DTEND and the booking was
    stored as a zero-night placeholder for manual review.
    """

    id: str
    property_id: str
    feed_id: str
    external_id: str
    guest_name: str
    check_in: date
    check_out: date
    status: BookingStatus
    raw_payload: str = ""
    low_confidence: bool = False
    last_synced_at: Optional[datetime] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.feed_id, self.external_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "feed_id": self.feed_id,
            "external_id": self.external_id,
            "guest_name": self.guest_name,
            "check_in": self.check_in.isoformat(),
            "check_out": self.check_out.isoformat(),
            "status": self.status.value,
            "low_confidence": self.low_confidence,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }


@dataclass(frozen=True)
class ChangeEvent:
    """A booking transition observed during reconciliation."""

    kind: ChangeKind
    booking: BookingRecord
    previous: Optional[BookingRecord] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "booking": self.booking.to_dict(),
            "previous": self.previous.to_dict() if self.previous else None,
        }


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one orchestrator run over one feed."""

    feed_id: str
    outcome: SyncOutcome
    stage: SyncStage
    created: int = 0
    updated: int = 0
    cancelled: int = 0
    unchanged: int = 0
    skipped_events: int = 0
    failed_stage: Optional[SyncStage] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is SyncOutcome.SUCCESS


@dataclass(frozen=True)
class SyncPassResult:
    """All per-feed results of one orchestrator pass."""

    results: list[SyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome is SyncOutcome.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome is SyncOutcome.ERROR)

    @property
    def skipped(self) -> int:
        return sum(1 for r in self.results if r.outcome is SyncOutcome.SKIPPED)

    def for_feed(self, feed_id: str) -> Optional[SyncResult]:
        return next((r for r in self.results if r.feed_id == feed_id), None)

"""
Booking reconciliation: diff a freshly parsed feed against stored bookings.

This module does no I/O. Given the parsed events for one feed and the
booking set persisted after the previous run, it returns the new canonical
booking set and the change events describing how to get there.

Cancellation by absence: a feed is treated as the complete current set of
reservations, not an append-only log. A booking whose UID no longer appears
is cancelled. A truncated or empty response would therefore cancel real
bookings, which is why the orchestrator checks is_suspected_partial_feed()
before applying a result that contains absence cancellations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Iterable, Optional

from sync_ical.domain import (
    BookingRecord,
    BookingStatus,
    ChangeEvent,
    ChangeKind,
    FeedConfig,
    ParsedEvent,
)
from sync_ical.utils.datetime import utc_now

COMPARED_FIELDS = ("check_in", "check_out", "guest_name", "status")


@dataclass(frozen=True)
class Reconciliation:
    """
    Result of reconcile().

    Attributes:
        bookings: New canonical booking set for the feed, sorted by external_id
        events: Change events ordered created, updated, cancelled
        unchanged: Number of bookings seen again with no field changes
        absent_cancellations: External IDs cancelled only because they vanished
    """

    bookings: list[BookingRecord]
    events: list[ChangeEvent]
    unchanged: int = 0
    absent_cancellations: list[str] = field(default_factory=list)

    def count(self, kind: ChangeKind) -> int:
        return sum(1 for e in self.events if e.kind is kind)

    @property
    def created(self) -> int:
        return self.count(ChangeKind.CREATED)

    @property
    def updated(self) -> int:
        return self.count(ChangeKind.UPDATED)

    @property
    def cancelled(self) -> int:
        return self.count(ChangeKind.CANCELLED)


def is_suspected_partial_feed(parsed_count: int, prior_active_count: int, threshold: float) -> bool:
    """
    Decide whether a drop in event count looks like a truncated feed.

    The drop is measured against bookings that were still active after the
    previous run. A drop equal to or larger than threshold (a fraction, 0.5 =
    half the bookings vanished) is suspicious.

    Args:
        parsed_count: Events in the current parse
        prior_active_count: Non-cancelled bookings before this run
        threshold: Fractional drop that triggers the guard

    Returns:
        bool: True if the run should be withheld

    Example:
        >>> is_suspected_partial_feed(1, 2, 0.5)
        True
        >>> is_suspected_partial_feed(9, 10, 0.5)
        False
    """
    if prior_active_count <= 0 or parsed_count >= prior_active_count:
        return False
    drop = (prior_active_count - parsed_count) / prior_active_count
    return drop >= threshold


def _differs(prior: BookingRecord, candidate: BookingRecord) -> bool:
    return any(getattr(prior, f) != getattr(candidate, f) for f in COMPARED_FIELDS)


def _by_external_id(event: ChangeEvent) -> str:
    return event.booking.external_id


def reconcile(
    feed: FeedConfig,
    parsed_events: Iterable[ParsedEvent],
    prior_bookings: Iterable[BookingRecord],
    now: Optional[datetime] = None,
    id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
) -> Reconciliation:
    """
    Compute the new booking set and change events for one feed.

    Rules, keyed by external ID:
        - new ID: Created (even when the source already marks it cancelled,
          so every first sighting is announced exactly once)
        - known ID with a change to check-in, check-out, guest name or
          status: Updated, or Cancelled if the new status is cancelled
        - known ID unchanged: no event
        - known, still-active ID missing from the feed: Cancelled (absence)
        - known, already-cancelled ID missing from the feed: kept, no event

    Records keep their internal ID across runs. Prior bookings belonging to a
    different feed are ignored.

    Args:
        feed: Feed being reconciled
        parsed_events: Events from parse_feed(); later duplicates of a UID win
        prior_bookings: Booking set persisted for this feed
        now: Timestamp stamped on touched records (defaults to utc_now())
        id_factory: Generator for internal IDs of new bookings

    Returns:
        Reconciliation: bookings, ordered events and counters
    """
    now = now or utc_now()

    current: dict[str, ParsedEvent] = {}
    for event in parsed_events:
        current.pop(event.external_id, None)
        current[event.external_id] = event

    prior: dict[str, BookingRecord] = {
        b.external_id: b for b in prior_bookings if b.feed_id == feed.id
    }

    created: list[ChangeEvent] = []
    updated: list[ChangeEvent] = []
    cancelled: list[ChangeEvent] = []
    result: dict[str, BookingRecord] = {}
    absent: list[str] = []
    unchanged = 0

    for external_id, event in current.items():
        previous = prior.get(external_id)
        candidate = BookingRecord(
            id=previous.id if previous else id_factory(),
            property_id=feed.property_id,
            feed_id=feed.id,
            external_id=external_id,
            guest_name=event.guest_name,
            check_in=event.check_in,
            check_out=event.check_out,
            status=event.status,
            raw_payload=event.raw_block,
            low_confidence=event.low_confidence,
            last_synced_at=now,
        )

        if previous is None:
            result[external_id] = candidate
            created.append(ChangeEvent(ChangeKind.CREATED, candidate))
        elif not _differs(previous, candidate):
            result[external_id] = replace(
                previous,
                raw_payload=candidate.raw_payload,
                low_confidence=candidate.low_confidence,
                last_synced_at=now,
            )
            unchanged += 1
        elif candidate.status is BookingStatus.CANCELLED:
            result[external_id] = candidate
            cancelled.append(ChangeEvent(ChangeKind.CANCELLED, candidate, previous))
        else:
            result[external_id] = candidate
            updated.append(ChangeEvent(ChangeKind.UPDATED, candidate, previous))

    for external_id in sorted(set(prior) - set(current)):
        previous = prior[external_id]
        if previous.status is BookingStatus.CANCELLED:
            result[external_id] = previous
            continue
        gone = replace(previous, status=BookingStatus.CANCELLED, last_synced_at=now)
        result[external_id] = gone
        cancelled.append(ChangeEvent(ChangeKind.CANCELLED, gone, previous))
        absent.append(external_id)

    events = [
        *sorted(created, key=_by_external_id),
        *sorted(updated, key=_by_external_id),
        *sorted(cancelled, key=_by_external_id),
    ]

    return Reconciliation(
        bookings=[result[k] for k in sorted(result)],
        events=events,
        unchanged=unchanged,
        absent_cancellations=absent,
    )

"""
iCalendar (RFC 5545) feed parser.

Turns a feed body into ParsedEvents with check-in/check-out as calendar dates
in the property's timezone. Whole-feed problems (not a VCALENDAR) raise
InvalidFormatError; problems with a single VEVENT only skip that event.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import date, timedelta
from typing import Any, Iterator, Optional, Union

import structlog
from icalendar import Calendar

from sync_ical.config import DEBUG, DEFAULT_TIMEZONE
from sync_ical.domain import BookingStatus, ParsedEvent, ParsedFeed, PlatformTag
from sync_ical.errors import InvalidFormatError
from sync_ical.metrics import events_parsed, events_skipped
from sync_ical.parsers.platforms import PlatformQuirks, platform_tag, quirks_for
from sync_ical.utils.datetime import is_valid_timezone, to_local_date

logger = structlog.get_logger(__name__)

STATUS_MAP = {
    "CONFIRMED": BookingStatus.CONFIRMED,
    "TENTATIVE": BookingStatus.TENTATIVE,
    "CANCELLED": BookingStatus.CANCELLED,
    "CANCELED": BookingStatus.CANCELLED,
}


class SkippedEvent:
    """A VEVENT that could not be turned into a booking."""

    __slots__ = ("uid", "reason")

    def __init__(self, uid: Optional[str], reason: str) -> None:
        self.uid = uid
        self.reason = reason


def _text(component: Any, name: str) -> str:
    value = component.get(name)
    return str(value).strip() if value is not None else ""


def _date_value(prop: Any) -> Optional[date]:
    try:
        value = getattr(prop, "dt", None)
    except ValueError:
        # icalendar keeps unparseable values and raises on access
        return None
    return value if isinstance(value, date) else None


def _duration_value(prop: Any) -> Optional[timedelta]:
    try:
        value = getattr(prop, "dt", None)
    except ValueError:
        return None
    return value if isinstance(value, timedelta) else None


def load_calendar(raw: str) -> Calendar:
    """
    Parse the VCALENDAR wrapper.

    Args:
        raw: Feed body

    Returns:
        Calendar: Parsed icalendar component tree

    Raises:
        InvalidFormatError: Body is empty, does not start with BEGIN:VCALENDAR,
            or cannot be parsed at all
    """
    text = raw.lstrip("\ufeff \t\r\n") if raw else ""
    if not text.upper().startswith("BEGIN:VCALENDAR"):
        raise InvalidFormatError("Feed does not start with BEGIN:VCALENDAR")

    try:
        return Calendar.from_ical(text)
    except ValueError as err:
        raise InvalidFormatError(f"Unparseable VCALENDAR: {err}") from err


def _to_event(
    component: Any, quirks: PlatformQuirks, tz_name: str
) -> Union[ParsedEvent, SkippedEvent]:
    uid = _text(component, "UID")
    if not uid:
        return SkippedEvent(None, "missing_uid")

    start = _date_value(component.get("DTSTART"))
    if start is None:
        return SkippedEvent(uid, "invalid_dtstart")

    dtend = component.get("DTEND")
    duration = component.get("DURATION")
    low_confidence = False

    check_in = to_local_date(start, tz_name)
    if dtend is not None:
        end = _date_value(dtend)
        if end is None:
            return SkippedEvent(uid, "invalid_dtend")
        check_out = to_local_date(end, tz_name)
    elif duration is not None:
        length = _duration_value(duration)
        if length is None:
            return SkippedEvent(uid, "invalid_duration")
        check_out = to_local_date(start + length, tz_name)
    else:
        # Zero-night placeholder; flagged for review rather than guessing a length
        check_out = check_in
        low_confidence = True

    if check_out < check_in:
        return SkippedEvent(uid, "end_before_start")

    summary = _text(component, "SUMMARY")
    description = _text(component, "DESCRIPTION") or None
    raw_status = _text(component, "STATUS").upper()
    status = STATUS_MAP.get(raw_status) if raw_status else quirks.default_status(summary)

    return ParsedEvent(
        external_id=uid,
        check_in=check_in,
        check_out=check_out,
        guest_name=quirks.guest_name(summary, description),
        status=status or BookingStatus.CONFIRMED,
        description=description,
        raw_block=component.to_ical().decode("utf-8", errors="replace"),
        low_confidence=low_confidence,
    )


def iter_events(
    calendar: Calendar,
    platform_hint: PlatformTag | str | None = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> Iterator[Union[ParsedEvent, SkippedEvent]]:
    """
    Lazily walk the VEVENTs of a parsed calendar.

    Args:
        calendar: Calendar returned by load_calendar()
        platform_hint: Platform used to pick quirk handling
        tz_name: Property timezone

    Yields:
        ParsedEvent for usable events, SkippedEvent for malformed ones
    """
    quirks = quirks_for(platform_hint)
    for component in calendar.walk("VEVENT"):
        yield _to_event(component, quirks, tz_name)


def parse_feed(
    raw: str,
    platform_hint: PlatformTag | str | None = None,
    tz_name: str = DEFAULT_TIMEZONE,
) -> ParsedFeed:
    """
    Parse a feed body into normalized events.

    A UID seen twice keeps its last occurrence; the earlier copy counts as
    skipped so the feed still yields one event per UID.

    Args:
        raw: Feed body as returned by fetch_feed()
        platform_hint: Platform tag of the feed
        tz_name: IANA timezone of the property

    Returns:
        ParsedFeed: Events in document order plus the skipped count

    Raises:
        InvalidFormatError: The body is not a VCALENDAR
    """
    if not is_valid_timezone(tz_name):
        logger.warning("unknown_timezone", timezone=tz_name, fallback=DEFAULT_TIMEZONE)
        tz_name = DEFAULT_TIMEZONE

    platform_label = platform_tag(platform_hint).value

    calendar = load_calendar(raw)

    by_uid: dict[str, ParsedEvent] = {}
    skipped = 0
    for item in iter_events(calendar, platform_hint, tz_name):
        if isinstance(item, SkippedEvent):
            skipped += 1
            logger.warning("vevent_skipped", uid=item.uid, reason=item.reason)
            continue
        if item.external_id in by_uid:
            skipped += 1
            logger.warning("vevent_skipped", uid=item.external_id, reason="duplicate_uid")
            del by_uid[item.external_id]
        by_uid[item.external_id] = item

    events = list(by_uid.values())

    events_parsed.labels(platform=platform_label).inc(len(events))
    if skipped:
        events_skipped.labels(platform=platform_label).inc(skipped)

    if DEBUG and events:
        sample = json.dumps(asdict(events[0]), indent=2, default=str)
        logger.debug("Sample parsed event:\n%s", sample)

    return ParsedFeed(events=events, skipped=skipped)

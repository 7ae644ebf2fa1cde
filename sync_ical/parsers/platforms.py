"""
Per-platform quirks for iCalendar exports.

Each platform formats SUMMARY differently and none of them send STATUS
consistently. A quirk strategy only answers two questions: what guest name
to show, and what status to assume when STATUS is missing.

Observed export formats:
    Airbnb:      SUMMARY:Reserved | SUMMARY:Airbnb (Not available)
    VRBO:        SUMMARY:Reserved - Jane Doe | SUMMARY:Blocked
    Booking.com: SUMMARY:CLOSED - Not available
"""

from __future__ import annotations

import re
from typing import Optional

from sync_ical.domain import BookingStatus, PlatformTag


class PlatformQuirks:
    """Default handling, used for feeds of unknown origin."""

    placeholder_name = "Guest"
    blocked_markers: tuple[str, ...] = ("not available", "blocked", "closed")

    def guest_name(self, summary: str, description: Optional[str]) -> str:
        summary = summary.strip()
        return summary or self.placeholder_name

    def default_status(self, summary: str) -> BookingStatus:
        lowered = summary.lower()
        if any(marker in lowered for marker in self.blocked_markers):
            return BookingStatus.TENTATIVE
        return BookingStatus.CONFIRMED


class AirbnbQuirks(PlatformQuirks):
    """Airbnb never exports the guest's name."""

    placeholder_name = "Airbnb Guest"
    blocked_markers = ("not available",)

    def guest_name(self, summary: str, description: Optional[str]) -> str:
        return self.placeholder_name


class VrboQuirks(PlatformQuirks):
    placeholder_name = "VRBO Guest"
    blocked_markers = ("blocked",)

    _reserved = re.compile(r"^\s*reserved\s*-\s*(?P<name>.+?)\s*$", re.IGNORECASE)

    def guest_name(self, summary: str, description: Optional[str]) -> str:
        match = self._reserved.match(summary)
        if match:
            return match.group("name")
        return self.placeholder_name


class BookingComQuirks(PlatformQuirks):
    """Booking.com marks every stay CLOSED - Not available, bookings included."""

    placeholder_name = "Booking.com Guest"

    def guest_name(self, summary: str, description: Optional[str]) -> str:
        return self.placeholder_name

    def default_status(self, summary: str) -> BookingStatus:
        return BookingStatus.CONFIRMED


QUIRKS: dict[PlatformTag, PlatformQuirks] = {
    PlatformTag.AIRBNB: AirbnbQuirks(),
    PlatformTag.VRBO: VrboQuirks(),
    PlatformTag.BOOKINGCOM: BookingComQuirks(),
    PlatformTag.OTHER: PlatformQuirks(),
}


def platform_tag(platform: PlatformTag | str | None) -> PlatformTag:
    """Normalize a platform hint; None and unknown values map to OTHER."""
    try:
        return PlatformTag(platform) if platform else PlatformTag.OTHER
    except ValueError:
        return PlatformTag.OTHER


def quirks_for(platform: PlatformTag | str | None) -> PlatformQuirks:
    """
    Select the quirk strategy for a platform hint.

    Args:
        platform: Platform tag (or its string value)

    Returns:
        PlatformQuirks: Strategy instance
    """
    return QUIRKS[platform_tag(platform)]

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl

from sync_ical.domain import BookingStatus, PlatformTag


class FeedCreatePayload(BaseModel):
    """
    Schema for registering a property's calendar feed.
    """

    property_id: str = Field(..., min_length=1, description="Owning property ID")
    url: HttpUrl = Field(..., description="iCalendar export URL from the booking platform")
    platform: PlatformTag = Field(PlatformTag.OTHER, description="Source platform")
    timezone: str = Field("UTC", description="IANA timezone of the property")
    is_active: bool = Field(True, description="Include in scheduled sync passes")


class FeedUpdatePayload(BaseModel):
    """
    Schema for updating a feed. All fields are optional.
    Note: sync status and statistics are managed by the orchestrator.
    """

    url: Optional[HttpUrl] = Field(None, description="iCalendar export URL")
    platform: Optional[PlatformTag] = Field(None, description="Source platform")
    timezone: Optional[str] = Field(None, description="IANA timezone of the property")
    is_active: Optional[bool] = Field(None, description="Include in scheduled sync passes")


class FeedStatusResponse(BaseModel):
    id: str
    property_id: str
    url: str
    platform: PlatformTag
    timezone: str
    is_active: bool
    deleted_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None
    last_sync_error: Optional[str] = None
    last_sync_error_kind: Optional[str] = None
    last_sync_skipped_events: int = 0
    consecutive_failures: int = 0
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    bookings_created: int = 0
    bookings_updated: int = 0
    bookings_cancelled: int = 0


class BookingResponse(BaseModel):
    id: str
    property_id: str
    feed_id: str
    external_id: str
    guest_name: str
    check_in: date
    check_out: date
    status: BookingStatus
    low_confidence: bool
    last_synced_at: Optional[datetime] = None

"""Exception types raised by the fetcher, parser and publisher."""

from __future__ import annotations

from typing import Optional


class FeedSyncError(Exception):
    """Base class for all errors raised while syncing a feed."""

    kind = "error"
    retryable = False


class FetchError(FeedSyncError):
    """A feed could not be retrieved."""

    kind = "fetch"

    def __init__(self, url: str, message: str) -> None:
        super().__init__(message)
        self.url = url


class FetchNetworkError(FetchError):
    kind = "network"
    retryable = True


class FetchTimeoutError(FetchError):
    kind = "timeout"
    retryable = True


class FetchHttpStatusError(FetchError):
    """
    Non-2xx response from the calendar host.

    5xx and 429 are treated as transient; any other status (notably 4xx)
    means the feed URL is invalid or revoked and is not retried.
    """

    kind = "http_status"

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(url, f"HTTP {status_code} fetching feed")
        self.status_code = status_code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or 500 <= self.status_code < 600


class FetchTooLargeError(FetchError):
    kind = "too_large"

    def __init__(self, url: str, limit: int, size: Optional[int] = None) -> None:
        detail = f"{size} bytes" if size is not None else "stream"
        super().__init__(url, f"Feed response ({detail}) exceeds limit of {limit} bytes")
        self.limit = limit
        self.size = size


class ParseError(FeedSyncError):
    kind = "parse"


class InvalidFormatError(ParseError):
    """The body is not an iCalendar document; the whole feed is rejected."""

    kind = "invalid_format"


class PublishError(FeedSyncError):
    kind = "publish"

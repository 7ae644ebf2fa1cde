import threading
import time
from typing import Optional

import structlog

from sync_ical.config import (
    FETCH_BACKOFF_SECONDS,
    FETCH_MAX_BYTES,
    FETCH_MAX_RETRIES,
    FETCH_TIMEOUT_SECONDS,
)
from sync_ical.domain import FeedConfig
from sync_ical.errors import FetchError
from sync_ical.metrics import feed_polls
from sync_ical.network.client import fetch_feed

logger = structlog.get_logger(__name__)


class PollCancelled(Exception):
    """The sync pass was cancelled while waiting to retry a fetch."""


def backoff_delay(attempt: int, base: float = FETCH_BACKOFF_SECONDS) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... for attempt 1, 2, 3, ..."""
    return base * (2 ** (attempt - 1))


def poll_feed(
    feed: FeedConfig,
    max_retries: int = FETCH_MAX_RETRIES,
    backoff: float = FETCH_BACKOFF_SECONDS,
    timeout: float = FETCH_TIMEOUT_SECONDS,
    max_bytes: int = FETCH_MAX_BYTES,
    cancel_event: Optional[threading.Event] = None,
) -> str:
    """
    Fetch a feed's calendar body, retrying transient failures.

    Network errors, timeouts, 5xx and 429 are retried up to max_retries
    times with exponential backoff. 4xx responses and oversized bodies are
    raised immediately. The backoff sleep waits on cancel_event, so a
    shutdown does not have to sit out the delay.

    Args:
        feed: Feed to fetch
        max_retries: Retries after the first attempt
        backoff: Base delay in seconds
        timeout: Per-request timeout in seconds
        max_bytes: Response size ceiling
        cancel_event: Set when the sync pass is being cancelled

    Returns:
        str: Raw iCalendar text

    Raises:
        FetchError: Last error once retries are exhausted, or a non-retryable one
        PollCancelled: cancel_event was set during a backoff wait
    """
    platform = feed.platform.value
    attempt = 0

    while True:
        attempt += 1
        try:
            raw = fetch_feed(feed.url, timeout=timeout, max_bytes=max_bytes)
        except FetchError as err:
            if not err.retryable or attempt > max_retries:
                feed_polls.labels(platform=platform, status="failure").inc()
                logger.warning(
                    "feed_poll_failed",
                    attempt=attempt,
                    error_kind=err.kind,
                    error=str(err),
                    retryable=err.retryable,
                )
                raise

            delay = backoff_delay(attempt, backoff)
            feed_polls.labels(platform=platform, status="retry").inc()
            logger.warning(
                "feed_poll_retrying",
                attempt=attempt,
                error_kind=err.kind,
                error=str(err),
                delay_seconds=delay,
            )
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise PollCancelled(f"Cancelled while retrying feed {feed.id}") from err
            else:
                time.sleep(delay)
            continue

        feed_polls.labels(platform=platform, status="success").inc()
        logger.info("feed_polled", attempt=attempt, bytes=len(raw))
        return raw

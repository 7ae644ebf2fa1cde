"""
Client module for downloading iCalendar feeds from booking platforms.

A single call makes a single HTTP GET. Retry policy lives with the caller
(sync_ical.pollers.feeds) because transient network failures and permanent
HTTP errors are handled differently there.
"""

import time
from typing import Optional

import requests
import structlog

from sync_ical.config import FETCH_MAX_BYTES, FETCH_TIMEOUT_SECONDS
from sync_ical.errors import (
    FetchHttpStatusError,
    FetchNetworkError,
    FetchTimeoutError,
    FetchTooLargeError,
)
from sync_ical.metrics import fetch_latency, fetch_requests

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 64 * 1024
HEADERS = {
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.5",
    "User-Agent": "cleanbuz-sync/1.0",
}


def _declared_length(res: requests.Response) -> Optional[int]:
    raw = res.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def fetch_feed(
    url: str,
    timeout: float = FETCH_TIMEOUT_SECONDS,
    max_bytes: int = FETCH_MAX_BYTES,
) -> str:
    """
    Fetch a calendar feed body as text.

    The Content-Type is not checked: several platforms serve iCalendar as
    text/plain or application/octet-stream.

    Args:
        url (str): HTTP(S) feed URL.
        timeout (float): Connect/read timeout in seconds.
        max_bytes (int): Size ceiling for the response body.

    Returns:
        str: Decoded response body.

    Raises:
        FetchTimeoutError: The host did not answer within timeout.
        FetchNetworkError: DNS, connection or transport failure.
        FetchHttpStatusError: Non-2xx response.
        FetchTooLargeError: Body larger than max_bytes.
    """
    start_time = time.time()
    try:
        res = requests.get(url, headers=HEADERS, timeout=timeout, stream=True)
    except requests.Timeout as err:
        fetch_requests.labels(status_code="timeout").inc()
        raise FetchTimeoutError(url, f"Timed out after {timeout}s") from err
    except requests.RequestException as err:
        fetch_requests.labels(status_code="network_error").inc()
        raise FetchNetworkError(url, str(err)) from err

    try:
        fetch_requests.labels(status_code=str(res.status_code)).inc()

        if not 200 <= res.status_code < 300:
            logger.warning("feed_fetch_http_error", status_code=res.status_code)
            raise FetchHttpStatusError(url, res.status_code)

        declared = _declared_length(res)
        if declared is not None and declared > max_bytes:
            raise FetchTooLargeError(url, max_bytes, declared)

        chunks: list[bytes] = []
        received = 0
        try:
            for chunk in res.iter_content(chunk_size=CHUNK_SIZE):
                received += len(chunk)
                if received > max_bytes:
                    raise FetchTooLargeError(url, max_bytes)
                chunks.append(chunk)
        except requests.Timeout as err:
            raise FetchTimeoutError(url, f"Timed out reading body after {timeout}s") from err
        except requests.RequestException as err:
            raise FetchNetworkError(url, str(err)) from err
    finally:
        fetch_latency.observe(time.time() - start_time)
        res.close()

    body = b"".join(chunks)
    # requests falls back to ISO-8859-1 for text/* without a charset; feeds are UTF-8
    content_type = res.headers.get("Content-Type") or ""
    encoding = (res.encoding or "utf-8") if "charset=" in content_type.lower() else "utf-8"
    try:
        text = body.decode(encoding, errors="replace")
    except LookupError:
        text = body.decode("utf-8", errors="replace")

    logger.debug("feed_fetched", bytes=received)
    return text

"""
Prometheus metrics for monitoring feed syncs, feed fetches and database operations.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.
Labels are kept to platform/outcome level; per-feed detail lives on the
feeds table and in logs.

Example:
    >>> from sync_ical.metrics import feed_sync_duration, feed_syncs
    >>> with feed_sync_duration.labels(platform="airbnb").time():
    ...     result = sync_feed(feed, engine, publisher)
    >>> feed_syncs.labels(platform="airbnb", outcome=result.outcome.value).inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Sync Metrics
# =============================================================================

feed_syncs = Counter(
    "cleanbuz_feed_syncs_total",
    "Total number of feed sync runs by outcome",
    ["platform", "outcome"],
)
"""
Counter for feed sync runs.

Labels:
    platform: airbnb, vrbo, bookingcom, other
    outcome: success, error, skipped
"""

feed_sync_duration = Histogram(
    "cleanbuz_feed_sync_duration_seconds",
    "Duration of a single feed sync run in seconds",
    ["platform"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, float("inf")),
)

booking_changes = Counter(
    "cleanbuz_booking_changes_total",
    "Booking change events produced by reconciliation",
    ["kind"],
)

partial_feeds_suspected = Counter(
    "cleanbuz_partial_feeds_suspected_total",
    "Feed runs withheld because the event count dropped sharply",
    ["platform"],
)

# =============================================================================
# Fetch Metrics
# =============================================================================

feed_polls = Counter(
    "cleanbuz_feed_polls_total",
    "Total feed poll attempts including retries",
    ["platform", "status"],
)
"""
Counter for poll attempts.

Labels:
    platform: Feed platform tag
    status: success, retry or failure
"""

fetch_requests = Counter(
    "cleanbuz_fetch_requests_total",
    "Calendar feed HTTP requests by status code",
    ["status_code"],
)

fetch_latency = Histogram(
    "cleanbuz_fetch_latency_seconds",
    "Calendar feed HTTP request latency in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, float("inf")),
)

# =============================================================================
# Parse Metrics
# =============================================================================

events_parsed = Counter(
    "cleanbuz_events_parsed_total",
    "VEVENT blocks parsed into bookings",
    ["platform"],
)

events_skipped = Counter(
    "cleanbuz_events_skipped_total",
    "VEVENT blocks skipped as malformed (missing UID, bad dates, duplicates)",
    ["platform"],
)

# =============================================================================
# Publisher Metrics
# =============================================================================

change_event_deliveries = Counter(
    "cleanbuz_change_event_deliveries_total",
    "Change events delivered to consumers",
    ["consumer", "status"],
)

# =============================================================================
# Database Metrics
# =============================================================================

db_operations = Counter(
    "cleanbuz_db_operations_total",
    "Total database operations performed",
    ["operation", "table"],
)
"""
Counter for database operations.

Labels:
    operation: Type of operation (insert, update, upsert, select)
    table: Database table name (feeds, bookings)
"""

# =============================================================================
# System Metrics
# =============================================================================

active_feeds = Gauge(
    "cleanbuz_active_feeds",
    "Number of active feeds selected by the most recent sync pass",
)

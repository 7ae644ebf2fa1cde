"""
Feed-level sync orchestrator.

One run per feed moves through
    pending -> fetching -> parsing -> reconciling -> persisting -> completed
and ends in errored if fetching, parsing, persisting or the partial-feed
guard fails. Change events are published only after the booking set and
feed stats have been committed, so a failed write leaves nothing announced
and the next pass simply recomputes the same diff.

A pass runs active feeds on a bounded thread pool. Each feed runs behind
its own exception boundary; one feed failing never touches another.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sync_ical.config import (
    FAILURE_ALERT_THRESHOLD,
    FETCH_BACKOFF_SECONDS,
    FETCH_MAX_RETRIES,
    PARTIAL_FEED_DROP_THRESHOLD,
    SYNC_MAX_WORKERS,
)
from sync_ical.db.readers.bookings import get_bookings_for_feed
from sync_ical.db.readers.feeds import get_active_feeds, get_feed_config
from sync_ical.db.writers.bookings import upsert_bookings
from sync_ical.db.writers.feeds import record_sync_failure, record_sync_success
from sync_ical.domain import (
    BookingStatus,
    FeedConfig,
    SyncOutcome,
    SyncPassResult,
    SyncResult,
    SyncStage,
)
from sync_ical.errors import FetchError, ParseError, PublishError
from sync_ical.locks import FeedLockRegistry, feed_locks
from sync_ical.metrics import (
    active_feeds,
    booking_changes,
    feed_sync_duration,
    feed_syncs,
    partial_feeds_suspected,
)
from sync_ical.parsers.ical import parse_feed
from sync_ical.pollers.feeds import PollCancelled, poll_feed
from sync_ical.services.publisher import ChangeEventPublisher
from sync_ical.services.publisher import publisher as default_publisher
from sync_ical.services.reconcile import is_suspected_partial_feed, reconcile

logger = structlog.get_logger(__name__)


class _FeedRun:
    """State for a single feed run; one instance per sync_feed() call."""

    def __init__(
        self,
        feed: FeedConfig,
        engine: Engine,
        dry_run: bool,
        cancel_event: Optional[threading.Event],
    ) -> None:
        self.feed = feed
        self.engine = engine
        self.dry_run = dry_run
        self.cancel_event = cancel_event
        self.started = time.monotonic()
        self.stage = SyncStage.PENDING
        self.skipped_events = 0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def enter(self, stage: SyncStage) -> None:
        logger.debug("feed_sync_stage", stage=stage.value, previous=self.stage.value)
        self.stage = stage

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def skip(self, kind: str, message: str) -> SyncResult:
        logger.info("feed_sync_skipped", reason=kind, stage=self.stage.value)
        return SyncResult(
            feed_id=self.feed.id,
            outcome=SyncOutcome.SKIPPED,
            stage=self.stage,
            skipped_events=self.skipped_events,
            error_kind=kind,
            error=message,
            duration_seconds=self.elapsed,
        )

    def fail(self, kind: str, message: str) -> SyncResult:
        result = SyncResult(
            feed_id=self.feed.id,
            outcome=SyncOutcome.ERROR,
            stage=SyncStage.ERRORED,
            skipped_events=self.skipped_events,
            failed_stage=self.stage,
            error_kind=kind,
            error=message,
            duration_seconds=self.elapsed,
        )
        logger.warning(
            "feed_sync_failed",
            failed_stage=self.stage.value,
            error_kind=kind,
            error=message,
        )
        self.stage = SyncStage.ERRORED
        if not self.dry_run:
            record_failure(self.engine, result)
        return result


def record_failure(engine: Engine, result: SyncResult) -> None:
    """
    Persist a failed run on the feed row and flag long failure streaks.

    The feed is never disabled here; a streak past FAILURE_ALERT_THRESHOLD is
    only reported so the owner can be notified.
    """
    try:
        with engine.begin() as conn:
            streak = record_sync_failure(conn, result.feed_id, result)
    except SQLAlchemyError as e:
        logger.exception("feed_status_update_failed", feed_id=result.feed_id, error=str(e))
        return

    if streak >= FAILURE_ALERT_THRESHOLD:
        logger.error(
            "feed_failing_repeatedly",
            feed_id=result.feed_id,
            consecutive_failures=streak,
            error_kind=result.error_kind,
        )


def _run(
    run: _FeedRun,
    publisher: ChangeEventPublisher,
    override_partial: bool,
    drop_threshold: float,
    max_retries: int,
    backoff: float,
) -> SyncResult:
    feed = run.feed

    if run.cancelled():
        return run.skip("cancelled", "Sync pass cancelled before the feed started")

    # Fetching
    run.enter(SyncStage.FETCHING)
    try:
        raw = poll_feed(
            feed, max_retries=max_retries, backoff=backoff, cancel_event=run.cancel_event
        )
    except PollCancelled as err:
        return run.skip("cancelled", str(err))
    except FetchError as err:
        return run.fail(err.kind, str(err))

    if run.cancelled():
        return run.skip("cancelled", "Sync pass cancelled after fetch")

    # Parsing
    run.enter(SyncStage.PARSING)
    try:
        parsed = parse_feed(raw, feed.platform, feed.timezone)
    except ParseError as err:
        return run.fail(err.kind, str(err))
    run.skipped_events = parsed.skipped

    if run.cancelled():
        return run.skip("cancelled", "Sync pass cancelled after parse")

    # Reconciling
    run.enter(SyncStage.RECONCILING)
    try:
        with run.engine.connect() as conn:
            prior = get_bookings_for_feed(conn, feed.id)
    except SQLAlchemyError as err:
        logger.exception("prior_bookings_load_failed", error=str(err))
        return run.fail("storage", f"Could not load stored bookings: {err}")

    reconciliation = reconcile(feed, parsed.events, prior)

    prior_active = sum(1 for b in prior if b.status is not BookingStatus.CANCELLED)
    if reconciliation.absent_cancellations and is_suspected_partial_feed(
        len(parsed.events), prior_active, drop_threshold
    ):
        if override_partial:
            logger.warning(
                "partial_feed_override_applied",
                parsed_events=len(parsed.events),
                prior_active=prior_active,
                cancellations=len(reconciliation.absent_cancellations),
            )
        else:
            partial_feeds_suspected.labels(platform=feed.platform.value).inc()
            logger.warning(
                "partial_feed_suspected",
                parsed_events=len(parsed.events),
                prior_active=prior_active,
                withheld_cancellations=len(reconciliation.absent_cancellations),
            )
            return run.fail(
                "partial_feed_suspected",
                f"Feed returned {len(parsed.events)} events but {prior_active} bookings "
                f"were active; withholding {len(reconciliation.absent_cancellations)} "
                "cancellations until a full feed is fetched or an override is given",
            )

    if run.cancelled():
        return run.skip("cancelled", "Sync pass cancelled before persisting")

    # Persisting: from here on the run is allowed to finish even if cancelled
    run.enter(SyncStage.PERSISTING)
    result = SyncResult(
        feed_id=feed.id,
        outcome=SyncOutcome.SUCCESS,
        stage=SyncStage.COMPLETED,
        created=reconciliation.created,
        updated=reconciliation.updated,
        cancelled=reconciliation.cancelled,
        unchanged=reconciliation.unchanged,
        skipped_events=parsed.skipped,
    )

    if run.dry_run:
        logger.info(
            "[DRY RUN] Would persist %d bookings and publish %d events",
            len(reconciliation.bookings),
            len(reconciliation.events),
        )
    else:
        try:
            with run.engine.begin() as conn:
                upsert_bookings(conn, reconciliation.bookings)
                record_sync_success(conn, feed.id, result)
        except SQLAlchemyError as err:
            logger.exception("bookings_persist_failed", error=str(err))
            return run.fail("storage", f"Could not persist bookings: {err}")

    # Completed
    run.enter(SyncStage.COMPLETED)
    for event in reconciliation.events:
        booking_changes.labels(kind=event.kind.value).inc()

    if not run.dry_run:
        try:
            publisher.publish(reconciliation.events)
        except PublishError as err:
            logger.error(
                "change_events_not_published",
                count=len(reconciliation.events),
                error=str(err),
            )

    result = replace(result, duration_seconds=run.elapsed)
    logger.info(
        "feed_sync_completed",
        created=result.created,
        updated=result.updated,
        cancelled=result.cancelled,
        unchanged=result.unchanged,
        skipped_events=result.skipped_events,
        duration_seconds=round(result.duration_seconds, 3),
    )
    return result


def sync_feed(
    feed: FeedConfig,
    engine: Engine,
    publisher: ChangeEventPublisher = default_publisher,
    dry_run: bool = False,
    override_partial: bool = False,
    cancel_event: Optional[threading.Event] = None,
    drop_threshold: float = PARTIAL_FEED_DROP_THRESHOLD,
    max_retries: int = FETCH_MAX_RETRIES,
    backoff: float = FETCH_BACKOFF_SECONDS,
    locks: FeedLockRegistry = feed_locks,
) -> SyncResult:
    """
    Sync a single feed: fetch, parse, reconcile, persist, publish.

    Only one run per feed may be in flight; a concurrent call returns a
    skipped result with error_kind "already_running".

    Args:
        feed (FeedConfig): Feed to sync.
        engine (Engine): Database engine holding feeds and bookings.
        publisher (ChangeEventPublisher): Receives change events after commit.
        dry_run (bool): If True, compute everything but skip DB writes and publishing.
        override_partial (bool): Apply cancellations-by-absence even if the feed shrank sharply.
        cancel_event (Optional[threading.Event]): Set to cancel the pass cooperatively.
        drop_threshold (float): Fractional drop that marks a feed as suspected partial.
        max_retries (int): Fetch retries for transient errors.
        backoff (float): Base backoff delay in seconds.
        locks (FeedLockRegistry): Per-feed lock registry.

    Returns:
        SyncResult: Outcome of the run.
    """
    platform = feed.platform.value

    with locks.hold(feed.id) as acquired:
        if not acquired:
            logger.warning("feed_sync_already_running", feed_id=feed.id)
            feed_syncs.labels(platform=platform, outcome=SyncOutcome.SKIPPED.value).inc()
            return SyncResult(
                feed_id=feed.id,
                outcome=SyncOutcome.SKIPPED,
                stage=SyncStage.PENDING,
                error_kind="already_running",
                error="Another sync for this feed is in progress",
            )

        with structlog.contextvars.bound_contextvars(feed_id=feed.id, platform=platform):
            logger.info("feed_sync_started", dry_run=dry_run)
            run = _FeedRun(feed, engine, dry_run, cancel_event)
            with feed_sync_duration.labels(platform=platform).time():
                result = _run(
                    run, publisher, override_partial, drop_threshold, max_retries, backoff
                )

    feed_syncs.labels(platform=platform, outcome=result.outcome.value).inc()
    return result


def sync_feed_by_id(
    feed_id: str,
    engine: Engine,
    publisher: ChangeEventPublisher = default_publisher,
    dry_run: bool = False,
    override_partial: bool = False,
) -> Optional[SyncResult]:
    """
    Load a feed by ID and sync it. Used by the manual trigger endpoint.

    Inactive feeds are synced too: an explicit trigger is an operator decision.
    Runs behind the same exception boundary as a pass, so a crash still
    lands on the feed row.

    Returns:
        Optional[SyncResult]: None if the feed does not exist.
    """
    with engine.connect() as conn:
        feed = get_feed_config(conn, feed_id)

    if feed is None:
        logger.warning("feed_not_found", feed_id=feed_id)
        return None

    return _sync_isolated(
        feed, engine, publisher=publisher, dry_run=dry_run, override_partial=override_partial
    )


def _sync_isolated(feed: FeedConfig, engine: Engine, **kwargs: object) -> SyncResult:
    """
    Per-feed exception boundary for passes and manual triggers.

    Fetch, parse and storage failures are already turned into results by
    sync_feed(). Anything reaching this handler is a bug, so it is logged
    with a traceback and recorded on the feed, never silently dropped.
    """
    try:
        return sync_feed(feed, engine, **kwargs)  # type: ignore[arg-type]
    except Exception as e:
        logger.exception("feed_sync_crashed", feed_id=feed.id, error=str(e))
        feed_syncs.labels(platform=feed.platform.value, outcome=SyncOutcome.ERROR.value).inc()
        result = SyncResult(
            feed_id=feed.id,
            outcome=SyncOutcome.ERROR,
            stage=SyncStage.ERRORED,
            error_kind="internal",
            error=f"{type(e).__name__}: {e}",
        )
        if not kwargs.get("dry_run"):
            record_failure(engine, result)
        return result


def sync_all_feeds(
    engine: Engine,
    publisher: ChangeEventPublisher = default_publisher,
    dry_run: bool = False,
    max_workers: int = SYNC_MAX_WORKERS,
    cancel_event: Optional[threading.Event] = None,
) -> SyncPassResult:
    """
    Run sync_feed() for all active feeds with bounded concurrency.

    Feeds that have not started when cancel_event is set are returned as
    skipped; feeds already persisting finish their write.

    Args:
        engine (Engine): Database engine.
        publisher (ChangeEventPublisher): Change event fan-out.
        dry_run (bool): If True, do not write to DB or publish.
        max_workers (int): Maximum feeds synced concurrently.
        cancel_event (Optional[threading.Event]): Cooperative cancellation flag.

    Returns:
        SyncPassResult: One result per active feed, in feed ID order.
    """
    logger.info("sync_all_feeds_started", dry_run=dry_run)

    with engine.connect() as conn:
        feeds = get_active_feeds(conn)

    active_feeds.set(len(feeds))
    logger.info("active_feeds_found", count=len(feeds))

    if not feeds:
        return SyncPassResult(results=[])

    with ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(feeds))), thread_name_prefix="feed-sync"
    ) as pool:
        futures = [
            pool.submit(
                _sync_isolated,
                feed,
                engine,
                publisher=publisher,
                dry_run=dry_run,
                cancel_event=cancel_event,
            )
            for feed in feeds
        ]
        results = [future.result() for future in futures]

    pass_result = SyncPassResult(results=results)
    logger.info(
        "sync_all_feeds_completed",
        total_feeds=len(feeds),
        succeeded=pass_result.succeeded,
        failed=pass_result.failed,
        skipped=pass_result.skipped,
    )
    return pass_result

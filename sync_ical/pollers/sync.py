"""
Scheduled entry point: run one sync pass over all active feeds and exit.

Intended to be invoked by cron or a Kubernetes CronJob every few minutes.
SIGINT and SIGTERM stop feeds that have not started yet; feeds already
persisting are allowed to finish their write.
"""

import signal
import sys
import threading
from types import FrameType
from typing import Optional

import structlog

from sync_ical.config import DRY_RUN
from sync_ical.db.engine import engine
from sync_ical.logging_config import setup_logging
from sync_ical.services.publisher import log_change_event, publisher
from sync_ical.services.sync import sync_all_feeds

setup_logging()
logger = structlog.get_logger(__name__)

PUBLISH_FLUSH_TIMEOUT_SECONDS = 60


def install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handle(signum: int, frame: Optional[FrameType]) -> None:
        logger.warning("sync_pass_cancel_requested", signal=signal.Signals(signum).name)
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def main() -> int:
    cancel_event = threading.Event()
    install_signal_handlers(cancel_event)
    publisher.subscribe("log", log_change_event)

    try:
        result = sync_all_feeds(engine, publisher, dry_run=DRY_RUN, cancel_event=cancel_event)
    finally:
        if not publisher.flush(timeout=PUBLISH_FLUSH_TIMEOUT_SECONDS):
            logger.warning("change_events_not_flushed", timeout=PUBLISH_FLUSH_TIMEOUT_SECONDS)
        publisher.close()

    logger.info(
        "sync_pass_finished",
        succeeded=result.succeeded,
        failed=result.failed,
        skipped=result.skipped,
        cancelled=cancel_event.is_set(),
    )
    return 1 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())

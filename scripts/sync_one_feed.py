import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse

import structlog

from sync_ical.db.engine import engine
from sync_ical.logging_config import setup_logging
from sync_ical.services.publisher import log_change_event, publisher
from sync_ical.services.sync import sync_feed_by_id

setup_logging()
logger = structlog.get_logger(__name__)


def main() -> None:
    """
    Sync a single feed by ID and print the result.
    """
    parser = argparse.ArgumentParser(description="Sync one iCal feed")
    parser.add_argument("feed_id", help="Feed ID to sync")
    parser.add_argument("--dry-run", action="store_true", help="Do not write or publish")
    parser.add_argument(
        "--override-partial",
        action="store_true",
        help="Apply the run even if the feed looks truncated",
    )
    args = parser.parse_args()

    publisher.subscribe("log", log_change_event)
    try:
        result = sync_feed_by_id(
            args.feed_id,
            engine,
            publisher,
            dry_run=args.dry_run,
            override_partial=args.override_partial,
        )
    finally:
        publisher.flush(timeout=30)
        publisher.close()

    if result is None:
        logger.error("feed_not_found", feed_id=args.feed_id)
        sys.exit(2)

    logger.info(
        "sync_one_feed_finished",
        feed_id=result.feed_id,
        outcome=result.outcome.value,
        created=result.created,
        updated=result.updated,
        cancelled=result.cancelled,
        error_kind=result.error_kind,
        error=result.error,
    )
    sys.exit(0 if result.ok else 1)


if __name__ == "__main__":
    main()

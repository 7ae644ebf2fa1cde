"""
Structured logging setup shared by the API and the sync poller.

Log lines are JSON when LOG_LEVEL is INFO (what the log pipeline ingests) and
colored key/value console output otherwise. Feed runs bind feed_id and
platform into structlog contextvars, and the API binds request_id, so those
keys appear on every line without being passed around.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, MutableMapping

import structlog

from sync_ical.config import LOG_LEVEL

Processor = Callable[[Any, str, MutableMapping[str, Any]], Any]

# Libraries that log every request or statement at INFO
QUIET_LOGGERS = ("urllib3", "requests", "uvicorn.access", "sqlalchemy.engine")


def _json_output() -> bool:
    return LOG_LEVEL == "INFO"


def _processors() -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if _json_output():
        # Tracebacks from logger.exception() become a string field
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    return processors


def setup_logging() -> None:
    """Configure stdlib logging and structlog for the whole process."""
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=LOG_LEVEL,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_processors(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

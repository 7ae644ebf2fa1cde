import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sync_ical.config import ALLOWED_ORIGINS
from sync_ical.logging_config import setup_logging
from sync_ical.middleware import RequestIDMiddleware
from sync_ical.routes.feeds import router as feeds_router
from sync_ical.routes.health import router as health_router
from sync_ical.routes.metrics import router as metrics_router
from sync_ical.services.publisher import log_change_event, publisher

setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Cleanbuz Calendar Sync API",
    description="Register booking platform iCal feeds and inspect their sync state",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if "*" not in ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)

app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(feeds_router, tags=["Feeds"])


@app.on_event("startup")
def startup_event() -> None:
    """Register the built-in change event consumers."""
    logger.info("FastAPI application starting up...")
    publisher.subscribe("log", log_change_event)
    logger.info("FastAPI application initialized", consumers=publisher.consumers)


@app.on_event("shutdown")
def shutdown_event() -> None:
    publisher.close(wait_for_pending=True)

from typing import Any, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.engine import Engine

from sync_ical.config import DRY_RUN
from sync_ical.db.readers.bookings import get_bookings_for_feed
from sync_ical.db.readers.feeds import get_feed_status
from sync_ical.db.writers.feeds import insert_feed, soft_delete_feed, update_feed
from sync_ical.dependencies import get_db_engine
from sync_ical.routes._feed_helpers import (
    should_trigger_sync_on_update,
    validate_feed_exists_or_404,
    validate_timezone_or_400,
)
from sync_ical.schemas.feeds import (
    BookingResponse,
    FeedCreatePayload,
    FeedStatusResponse,
    FeedUpdatePayload,
)
from sync_ical.services.sync import sync_feed_by_id

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post("/feeds", status_code=status.HTTP_201_CREATED)
def create_feed(
    payload: FeedCreatePayload,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, str]:
    """
    Register a property's calendar feed and schedule its first sync.

    Args:
        payload: Property, URL, platform and timezone of the feed
        background_tasks: FastAPI background task runner
        engine: Database engine (injected)

    Returns:
        dict: The new feed ID and a confirmation message
    """
    try:
        validate_timezone_or_400(payload.timezone)

        with engine.begin() as conn:
            feed_id = insert_feed(
                conn,
                property_id=payload.property_id,
                url=str(payload.url),
                platform=payload.platform,
                timezone=payload.timezone,
                is_active=payload.is_active,
            )

        if payload.is_active:
            background_tasks.add_task(sync_feed_by_id, feed_id, engine, dry_run=DRY_RUN)

        return {"id": feed_id, "message": "Feed registered. Initial sync scheduled."}

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("feed_creation_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/feeds/{feed_id}", response_model=FeedStatusResponse)
def get_feed(feed_id: str, engine: Engine = Depends(get_db_engine)) -> dict[str, Any]:
    """
    Return a feed with its last sync outcome and cumulative statistics.
    """
    with engine.connect() as conn:
        feed = get_feed_status(conn, feed_id)

    if feed is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Feed {feed_id} not found",
        )
    return feed


@router.get("/feeds/{feed_id}/bookings", response_model=list[BookingResponse])
def list_feed_bookings(
    feed_id: str, engine: Engine = Depends(get_db_engine)
) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        validate_feed_exists_or_404(conn, feed_id)
        bookings = get_bookings_for_feed(conn, feed_id)
    return [b.to_dict() for b in bookings]


@router.post("/feeds/{feed_id}/sync", status_code=status.HTTP_202_ACCEPTED)
def trigger_sync(
    feed_id: str,
    background_tasks: BackgroundTasks,
    dry_run: Optional[bool] = Query(None, description="Override DRY_RUN setting"),
    override_partial: bool = Query(
        False, description="Apply the run even if the feed looks truncated"
    ),
    engine: Engine = Depends(get_db_engine),
) -> dict[str, str]:
    """
    Manually trigger a sync of one feed.

    override_partial is the operator's way to accept a large legitimate drop
    in bookings after a run was withheld as a suspected partial feed.

    Args:
        feed_id: Feed to sync
        background_tasks: FastAPI background task runner
        dry_run: Override DRY_RUN setting (optional)
        override_partial: Skip the partial-feed guard for this run
        engine: Database engine (injected)

    Returns:
        dict: Message confirming sync has been scheduled
    """
    try:
        with engine.connect() as conn:
            validate_feed_exists_or_404(conn, feed_id)

        use_dry_run = DRY_RUN if dry_run is None else dry_run

        background_tasks.add_task(
            sync_feed_by_id,
            feed_id,
            engine,
            dry_run=use_dry_run,
            override_partial=override_partial,
        )

        logger.info(
            "sync_triggered",
            feed_id=feed_id,
            dry_run=use_dry_run,
            override_partial=override_partial,
        )

        return {"message": f"Sync scheduled for feed {feed_id} (dry_run={use_dry_run})"}

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("sync_trigger_failed", feed_id=feed_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.patch("/feeds/{feed_id}", status_code=status.HTTP_200_OK)
def update_feed_endpoint(
    feed_id: str,
    payload: FeedUpdatePayload,
    background_tasks: BackgroundTasks,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, str]:
    """
    Update an existing feed. Triggers a sync if the URL of an active feed changed.

    Args:
        feed_id: Feed to update
        payload: Fields to update
        background_tasks: FastAPI background task runner
        engine: Database engine (injected)

    Returns:
        dict: Message confirming update
    """
    try:
        validate_timezone_or_400(payload.timezone)

        with engine.begin() as conn:
            feed_info = get_feed_status(conn, feed_id)
            if not feed_info:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail=f"Feed {feed_id} not found",
                )

            update_data = {
                k: str(v) if k == "url" else v
                for k, v in payload.model_dump().items()
                if v is not None
            }

            if not update_data:
                return {"message": "No fields to update"}

            update_feed(conn, feed_id, update_data)

        if should_trigger_sync_on_update(feed_info, update_data):
            background_tasks.add_task(sync_feed_by_id, feed_id, engine, dry_run=DRY_RUN)
            logger.info("feed_updated_sync_triggered", feed_id=feed_id, reason="url_changed")
            return {"message": f"Feed {feed_id} updated. Sync triggered (URL changed)."}

        logger.info("feed_updated", feed_id=feed_id)
        return {"message": f"Feed {feed_id} updated successfully"}

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("feed_update_failed", feed_id=feed_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/feeds/{feed_id}", status_code=status.HTTP_200_OK)
def delete_feed_endpoint(feed_id: str, engine: Engine = Depends(get_db_engine)) -> dict[str, str]:
    """
    Deactivate a feed. Its bookings are kept for history and never re-synced.
    """
    try:
        with engine.begin() as conn:
            validate_feed_exists_or_404(conn, feed_id)
            soft_delete_feed(conn, feed_id)

        logger.info("feed_soft_deleted", feed_id=feed_id)
        return {"message": f"Feed {feed_id} deactivated"}

    except HTTPException:
        raise
    except Exception as e:
        logger.exception("feed_deletion_failed", feed_id=feed_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")

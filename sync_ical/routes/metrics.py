"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP cleanbuz_feed_syncs_total Feed sync runs by outcome
        # TYPE cleanbuz_feed_syncs_total counter
        cleanbuz_feed_syncs_total{outcome="success",platform="airbnb"} 42.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """Return all registered metrics in the Prometheus text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

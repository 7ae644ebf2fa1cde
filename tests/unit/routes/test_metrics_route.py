"""
Unit tests for the metrics endpoint.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from sync_ical.main import app
from sync_ical.metrics import booking_changes, feed_syncs


@pytest.fixture
def client() -> TestClient:
    """FastAPI test client."""
    return TestClient(app)


@pytest.mark.unit
def test_metrics_endpoint_returns_prometheus_format(client: TestClient) -> None:
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "text/plain" in response.headers["content-type"]


@pytest.mark.unit
def test_metrics_endpoint_contains_sync_metrics(client: TestClient) -> None:
    feed_syncs.labels(platform="airbnb", outcome="success").inc()
    booking_changes.labels(kind="created").inc(2)

    body = client.get("/metrics").text

    assert 'cleanbuz_feed_syncs_total{platform="airbnb",outcome="success"}' in body
    assert "cleanbuz_booking_changes_total" in body

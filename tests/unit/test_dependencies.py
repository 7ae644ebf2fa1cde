"""
Unit tests for FastAPI dependency injection.
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import text
from sqlalchemy.engine import Engine

from sync_ical.db.engine import engine as default_engine
from sync_ical.dependencies import get_db_engine


@pytest.mark.unit
def test_get_db_engine_yields_module_engine() -> None:
    engine = next(get_db_engine())

    assert isinstance(engine, Engine)
    assert engine is default_engine


@pytest.mark.unit
def test_get_db_engine_can_be_overridden(db_engine: Engine) -> None:
    """Routes use whatever engine the override provides."""
    app = FastAPI()

    @app.get("/test-db")
    def test_db_endpoint(engine: Engine = Depends(get_db_engine)) -> dict[str, int]:
        with engine.connect() as conn:
            return {"result": conn.execute(text("SELECT 1")).scalar_one()}

    app.dependency_overrides[get_db_engine] = lambda: db_engine
    response = TestClient(app).get("/test-db")

    assert response.status_code == 200
    assert response.json() == {"result": 1}

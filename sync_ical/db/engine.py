"""
SQLAlchemy engine singleton with production-ready connection pooling.

Postgres is the production store. SQLite is supported for local runs and
tests; it has no schemas, so the engine maps SCHEMA to the default one.
"""

from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url

from sync_ical.config import DATABASE_URL, SCHEMA


def create_db_engine(url: str, **kwargs: Any) -> Engine:
    """
    Build an engine for the given URL with pooling suited to its backend.

    Args:
        url: SQLAlchemy database URL
        **kwargs: Extra create_engine arguments (override the defaults)

    Returns:
        Engine: Configured engine; SQLite engines carry a schema_translate_map
    """
    is_sqlite = make_url(url).get_backend_name() == "sqlite"

    options: dict[str, Any] = {"future": True, "echo": False}
    if not is_sqlite:
        options.update(
            pool_size=10,  # Number of connections to maintain in the pool
            max_overflow=20,  # Additional connections when pool is exhausted
            pool_pre_ping=True,  # Verify connections before using
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    options.update(kwargs)

    new_engine = create_engine(url, **options)
    if is_sqlite:
        new_engine = new_engine.execution_options(schema_translate_map={SCHEMA: None})
    return new_engine


if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set.")

engine: Engine = create_db_engine(DATABASE_URL)


def check_engine_health(db_engine: Engine | None = None) -> bool:
    """
    Check if database engine is healthy and connections are working.

    Used by the /ready endpoint before allowing traffic to the service.

    Args:
        db_engine: Engine to probe (defaults to the module singleton)

    Returns:
        bool: True if database is reachable and healthy, False otherwise
    """
    try:
        with (db_engine or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False

"""Alembic environment for the cleanbuz schema (feeds and bookings)."""

from logging.config import fileConfig
from typing import Any

from sqlalchemy import engine_from_config, pool
from sqlalchemy.schema import CreateSchema

from alembic import context  # type: ignore[attr-defined]
from sync_ical.config import DATABASE_URL, SCHEMA
from sync_ical.models.base import Base
from sync_ical.models.bookings import Booking  # noqa: F401
from sync_ical.models.feeds import Feed  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", DATABASE_URL)


def include_object(object_: Any, name: str, type_: str, reflected: bool, compare_to: Any) -> bool:
    """Autogenerate only looks at objects in our own schema."""
    schema = getattr(object_, "schema", SCHEMA)
    return schema == SCHEMA


def _context_options() -> dict[str, Any]:
    return {
        "target_metadata": Base.metadata,
        "include_schemas": True,
        "include_object": include_object,
        "version_table_schema": SCHEMA,
    }


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_context_options(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against DATABASE_URL."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        # The version table lives in SCHEMA, so it must exist first
        connection.execute(CreateSchema(SCHEMA, if_not_exists=True))
        connection.commit()

        context.configure(connection=connection, **_context_options())
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()

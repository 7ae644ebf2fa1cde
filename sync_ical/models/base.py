from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Declarative base for the feed and booking tables.

    Both tables live in the configured SCHEMA on Postgres; on SQLite the
    engine translates that schema away (see sync_ical.db.engine).
    """

    pass

"""
Generic upsert helper with IS DISTINCT FROM optimization.

Works on Postgres and SQLite, which both support INSERT ... ON CONFLICT DO
UPDATE ... WHERE. Rows are only rewritten when one of the tracked columns
actually changed. A stamp column (updated_at) can be tied to a narrower set
of columns so it stays put when only bookkeeping columns move.
"""

from typing import Any, Callable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Connection
from sqlalchemy.sql import case, or_


def dialect_insert(conn: Connection) -> Callable[..., Any]:
    """
    Return the dialect-specific insert() that supports on_conflict_do_update.

    Args:
        conn: Active database connection

    Returns:
        The postgresql or sqlite insert construct
    """
    if conn.dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


def upsert_with_distinct_check(
    conn: Connection,
    table: type,
    rows: list[dict[str, Any]],
    conflict_columns: list[str],
    distinct_columns: list[str],
    update_columns: list[str] | None = None,
    stamp_column: str | None = None,
    stamp_on: list[str] | None = None,
) -> None:
    """
    Perform upsert with IS DISTINCT FROM optimization.

    Args:
        conn: Active database connection (within transaction)
        table: SQLAlchemy ORM table class (e.g., Booking)
        rows: List of row dicts to upsert
        conflict_columns: Columns of the unique constraint used for ON CONFLICT
        distinct_columns: Columns compared to decide whether an update is needed
        update_columns: Columns to update on conflict (default: distinct_columns + updated_at)
        stamp_column: Column set from the new row only when a stamp_on column changed
        stamp_on: Columns that move stamp_column (default: distinct_columns)

    Example:
        >>> with engine.begin() as conn:
        ...     upsert_with_distinct_check(
        ...         conn=conn,
        ...         table=Booking,
        ...         rows=[{"id": "...", "feed_id": "f1", "external_id": "abc", ...}],
        ...         conflict_columns=["feed_id", "external_id"],
        ...         distinct_columns=["check_in", "check_out", "guest_name", "status"],
        ...     )
    """
    if not rows:
        return

    if update_columns is None:
        update_columns = [*distinct_columns, "updated_at"]

    stmt = dialect_insert(conn)(table).values(rows)

    set_dict = {col: getattr(stmt.excluded, col) for col in update_columns}

    def changed(columns: list[str]) -> Any:
        return or_(
            *(
                getattr(table, col).is_distinct_from(getattr(stmt.excluded, col))
                for col in columns
            )
        )

    distinct_check = changed(distinct_columns)

    if stamp_column is not None:
        set_dict[stamp_column] = case(
            (changed(stamp_on or distinct_columns), getattr(stmt.excluded, stamp_column)),
            else_=getattr(table, stamp_column),
        )

    stmt = stmt.on_conflict_do_update(
        index_elements=conflict_columns,
        set_=set_dict,
        where=distinct_check,
    )

    conn.execute(stmt)

"""Create feeds and bookings tables

Revision ID: 3f9c1a7d2b40
Revises:
Create Date: 2026-10-18 09:12:31.482110

"""

import sqlalchemy as sa

from alembic import op  # type: ignore[attr-defined]

# revision identifiers, used by Alembic.
revision = "3f9c1a7d2b40"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "cleanbuz"


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer(), nullable=False, server_default=sa.text("0"))


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "feeds",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("platform", sa.String(16), nullable=False, server_default=sa.text("'other'")),
        sa.Column("timezone", sa.String(64), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(16), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        sa.Column("last_sync_error_kind", sa.String(32), nullable=True),
        _counter("last_sync_skipped_events"),
        _counter("consecutive_failures"),
        _counter("total_syncs"),
        _counter("successful_syncs"),
        _counter("failed_syncs"),
        _counter("bookings_created"),
        _counter("bookings_updated"),
        _counter("bookings_cancelled"),
        *_timestamps(),
        schema=SCHEMA,
    )
    op.create_index("ix_feeds_property_id", "feeds", ["property_id"], schema=SCHEMA)

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("property_id", sa.String(64), nullable=False),
        sa.Column(
            "feed_id",
            sa.String(36),
            sa.ForeignKey(f"{SCHEMA}.feeds.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("guest_name", sa.String(255), nullable=False),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'confirmed'")),
        sa.Column(
            "low_confidence", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")
        ),
        sa.Column("raw_payload", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("feed_id", "external_id", name="uq_bookings_feed_external"),
        schema=SCHEMA,
    )
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"], schema=SCHEMA)
    op.create_index("ix_bookings_feed_id", "bookings", ["feed_id"], schema=SCHEMA)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_bookings_feed_id", table_name="bookings", schema=SCHEMA)
    op.drop_index("ix_bookings_property_id", table_name="bookings", schema=SCHEMA)
    op.drop_table("bookings", schema=SCHEMA)
    op.drop_index("ix_feeds_property_id", table_name="feeds", schema=SCHEMA)
    op.drop_table("feeds", schema=SCHEMA)

"""Create roomsync tables

Revision ID: 3b1f0c2a9d71
Revises:
Create Date: 2026-10-12 10:14:03.118402

"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op  # type: ignore[attr-defined]

# revision identifiers, used by Alembic.
revision = "3b1f0c2a9d71"
down_revision = None
branch_labels = None
depends_on = None

SCHEMA = "roomsync"


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        )
    ]
    if with_updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
            )
        )
    return columns


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(f"CREATE SCHEMA IF NOT EXISTS {SCHEMA}")

    op.create_table(
        "properties",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("owner_id", sa.Uuid(), nullable=True, index=True),
        sa.Column("name", sa.String(), nullable=False, server_default=""),
        sa.Column("base_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("minimum_booking_days", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="RUB"),
        *_timestamps(with_updated=False),
        schema=SCHEMA,
    )

    op.create_table(
        "integrations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("platform", sa.String(), nullable=False),
        sa.Column("remote_account_id", sa.String(), nullable=True),
        sa.Column("remote_item_id", sa.String(), nullable=True, index=True),
        sa.Column("access_token_encrypted", sa.String(), nullable=True),
        sa.Column("refresh_token_encrypted", sa.String(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scope", sa.String(), nullable=True),
        sa.Column("markup_type", sa.String(), nullable=True),
        sa.Column("markup_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "sync_interval_seconds", sa.Integer(), nullable=False, server_default=sa.text("10")
        ),
        *_timestamps(),
        sa.UniqueConstraint("property_id", "platform", name="uq_integrations_property_platform"),
        schema=SCHEMA,
    )

    op.create_table(
        "sync_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "integration_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.integrations.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("status", sa.String(), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        schema=SCHEMA,
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("remote_booking_id", sa.String(), nullable=True, unique=True),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=False),
        sa.Column("guest_name", sa.String(), nullable=True),
        sa.Column("guest_phone", sa.String(), nullable=True),
        sa.Column("guest_email", sa.String(), nullable=True),
        sa.Column("guests_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="RUB"),
        sa.Column("status", sa.String(), nullable=False, server_default="confirmed"),
        sa.Column("source", sa.String(), nullable=False, server_default="manual"),
        *_timestamps(),
        schema=SCHEMA,
    )

    op.create_table(
        "property_rates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "property_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.properties.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("daily_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_stay", sa.Integer(), nullable=True),
        sa.UniqueConstraint("property_id", "date", name="uq_property_rates_property_date"),
        schema=SCHEMA,
    )

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("integration_id", sa.Uuid(), nullable=True, index=True),
        sa.Column("property_id", sa.Uuid(), nullable=True, index=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        *_timestamps(with_updated=False),
        schema=SCHEMA,
    )

    op.create_table(
        "chats",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "integration_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.integrations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("remote_chat_id", sa.String(), nullable=False, unique=True),
        sa.Column("remote_user_id", sa.String(), nullable=True),
        sa.Column("remote_item_id", sa.String(), nullable=True),
        sa.Column("contact_name", sa.String(), nullable=True),
        sa.Column("contact_remote_user_id", sa.String(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        schema=SCHEMA,
    )

    op.create_table(
        "messages",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "chat_id",
            sa.Uuid(),
            sa.ForeignKey(f"{SCHEMA}.chats.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("remote_message_id", sa.String(), nullable=False, unique=True),
        sa.Column("sender_type", sa.String(), nullable=False),
        sa.Column("sender_name", sa.String(), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("payload", postgresql.JSONB(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
        schema=SCHEMA,
    )


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        "messages",
        "chats",
        "sync_logs",
        "property_rates",
        "bookings",
        "sync_queue",
        "integrations",
        "properties",
    ):
        op.drop_table(table, schema=SCHEMA)

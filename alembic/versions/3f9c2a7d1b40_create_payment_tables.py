"""create payment_records, webhook_events, payment_notifications

Revision ID: 3f9c2a7d1b40
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9c2a7d1b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "payment_records",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("order_id", sa.String(length=255), nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=255), nullable=True),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("provider_reference", sa.String(length=255), nullable=False),
        sa.Column("checkout_url", sa.Text(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("amount_minor_units", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("status_source", sa.String(length=32), nullable=False, server_default="checkout"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "raw_provider_metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("provider", "provider_reference", name="uq_payment_records_provider_reference"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'failed', 'expired')", name="ck_payment_records_status"
        ),
        sa.CheckConstraint("amount_minor_units > 0", name="ck_payment_records_amount_positive"),
        sa.CheckConstraint("(status = 'paid') = (paid_at IS NOT NULL)", name="ck_payment_records_paid_at"),
    )
    op.create_index("ix_payment_records_order_id", "payment_records", ["order_id"])
    op.create_index("ix_payment_records_customer_id", "payment_records", ["customer_id"])
    op.create_index("ix_payment_records_status_created_at", "payment_records", ["status", "created_at"])
    # One open checkout per order and provider
    op.create_index(
        "uq_payment_records_pending_order",
        "payment_records",
        ["order_id", "provider"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "webhook_events",
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("provider_event_id", sa.String(length=255), nullable=False),
        sa.Column("payload_hash", sa.String(length=64), nullable=False),
        sa.Column("provider_reference", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("provider", "provider_event_id"),
    )
    op.create_index("ix_webhook_events_provider_reference", "webhook_events", ["provider_reference"])

    op.create_table(
        "payment_notifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.String(length=64), nullable=False),
        sa.Column("notification_type", sa.String(length=50), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payment_notifications_payment_id", "payment_notifications", ["payment_id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_payment_notifications_payment_id", table_name="payment_notifications")
    op.drop_table("payment_notifications")
    op.drop_index("ix_webhook_events_provider_reference", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("uq_payment_records_pending_order", table_name="payment_records")
    op.drop_index("ix_payment_records_status_created_at", table_name="payment_records")
    op.drop_index("ix_payment_records_customer_id", table_name="payment_records")
    op.drop_index("ix_payment_records_order_id", table_name="payment_records")
    op.drop_table("payment_records")

"""PaymentRecord model — one row per checkout attempt, never deleted."""

from datetime import UTC, datetime

from sqlalchemy import JSON, CheckConstraint, Column, DateTime, Index, Integer, String, Text, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB

from payflow.db.base import Base


class PaymentRecord(Base):
    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("provider", "provider_reference", name="uq_payment_records_provider_reference"),
        # At most one open checkout per order and provider
        Index(
            "uq_payment_records_pending_order",
            "order_id",
            "provider",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("ix_payment_records_status_created_at", "status", "created_at"),
        CheckConstraint("status IN ('pending', 'paid', 'failed', 'expired')", name="ck_payment_records_status"),
        CheckConstraint("amount_minor_units > 0", name="ck_payment_records_amount_positive"),
        CheckConstraint("(status = 'paid') = (paid_at IS NOT NULL)", name="ck_payment_records_paid_at"),
    )

    id = Column(String(64), primary_key=True)  # pay_<hex>
    order_id = Column(String(255), nullable=False, index=True)
    customer_id = Column(String(255), nullable=False, index=True)
    customer_email = Column(String(255), nullable=True)

    provider = Column(String(32), nullable=False)  # stripe, peach, mock
    provider_reference = Column(String(255), nullable=False)
    checkout_url = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    amount_minor_units = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)

    status = Column(String(20), nullable=False, default="pending")  # PaymentStatus values
    status_source = Column(String(32), nullable=False, default="checkout")
    paid_at = Column(DateTime(timezone=True), nullable=True)

    raw_provider_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

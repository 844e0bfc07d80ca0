"""WebhookEvent model for idempotency tracking."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String

from payflow.db.base import Base


class WebhookEvent(Base):
    """Tracks claimed provider event IDs so redeliveries are not reapplied."""

    __tablename__ = "webhook_events"

    provider = Column(String(32), primary_key=True)
    provider_event_id = Column(String(255), primary_key=True)
    payload_hash = Column(String(64), nullable=False)  # sha256 hex of the raw body
    provider_reference = Column(String(255), nullable=True, index=True)
    status = Column(String(20), nullable=True)
    received_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

"""PaymentNotification model — outcome log for outbound notifications."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, Integer, String, Text

from payflow.db.base import Base


class PaymentNotification(Base):
    __tablename__ = "payment_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(64), nullable=False, index=True)
    notification_type = Column(String(50), nullable=False)  # payment_request, payment_reminder, order_paid
    recipient = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False)  # sent, failed
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

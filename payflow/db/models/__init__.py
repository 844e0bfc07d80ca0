"""Re-export all models so Base.metadata sees them."""

from payflow.db.models.payment_notification import PaymentNotification
from payflow.db.models.payment_record import PaymentRecord
from payflow.db.models.webhook_event import WebhookEvent

__all__ = [
    "PaymentNotification",
    "PaymentRecord",
    "WebhookEvent",
]

"""Service wiring: builds the payment services from settings and the shared session factory."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payflow.core.config import Settings, get_settings
from payflow.db.base import get_session_factory
from payflow.services.notifications import NotificationDispatcher, NotificationPort, NullNotifier, OmsNotifier
from payflow.services.payment_service import PaymentService
from payflow.services.payment_store import PaymentStore
from payflow.services.reconciler import Reconciler, ReconcilerScheduler, ReconcileReport
from payflow.services.webhook_ingestor import WebhookIngestor, WebhookOutcome


def build_notification_port(settings: Settings | None = None) -> NotificationPort:
    settings = settings or get_settings()
    if not settings.notifications_enabled:
        return NullNotifier()
    return OmsNotifier(settings.oms_url, settings.service_api_key)


def build_payment_service(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    notification_port: NotificationPort | None = None,
    settings: Settings | None = None,
) -> PaymentService:
    settings = settings or get_settings()
    store = PaymentStore(session_factory or get_session_factory())
    dispatcher = NotificationDispatcher(notification_port or build_notification_port(settings), store)
    return PaymentService(store, dispatcher, settings=settings)


__all__ = [
    "NotificationDispatcher",
    "PaymentService",
    "PaymentStore",
    "ReconcileReport",
    "Reconciler",
    "ReconcilerScheduler",
    "WebhookIngestor",
    "WebhookOutcome",
    "build_notification_port",
    "build_payment_service",
]

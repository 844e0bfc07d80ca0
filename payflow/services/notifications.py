"""Outbound notifications to the order-management system.

The payment engine never awaits a notification on the request path. Sends are
scheduled as background tasks by ``NotificationDispatcher``; each outcome is
written to the ``payment_notifications`` log and failures are only logged.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Protocol

import httpx
import structlog

from payflow.db.models.payment_record import PaymentRecord
from payflow.services.payment_store import PaymentStore

logger = structlog.get_logger(__name__)

PAYMENT_REQUEST = "payment_request"
PAYMENT_REMINDER = "payment_reminder"
ORDER_PAID = "order_paid"

# Module-level so in-flight sends outlive the request-scoped dispatcher that started them
_background_tasks: set[asyncio.Task] = set()


class NotificationError(Exception):
    """The order-management system did not accept a notification."""


class NotificationPort(Protocol):
    async def send_payment_email(self, record: PaymentRecord, customer_name: str | None = None,
                                 reminder: bool = False) -> None: ...

    async def notify_order_paid(self, record: PaymentRecord) -> None: ...


def format_amount(amount_minor_units: int, currency: str) -> str:
    return f"{currency} {amount_minor_units // 100:,}.{amount_minor_units % 100:02d}"


def render_payment_email(record: PaymentRecord, customer_name: str | None, reminder: bool) -> dict[str, str]:
    greeting = f"Hi {customer_name}," if customer_name else "Hi,"
    amount = format_amount(record.amount_minor_units, record.currency)
    subject = (
        f"Reminder: payment outstanding for order {record.order_id}"
        if reminder
        else f"Payment request for order {record.order_id}"
    )
    text = (
        f"{greeting}\n\n"
        f"Please complete your payment of {amount} for order {record.order_id}:\n"
        f"{record.checkout_url}\n"
    )
    if record.expires_at:
        text += f"\nThis link expires on {record.expires_at:%Y-%m-%d %H:%M} UTC.\n"
    html = (
        f"<p>{greeting}</p>"
        f"<p>Please complete your payment of <strong>{amount}</strong> for order {record.order_id}.</p>"
        f'<p><a href="{record.checkout_url}">Pay now</a></p>'
    )
    return {"subject": subject, "text": text, "html": html}


class OmsNotifier:
    """NotificationPort backed by the order-management system's HTTP API."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict) -> None:
        headers = {"Content-Type": "application/json", "x-service-key": self.service_key}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
            except httpx.HTTPError as exc:
                raise NotificationError(f"{type(exc).__name__} calling {path}") from exc
        if response.status_code >= 400:
            raise NotificationError(f"OMS returned {response.status_code} for {path}")

    async def send_payment_email(self, record: PaymentRecord, customer_name: str | None = None,
                                 reminder: bool = False) -> None:
        if not record.customer_email:
            raise NotificationError("Payment record has no customer email")
        template = render_payment_email(record, customer_name, reminder)
        await self._post("/api/email/send", {"to": record.customer_email, **template})

    async def notify_order_paid(self, record: PaymentRecord) -> None:
        await self._post(
            "/webhooks/payment/payment_completed",
            {
                "orderId": record.order_id,
                "paymentId": record.id,
                "event": "payment_completed",
                "amountMinorUnits": record.amount_minor_units,
                "currency": record.currency,
                "timestamp": datetime.now(UTC).isoformat(),
            },
        )


class NullNotifier:
    """NotificationPort that drops everything. Used when notifications are disabled."""

    async def send_payment_email(self, record: PaymentRecord, customer_name: str | None = None,
                                 reminder: bool = False) -> None:
        logger.debug("notification_skipped", payment_id=record.id, kind="payment_email")

    async def notify_order_paid(self, record: PaymentRecord) -> None:
        logger.debug("notification_skipped", payment_id=record.id, kind=ORDER_PAID)


class NotificationDispatcher:
    """Runs notification sends as background tasks and logs their outcome."""

    def __init__(self, port: NotificationPort, store: PaymentStore):
        self.port = port
        self.store = store

    def dispatch(
        self,
        notification_type: str,
        record: PaymentRecord,
        send: Callable[[], Awaitable[None]],
        recipient: str | None = None,
    ) -> asyncio.Task:
        task = asyncio.create_task(self._run(notification_type, record.id, send, recipient))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        return task

    async def _run(
        self,
        notification_type: str,
        payment_id: str,
        send: Callable[[], Awaitable[None]],
        recipient: str | None,
    ) -> None:
        status, error = "sent", None
        try:
            await send()
            logger.info("notification_sent", payment_id=payment_id, notification_type=notification_type)
        except Exception as e:
            status, error = "failed", str(e)
            logger.warning(
                "notification_failed",
                payment_id=payment_id,
                notification_type=notification_type,
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await self.store.record_notification(
                payment_id, notification_type, status, recipient=recipient, error_message=error
            )
        except Exception as e:
            logger.warning("notification_log_failed", payment_id=payment_id, error=str(e))


async def drain_notifications() -> None:
    """Wait for in-flight sends. Called on shutdown and in tests."""
    while _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)

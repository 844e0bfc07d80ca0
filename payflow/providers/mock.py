"""In-memory provider for local development and tests.

Checkouts never leave the process. Statuses stay pending until ``set_status``
is called, which stands in for a shopper completing (or abandoning) the page.
"""

import json
import uuid
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import structlog

from payflow.core.exceptions import InvalidRequest, ProviderUnavailable
from payflow.providers.base import (
    CheckoutSession,
    ParsedWebhookEvent,
    ProviderAdapter,
    header_value,
    signature_matches,
)
from payflow.schemas.payments import PaymentProvider, PaymentStatus

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "X-Mock-Signature"

_STATUS_WORDS = {
    "completed": PaymentStatus.PAID,
    "paid": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "expired": PaymentStatus.EXPIRED,
    "pending": PaymentStatus.PENDING,
}


class MockCheckoutAdapter(ProviderAdapter):
    provider = PaymentProvider.MOCK
    supports_live_refresh = False

    def __init__(self, payment_page_url: str, webhook_secret: str, checkout_ttl: timedelta = timedelta(hours=24)):
        self.payment_page_url = payment_page_url
        self.webhook_secret = webhook_secret
        self.checkout_ttl = checkout_ttl
        self._statuses: dict[str, PaymentStatus] = {}
        # Lets tests simulate an outage without patching
        self.available = True

    def set_status(self, provider_reference: str, status: PaymentStatus) -> None:
        if provider_reference not in self._statuses:
            raise KeyError(provider_reference)
        self._statuses[provider_reference] = status

    async def create_checkout(
        self,
        amount_minor_units: int,
        currency: str,
        order_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        if not self.available:
            raise ProviderUnavailable(self.provider.value)

        reference = f"mock_{uuid.uuid4().hex}"
        self._statuses[reference] = PaymentStatus.PENDING
        query = urlencode({"checkoutId": reference, "orderId": order_ref, "provider": "mock"})
        logger.info("mock_checkout_created", provider_reference=reference, order_ref=order_ref)

        return CheckoutSession(
            provider_reference=reference,
            checkout_url=f"{self.payment_page_url}?{query}",
            expires_at=datetime.now(UTC) + self.checkout_ttl,
            raw={"mock": True, "amount_minor_units": amount_minor_units, "currency": currency},
        )

    async def get_status(self, provider_reference: str) -> PaymentStatus:
        if not self.available:
            raise ProviderUnavailable(self.provider.value)
        return self._statuses.get(provider_reference, PaymentStatus.PENDING)

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        return signature_matches(self.webhook_secret, raw_body, header_value(headers, SIGNATURE_HEADER))

    def parse_webhook_event(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(raw_body)
            event_id = event["eventId"]
            status_word = str(event.get("status", "")).lower()
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise InvalidRequest("Malformed mock webhook payload") from exc
        if not isinstance(event_id, str) or not event_id:
            raise InvalidRequest("Malformed mock webhook payload")

        return ParsedWebhookEvent(
            provider_event_id=event_id,
            provider_reference=event.get("checkoutId"),
            status=_STATUS_WORDS.get(status_word, PaymentStatus.PENDING),
            event_type=f"mock.{status_word or 'unknown'}",
        )

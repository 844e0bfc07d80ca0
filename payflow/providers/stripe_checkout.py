"""Stripe Checkout adapter (provider A)."""

import asyncio
import json
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta

import stripe
import structlog

from payflow.core.exceptions import InvalidRequest, ProviderUnavailable
from payflow.providers.base import CheckoutSession, ParsedWebhookEvent, ProviderAdapter, header_value
from payflow.schemas.payments import PaymentProvider, PaymentStatus

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"

# Stripe only accepts checkout expiry between 30 minutes and 24 hours out
_MIN_TTL = timedelta(minutes=30)
_MAX_TTL = timedelta(hours=24)

_EVENT_STATUS = {
    "checkout.session.async_payment_succeeded": PaymentStatus.PAID,
    "checkout.session.async_payment_failed": PaymentStatus.FAILED,
    "checkout.session.expired": PaymentStatus.EXPIRED,
}


def map_session_status(payment_status: str | None, session_status: str | None) -> PaymentStatus:
    """Translate a Checkout Session's (payment_status, status) pair."""
    if payment_status in ("paid", "no_payment_required"):
        return PaymentStatus.PAID
    if session_status == "expired":
        return PaymentStatus.EXPIRED
    return PaymentStatus.PENDING


def map_event_status(event_type: str, session: Mapping) -> PaymentStatus:
    if event_type == "checkout.session.completed":
        # Delayed payment methods complete the session before the money arrives
        return map_session_status(session.get("payment_status"), session.get("status"))
    return _EVENT_STATUS.get(event_type, PaymentStatus.PENDING)


class StripeCheckoutAdapter(ProviderAdapter):
    provider = PaymentProvider.STRIPE
    supports_live_refresh = True

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        timeout: float = 20.0,
        checkout_ttl: timedelta = _MAX_TTL,
        tolerance: int = 300,
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self.checkout_ttl = min(max(checkout_ttl, _MIN_TTL), _MAX_TTL)
        self.tolerance = tolerance

    async def create_checkout(
        self,
        amount_minor_units: int,
        currency: str,
        order_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        metadata = dict(metadata or {})
        description = metadata.pop("description", None) or f"Order {order_ref}"
        expires_at = datetime.now(UTC) + self.checkout_ttl

        try:
            async with asyncio.timeout(self.timeout):
                session = await stripe.checkout.Session.create_async(
                    api_key=self.secret_key,
                    mode="payment",
                    line_items=[
                        {
                            "price_data": {
                                "currency": currency.lower(),
                                "product_data": {"name": description},
                                "unit_amount": amount_minor_units,
                            },
                            "quantity": 1,
                        }
                    ],
                    client_reference_id=order_ref,
                    metadata={**metadata, "order_id": order_ref},
                    success_url=success_url,
                    cancel_url=cancel_url,
                    expires_at=int(expires_at.timestamp()),
                )
        except TimeoutError as exc:
            logger.warning("stripe_checkout_timeout", order_ref=order_ref, timeout=self.timeout)
            raise ProviderUnavailable(self.provider.value, "Stripe did not respond in time") from exc
        except stripe.InvalidRequestError as exc:
            logger.warning("stripe_checkout_rejected", order_ref=order_ref, stripe_code=exc.code, param=exc.param)
            raise InvalidRequest("Checkout request was rejected by the payment provider") from exc
        except stripe.StripeError as exc:
            logger.warning("stripe_checkout_failed", order_ref=order_ref, error_type=type(exc).__name__)
            raise ProviderUnavailable(self.provider.value) from exc

        if not session.id or not session.url:
            raise ProviderUnavailable(self.provider.value, "Stripe returned an incomplete checkout session")

        session_expiry = getattr(session, "expires_at", None)
        if isinstance(session_expiry, int):
            expires_at = datetime.fromtimestamp(session_expiry, tz=UTC)

        return CheckoutSession(
            provider_reference=session.id,
            checkout_url=session.url,
            expires_at=expires_at,
            raw={"session_id": session.id, "livemode": getattr(session, "livemode", None)},
        )

    async def get_status(self, provider_reference: str) -> PaymentStatus:
        try:
            async with asyncio.timeout(self.timeout):
                session = await stripe.checkout.Session.retrieve_async(provider_reference, api_key=self.secret_key)
        except TimeoutError as exc:
            raise ProviderUnavailable(self.provider.value, "Stripe did not respond in time") from exc
        except stripe.InvalidRequestError as exc:
            raise InvalidRequest(f"Unknown Stripe checkout session '{provider_reference}'") from exc
        except stripe.StripeError as exc:
            raise ProviderUnavailable(self.provider.value) from exc

        return map_session_status(session.payment_status, session.status)

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        sig_header = header_value(headers, SIGNATURE_HEADER)
        if not sig_header or not self.webhook_secret:
            return False
        try:
            # The SDK formats "{timestamp}.{payload}" itself; decoding is byte-exact
            payload = raw_body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, sig_header, self.webhook_secret, self.tolerance)
        except (UnicodeDecodeError, stripe.SignatureVerificationError):
            return False
        return True

    def parse_webhook_event(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(raw_body)
            event_id = event["id"]
            event_type = event["type"]
            obj = event["data"]["object"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidRequest("Malformed Stripe event payload") from exc
        if not isinstance(obj, dict) or not isinstance(event_id, str):
            raise InvalidRequest("Malformed Stripe event payload")

        reference = obj.get("id") if obj.get("object") == "checkout.session" else None
        return ParsedWebhookEvent(
            provider_event_id=event_id,
            provider_reference=reference,
            status=map_event_status(event_type, obj),
            event_type=event_type,
        )

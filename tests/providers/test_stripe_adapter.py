"""Tests for the Stripe Checkout adapter: async SDK calls, error translation, signatures, mapping."""

import asyncio
import json
import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from payflow.core.exceptions import InvalidRequest, ProviderUnavailable
from payflow.providers.base import hmac_sha256_hex
from payflow.providers.stripe_checkout import StripeCheckoutAdapter, map_event_status, map_session_status
from payflow.schemas.payments import PaymentStatus

pytestmark = pytest.mark.unit

SECRET = "whsec_test_dummy"


def _signed_headers(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> dict:
    ts = timestamp if timestamp is not None else int(time.time())
    signature = hmac_sha256_hex(secret, f"{ts}.".encode() + body)
    return {"Stripe-Signature": f"t={ts},v1={signature}"}


def _event(event_id: str, event_type: str, session: dict) -> bytes:
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": session}}).encode()


@pytest.fixture
def adapter() -> StripeCheckoutAdapter:
    return StripeCheckoutAdapter(secret_key="sk_test_dummy", webhook_secret=SECRET, timeout=0.5)


class TestCreateCheckout:
    async def test_uses_async_sdk_and_returns_session(self, adapter):
        session = SimpleNamespace(
            id="cs_test_123",
            url="https://checkout.stripe.com/c/pay/cs_test_123",
            expires_at=int(time.time()) + 3600,
            livemode=False,
        )
        with patch("stripe.checkout.Session.create_async", new=AsyncMock(return_value=session)) as create:
            result = await adapter.create_checkout(
                amount_minor_units=29900,
                currency="ZAR",
                order_ref="O1",
                success_url="https://shop.example/success",
                cancel_url="https://shop.example/cancel",
                metadata={"payment_id": "pay_1", "description": "Fibre 100Mbps"},
            )

        assert result.provider_reference == "cs_test_123"
        assert result.checkout_url == session.url
        assert int(result.expires_at.timestamp()) == session.expires_at

        kwargs = create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["client_reference_id"] == "O1"
        price_data = kwargs["line_items"][0]["price_data"]
        assert price_data["unit_amount"] == 29900
        assert price_data["currency"] == "zar"
        assert price_data["product_data"]["name"] == "Fibre 100Mbps"
        assert kwargs["metadata"] == {"payment_id": "pay_1", "order_id": "O1"}

    async def test_invalid_request_maps_to_invalid_request(self, adapter):
        error = stripe.InvalidRequestError("Invalid currency: xyz", param="currency")
        with patch("stripe.checkout.Session.create_async", new=AsyncMock(side_effect=error)):
            with pytest.raises(InvalidRequest):
                await adapter.create_checkout(100, "XYZ", "O1", "https://s", "https://c")

    async def test_connection_error_maps_to_provider_unavailable(self, adapter):
        error = stripe.APIConnectionError("Network is unreachable")
        with patch("stripe.checkout.Session.create_async", new=AsyncMock(side_effect=error)):
            with pytest.raises(ProviderUnavailable):
                await adapter.create_checkout(100, "ZAR", "O1", "https://s", "https://c")

    async def test_timeout_maps_to_provider_unavailable(self, adapter):
        async def slow(**kwargs):
            await asyncio.sleep(5)

        with patch("stripe.checkout.Session.create_async", new=slow):
            with pytest.raises(ProviderUnavailable):
                await adapter.create_checkout(100, "ZAR", "O1", "https://s", "https://c")


class TestGetStatus:
    async def test_paid_session(self, adapter):
        session = SimpleNamespace(payment_status="paid", status="complete")
        with patch("stripe.checkout.Session.retrieve_async", new=AsyncMock(return_value=session)):
            assert await adapter.get_status("cs_test_123") is PaymentStatus.PAID

    async def test_api_error_maps_to_provider_unavailable(self, adapter):
        with patch(
            "stripe.checkout.Session.retrieve_async",
            new=AsyncMock(side_effect=stripe.AuthenticationError("Invalid API Key")),
        ):
            with pytest.raises(ProviderUnavailable):
                await adapter.get_status("cs_test_123")


class TestStatusMapping:
    @pytest.mark.parametrize(
        ("payment_status", "session_status", "expected"),
        [
            ("paid", "complete", PaymentStatus.PAID),
            ("no_payment_required", "complete", PaymentStatus.PAID),
            ("unpaid", "expired", PaymentStatus.EXPIRED),
            ("unpaid", "open", PaymentStatus.PENDING),
            ("unpaid", "complete", PaymentStatus.PENDING),
            (None, None, PaymentStatus.PENDING),
        ],
    )
    def test_session_status(self, payment_status, session_status, expected):
        assert map_session_status(payment_status, session_status) is expected

    def test_completed_but_unpaid_stays_pending(self):
        session = {"payment_status": "unpaid", "status": "complete"}
        assert map_event_status("checkout.session.completed", session) is PaymentStatus.PENDING

    def test_async_payment_events(self):
        assert map_event_status("checkout.session.async_payment_succeeded", {}) is PaymentStatus.PAID
        assert map_event_status("checkout.session.async_payment_failed", {}) is PaymentStatus.FAILED
        assert map_event_status("checkout.session.expired", {}) is PaymentStatus.EXPIRED
        assert map_event_status("customer.created", {}) is PaymentStatus.PENDING


class TestWebhookSignature:
    def test_valid_signature(self, adapter):
        body = _event("evt_1", "checkout.session.completed", {"id": "cs_1", "object": "checkout.session"})
        assert adapter.verify_webhook_signature(body, _signed_headers(body)) is True

    def test_header_lookup_is_case_insensitive(self, adapter):
        body = b'{"id": "evt_1"}'
        headers = {k.lower(): v for k, v in _signed_headers(body).items()}
        assert adapter.verify_webhook_signature(body, headers) is True

    def test_tampered_body_rejected(self, adapter):
        body = _event("evt_1", "checkout.session.completed", {"id": "cs_1", "object": "checkout.session"})
        headers = _signed_headers(body)
        assert adapter.verify_webhook_signature(body.replace(b"cs_1", b"cs_2"), headers) is False

    def test_wrong_secret_rejected(self, adapter):
        body = b'{"id": "evt_1"}'
        assert adapter.verify_webhook_signature(body, _signed_headers(body, secret="whsec_other")) is False

    def test_stale_timestamp_rejected(self, adapter):
        body = b'{"id": "evt_1"}'
        headers = _signed_headers(body, timestamp=int(time.time()) - 3600)
        assert adapter.verify_webhook_signature(body, headers) is False

    def test_missing_header_rejected(self, adapter):
        assert adapter.verify_webhook_signature(b"{}", {}) is False


class TestParseWebhookEvent:
    def test_completed_paid_session(self, adapter):
        body = _event(
            "evt_1",
            "checkout.session.completed",
            {"id": "cs_1", "object": "checkout.session", "payment_status": "paid", "status": "complete"},
        )
        event = adapter.parse_webhook_event(body)
        assert event.provider_event_id == "evt_1"
        assert event.provider_reference == "cs_1"
        assert event.status is PaymentStatus.PAID

    def test_payment_intent_event_has_no_session_reference(self, adapter):
        body = _event("evt_2", "payment_intent.payment_failed", {"id": "pi_1", "object": "payment_intent"})
        event = adapter.parse_webhook_event(body)
        assert event.provider_reference is None

    @pytest.mark.parametrize("body", [b"not json", b"{}", b'{"id": "evt_1", "type": "x"}', b"[]"])
    def test_malformed_payload(self, adapter, body):
        with pytest.raises(InvalidRequest):
            adapter.parse_webhook_event(body)

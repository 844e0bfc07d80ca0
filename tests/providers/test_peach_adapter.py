"""Tests for the Peach Payments COPYandPAY adapter over a mocked HTTP transport."""

import json
from urllib.parse import parse_qs

import httpx
import pytest

from payflow.core.exceptions import InvalidRequest, ProviderUnavailable
from payflow.providers.base import hmac_sha256_hex
from payflow.providers.peach import PeachCheckoutAdapter, format_amount, map_result_code
from payflow.schemas.payments import PaymentStatus

pytestmark = pytest.mark.unit

SECRET = "peach-webhook-secret"


def _adapter(handler) -> PeachCheckoutAdapter:
    return PeachCheckoutAdapter(
        endpoint="https://sandbox-card.peachpayments.com",
        entity_id="8ac7a4c7entity",
        access_token="token-abc",
        webhook_secret=SECRET,
        payment_page_url="http://localhost:5173/payment",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestCreateCheckout:
    async def test_posts_form_and_builds_payment_page_url(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["form"] = parse_qs(request.content.decode())
            return httpx.Response(
                200,
                json={
                    "result": {"code": "000.200.100", "description": "successfully created checkout"},
                    "id": "CHK123.uat01-vm-tx01",
                    "ndc": "CHK123.uat01-vm-tx01",
                },
            )

        session = await _adapter(handler).create_checkout(
            amount_minor_units=29900,
            currency="zar",
            order_ref="O1",
            success_url="https://shop.example/success",
            cancel_url="https://shop.example/cancel",
            metadata={"payment_id": "pay_1"},
        )

        assert seen["method"] == "POST"
        assert seen["path"] == "/v1/checkouts"
        assert seen["auth"] == "Bearer token-abc"
        assert seen["form"]["amount"] == ["299.00"]
        assert seen["form"]["currency"] == ["ZAR"]
        assert seen["form"]["paymentType"] == ["DB"]
        assert seen["form"]["entityId"] == ["8ac7a4c7entity"]
        assert seen["form"]["merchantTransactionId"] == ["O1"]
        assert seen["form"]["customParameters[payment_id]"] == ["pay_1"]

        assert session.provider_reference == "CHK123.uat01-vm-tx01"
        assert session.checkout_url.startswith("http://localhost:5173/payment?checkoutId=CHK123")
        assert session.expires_at is not None

    async def test_rejected_parameters_raise_invalid_request(self):
        def handler(request):
            return httpx.Response(
                400, json={"result": {"code": "200.300.404", "description": "invalid or missing parameter"}}
            )

        with pytest.raises(InvalidRequest):
            await _adapter(handler).create_checkout(100, "ZAR", "O1", "https://s", "https://c")

    async def test_auth_failure_is_provider_unavailable(self):
        def handler(request):
            return httpx.Response(401, json={"result": {"code": "800.900.300"}})

        with pytest.raises(ProviderUnavailable):
            await _adapter(handler).create_checkout(100, "ZAR", "O1", "https://s", "https://c")

    async def test_timeout_is_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(ProviderUnavailable):
            await _adapter(handler).create_checkout(100, "ZAR", "O1", "https://s", "https://c")

    async def test_server_error_is_provider_unavailable(self):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        with pytest.raises(ProviderUnavailable):
            await _adapter(handler).create_checkout(100, "ZAR", "O1", "https://s", "https://c")


class TestGetStatus:
    async def test_reads_payment_result_code(self):
        def handler(request):
            assert request.url.path == "/v1/checkouts/CHK123/payment"
            assert request.url.params["entityId"] == "8ac7a4c7entity"
            return httpx.Response(200, json={"result": {"code": "000.100.110"}, "id": "8ac7pay"})

        assert await _adapter(handler).get_status("CHK123") is PaymentStatus.PAID

    async def test_unknown_checkout_is_expired(self):
        def handler(request):
            return httpx.Response(
                404, json={"result": {"code": "200.300.404", "description": "session not found"}}
            )

        assert await _adapter(handler).get_status("CHK123") is PaymentStatus.EXPIRED


class TestResultCodeMapping:
    @pytest.mark.parametrize(
        ("code", "expected"),
        [
            ("000.000.000", PaymentStatus.PAID),
            ("000.100.110", PaymentStatus.PAID),
            ("000.300.000", PaymentStatus.PAID),
            ("000.600.000", PaymentStatus.PAID),
            ("000.200.000", PaymentStatus.PENDING),
            ("000.200.100", PaymentStatus.PENDING),
            ("800.400.500", PaymentStatus.PENDING),
            ("100.400.500", PaymentStatus.PENDING),
            ("900.100.300", PaymentStatus.PENDING),
            ("200.300.404", PaymentStatus.EXPIRED),
            ("800.100.151", PaymentStatus.FAILED),
            ("800.100.402", PaymentStatus.FAILED),
            ("100.396.103", PaymentStatus.FAILED),
            ("100.380.401", PaymentStatus.FAILED),
            ("800.300.101", PaymentStatus.FAILED),
            ("999.999.999", PaymentStatus.FAILED),
            ("123.456.789", PaymentStatus.PENDING),
            ("", PaymentStatus.PENDING),
            (None, PaymentStatus.PENDING),
        ],
    )
    def test_mapping(self, code, expected):
        assert map_result_code(code) is expected

    def test_amount_formatting(self):
        assert format_amount(29900) == "299.00"
        assert format_amount(5) == "0.05"
        assert format_amount(123456) == "1234.56"


class TestWebhook:
    def test_signature_over_raw_bytes(self):
        adapter = _adapter(lambda r: httpx.Response(200))
        body = b'{"type":"PAYMENT","payload":{"id":"8ac7pay","ndc":"CHK123","result":{"code":"000.100.110"}}}'
        good = {"X-Signature": hmac_sha256_hex(SECRET, body)}
        assert adapter.verify_webhook_signature(body, good) is True
        assert adapter.verify_webhook_signature(body + b" ", good) is False
        assert adapter.verify_webhook_signature(body, {"X-Signature": "00" * 32}) is False
        assert adapter.verify_webhook_signature(body, {}) is False

    def test_parse_notification(self):
        adapter = _adapter(lambda r: httpx.Response(200))
        body = json.dumps(
            {"type": "PAYMENT", "payload": {"id": "8ac7pay", "ndc": "CHK123", "result": {"code": "800.100.151"}}}
        ).encode()
        event = adapter.parse_webhook_event(body)
        assert event.provider_event_id == "8ac7pay"
        assert event.provider_reference == "CHK123"
        assert event.status is PaymentStatus.FAILED
        assert event.event_type == "PAYMENT"

    @pytest.mark.parametrize(
        "body",
        [
            b"",
            b"{}",
            b'{"payload": {}}',
            b'{"payload": {"id": 7}}',
            b'{"payload": {"id": "8ac7pay", "result": "000.100.110"}}',
            b'{"payload": {"id": "8ac7pay", "result": ["000.100.110"]}}',
        ],
    )
    def test_malformed_notification(self, body):
        adapter = _adapter(lambda r: httpx.Response(200))
        with pytest.raises(InvalidRequest):
            adapter.parse_webhook_event(body)

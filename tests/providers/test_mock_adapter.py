import json

import pytest

from payflow.core.config import Settings
from payflow.core.exceptions import InvalidRequest, ProviderUnavailable
from payflow.providers import build_adapter, parse_provider, validate_provider_config
from payflow.providers.base import hmac_sha256_hex
from payflow.providers.mock import MockCheckoutAdapter
from payflow.providers.peach import PeachCheckoutAdapter
from payflow.providers.stripe_checkout import StripeCheckoutAdapter
from payflow.schemas.payments import PaymentProvider, PaymentStatus

pytestmark = pytest.mark.unit


async def test_checkout_starts_pending_and_status_is_settable(mock_adapter: MockCheckoutAdapter):
    session = await mock_adapter.create_checkout(29900, "ZAR", "O1", "https://s", "https://c")

    assert session.provider_reference.startswith("mock_")
    assert "checkoutId=" + session.provider_reference in session.checkout_url
    assert await mock_adapter.get_status(session.provider_reference) is PaymentStatus.PENDING

    mock_adapter.set_status(session.provider_reference, PaymentStatus.PAID)
    assert await mock_adapter.get_status(session.provider_reference) is PaymentStatus.PAID


async def test_unknown_reference_is_pending(mock_adapter):
    assert await mock_adapter.get_status("mock_missing") is PaymentStatus.PENDING
    with pytest.raises(KeyError):
        mock_adapter.set_status("mock_missing", PaymentStatus.PAID)


async def test_outage_raises_provider_unavailable(mock_adapter):
    mock_adapter.available = False
    with pytest.raises(ProviderUnavailable):
        await mock_adapter.create_checkout(100, "ZAR", "O1", "https://s", "https://c")
    with pytest.raises(ProviderUnavailable):
        await mock_adapter.get_status("mock_x")


def test_webhook_signature_and_parse(mock_adapter):
    body = json.dumps({"eventId": "E1", "checkoutId": "mock_abc", "status": "completed"}).encode()
    headers = {"x-mock-signature": hmac_sha256_hex(mock_adapter.webhook_secret, body)}

    assert mock_adapter.verify_webhook_signature(body, headers) is True
    assert mock_adapter.verify_webhook_signature(body, {"X-Mock-Signature": "deadbeef"}) is False

    event = mock_adapter.parse_webhook_event(body)
    assert event.provider_event_id == "E1"
    assert event.provider_reference == "mock_abc"
    assert event.status is PaymentStatus.PAID


def test_malformed_webhook(mock_adapter):
    with pytest.raises(InvalidRequest):
        mock_adapter.parse_webhook_event(b'{"checkoutId": "mock_abc"}')


class TestRegistry:
    def test_build_adapter_per_provider(self):
        settings = Settings(_env_file=None)
        assert isinstance(build_adapter(PaymentProvider.STRIPE, settings), StripeCheckoutAdapter)
        assert isinstance(build_adapter(PaymentProvider.PEACH, settings), PeachCheckoutAdapter)
        assert isinstance(build_adapter(PaymentProvider.MOCK, settings), MockCheckoutAdapter)

    def test_live_refresh_capability(self):
        assert StripeCheckoutAdapter.supports_live_refresh is True
        assert PeachCheckoutAdapter.supports_live_refresh is False
        assert MockCheckoutAdapter.supports_live_refresh is False

    def test_parse_provider_rejects_unknown(self):
        with pytest.raises(InvalidRequest):
            parse_provider("paypal")

    def test_validate_provider_config_requires_credentials(self):
        settings = Settings(_env_file=None, debug=False, enabled_providers=["stripe", "mock"], stripe_secret_key="")
        with pytest.raises(RuntimeError, match="stripe_secret_key"):
            validate_provider_config(settings)

    def test_validate_provider_config_skipped_in_debug(self):
        validate_provider_config(Settings(_env_file=None, debug=True))

    def test_validate_provider_config_mock_only(self):
        settings = Settings(_env_file=None, debug=False, payment_provider="mock", enabled_providers=["mock"])
        validate_provider_config(settings)

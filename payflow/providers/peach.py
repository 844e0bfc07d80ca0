"""Peach Payments COPYandPAY adapter (provider B).

Reference-style provider: the hosted widget is driven by a checkout id, and the
outcome is read back from ``/v1/checkouts/{id}/payment``. Results arrive as
dotted result codes grouped by prefix; the groups below follow Peach's
published result-code table.
"""

import json
import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode

import httpx
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

SIGNATURE_HEADER = "X-Signature"

# COPYandPAY checkout ids stop working after 30 minutes
CHECKOUT_LIFETIME = timedelta(minutes=30)

# Checked in order; first match wins. Anything unmatched stays pending.
_RESULT_CODE_GROUPS: list[tuple[re.Pattern, PaymentStatus]] = [
    # Successfully processed transactions
    (re.compile(r"^(000\.000\.|000\.100\.1|000\.[36])"), PaymentStatus.PAID),
    # Checkout session unknown or timed out
    (re.compile(r"^(200\.300\.404|100\.396\.101)"), PaymentStatus.EXPIRED),
    # Pending, waiting for shopper or acquirer, and communication errors with unknown outcome
    (re.compile(r"^(000\.200|800\.400\.5|100\.400\.500|900\.[1234]00|000\.400\.0[^3]|000\.400\.100)"),
     PaymentStatus.PENDING),
    # Rejections: 3DS/risk, bank declines, blacklists, validation and system errors
    (re.compile(r"^(000\.400\.[1][0-9][1-9]|000\.400\.2)"), PaymentStatus.FAILED),
    (re.compile(r"^(800\.[17]00|800\.800\.[123])"), PaymentStatus.FAILED),
    (re.compile(r"^(800\.[56]|999\.|600\.1|800\.800\.[84])"), PaymentStatus.FAILED),
    (re.compile(r"^(100\.39[765])"), PaymentStatus.FAILED),
    (re.compile(r"^(300\.100\.100|100\.400\.[0-3]|100\.38|100\.370\.100|100\.370\.11)"), PaymentStatus.FAILED),
    (re.compile(r"^(800\.400\.1|800\.400\.2|100\.390|800\.[32]|800\.1[123456]0)"), PaymentStatus.FAILED),
]


def map_result_code(code: str | None) -> PaymentStatus:
    """Translate a Peach result code. Unknown or missing codes are PENDING."""
    if not code:
        return PaymentStatus.PENDING
    for pattern, status in _RESULT_CODE_GROUPS:
        if pattern.match(code):
            return status
    return PaymentStatus.PENDING


def format_amount(amount_minor_units: int) -> str:
    """Peach expects a decimal string with two places, e.g. 29900 -> "299.00"."""
    return f"{amount_minor_units // 100}.{amount_minor_units % 100:02d}"


class PeachCheckoutAdapter(ProviderAdapter):
    provider = PaymentProvider.PEACH
    supports_live_refresh = False

    def __init__(
        self,
        endpoint: str,
        entity_id: str,
        access_token: str,
        webhook_secret: str,
        payment_page_url: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.entity_id = entity_id
        self.access_token = access_token
        self.webhook_secret = webhook_secret
        self.payment_page_url = payment_page_url
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.endpoint,
            timeout=self.timeout,
            headers={"Authorization": f"Bearer {self.access_token}"},
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("peach_request_timeout", path=path, timeout=self.timeout)
            raise ProviderUnavailable(self.provider.value, "Peach did not respond in time") from exc
        except httpx.HTTPError as exc:
            logger.warning("peach_request_failed", path=path, error_type=type(exc).__name__)
            raise ProviderUnavailable(self.provider.value) from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code in (401, 403) or response.status_code >= 500:
            logger.warning("peach_request_rejected", path=path, status_code=response.status_code)
            raise ProviderUnavailable(self.provider.value)
        if response.status_code >= 400 and not body.get("result"):
            raise InvalidRequest("Payment provider rejected the request")
        return body

    async def create_checkout(
        self,
        amount_minor_units: int,
        currency: str,
        order_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        form = {
            "entityId": self.entity_id,
            "amount": format_amount(amount_minor_units),
            "currency": currency.upper(),
            "paymentType": "DB",
            "merchantTransactionId": order_ref,
            "shopperResultUrl": success_url,
        }
        for key, value in (metadata or {}).items():
            form[f"customParameters[{key}]"] = value

        body = await self._request("POST", "/v1/checkouts", data=form)

        checkout_id = body.get("id")
        code = (body.get("result") or {}).get("code", "")
        if not checkout_id or not code.startswith("000.200"):
            logger.warning("peach_checkout_not_created", order_ref=order_ref, result_code=code)
            raise InvalidRequest("Checkout request was rejected by the payment provider")

        query = urlencode({"checkoutId": checkout_id, "orderId": order_ref, "cancelUrl": cancel_url})
        return CheckoutSession(
            provider_reference=checkout_id,
            checkout_url=f"{self.payment_page_url}?{query}",
            expires_at=datetime.now(UTC) + CHECKOUT_LIFETIME,
            raw={"result_code": code, "ndc": body.get("ndc")},
        )

    async def get_status(self, provider_reference: str) -> PaymentStatus:
        body = await self._request(
            "GET",
            f"/v1/checkouts/{provider_reference}/payment",
            params={"entityId": self.entity_id},
        )
        return map_result_code((body.get("result") or {}).get("code"))

    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        return signature_matches(self.webhook_secret, raw_body, header_value(headers, SIGNATURE_HEADER))

    def parse_webhook_event(self, raw_body: bytes) -> ParsedWebhookEvent:
        try:
            event = json.loads(raw_body)
            payload = event["payload"]
            payment_id = payload["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidRequest("Malformed Peach notification payload") from exc
        if not isinstance(payment_id, str) or not payment_id:
            raise InvalidRequest("Malformed Peach notification payload")

        result = payload.get("result") or {}
        if not isinstance(result, dict):
            raise InvalidRequest("Malformed Peach notification payload")
        return ParsedWebhookEvent(
            # One notification per payment attempt; retries reuse the payment id
            provider_event_id=event.get("id") or payment_id,
            provider_reference=payload.get("ndc") or payload.get("checkoutId"),
            status=map_result_code(result.get("code")),
            event_type=event.get("type", "PAYMENT"),
        )

"""Provider adapter contract shared by every payment provider.

An adapter hides one provider's wire format: hosted checkout creation, status
lookup, webhook signature verification, and translation of the provider's
status vocabulary into ``PaymentStatus``. Adapters never touch the database.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from payflow.schemas.payments import PaymentProvider, PaymentStatus


@dataclass(frozen=True)
class CheckoutSession:
    """Result of creating a provider-hosted checkout."""

    provider_reference: str
    checkout_url: str
    expires_at: datetime | None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedWebhookEvent:
    """Provider-neutral view of one webhook delivery."""

    provider_event_id: str
    provider_reference: str | None
    status: PaymentStatus
    event_type: str = ""


class ProviderAdapter(ABC):
    """Abstract payment provider adapter."""

    provider: PaymentProvider
    # Whether GET /payments/{id}/status may do a live provider check before
    # answering. Reference-style providers answer from the stored record.
    supports_live_refresh: bool = False

    @abstractmethod
    async def create_checkout(
        self,
        amount_minor_units: int,
        currency: str,
        order_ref: str,
        success_url: str,
        cancel_url: str,
        metadata: Mapping[str, str] | None = None,
    ) -> CheckoutSession:
        """Create a hosted checkout.

        Raises:
            ProviderUnavailable: network, auth, or timeout failure
            InvalidRequest: the provider rejected the input
        """

    @abstractmethod
    async def get_status(self, provider_reference: str) -> PaymentStatus:
        """Look up the provider-side status. Unknown codes map to PENDING."""

    @abstractmethod
    def verify_webhook_signature(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        """Verify a webhook over the exact bytes received. Never raises on mismatch."""

    @abstractmethod
    def parse_webhook_event(self, raw_body: bytes) -> ParsedWebhookEvent:
        """Parse a verified webhook body.

        Raises:
            InvalidRequest: body is not a recognizable event
        """


def header_value(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts too."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None


def hmac_sha256_hex(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def signature_matches(secret: str, raw_body: bytes, provided: str | None) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature over raw bytes."""
    if not secret or not provided:
        return False
    expected = hmac_sha256_hex(secret, raw_body)
    return hmac.compare_digest(expected.encode("ascii"), provided.strip().lower().encode("ascii", "ignore"))

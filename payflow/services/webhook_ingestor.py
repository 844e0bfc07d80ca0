"""WebhookIngestor — verify, deduplicate, and apply provider webhooks.

Each delivery moves through received -> verified -> deduplicated -> applied.
The ledger claim is written first and released again if anything after it
fails. ``transition`` is idempotent, so a crash after the claim never
double-applies.
"""

import hashlib
from collections.abc import Mapping
from enum import Enum

import structlog

from payflow.core.exceptions import SignatureInvalid
from payflow.providers import ParsedWebhookEvent, ProviderAdapter
from payflow.schemas.payments import PaymentStatus, TransitionSource
from payflow.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


class WebhookIngestor:
    def __init__(self, payments: PaymentService):
        self.payments = payments
        self.store = payments.store

    async def ingest(
        self,
        adapter: ProviderAdapter,
        raw_body: bytes,
        headers: Mapping[str, str],
        client_ip: str | None = None,
    ) -> WebhookOutcome:
        """Process one delivery.

        Raises:
            SignatureInvalid: signature missing or wrong; nothing is parsed
            InvalidRequest: verified body is not a recognizable event
        """
        provider = adapter.provider.value

        if not adapter.verify_webhook_signature(raw_body, headers):
            logger.warning(
                "webhook_signature_invalid",
                provider=provider,
                client_ip=client_ip,
                header_names=sorted(k.lower() for k in headers.keys()),
                body_size=len(raw_body),
            )
            raise SignatureInvalid("Invalid webhook signature")

        event = adapter.parse_webhook_event(raw_body)
        log = logger.bind(
            provider=provider,
            provider_event_id=event.provider_event_id,
            event_type=event.event_type,
            provider_reference=event.provider_reference,
        )

        claimed = await self.store.claim_event(
            provider,
            event.provider_event_id,
            payload_hash=hashlib.sha256(raw_body).hexdigest(),
            provider_reference=event.provider_reference,
            status=event.status.value,
        )
        if not claimed:
            log.info("webhook_duplicate")
            return WebhookOutcome.DUPLICATE

        try:
            return await self._apply(provider, event, log)
        except Exception:
            # Let the provider's retry reapply this event
            await self.store.release_event(provider, event.provider_event_id)
            log.error("webhook_apply_failed", exc_info=True)
            raise

    async def _apply(self, provider: str, event: ParsedWebhookEvent, log) -> WebhookOutcome:
        if not event.provider_reference:
            log.info("webhook_ignored", reason="no_reference")
            return WebhookOutcome.IGNORED

        record = await self.store.get_by_reference(provider, event.provider_reference)
        if record is None:
            # Acknowledge so the provider stops retrying
            log.warning("webhook_ignored", reason="unknown_reference")
            return WebhookOutcome.IGNORED

        if event.status is PaymentStatus.PENDING:
            log.info("webhook_noop", payment_id=record.id, reason="still_pending")
            return WebhookOutcome.NOOP

        if await self.payments.transition(record.id, event.status, TransitionSource.WEBHOOK):
            log.info("webhook_applied", payment_id=record.id, new_status=event.status.value)
            return WebhookOutcome.APPLIED
        log.info("webhook_noop", payment_id=record.id, current_status=record.status)
        return WebhookOutcome.NOOP

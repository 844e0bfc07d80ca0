"""PaymentService — checkout creation, status queries, and the single status transition."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from urllib.parse import urlencode

import structlog

from payflow.core.config import Settings, get_settings
from payflow.core.exceptions import DuplicatePayment, InvalidRequest, NotFound, PayflowError
from payflow.db.models.payment_record import PaymentRecord
from payflow.metrics.cloudwatch import emit_payment_event
from payflow.providers import ProviderAdapter, get_provider_adapter, parse_provider
from payflow.schemas.payments import (
    CreatePaymentRequest,
    PaymentProvider,
    PaymentStatus,
    TransitionSource,
    is_forward_transition,
)
from payflow.services.notifications import (
    ORDER_PAID,
    PAYMENT_REMINDER,
    PAYMENT_REQUEST,
    NotificationDispatcher,
)
from payflow.services.payment_store import PaymentStore, ensure_utc

logger = structlog.get_logger(__name__)


def new_payment_id() -> str:
    return f"pay_{uuid.uuid4().hex}"


def _adapter_for_record(provider: str) -> ProviderAdapter:
    return get_provider_adapter(provider, require_enabled=False)


class PaymentService:
    """Owns every write to a payment record's status.

    Webhooks, the reconciler, and read-through refresh all call ``transition``;
    nothing else updates ``status``.
    """

    def __init__(
        self,
        store: PaymentStore,
        notifications: NotificationDispatcher,
        adapter_resolver: Callable[[str], ProviderAdapter] = _adapter_for_record,
        settings: Settings | None = None,
    ):
        self.store = store
        self.notifications = notifications
        self.adapter_resolver = adapter_resolver
        self.settings = settings or get_settings()

    def adapter_for(self, provider: str) -> ProviderAdapter:
        return self.adapter_resolver(provider)

    async def create_payment(self, request: CreatePaymentRequest) -> PaymentRecord:
        """Create a hosted checkout and persist its pending record.

        Raises:
            InvalidRequest: bad amount/currency or provider not enabled
            DuplicatePayment: an unexpired pending checkout exists for this order
            ProviderUnavailable: the provider could not create the checkout
        """
        if isinstance(request.amount_minor_units, bool) or request.amount_minor_units <= 0:
            raise InvalidRequest("amountMinorUnits must be a positive integer")
        currency = (request.currency or "").upper()
        if len(currency) != 3 or not currency.isalpha():
            raise InvalidRequest("currency must be a 3-letter code")

        provider = parse_provider(request.provider)
        await self._guard_pending(request.order_id, provider)

        payment_id = new_payment_id()
        success_url = request.success_url or self._redirect_url("success", payment_id, request.order_id)
        cancel_url = request.cancel_url or self._redirect_url("cancelled", payment_id, request.order_id)
        metadata = {**request.metadata, "payment_id": payment_id, "customer_id": request.customer_id}
        if request.description:
            metadata["description"] = request.description

        adapter = self.adapter_for(provider.value)
        # Nothing is persisted if this raises
        session = await adapter.create_checkout(
            amount_minor_units=request.amount_minor_units,
            currency=currency,
            order_ref=request.order_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )

        record = await self.store.insert(
            PaymentRecord(
                id=payment_id,
                order_id=request.order_id,
                customer_id=request.customer_id,
                customer_email=request.customer_email,
                provider=provider.value,
                provider_reference=session.provider_reference,
                checkout_url=session.checkout_url,
                expires_at=session.expires_at,
                amount_minor_units=request.amount_minor_units,
                currency=currency,
                status=PaymentStatus.PENDING.value,
                status_source=TransitionSource.CHECKOUT.value,
                raw_provider_metadata=session.raw,
            )
        )

        logger.info(
            "payment_created",
            payment_id=record.id,
            order_id=record.order_id,
            provider=record.provider,
            amount_minor_units=record.amount_minor_units,
            currency=record.currency,
        )
        emit_payment_event("payment_created", provider=record.provider)

        if record.customer_email:
            self.notifications.dispatch(
                PAYMENT_REQUEST,
                record,
                lambda: self.notifications.port.send_payment_email(record, request.customer_name),
                recipient=record.customer_email,
            )
        return record

    async def _guard_pending(self, order_id: str, provider: PaymentProvider) -> None:
        existing = await self.store.find_pending(order_id, provider.value)
        if existing is None:
            return
        expires_at = ensure_utc(existing.expires_at)
        if expires_at is not None and expires_at <= datetime.now(UTC):
            await self.transition(existing.id, PaymentStatus.EXPIRED, TransitionSource.CHECKOUT)
            # Whoever moved it, it is no longer pending
            return
        raise DuplicatePayment(order_id, provider.value, existing_id=existing.id)

    def _redirect_url(self, outcome: str, payment_id: str, order_id: str) -> str:
        query = urlencode({"paymentId": payment_id, "orderId": order_id})
        return f"{self.settings.frontend_url.rstrip('/')}/payment/{outcome}?{query}"

    async def get_status(self, payment_id: str) -> PaymentRecord:
        """Return the record, refreshing it from the provider when that is supported.

        Raises:
            NotFound: unknown payment id
        """
        record = await self.store.get(payment_id)
        if record is None:
            raise NotFound(f"Payment '{payment_id}' not found")

        if PaymentStatus(record.status).is_terminal or not self.settings.status_refresh_enabled:
            return record
        adapter = self.adapter_for(record.provider)
        if not adapter.supports_live_refresh:
            return record

        try:
            live_status = await adapter.get_status(record.provider_reference)
        except PayflowError as e:
            logger.warning(
                "status_refresh_failed",
                payment_id=payment_id,
                provider=record.provider,
                error_code=e.code,
            )
            return record

        if live_status is PaymentStatus.PENDING:
            return record
        await self.transition(payment_id, live_status, TransitionSource.STATUS_REFRESH)
        return await self.store.get(payment_id)

    async def transition(self, payment_id: str, new_status: PaymentStatus, source: TransitionSource) -> bool:
        """Apply a forward status move. True only for the caller that performed it.

        Terminal records, ``pending -> pending`` and unknown ids all return False.
        """
        new_status = PaymentStatus(new_status)
        if not is_forward_transition(PaymentStatus.PENDING, new_status):
            return False

        record = await self.store.compare_and_set_status(payment_id, new_status, source)
        if record is None:
            logger.debug("transition_noop", payment_id=payment_id, new_status=new_status.value, source=source.value)
            return False

        # Already committed: dispatch before anything that could still fail
        if new_status is PaymentStatus.PAID:
            self.notifications.dispatch(
                ORDER_PAID,
                record,
                lambda: self.notifications.port.notify_order_paid(record),
            )

        logger.info(
            "payment_transitioned",
            payment_id=payment_id,
            order_id=record.order_id,
            provider=record.provider,
            new_status=new_status.value,
            source=source.value,
        )
        emit_payment_event(f"payment_{new_status.value}", provider=record.provider)
        return True

    async def resend_payment_email(self, payment_id: str) -> PaymentRecord:
        """Queue a reminder email for a pending payment.

        Raises:
            NotFound: unknown payment id
            InvalidRequest: payment is not pending, has expired, or has no email
        """
        record = await self.store.get(payment_id)
        if record is None:
            raise NotFound(f"Payment '{payment_id}' not found")
        if record.status != PaymentStatus.PENDING.value:
            raise InvalidRequest(f"Payment is {record.status}; only pending payments can be resent")
        if not record.customer_email:
            raise InvalidRequest("Payment has no customer email")
        expires_at = ensure_utc(record.expires_at)
        if expires_at is not None and expires_at <= datetime.now(UTC):
            raise InvalidRequest("Checkout link has expired; create a new payment")

        self.notifications.dispatch(
            PAYMENT_REMINDER,
            record,
            lambda: self.notifications.port.send_payment_email(record, reminder=True),
            recipient=record.customer_email,
        )
        logger.info("payment_email_resent", payment_id=payment_id, order_id=record.order_id)
        return record

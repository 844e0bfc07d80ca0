"""Payment routes — checkout creation, status, resend, and provider webhooks."""

import structlog
from fastapi import APIRouter, Depends, Request

from payflow.core.auth import require_service_key
from payflow.db.models.payment_record import PaymentRecord
from payflow.providers import ProviderAdapter, get_provider_adapter
from payflow.schemas.payments import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    PaymentStatusResponse,
    ResendResponse,
    WebhookAck,
)
from payflow.services import WebhookIngestor, build_payment_service
from payflow.services.payment_service import PaymentService
from payflow.services.payment_store import ensure_utc

logger = structlog.get_logger(__name__)

router = APIRouter()


def get_payment_service() -> PaymentService:
    return build_payment_service()


def get_webhook_ingestor(payments: PaymentService = Depends(get_payment_service)) -> WebhookIngestor:
    return WebhookIngestor(payments)


def _status_response(record: PaymentRecord) -> PaymentStatusResponse:
    return PaymentStatusResponse(
        payment_id=record.id,
        order_id=record.order_id,
        provider=record.provider,
        status=record.status,
        amount_minor_units=record.amount_minor_units,
        currency=record.currency,
        created_at=ensure_utc(record.created_at),
        updated_at=ensure_utc(record.updated_at),
        paid_at=ensure_utc(record.paid_at),
        expires_at=ensure_utc(record.expires_at),
    )


# ── Service-authenticated endpoints ─────────────────────────────────


@router.post(
    "/payments",
    response_model=CreatePaymentResponse,
    response_model_by_alias=True,
    status_code=201,
    dependencies=[Depends(require_service_key)],
)
async def create_payment(
    body: CreatePaymentRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Create a hosted checkout for an order and return its URL."""
    record = await payments.create_payment(body)
    return CreatePaymentResponse(
        payment_id=record.id,
        checkout_url=record.checkout_url,
        expires_at=ensure_utc(record.expires_at),
        provider=record.provider,
        status=record.status,
    )


@router.get(
    "/payments/{payment_id}/status",
    response_model=PaymentStatusResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_service_key)],
)
async def get_payment_status(
    payment_id: str,
    payments: PaymentService = Depends(get_payment_service),
):
    record = await payments.get_status(payment_id)
    return _status_response(record)


@router.post(
    "/payments/{payment_id}/resend",
    response_model=ResendResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_service_key)],
)
async def resend_payment_email(
    payment_id: str,
    payments: PaymentService = Depends(get_payment_service),
):
    """Queue the payment request email again for a pending payment."""
    record = await payments.resend_payment_email(payment_id)
    return ResendResponse(payment_id=record.id, email_queued=True)


# ── Provider webhooks (signature-authenticated) ─────────────────────


async def _handle_webhook(request: Request, adapter: ProviderAdapter, ingestor: WebhookIngestor) -> WebhookAck:
    # Signatures cover the exact bytes sent; never parse before verifying
    raw_body = await request.body()
    client_ip = request.client.host if request.client else None
    outcome = await ingestor.ingest(adapter, raw_body, request.headers, client_ip=client_ip)
    return WebhookAck(outcome=outcome.value)


@router.post("/payments/webhook", response_model=WebhookAck)
async def default_provider_webhook(
    request: Request,
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
):
    return await _handle_webhook(request, get_provider_adapter(), ingestor)


@router.post("/payments/webhook/{provider}", response_model=WebhookAck)
async def provider_webhook(
    provider: str,
    request: Request,
    ingestor: WebhookIngestor = Depends(get_webhook_ingestor),
):
    # Disabled providers still accept webhooks for checkouts created before the switch
    return await _handle_webhook(request, get_provider_adapter(provider, require_enabled=False), ingestor)

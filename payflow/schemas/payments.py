"""Payment schemas, canonical statuses, and provider identifiers."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class PaymentStatus(str, Enum):
    """Canonical payment lifecycle states shared by every provider."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not PaymentStatus.PENDING


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    PEACH = "peach"
    MOCK = "mock"


class TransitionSource(str, Enum):
    """Which component performed a status write."""

    CHECKOUT = "checkout"
    WEBHOOK = "webhook"
    RECONCILER = "reconciler"
    STATUS_REFRESH = "status_refresh"


# Valid forward moves. Terminal states have no exits.
STATUS_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED, PaymentStatus.EXPIRED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.EXPIRED: frozenset(),
}


def is_forward_transition(current: PaymentStatus, new: PaymentStatus) -> bool:
    return new in STATUS_TRANSITIONS[current]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreatePaymentRequest(_CamelModel):
    order_id: str = Field(min_length=1, max_length=255)
    customer_id: str = Field(min_length=1, max_length=255)
    customer_email: str | None = Field(default=None, max_length=255)
    customer_name: str | None = Field(default=None, max_length=255)
    amount_minor_units: int = Field(gt=0)
    currency: str = Field(min_length=3, max_length=3)
    provider: PaymentProvider | None = None  # None = configured default
    description: str | None = Field(default=None, max_length=500)
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return value.upper()


class CreatePaymentResponse(_CamelModel):
    payment_id: str
    checkout_url: str
    expires_at: datetime | None
    provider: PaymentProvider
    status: PaymentStatus


class PaymentStatusResponse(_CamelModel):
    payment_id: str
    order_id: str
    provider: PaymentProvider
    status: PaymentStatus
    amount_minor_units: int
    currency: str
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    expires_at: datetime | None = None


class ResendResponse(_CamelModel):
    payment_id: str
    email_queued: bool


class WebhookAck(BaseModel):
    status: str = "ok"
    outcome: str

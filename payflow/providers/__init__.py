"""Provider registry: builds one adapter per enabled provider from settings."""

from datetime import timedelta

from payflow.core.config import Settings, get_settings
from payflow.core.exceptions import InvalidRequest
from payflow.providers.base import CheckoutSession, ParsedWebhookEvent, ProviderAdapter
from payflow.providers.mock import MockCheckoutAdapter
from payflow.providers.peach import PeachCheckoutAdapter
from payflow.providers.stripe_checkout import StripeCheckoutAdapter
from payflow.schemas.payments import PaymentProvider

_adapters: dict[PaymentProvider, ProviderAdapter] = {}


def build_adapter(provider: PaymentProvider, settings: Settings) -> ProviderAdapter:
    payment_page_url = f"{settings.frontend_url.rstrip('/')}/payment"
    if provider is PaymentProvider.STRIPE:
        return StripeCheckoutAdapter(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout=settings.provider_timeout_seconds,
            checkout_ttl=timedelta(minutes=settings.checkout_ttl_minutes),
            tolerance=settings.stripe_webhook_tolerance_seconds,
        )
    if provider is PaymentProvider.PEACH:
        return PeachCheckoutAdapter(
            endpoint=settings.peach_endpoint,
            entity_id=settings.peach_entity_id,
            access_token=settings.peach_access_token,
            webhook_secret=settings.peach_webhook_secret,
            payment_page_url=payment_page_url,
            timeout=settings.provider_timeout_seconds,
        )
    return MockCheckoutAdapter(
        payment_page_url=payment_page_url,
        webhook_secret=settings.mock_webhook_secret,
        checkout_ttl=timedelta(minutes=settings.checkout_ttl_minutes),
    )


def parse_provider(name: str | PaymentProvider | None, require_enabled: bool = True) -> PaymentProvider:
    """Resolve a provider name, falling back to the configured default.

    Existing records resolve with ``require_enabled=False`` so a provider that
    was switched off can still be reconciled.
    """
    settings = get_settings()
    value = name.value if isinstance(name, PaymentProvider) else (name or settings.payment_provider)
    try:
        provider = PaymentProvider(value.lower())
    except ValueError:
        raise InvalidRequest(f"Unknown payment provider '{value}'") from None
    if require_enabled and provider.value not in settings.enabled_providers:
        raise InvalidRequest(f"Payment provider '{provider.value}' is not enabled")
    return provider


def get_provider_adapter(name: str | PaymentProvider | None = None, require_enabled: bool = True) -> ProviderAdapter:
    """Return the cached adapter for ``name`` (or the default provider)."""
    provider = parse_provider(name, require_enabled)
    adapter = _adapters.get(provider)
    if adapter is None:
        adapter = build_adapter(provider, get_settings())
        _adapters[provider] = adapter
    return adapter


def register_adapter(adapter: ProviderAdapter) -> None:
    """Install a pre-built adapter, replacing the settings-derived one."""
    _adapters[adapter.provider] = adapter


def reset_adapters() -> None:
    _adapters.clear()


def validate_provider_config(settings: Settings | None = None) -> None:
    """Fail fast when an enabled real provider has no credentials.

    Skipped in debug mode so local runs can start with only the mock provider.
    """
    settings = settings or get_settings()
    if settings.debug:
        return
    required = {
        "stripe": {
            "stripe_secret_key": settings.stripe_secret_key,
            "stripe_webhook_secret": settings.stripe_webhook_secret,
        },
        "peach": {
            "peach_entity_id": settings.peach_entity_id,
            "peach_access_token": settings.peach_access_token,
            "peach_webhook_secret": settings.peach_webhook_secret,
        },
    }
    missing = [
        key
        for provider in settings.enabled_providers
        for key, value in required.get(provider, {}).items()
        if not value
    ]
    if settings.payment_provider not in settings.enabled_providers:
        raise RuntimeError(f"Default provider '{settings.payment_provider}' is not in enabled_providers")
    if missing:
        raise RuntimeError(f"Missing provider credentials at startup: {missing}")


__all__ = [
    "CheckoutSession",
    "ParsedWebhookEvent",
    "ProviderAdapter",
    "build_adapter",
    "get_provider_adapter",
    "parse_provider",
    "register_adapter",
    "reset_adapters",
    "validate_provider_config",
]

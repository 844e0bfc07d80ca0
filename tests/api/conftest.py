"""API-specific test fixtures."""

import httpx
import pytest

from payflow.api.routes.payments import get_payment_service
from payflow.main import create_app
from payflow.providers import register_adapter, reset_adapters


@pytest.fixture
def app(payments, mock_adapter, stripe_adapter):
    """App wired to the test database and in-memory adapters.

    The lifespan is not run; the engine fixture has already initialized the
    global session factory in this event loop.
    """
    application = create_app()
    application.dependency_overrides[get_payment_service] = lambda: payments
    register_adapter(mock_adapter)
    register_adapter(stripe_adapter)
    yield application
    application.dependency_overrides.clear()
    reset_adapters()


@pytest.fixture
async def api_client(app):
    # Unhandled errors must reach the 500 handler instead of the test
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

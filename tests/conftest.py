"""Shared test fixtures: temp database, in-memory providers, recording notifier."""

import os

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from payflow.core.config import Settings
from payflow.db.base import Base, create_schema
from payflow.providers.mock import MockCheckoutAdapter
from payflow.providers.stripe_checkout import StripeCheckoutAdapter
from payflow.schemas.payments import CreatePaymentRequest
from payflow.services.notifications import NotificationDispatcher, drain_notifications
from payflow.services.payment_service import PaymentService
from payflow.services.payment_store import PaymentStore

# Postgres when provided, otherwise a throwaway SQLite file per test
_TEST_DB_URL = os.getenv("TEST_DATABASE_URL")

MOCK_WEBHOOK_SECRET = "test-mock-secret"
STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """Take the write lock at BEGIN so concurrent writers queue instead of deadlocking."""

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest.fixture
async def engine(tmp_path) -> AsyncEngine:
    """Create tables on a fresh database and point the global session factory at it."""
    import payflow.db.base as db_mod

    url = _TEST_DB_URL or f"sqlite+aiosqlite:///{tmp_path / 'payflow_test.db'}"
    engine = create_async_engine(url, echo=False)
    if engine.dialect.name == "sqlite":
        _serialize_sqlite_writers(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await create_schema(engine)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    await drain_notifications()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        debug=True,
        frontend_url="http://localhost:5173",
        redis_url="",
        mock_webhook_secret=MOCK_WEBHOOK_SECRET,
        stripe_secret_key="sk_test_dummy",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        metrics_enabled=False,
    )


class RecordingNotifier:
    """NotificationPort that remembers what it was asked to send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.emails: list[tuple[str, bool]] = []
        self.order_paid: list[str] = []

    async def send_payment_email(self, record, customer_name=None, reminder=False):
        if self.fail:
            raise RuntimeError("oms down")
        self.emails.append((record.id, reminder))

    async def notify_order_paid(self, record):
        if self.fail:
            raise RuntimeError("oms down")
        self.order_paid.append(record.id)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def mock_adapter() -> MockCheckoutAdapter:
    return MockCheckoutAdapter(payment_page_url="http://localhost:5173/payment", webhook_secret=MOCK_WEBHOOK_SECRET)


@pytest.fixture
def stripe_adapter() -> StripeCheckoutAdapter:
    return StripeCheckoutAdapter(secret_key="sk_test_dummy", webhook_secret=STRIPE_WEBHOOK_SECRET, timeout=2.0)


@pytest.fixture
def adapters(mock_adapter, stripe_adapter) -> dict:
    return {"mock": mock_adapter, "stripe": stripe_adapter}


@pytest.fixture
def store(session_factory) -> PaymentStore:
    return PaymentStore(session_factory)


@pytest.fixture
def payments(store, notifier, adapters, settings) -> PaymentService:
    return PaymentService(
        store,
        NotificationDispatcher(notifier, store),
        adapter_resolver=lambda provider: adapters[provider],
        settings=settings,
    )


def _make_request(**overrides) -> CreatePaymentRequest:
    fields = {
        "order_id": "O1",
        "customer_id": "C1",
        "customer_email": "customer@example.com",
        "customer_name": "Thandi",
        "amount_minor_units": 29900,
        "currency": "ZAR",
        "provider": "mock",
    }
    fields.update(overrides)
    return CreatePaymentRequest(**fields)


@pytest.fixture
def make_request():
    """Factory for a valid checkout request (order O1, 299.00 ZAR, mock provider)."""
    return _make_request

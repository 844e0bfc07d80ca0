"""Shared SQLAlchemy base, engine lifecycle, and connectivity check."""

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from payflow.core.config import Settings, get_settings


class Base(DeclarativeBase):
    pass


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(db_url: str, settings: Settings) -> dict:
    """Pool settings for ``db_url``. SQLite (local runs and tests) takes no pool sizing."""
    options = {"echo": settings.debug}
    if make_url(db_url).get_backend_name() != "sqlite":
        options.update(
            pool_pre_ping=True,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    return options


async def create_schema(engine: AsyncEngine) -> None:
    # Models register themselves on import
    import payflow.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db(url: str | None = None, create_tables: bool | None = None) -> None:
    """Initialize the async engine and session factory.

    ``create_tables`` defaults to ``DATABASE_CREATE_TABLES``; deployed
    databases are migrated with alembic instead.
    """
    global _engine, _session_factory

    if _engine is not None:
        return

    settings = get_settings()
    db_url = url or settings.database_url

    _engine = create_async_engine(db_url, **engine_options(db_url, settings))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)

    if settings.database_create_tables if create_tables is None else create_tables:
        await create_schema(_engine)


async def ping_db() -> None:
    """Round-trip ``SELECT 1``. Raises if the database is unreachable or not initialized."""
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))


async def close_db() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the configured session factory.

    Raises RuntimeError if init_db() has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory

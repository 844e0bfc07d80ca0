"""Database package — shared engine, session factory, and Redis client."""

from payflow.db.base import Base, close_db, create_schema, get_session_factory, init_db, ping_db
from payflow.db.redis import close_redis, get_redis, init_redis

__all__ = [
    "Base",
    "close_db",
    "close_redis",
    "create_schema",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
    "ping_db",
]

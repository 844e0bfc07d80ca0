import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from payflow.db import get_redis, ping_db

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "payflow"


@router.get("/health")
async def health_check(request: Request):
    """Liveness check for the load balancer.

    Returns 503 during graceful shutdown so the balancer stops routing traffic.
    """
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME},
        )
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check. Redis is reported but only the database is required."""
    checks = {"database": False, "redis": None}

    try:
        await ping_db()
        checks["database"] = True
    except (SQLAlchemyError, RuntimeError, OSError) as e:
        logger.error("readiness_database_failed", error=str(e))

    redis = get_redis()
    if redis is not None:
        try:
            await redis.ping()
            checks["redis"] = True
        except (RedisError, OSError) as e:
            checks["redis"] = False
            logger.error("readiness_redis_failed", error=str(e))

    scheduler = getattr(request.app.state, "reconciler", None)
    checks["reconciler"] = scheduler.running if scheduler is not None else None

    healthy = checks["database"] and checks["redis"] is not False
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )

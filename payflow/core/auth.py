"""Service-to-service authentication for the payment API."""

import hmac

import structlog
from fastapi import HTTPException, Request

from payflow.core.config import get_settings

logger = structlog.get_logger(__name__)

SERVICE_KEY_HEADER = "X-Service-Key"


async def require_service_key(request: Request) -> None:
    """FastAPI dependency that checks the shared service key.

    Disabled when SERVICE_API_KEY is empty (local development). Webhook routes
    must not depend on this: providers authenticate by signature instead.

    Raises:
        HTTPException(401): Header missing or does not match
    """
    expected = get_settings().service_api_key
    if not expected:
        return

    provided = request.headers.get(SERVICE_KEY_HEADER, "")
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        client_ip = request.client.host if request.client else None
        logger.warning("service_key_rejected", path=request.url.path, client_ip=client_ip)
        raise HTTPException(status_code=401, detail="Invalid or missing service key")

"""FastAPI dependencies for API key authentication and internal endpoints."""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from call_orchestrator.config import get_settings
from call_orchestrator.database.session import get_session
from call_orchestrator.services.api_key_service import Principal, get_api_key_service
from call_orchestrator.services.rate_limit_service import get_rate_limit_service

logger = logging.getLogger(__name__)


async def get_principal(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    session: AsyncSession = Depends(get_session),
) -> Principal:
    """
    FastAPI dependency resolving the calling account from its API key.

    Raises:
        AuthenticationError: 401 if the key is missing, unknown or inactive
    """
    if not x_api_key:
        logger.warning(f"Missing X-API-Key on {request.method} {request.url.path}")

    principal = await get_api_key_service(session).authenticate(x_api_key)
    request.state.account_id = principal.account_id
    return principal


async def enforce_rate_limit(principal: Principal = Depends(get_principal)) -> Principal:
    """
    FastAPI dependency applying the per-key request rate limit.

    Raises:
        RateLimitError: 429 with ``retry_after`` when the window is exhausted
    """
    if principal.api_key_id:
        await get_rate_limit_service().enforce_api_key_limit(principal.api_key_id)
    return principal


async def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(default=None, alias="X-Internal-API-Key"),
) -> None:
    """
    FastAPI dependency guarding internal administration endpoints.

    Raises:
        HTTPException: 503 if no internal key is configured, 401 if it does not match
    """
    expected = get_settings().internal_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Internal API key is not configured",
        )
    if not x_internal_api_key or not hmac.compare_digest(x_internal_api_key, expected):
        logger.warning("Rejected internal request with invalid X-Internal-API-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal API key",
        )

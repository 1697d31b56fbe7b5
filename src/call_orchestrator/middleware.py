"""HTTP middleware: request correlation, access logging, security headers and CORS."""

import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from call_orchestrator.config import get_settings
from call_orchestrator.utils.logging import get_logger, log_error, log_request, set_request_id

logger = get_logger("middleware")
settings = get_settings()

PROBE_PATHS = frozenset({"/health", "/ready"})
WEBHOOK_SEGMENT = "/webhooks/"


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _request_id(request: Request) -> str:
    """Reuse the caller's id; Twilio retries of one webhook share an idempotency token."""
    return (
        request.headers.get("X-Request-ID")
        or request.headers.get("I-Twilio-Idempotency-Token")
        or uuid.uuid4().hex
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Tag every request with an id and log it once it completes.

    The access log carries the authenticated account (set on ``request.state``
    by the API key dependency) so client traffic can be traced per account.
    Health checks are not logged.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = _request_id(request)
        set_request_id(request_id)
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"

        if request.url.path not in PROBE_PATHS:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_ip=_client_ip(request),
                account_id=getattr(request.state, "account_id", None),
                webhook=WEBHOOK_SEGMENT in request.url.path,
            )
        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Log exceptions that escape the exception handlers, then re-raise."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            log_error(
                e,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "query": request.url.query,
                    "account_id": getattr(request.state, "account_id", None),
                },
            )
            raise


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers. Call data and TwiML must never be cached."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "no-referrer"
        if request.url.path not in PROBE_PATHS:
            response.headers["Cache-Control"] = "no-store"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response


def setup_middleware(app: ASGIApp) -> None:
    """
    Register middleware. Starlette runs them in reverse order of registration,
    so CORS sees the request first and security headers are applied last.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.origins,
        allow_credentials=settings.cors.allow_credentials,
        allow_methods=settings.cors.allow_methods,
        allow_headers=settings.cors.allow_headers,
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=settings.cors.max_age,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    logger.info(f"Middleware configured (CORS origins: {settings.cors.origins})")

"""FastAPI application for the call orchestrator.

Wires middleware, the v1 API, error rendering and the health checks. Client
errors (4xx) are logged as warnings; anything else goes through ``log_error``.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Mapping, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from call_orchestrator.config import TelephonyProviderType, get_settings
from call_orchestrator.database import check_connection, close_db, init_db
from call_orchestrator.exceptions import APIException, InternalError, RateLimitError
from call_orchestrator.middleware import setup_middleware
from call_orchestrator.services.rate_limit_service import get_rate_limit_service
from call_orchestrator.utils.logging import get_logger, log_error, setup_logging

setup_logging()
logger = get_logger("main")

settings = get_settings()


def error_response(
    status_code: int,
    message: str,
    code: str,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "code": code,
                "status_code": status_code,
                "details": details or {},
            }
        },
        headers=dict(headers) if headers else None,
    )


def _log_failure(request: Request, exc: Exception, status_code: int) -> None:
    context = {"method": request.method, "path": request.url.path, "status_code": status_code}
    if status_code < 500:
        logger.warning(f"{status_code} {request.method} {request.url.path}: {exc}", extra=context)
    else:
        log_error(exc, context=context)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database (creating tables when configured); close it and Redis on exit."""
    await init_db()
    if (
        settings.telephony.provider == TelephonyProviderType.TWILIO
        and not settings.telephony.is_configured
    ):
        logger.warning("Twilio credentials are not configured; outbound calls will fail")
    logger.info(
        f"Call orchestrator started (provider: {settings.telephony.provider.value}, "
        f"callbacks: {settings.public_base_url})"
    )
    try:
        yield
    finally:
        await get_rate_limit_service().close()
        await close_db()
        logger.info("Call orchestrator stopped")


app = FastAPI(
    title="Call Orchestrator",
    description=(
        "Outbound call orchestration: admission against per-account quotas, "
        "dispatch through the telephony provider, and webhook-driven call lifecycle tracking."
    ),
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
    openapi_url="/openapi.json" if settings.debug else None,
    debug=settings.debug,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "calls", "description": "Placing, listing and cancelling calls"},
        {"name": "batch", "description": "Batch dispatch and batch status"},
        {"name": "webhooks", "description": "Telephony provider callbacks"},
        {"name": "api-keys", "description": "Internal API key issuance"},
    ],
)

setup_middleware(app)

from call_orchestrator.api.v1.router import router as v1_router  # noqa: E402

app.include_router(v1_router)


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    _log_failure(request, exc, exc.status_code)
    headers = None
    if isinstance(exc, RateLimitError) and exc.details.get("retry_after"):
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return error_response(exc.status_code, exc.message, exc.code, exc.details, headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    _log_failure(request, exc, exc.status_code)
    return error_response(
        exc.status_code, str(exc.detail), "HTTP_ERROR", headers=getattr(exc, "headers", None)
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body and query validation failures are 400s, one entry per offending field."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", ()) if loc != "body"),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    _log_failure(request, exc, status.HTTP_400_BAD_REQUEST)
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Validation failed",
        "VALIDATION_ERROR",
        {"validation_errors": errors},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    _log_failure(request, exc, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if settings.is_production:
        error = InternalError()
    else:
        error = InternalError(str(exc), details={"exception_type": type(exc).__name__})
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness: the process is up."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "telephony_provider": settings.telephony.provider.value,
    }


@app.get("/ready", tags=["health"])
async def readiness_check():
    """Readiness: the database answers. 503 otherwise."""
    if not await check_connection():
        logger.warning("Readiness check failed: database not connected")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not_ready", "database": "disconnected"},
        )
    return {
        "status": "ready",
        "database": "connected",
        "telephony_configured": settings.telephony.provider == TelephonyProviderType.MOCK
        or settings.telephony.is_configured,
    }

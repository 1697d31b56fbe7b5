"""Exceptions raised by the call orchestrator.

Every error a client can see is an ``APIException``. Subclasses fix the HTTP
status and error code; ``main.py`` renders them as
``{"error": {message, code, status_code, details}}``.
"""

from typing import Any, Dict, List, Optional


def _merge(details: Optional[Dict[str, Any]], **extra: Any) -> Dict[str, Any]:
    """Caller details plus the given keys, skipping keys whose value is None."""
    merged = dict(details or {})
    merged.update({key: value for key, value in extra.items() if value is not None})
    return merged


class APIException(Exception):
    """Base exception for all API errors."""

    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class AuthenticationError(APIException):
    """Missing, unknown or revoked API key."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(
        self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details=details)


class ValidationError(APIException):
    """A request (or one item of a batch) failed validation."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=_merge(details, validation_errors=errors or None))


class WebhookPayloadError(ValidationError):
    """A provider webhook lacks fields needed to identify the event."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None):
        super().__init__(message, details={"missing_fields": list(missing_fields or [])})


class NotFoundError(APIException):
    """Unknown resource, or one owned by another account."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(
        self,
        resource: str = "Resource",
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource} not found" + (f" with id: {resource_id}" if resource_id else "")
        super().__init__(message, details=_merge(details, resource=resource, resource_id=resource_id))


class InvalidStateError(APIException):
    """The call's current status does not allow the requested action."""

    status_code = 400
    code = "INVALID_STATE"

    def __init__(
        self,
        message: str = "Operation not allowed in current state",
        current_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=_merge(details, current_status=current_status))


class RateLimitError(APIException):
    """Too many requests for one API key; ``retry_after`` feeds the Retry-After header."""

    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=_merge(details, retry_after=retry_after or None))


class QuotaExceededError(APIException):
    """The account's daily or monthly call allowance cannot admit the request."""

    status_code = 429
    code = "QUOTA_EXCEEDED"

    def __init__(
        self,
        message: str = "Call quota exceeded",
        limits: Optional[Dict[str, Any]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=_merge(details, limits=limits))
        self.limits = limits or {}


class DatabaseError(APIException):
    code = "DATABASE_ERROR"

    def __init__(
        self, message: str = "Database operation failed", details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details=details)


class ExternalServiceError(APIException):
    """A dependency outside this service (storage, backend) failed."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message or f"External service '{service}' unavailable",
            status_code=status_code,
            details=_merge(details, service=service),
        )


class ProviderError(ExternalServiceError):
    """The telephony provider rejected or failed a request."""

    code = "PROVIDER_ERROR"

    def __init__(
        self,
        message: str,
        provider: str = "telephony",
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            provider, message=message, details=_merge(details, provider_error_code=error_code)
        )
        self.error_code = error_code


class InternalError(APIException):
    """An unexpected failure. Production responses carry no internals."""

    def __init__(
        self,
        message: str = "An internal server error occurred",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)

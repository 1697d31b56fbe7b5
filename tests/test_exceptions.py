"""Tests for the API exception hierarchy."""

import pytest

from call_orchestrator.exceptions import (
    APIException,
    AuthenticationError,
    DatabaseError,
    ExternalServiceError,
    InternalError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
    QuotaExceededError,
    RateLimitError,
    ValidationError,
    WebhookPayloadError,
)


def test_api_exception_overrides():
    exc = APIException("Upstream hiccup", status_code=503, code="UPSTREAM")
    assert exc.to_dict() == {
        "error": {"message": "Upstream hiccup", "code": "UPSTREAM", "status_code": 503, "details": {}}
    }


@pytest.mark.parametrize(
    "exc, status_code, code",
    [
        (AuthenticationError(), 401, "AUTHENTICATION_ERROR"),
        (ValidationError(), 400, "VALIDATION_ERROR"),
        (NotFoundError("Call"), 404, "NOT_FOUND"),
        (RateLimitError(), 429, "RATE_LIMIT_EXCEEDED"),
        (InvalidStateError(), 400, "INVALID_STATE"),
        (DatabaseError(), 500, "DATABASE_ERROR"),
        (ExternalServiceError("storage"), 502, "EXTERNAL_SERVICE_ERROR"),
    ],
)
def test_status_and_code(exc, status_code, code):
    assert exc.status_code == status_code
    assert exc.code == code
    assert exc.to_dict()["error"]["status_code"] == status_code


def test_validation_error_lists_fields():
    errors = {"phoneNumber": "Invalid phone number format"}
    exc = ValidationError("Invalid call request", errors=errors)
    assert exc.details == {"validation_errors": errors}


def test_not_found_message_names_the_resource():
    exc = NotFoundError("Call", resource_id="123")
    assert exc.message == "Call not found with id: 123"
    assert exc.details == {"resource": "Call", "resource_id": "123"}


def test_quota_exceeded_error_carries_limits():
    limits = {"daily": {"limit": 5, "used": 5, "remaining": 0}}
    exc = QuotaExceededError("Daily call limit reached", limits=limits)
    assert exc.status_code == 429
    assert exc.code == "QUOTA_EXCEEDED"
    assert exc.details["limits"] == limits
    assert exc.limits == limits


def test_rate_limit_error_retry_after():
    assert RateLimitError(retry_after=60).details == {"retry_after": 60}
    assert RateLimitError(retry_after=0).details == {}


def test_invalid_state_error():
    exc = InvalidStateError("Call cannot be cancelled", current_status="completed")
    assert exc.status_code == 400
    assert exc.code == "INVALID_STATE"
    assert exc.details["current_status"] == "completed"


def test_provider_error_is_external_service_error():
    exc = ProviderError("Number unreachable", provider="twilio", error_code="21211")
    assert isinstance(exc, ExternalServiceError)
    assert exc.status_code == 502
    assert exc.code == "PROVIDER_ERROR"
    assert exc.error_code == "21211"
    assert exc.details["service"] == "twilio"
    assert exc.details["provider_error_code"] == "21211"


def test_webhook_payload_error():
    exc = WebhookPayloadError("Missing required fields: CallSid", missing_fields=["CallSid"])
    assert isinstance(exc, ValidationError)
    assert exc.status_code == 400
    assert exc.details["missing_fields"] == ["CallSid"]


def test_internal_error_defaults_to_opaque_message():
    body = InternalError().to_dict()["error"]
    assert body["status_code"] == 500
    assert body["code"] == "INTERNAL_SERVER_ERROR"
    assert body["message"] == "An internal server error occurred"
    assert body["details"] == {}

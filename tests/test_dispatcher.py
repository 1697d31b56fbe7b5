"""Tests for call intake, dispatch, cancellation and scheduled release."""

from datetime import datetime, timedelta, timezone

import pytest

from call_orchestrator.database.session import get_session_context
from call_orchestrator.exceptions import (
    InvalidStateError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.dispatcher_service import (
    CallDispatcher,
    CallRequest,
    mark_dispatch_failed,
    run_dispatch,
    validate_call_request,
    webhook_url,
)
from call_orchestrator.services.mock_telephony_service import MockTelephonyProvider


@pytest.fixture
def dispatcher(session, mock_provider):
    return CallDispatcher(session, mock_provider)


def make_request(**overrides) -> CallRequest:
    values = {"to_number": "+1 (415) 555-0100", "message": "Do you have a table for two tonight?"}
    values.update(overrides)
    return CallRequest(**values)


def test_validate_call_request_normalizes_number():
    validated = validate_call_request(make_request())
    assert validated.to_number == "+14155550100"
    assert validated.from_number == "+15005550006"
    assert validated.message == "Do you have a table for two tonight?"


def test_validate_call_request_reports_every_field():
    with pytest.raises(ValidationError) as exc_info:
        validate_call_request(CallRequest(to_number="not-a-number", message="   "))
    errors = exc_info.value.details["validation_errors"]
    assert set(errors) == {"phoneNumber", "customMessage"}


def test_webhook_url_embeds_call_id():
    assert (
        webhook_url("call-status", "abc-123")
        == "https://calls.example.com/api/v1/webhooks/call-status?callId=abc-123"
    )
    assert webhook_url("voice", "abc", stage="done").endswith("voice?callId=abc&stage=done")


async def test_create_call_is_queued_and_counted(dispatcher, principal):
    call = await dispatcher.create_call(principal, make_request())

    assert call.status == "queued"
    assert call.account_id == "acct_test"
    assert call.to_number == "+14155550100"

    usage = await dispatcher.quota.get_usage("acct_test")
    assert usage["daily"]["used"] == 1

    events = await CallEventsRepository(dispatcher.session).get_by_call_id(call.id)
    assert [e.event_type for e in events] == ["created"]


async def test_create_call_invalid_request_counts_nothing(dispatcher, principal):
    with pytest.raises(ValidationError):
        await dispatcher.create_call(principal, make_request(to_number=None))

    usage = await dispatcher.quota.get_usage("acct_test")
    assert usage["daily"]["used"] == 0


async def test_create_call_over_quota_creates_nothing(dispatcher, principal, session):
    await dispatcher.quota.set_limits("acct_test", daily_limit=1)
    await session.commit()

    await dispatcher.create_call(principal, make_request())
    with pytest.raises(QuotaExceededError):
        await dispatcher.create_call(principal, make_request())

    assert await dispatcher.calls.count_by_account_id("acct_test") == 1


async def test_future_call_is_scheduled(dispatcher, principal):
    when = datetime.now(timezone.utc) + timedelta(hours=1)
    call = await dispatcher.create_call(principal, make_request(scheduled_for=when))

    assert call.status == "scheduled"
    assert await dispatcher.dispatch(call.id) is None


async def test_dispatch_success(dispatcher, principal, mock_provider):
    mock_provider.queue_provider_call_ids("CA_dispatch_1")
    call = await dispatcher.create_call(principal, make_request())

    dispatched = await dispatcher.dispatch(call.id)

    assert dispatched.status == "initiated"
    assert dispatched.provider_call_id == "CA_dispatch_1"
    request = mock_provider.get_last_call()
    assert request.to == "+14155550100"
    assert f"callId={call.id}" in request.status_callback_url
    assert f"callId={call.id}" in request.recording_callback_url
    assert f"callId={call.id}" in request.voice_url


async def test_dispatch_twice_is_noop(dispatcher, principal, mock_provider):
    call = await dispatcher.create_call(principal, make_request())
    await dispatcher.dispatch(call.id)

    assert await dispatcher.dispatch(call.id) is None
    assert len(mock_provider.calls) == 1


async def test_dispatch_provider_failure_fails_call(dispatcher, principal, mock_provider):
    mock_provider.configure_failure(error_message="Invalid 'To' number", error_code="21211")
    call = await dispatcher.create_call(principal, make_request())

    failed = await dispatcher.dispatch(call.id)

    assert failed.status == "failed"
    assert failed.error_message == "Invalid 'To' number"
    assert failed.completed_at is not None
    assert failed.call_metadata["call_outcome"] == "dispatch_failed"
    assert failed.call_metadata["provider_error"]["code"] == "21211"


async def test_run_dispatch_crash_marks_call_failed(session, principal):
    class ExplodingProvider(MockTelephonyProvider):
        async def initiate(self, request):
            raise RuntimeError("socket closed")

    provider = ExplodingProvider()
    dispatcher = CallDispatcher(session, provider)
    call = await dispatcher.create_call(principal, make_request())

    await run_dispatch(call.id, provider)

    reloaded = await dispatcher.calls.get_by_id(call.id)
    assert reloaded.status == "failed"
    assert "socket closed" in reloaded.error_message


async def test_crash_before_dispatch_fails_queued_call(dispatcher, principal, mock_provider):
    call = await dispatcher.create_call(principal, make_request())

    await mark_dispatch_failed(call.id, "Internal dispatch error: pool exhausted", mock_provider)

    reloaded = await dispatcher.calls.get_by_id(call.id)
    assert reloaded.status == "failed"
    assert reloaded.call_metadata["provider_error"]["code"] == "INTERNAL_ERROR"
    assert mock_provider.calls == []


async def test_cancel_queued_call(dispatcher, principal, mock_provider):
    call = await dispatcher.create_call(principal, make_request())

    cancelled = await dispatcher.cancel(principal, call.id)

    assert cancelled.status == "cancelled"
    assert cancelled.call_metadata["call_outcome"] == "cancelled"
    assert mock_provider.cancelled == []


async def test_cancel_dispatched_call_cancels_with_provider(dispatcher, principal, mock_provider):
    mock_provider.queue_provider_call_ids("CA_cancel_1")
    call = await dispatcher.create_call(principal, make_request())
    await dispatcher.dispatch(call.id)

    cancelled = await dispatcher.cancel(principal, call.id)

    assert cancelled.status == "cancelled"
    assert mock_provider.cancelled == ["CA_cancel_1"]


async def test_cancel_survives_provider_cancel_failure(dispatcher, principal, mock_provider):
    call = await dispatcher.create_call(principal, make_request())
    await dispatcher.dispatch(call.id)
    mock_provider.configure_cancel_failure()

    cancelled = await dispatcher.cancel(principal, call.id)
    assert cancelled.status == "cancelled"


async def test_cancel_terminal_call_is_rejected(dispatcher, principal):
    call = await dispatcher.create_call(principal, make_request())
    await dispatcher.cancel(principal, call.id)

    with pytest.raises(InvalidStateError) as exc_info:
        await dispatcher.cancel(principal, call.id)
    assert exc_info.value.details["current_status"] == "cancelled"


async def test_cancel_other_accounts_call_is_not_found(dispatcher, principal):
    call = await dispatcher.create_call(principal, make_request())

    with pytest.raises(NotFoundError):
        await dispatcher.cancel(Principal(account_id="acct_other"), call.id)


async def test_cancel_while_provider_request_in_flight(session, principal):
    class CancellingProvider(MockTelephonyProvider):
        async def initiate(self, request):
            async with get_session_context() as other:
                await CallDispatcher(other, self).cancel(principal, request.call_id)
            return await super().initiate(request)

    provider = CancellingProvider()
    provider.queue_provider_call_ids("CA_inflight")
    dispatcher = CallDispatcher(session, provider)
    call = await dispatcher.create_call(principal, make_request())

    result = await dispatcher.dispatch(call.id)

    assert result.status == "cancelled"
    assert result.provider_call_id == "CA_inflight"
    assert provider.cancelled == ["CA_inflight"]


async def test_release_due_scheduled_calls(dispatcher, principal):
    now = datetime.now(timezone.utc)
    due = await dispatcher.create_call(
        principal, make_request(scheduled_for=now + timedelta(minutes=5))
    )
    later = await dispatcher.create_call(
        principal, make_request(scheduled_for=now + timedelta(hours=3))
    )

    released = await dispatcher.release_due_scheduled_calls(now=now + timedelta(minutes=10))

    assert released == [due.id]
    assert (await dispatcher.calls.get_by_id(due.id)).status == "queued"
    assert (await dispatcher.calls.get_by_id(later.id)).status == "scheduled"

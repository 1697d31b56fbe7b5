"""Tests for signed backend notifications."""

import hashlib
import hmac
import json

import httpx
import pytest

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call, Recording
from call_orchestrator.services.notification_service import BackendNotifier, sign_payload


@pytest.fixture
def call():
    return Call(
        id="call-1",
        account_id="acct_test",
        to_number="+14155550100",
        from_number="+15005550006",
        message="Do you deliver?",
        status="completed",
        provider_call_id="CA1",
        call_metadata={"recording_outcome": "successful"},
    )


@pytest.fixture
def recording():
    return Recording(
        id="rec-1",
        call_id="call-1",
        provider_recording_id="RE1",
        filename="2026-01-01T00-00-00-000000Z_call-1_RE1.mp3",
        size_bytes=2048,
        duration_seconds=12,
    )


@pytest.fixture
def backend(monkeypatch):
    notifications = get_settings().notifications
    monkeypatch.setattr(notifications, "backend_url", "https://backend.example.com/")
    monkeypatch.setattr(notifications, "signing_secret", "s3cret")
    return notifications


def test_sign_payload_matches_hmac_sha256():
    expected = hmac.new(b"key", b"1700000000.{}", hashlib.sha256).hexdigest()
    assert sign_payload("{}", "key", "1700000000") == expected


async def test_notify_disabled_without_backend_url(call, recording):
    assert await BackendNotifier().notify_recording_complete(call, recording) is False


async def test_notify_posts_signed_payload(backend, call, recording):
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["request"] = request
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        sent = await BackendNotifier(http_client).notify_recording_complete(call, recording)

    assert sent is True
    request = captured["request"]
    assert str(request.url) == "https://backend.example.com/api/calls/recording-complete"
    assert request.headers["X-Account-Id"] == "acct_test"

    body = request.content.decode()
    signature = sign_payload(body, "s3cret", request.headers["X-Timestamp"])
    assert request.headers["X-Signature"] == f"sha256={signature}"

    payload = json.loads(body)
    assert payload["callId"] == "call-1"
    assert payload["recordingSid"] == "RE1"
    assert payload["fileSize"] == 2048


async def test_notify_backend_error_is_not_raised(backend, call, recording):
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    async with httpx.AsyncClient(transport=transport) as http_client:
        assert await BackendNotifier(http_client).notify_recording_complete(call, recording) is False


async def test_notify_connection_error_is_not_raised(backend, call, recording):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        assert await BackendNotifier(http_client).notify_recording_complete(call, recording) is False

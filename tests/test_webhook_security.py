"""Webhook signature enforcement at the HTTP layer."""

import pytest

from call_orchestrator.config import get_settings
from call_orchestrator.main import app
from call_orchestrator.services.mock_telephony_service import MockTelephonyProvider
from call_orchestrator.services.telephony_service import get_telephony_provider


class RecordingValidator(MockTelephonyProvider):
    """Mock provider that records what it was asked to validate."""

    def __init__(self, valid: bool):
        super().__init__()
        self.valid = valid
        self.checked = []

    def validate_signature(self, url, params, signature):
        self.checked.append((url, params, signature))
        return self.valid


@pytest.fixture
def enforce_signatures(monkeypatch):
    monkeypatch.setattr(get_settings().telephony, "validate_signatures", True)


def use_provider(provider):
    app.dependency_overrides[get_telephony_provider] = lambda: provider


def test_invalid_signature_is_forbidden(client, enforce_signatures):
    use_provider(RecordingValidator(valid=False))

    response = client.post(
        "/api/v1/webhooks/call-status?callId=abc",
        data={"CallSid": "CA1", "CallStatus": "ringing"},
        headers={"X-Twilio-Signature": "bogus"},
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "INVALID_SIGNATURE"


def test_signature_checked_against_public_url(client, enforce_signatures):
    provider = RecordingValidator(valid=True)
    use_provider(provider)

    response = client.post(
        "/api/v1/webhooks/call-status?callId=abc",
        data={"CallSid": "CA1", "CallStatus": "ringing"},
        headers={"X-Twilio-Signature": "sig"},
    )

    assert response.status_code == 200
    url, params, signature = provider.checked[0]
    assert url == "https://calls.example.com/api/v1/webhooks/call-status?callId=abc"
    assert params == {"CallSid": "CA1", "CallStatus": "ringing"}
    assert signature == "sig"


def test_voice_with_invalid_signature_hangs_up(client, enforce_signatures):
    use_provider(RecordingValidator(valid=False))

    response = client.post("/api/v1/webhooks/voice?callId=abc", data={"CallSid": "CA1"})

    assert response.status_code == 403
    assert "<Hangup" in response.text


@pytest.mark.parametrize(
    "path,form",
    [
        ("recording-complete", {"CallSid": "CA1", "RecordingSid": "RE1"}),
        ("transcription-complete", {"CallSid": "CA1"}),
        ("recording-status", {"CallSid": "CA1"}),
    ],
)
def test_structurally_invalid_payloads(client, path, form):
    response = client.post(f"/api/v1/webhooks/{path}", data=form)
    assert response.status_code == 400
    assert response.json()["error"]["details"]["missing_fields"]


def test_signatures_not_checked_when_disabled(client):
    provider = RecordingValidator(valid=False)
    use_provider(provider)

    response = client.post(
        "/api/v1/webhooks/call-status", data={"CallSid": "CA1", "CallStatus": "ringing"}
    )

    assert response.status_code == 200
    assert provider.checked == []

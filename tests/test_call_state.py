"""Tests for the call lifecycle state machine."""

import pytest

from call_orchestrator.services.call_state import (
    CallStatus,
    CallTrigger,
    InvalidTransition,
    allowed_sources,
    call_progress,
    can_transition,
    is_terminal,
    map_provider_status,
)


def test_terminal_statuses():
    assert is_terminal("completed")
    assert is_terminal("failed")
    assert is_terminal("cancelled")
    assert not is_terminal("recording_received")
    assert not is_terminal("queued")


def test_dispatch_path():
    assert can_transition("queued", CallTrigger.DISPATCH_START, "initiating")
    assert can_transition("initiating", CallTrigger.DISPATCH_ACCEPTED, "initiated")
    assert can_transition("initiating", CallTrigger.DISPATCH_FAILED, "failed")
    assert can_transition("queued", CallTrigger.DISPATCH_CRASHED, "failed")
    assert not can_transition("queued", CallTrigger.DISPATCH_FAILED, "failed")
    assert not can_transition("initiated", CallTrigger.DISPATCH_CRASHED, "failed")
    assert not can_transition("scheduled", CallTrigger.DISPATCH_START, "initiating")
    assert not can_transition("initiated", CallTrigger.DISPATCH_START, "initiating")


def test_scheduling():
    assert can_transition("queued", CallTrigger.SCHEDULE, "scheduled")
    assert can_transition("scheduled", CallTrigger.RELEASE, "queued")
    assert not can_transition("initiating", CallTrigger.RELEASE, "queued")


def test_reapplying_current_status_is_noop():
    assert not can_transition("ringing", CallTrigger.PROVIDER_STATUS, "ringing")
    assert "ringing" not in allowed_sources(CallTrigger.PROVIDER_STATUS, "ringing")


def test_provider_status_never_moves_backwards():
    assert can_transition("initiated", CallTrigger.PROVIDER_STATUS, "ringing")
    assert can_transition("ringing", CallTrigger.PROVIDER_STATUS, "answered")
    assert not can_transition("answered", CallTrigger.PROVIDER_STATUS, "ringing")
    assert not can_transition("recording", CallTrigger.PROVIDER_STATUS, "answered")


def test_provider_terminal_status_from_any_active_status():
    for status in ("initiated", "ringing", "answered", "recording"):
        assert can_transition(status, CallTrigger.PROVIDER_STATUS, "completed")
        assert can_transition(status, CallTrigger.PROVIDER_STATUS, "failed")


def test_provider_status_does_not_override_recording_received():
    assert not can_transition("recording_received", CallTrigger.PROVIDER_STATUS, "completed")
    assert can_transition("recording_received", CallTrigger.RECORDING_ATTACHED, "completed")


def test_terminal_states_are_final():
    for status in ("completed", "failed", "cancelled"):
        for trigger in CallTrigger:
            for target in CallStatus:
                assert not can_transition(status, trigger, target.value)


def test_cancel_from_any_non_terminal_status():
    for status in ("queued", "scheduled", "initiating", "initiated", "ringing", "answered"):
        assert can_transition(status, CallTrigger.CANCEL, "cancelled")


def test_invalid_target_raises():
    with pytest.raises(InvalidTransition):
        allowed_sources(CallTrigger.SCHEDULE, "completed")
    assert can_transition("queued", CallTrigger.SCHEDULE, "completed") is False


def test_map_provider_status():
    assert map_provider_status("ringing") == ("ringing", None)
    assert map_provider_status("in-progress") == ("answered", None)
    assert map_provider_status("completed") == ("completed", None)
    assert map_provider_status("busy") == ("failed", "line_busy")
    assert map_provider_status("no-answer") == ("failed", "no_answer")
    assert map_provider_status("canceled") == ("failed", "call_canceled")
    assert map_provider_status(" Failed ") == ("failed", "call_failed")
    assert map_provider_status("queued") is None
    assert map_provider_status("") is None


def test_call_progress():
    assert call_progress("queued") == 10
    assert call_progress("initiating") == 20
    assert call_progress("ringing") == 40
    assert call_progress("answered") == 60
    assert call_progress("recording") == 80
    assert call_progress("completed") == 100
    assert call_progress("failed") == 0

"""Tests for applying provider webhooks to call and recording state."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import update

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.repositories.recordings_repository import RecordingsRepository
from call_orchestrator.services.dispatcher_service import CallDispatcher, CallRequest
from call_orchestrator.services.notification_service import BackendNotifier
from call_orchestrator.services.reconciler_service import (
    MATCHED_BY_CALL_ID,
    MATCHED_BY_PHONE,
    MATCHED_BY_PROVIDER_ID,
    WebhookReconciler,
    get_webhook_reconciler,
    recording_outcome,
)
from call_orchestrator.services.recording_storage_service import RecordingStorageService
from call_orchestrator.services.telephony_service import (
    RecordingEvent,
    RecordingStatusEvent,
    StatusEvent,
    TranscriptionEvent,
)


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.notify_recording_complete = AsyncMock(return_value=True)
    return notifier


@pytest.fixture
def reconciler(session, mock_provider, tmp_path, notifier):
    return WebhookReconciler(
        session,
        mock_provider,
        storage=RecordingStorageService(base_dir=str(tmp_path)),
        notifier=notifier,
    )


async def dispatched_call(session, provider, principal, provider_call_id, to_number="+14155550100"):
    provider.queue_provider_call_ids(provider_call_id)
    dispatcher = CallDispatcher(session, provider)
    call = await dispatcher.create_call(
        principal, CallRequest(to_number=to_number, message="Are you open on Sundays?")
    )
    return await dispatcher.dispatch(call.id)


def recording_event(call, recording_sid="RE100", duration=12) -> RecordingEvent:
    return RecordingEvent(
        provider_call_id=call.provider_call_id,
        recording_id=recording_sid,
        recording_url=f"https://api.twilio.com/Recordings/{recording_sid}",
        duration_seconds=duration,
        call_id=call.id,
    )


@pytest.mark.parametrize(
    "duration,expected",
    [
        (0, "silent_recording"),
        (None, "silent_recording"),
        (2, "too_short"),
        (45, "successful"),
        (281, "max_length_reached"),
    ],
)
def test_recording_outcome(duration, expected):
    assert recording_outcome(duration, max_length=280)[0] == expected


def test_default_reconciler_uses_configured_storage_and_notifier(session, mock_provider):
    reconciler = get_webhook_reconciler(session, mock_provider)

    assert isinstance(reconciler.notifier, BackendNotifier)
    assert reconciler.storage.base_dir == Path(get_settings().storage.recordings_dir)
    assert reconciler.provider is mock_provider


@pytest.mark.parametrize("filename", ["../secret.mp3", "..", "", "nested/file.mp3", "absent.mp3"])
def test_storage_path_for_rejects_unknown_or_unsafe_names(tmp_path, filename):
    (tmp_path / "secret.mp3").write_bytes(b"x")
    storage = RecordingStorageService(base_dir=str(tmp_path / "recordings"))
    assert storage.path_for(filename) is None


def test_storage_path_for_stored_file(tmp_path):
    (tmp_path / "stored.mp3").write_bytes(b"ID3")
    path = RecordingStorageService(base_dir=str(tmp_path)).path_for("stored.mp3")
    assert path == tmp_path / "stored.mp3"


async def test_resolve_call_by_call_id(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_resolve_1")

    resolved = await reconciler.resolve_call("CA_resolve_1", call_id=call.id)
    assert resolved.call.id == call.id
    assert resolved.matched_by == MATCHED_BY_CALL_ID


async def test_resolve_call_ignores_mismatched_call_id(reconciler, session, mock_provider, principal):
    first = await dispatched_call(session, mock_provider, principal, "CA_first")
    second = await dispatched_call(session, mock_provider, principal, "CA_second", "+14155550111")

    resolved = await reconciler.resolve_call("CA_second", call_id=first.id)
    assert resolved.call.id == second.id
    assert resolved.matched_by == MATCHED_BY_PROVIDER_ID


async def test_resolve_call_by_unique_phone_number(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_phone")

    resolved = await reconciler.resolve_call("CA_unknown", to_number="+1 415 555 0100")
    assert resolved.call.id == call.id
    assert resolved.matched_by == MATCHED_BY_PHONE


async def test_resolve_call_ambiguous_phone_number(reconciler, session, mock_provider, principal):
    await dispatched_call(session, mock_provider, principal, "CA_dup_1")
    await dispatched_call(session, mock_provider, principal, "CA_dup_2")

    assert await reconciler.resolve_call("CA_unknown", to_number="+14155550100") is None


async def test_status_progression(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_progress")

    ringing = await reconciler.apply_status_event(StatusEvent("CA_progress", "ringing"))
    assert ringing.status == "ringing"

    answered = await reconciler.apply_status_event(StatusEvent("CA_progress", "in-progress"))
    assert answered.status == "answered"

    # Late ringing after answered is ignored
    assert await reconciler.apply_status_event(StatusEvent("CA_progress", "ringing")) is None

    completed = await reconciler.apply_status_event(
        StatusEvent("CA_progress", "completed", duration_seconds=33)
    )
    assert completed.status == "completed"
    assert completed.duration_seconds == 33
    assert completed.completed_at is not None

    events = await CallEventsRepository(session).get_by_call_id(call.id)
    assert [e.event_type for e in events].count("provider_status") == 4


async def test_status_event_merges_metadata_written_after_resolve(
    reconciler, session, mock_provider, principal, monkeypatch
):
    call = await dispatched_call(session, mock_provider, principal, "CA_merge")
    resolve = reconciler.resolve_call

    async def resolve_then_concurrent_write(*args, **kwargs):
        resolved = await resolve(*args, **kwargs)
        await session.execute(
            update(Call)
            .where(Call.id == call.id)
            .values(call_metadata={"recording_outcome": "successful"})
            .execution_options(synchronize_session=False)
        )
        return resolved

    monkeypatch.setattr(reconciler, "resolve_call", resolve_then_concurrent_write)

    ringing = await reconciler.apply_status_event(StatusEvent("CA_merge", "ringing"))

    assert ringing.call_metadata["provider_status"] == "ringing"
    assert ringing.call_metadata["recording_outcome"] == "successful"


async def test_status_failure_outcome(reconciler, session, mock_provider, principal):
    await dispatched_call(session, mock_provider, principal, "CA_busy")

    failed = await reconciler.apply_status_event(StatusEvent("CA_busy", "busy", error_code="13224"))

    assert failed.status == "failed"
    assert failed.call_metadata["call_outcome"] == "line_busy"
    assert failed.call_metadata["provider_error_code"] == "13224"
    assert failed.error_message == "Provider reported call status: busy"


async def test_status_for_unknown_call_is_ignored(reconciler):
    assert await reconciler.apply_status_event(StatusEvent("CA_nobody", "completed")) is None


async def test_status_matched_by_phone_is_flagged(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_flag")

    updated = await reconciler.apply_status_event(
        StatusEvent("CA_other_leg", "ringing", to_number="+14155550100")
    )
    assert updated.id == call.id
    assert updated.call_metadata["matched_by"] == "phone_number"


async def test_recording_status_in_progress_moves_to_recording(
    reconciler, session, mock_provider, principal
):
    call = await dispatched_call(session, mock_provider, principal, "CA_rec_status")
    await reconciler.apply_status_event(StatusEvent("CA_rec_status", "in-progress"))

    updated = await reconciler.apply_recording_status_event(
        RecordingStatusEvent("CA_rec_status", "in-progress", call_id=call.id)
    )
    assert updated.status == "recording"


async def test_recording_event_is_idempotent(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_idem")
    await reconciler.apply_status_event(StatusEvent("CA_idem", "in-progress"))

    first = await reconciler.apply_recording_event(recording_event(call))
    second = await reconciler.apply_recording_event(recording_event(call))

    assert first is not None
    assert second is None
    reloaded = await reconciler.calls.get_by_id(call.id)
    assert reloaded.status == "recording_received"
    assert reloaded.call_metadata["recording_outcome"] == "successful"
    events = await CallEventsRepository(session).get_by_call_id(call.id)
    assert [e.event_type for e in events].count("recording_received") == 1


async def test_recording_for_queued_call_is_ignored(reconciler, session, mock_provider, principal):
    dispatcher = CallDispatcher(session, mock_provider)
    call = await dispatcher.create_call(
        principal, CallRequest(to_number="+14155550100", message="Hello?")
    )

    event = RecordingEvent("CA_early", "RE_early", "https://example.com/r", 10, call_id=call.id)
    assert await reconciler.apply_recording_event(event) is None


async def test_fetch_attaches_recording_and_completes_call(
    reconciler, session, mock_provider, principal, notifier, tmp_path
):
    call = await dispatched_call(session, mock_provider, principal, "CA_fetch")
    await reconciler.apply_status_event(StatusEvent("CA_fetch", "in-progress"))
    recording = await reconciler.apply_recording_event(recording_event(call, "RE_fetch"))

    attached = await reconciler.fetch_and_attach_recording(recording.id)

    assert attached.status == "downloaded"
    assert attached.size_bytes == len(b"ID3mock-recording-bytes")
    assert attached.filename.endswith(f"_{call.id}_RE_fetch.mp3")
    assert (Path(tmp_path) / attached.filename).read_bytes() == b"ID3mock-recording-bytes"
    assert (await reconciler.calls.get_by_id(call.id)).status == "completed"
    notifier.notify_recording_complete.assert_awaited_once()

    # A second fetch of the same recording does nothing
    assert await reconciler.fetch_and_attach_recording(recording.id) is None


async def test_fetch_failure_marks_recording_failed(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_fetch_fail")
    await reconciler.apply_status_event(StatusEvent("CA_fetch_fail", "in-progress"))
    recording = await reconciler.apply_recording_event(recording_event(call))
    mock_provider.configure_recording(should_fail=True)

    failed = await reconciler.fetch_and_attach_recording(recording.id)

    assert failed.status == "failed"
    assert "download failure" in failed.error_message
    assert (await reconciler.calls.get_by_id(call.id)).status == "recording_received"
    events = await CallEventsRepository(session).get_by_call_id(call.id)
    assert events[-1].event_type == "recording_failed"


async def test_empty_download_counts_as_failure(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_empty")
    await reconciler.apply_status_event(StatusEvent("CA_empty", "in-progress"))
    recording = await reconciler.apply_recording_event(recording_event(call))
    mock_provider.configure_recording(content=b"")

    failed = await reconciler.fetch_and_attach_recording(recording.id)
    assert failed.status == "failed"
    assert "empty" in failed.error_message


async def test_completed_then_recording(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_ooo")
    await reconciler.apply_status_event(StatusEvent("CA_ooo", "in-progress"))
    await reconciler.apply_status_event(StatusEvent("CA_ooo", "completed", duration_seconds=20))

    recording = await reconciler.apply_recording_event(recording_event(call, "RE_ooo", 15))
    assert recording is not None

    reloaded = await reconciler.calls.get_by_id(call.id)
    assert reloaded.status == "completed"
    assert reloaded.call_metadata["recording_outcome"] == "successful"

    attached = await reconciler.fetch_and_attach_recording(recording.id)
    assert attached.status == "downloaded"
    assert (await reconciler.calls.get_by_id(call.id)).status == "completed"


async def test_completed_after_recording_keeps_status_and_stores_duration(
    reconciler, session, mock_provider, principal
):
    call = await dispatched_call(session, mock_provider, principal, "CA_late_done")
    await reconciler.apply_status_event(StatusEvent("CA_late_done", "in-progress"))
    await reconciler.apply_recording_event(recording_event(call))

    result = await reconciler.apply_status_event(
        StatusEvent("CA_late_done", "completed", duration_seconds=41)
    )

    assert result is None
    reloaded = await reconciler.calls.get_by_id(call.id)
    assert reloaded.status == "recording_received"
    assert reloaded.duration_seconds == 41


async def test_transcription_is_stored_once(reconciler, session, mock_provider, principal):
    call = await dispatched_call(session, mock_provider, principal, "CA_tx")
    await reconciler.apply_status_event(StatusEvent("CA_tx", "in-progress"))
    await reconciler.apply_recording_event(recording_event(call))

    stored = await reconciler.apply_transcription_event(
        TranscriptionEvent("CA_tx", "completed", transcription_id="TR1", text="Yes, until 9pm.")
    )
    assert stored.transcription_status == "completed"
    assert stored.transcription_text == "Yes, until 9pm."

    again = await reconciler.apply_transcription_event(
        TranscriptionEvent("CA_tx", "failed", transcription_id="TR2")
    )
    assert again is None
    recording = await RecordingsRepository(session).get_by_call_id(call.id)
    assert recording.transcription_id == "TR1"


async def test_transcription_before_recording_is_ignored(
    reconciler, session, mock_provider, principal
):
    await dispatched_call(session, mock_provider, principal, "CA_tx_early")

    event = TranscriptionEvent("CA_tx_early", "completed", text="hello")
    assert await reconciler.apply_transcription_event(event) is None

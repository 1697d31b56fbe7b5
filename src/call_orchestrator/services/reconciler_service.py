"""Webhook reconciler: applies provider events to call and recording state.

Provider events can arrive more than once and out of order. Nothing here
raises for a missing call or a transition that no longer applies; those
events are logged and acknowledged so the provider never retries them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call, Recording
from call_orchestrator.database.session import get_session_context
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.repositories.recordings_repository import RecordingsRepository
from call_orchestrator.services.call_state import (
    PROVIDER_ACTIVE_STATUSES,
    RECORDING_ELIGIBLE_STATUSES,
    CallStatus,
    CallTrigger,
    map_provider_status,
)
from call_orchestrator.services.dispatcher_service import CallDispatcher
from call_orchestrator.services.notification_service import BackendNotifier, get_backend_notifier
from call_orchestrator.services.recording_storage_service import (
    RecordingStorageService,
    get_recording_storage_service,
)
from call_orchestrator.services.telephony_service import (
    RecordingEvent,
    RecordingStatusEvent,
    StatusEvent,
    TelephonyProvider,
    TranscriptionEvent,
    get_telephony_provider,
)
from call_orchestrator.utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

MATCHED_BY_CALL_ID = "call_id"
MATCHED_BY_PROVIDER_ID = "provider_call_id"
MATCHED_BY_PHONE = "phone_number"

TRANSCRIPTION_FINAL_STATUSES = ("completed", "failed")


@dataclass
class ResolvedCall:
    call: Call
    matched_by: str


def recording_outcome(duration_seconds: Optional[int], max_length: int = 280) -> tuple[str, str]:
    """Classify a recording by length as (outcome, reason)."""
    duration = duration_seconds or 0
    if duration == 0:
        return "silent_recording", "no_audio_detected"
    if duration < 3:
        return "too_short", "recording_under_3_seconds"
    if duration > max_length:
        return "max_length_reached", "recording_hit_max_length"
    return "successful", "recording_completed"


class WebhookReconciler:
    """Maps provider webhooks to calls and applies guarded transitions."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        storage: Optional[RecordingStorageService] = None,
        notifier: Optional[BackendNotifier] = None,
    ):
        self.session = session
        self.provider = provider
        self.calls = CallsRepository(session)
        self.recordings = RecordingsRepository(session)
        self.events = CallEventsRepository(session)
        self.lifecycle = CallDispatcher(session, provider)
        self.storage = storage or get_recording_storage_service()
        self.notifier = notifier or get_backend_notifier()
        self.settings = get_settings()

    async def resolve_call(
        self,
        provider_call_id: Optional[str],
        call_id: Optional[str] = None,
        to_number: Optional[str] = None,
    ) -> Optional[ResolvedCall]:
        """
        Find the call an event belongs to.

        Order: the ``callId`` embedded in the callback URL, then the provider
        call id, then (flagged) the single active call to the event's number.
        """
        if call_id:
            call = await self.calls.get_by_id(call_id)
            if call is not None and (
                not call.provider_call_id or call.provider_call_id == provider_call_id
            ):
                return ResolvedCall(call, MATCHED_BY_CALL_ID)
            if call is not None:
                logger.warning(
                    f"callId {call_id} does not match provider id {provider_call_id}, ignoring hint"
                )

        if provider_call_id:
            call = await self.calls.get_by_provider_call_id(provider_call_id)
            if call is not None:
                return ResolvedCall(call, MATCHED_BY_PROVIDER_ID)

        number = normalize_phone_number(to_number) if to_number else None
        if number:
            candidates = await self.calls.get_active_by_to_number(
                number, PROVIDER_ACTIVE_STATUSES | {CallStatus.INITIATING.value}
            )
            if len(candidates) == 1:
                logger.warning(
                    f"Matched provider call {provider_call_id} to call {candidates[0].id} "
                    f"by destination number"
                )
                return ResolvedCall(candidates[0], MATCHED_BY_PHONE)
            if len(candidates) > 1:
                logger.warning(
                    f"{len(candidates)} active calls to {number}; not guessing for {provider_call_id}"
                )

        logger.info(f"No call found for provider call {provider_call_id}")
        return None

    async def apply_status_event(self, event: StatusEvent) -> Optional[Call]:
        """Apply a provider call-status event. Returns the updated call, if it changed."""
        resolved = await self.resolve_call(event.provider_call_id, event.call_id, event.to_number)
        if resolved is None:
            return None
        call = resolved.call

        await self.events.append(
            call.id,
            "provider_status",
            {
                "provider_status": event.status,
                "duration_seconds": event.duration_seconds,
                "matched_by": resolved.matched_by,
            },
        )

        mapped = map_provider_status(event.status)
        if mapped is None:
            logger.debug(f"Provider status {event.status} carries no transition for call {call.id}")
            await self.session.commit()
            return None
        target, outcome = mapped

        call = await self.calls.get_for_update(call.id) or call
        metadata: Dict[str, Any] = dict(call.call_metadata or {})
        metadata["provider_status"] = event.status
        if resolved.matched_by == MATCHED_BY_PHONE:
            metadata["matched_by"] = MATCHED_BY_PHONE
        values: Dict[str, Any] = {}
        if outcome:
            metadata["call_outcome"] = outcome
            values["error_message"] = f"Provider reported call status: {event.status}"
            if event.error_code:
                metadata["provider_error_code"] = event.error_code
        if target in (CallStatus.COMPLETED.value, CallStatus.FAILED.value):
            values["completed_at"] = datetime.now(timezone.utc)
        if event.duration_seconds is not None:
            values["duration_seconds"] = event.duration_seconds

        updated = await self.lifecycle.transition(
            call.id,
            CallTrigger.PROVIDER_STATUS,
            CallStatus(target),
            event_payload={"provider_status": event.status},
            call_metadata=metadata,
            **values,
        )

        if (
            updated is None
            and target == CallStatus.COMPLETED.value
            and event.duration_seconds is not None
        ):
            # Recording already arrived; keep the call's status, record its length
            await self.calls.conditional_update(
                call.id,
                [CallStatus.RECORDING_RECEIVED.value, CallStatus.COMPLETED.value],
                duration_seconds=event.duration_seconds,
            )

        await self.session.commit()
        return updated

    async def apply_recording_event(self, event: RecordingEvent) -> Optional[Recording]:
        """
        Attach a finished recording to its call.

        Returns the new recording so the caller can schedule its download, or
        None if the event was a duplicate or matched no eligible call.
        """
        resolved = await self.resolve_call(event.provider_call_id, event.call_id, event.to_number)
        if resolved is None:
            return None
        call = resolved.call

        if call.status not in RECORDING_ELIGIBLE_STATUSES:
            logger.info(f"Recording for call {call.id} ignored in status {call.status}")
            return None

        recording = await self.recordings.create_for_call(
            call.id,
            provider_recording_id=event.recording_id,
            recording_url=event.recording_url,
            duration_seconds=event.duration_seconds,
            status="pending",
            transcription_status="pending",
        )
        if recording is None:
            logger.info(f"Duplicate recording event for call {call.id} ignored")
            return None

        outcome, reason = recording_outcome(
            event.duration_seconds, self.settings.telephony.recording_max_length
        )
        call = await self.calls.get_for_update(call.id) or call
        metadata = {
            **(call.call_metadata or {}),
            "recording_outcome": outcome,
            "outcome_reason": reason,
        }
        if resolved.matched_by == MATCHED_BY_PHONE:
            metadata["matched_by"] = MATCHED_BY_PHONE

        updated = await self.lifecycle.transition(
            call.id,
            CallTrigger.RECORDING_RECEIVED,
            CallStatus.RECORDING_RECEIVED,
            event_payload={"recording_id": event.recording_id},
            call_metadata=metadata,
        )
        if updated is None:
            # e.g. already completed; keep the status, still record the outcome
            await self.calls.conditional_update(
                call.id, RECORDING_ELIGIBLE_STATUSES, call_metadata=metadata
            )

        await self.events.append(
            call.id,
            "recording_received",
            {
                "recording_id": event.recording_id,
                "duration_seconds": event.duration_seconds,
                "outcome": outcome,
                "matched_by": resolved.matched_by,
            },
        )
        await self.session.commit()
        logger.info(
            f"Recording {event.recording_id} received for call {call.id} "
            f"({event.duration_seconds}s, outcome: {outcome})"
        )
        return recording

    async def fetch_and_attach_recording(self, recording_id: str) -> Optional[Recording]:
        """
        Download a pending recording and attach it to its call.

        On failure the recording is marked ``failed`` and the call is left as
        it is; there is no automatic retry.
        """
        recording = await self.recordings.get_by_id(recording_id)
        if recording is None or recording.status != "pending":
            return None

        try:
            artifact = await self.provider.fetch_recording(recording.recording_url)
            stored = await self.storage.save(
                recording.call_id,
                recording.provider_recording_id or recording.id,
                artifact.content,
                artifact.content_type,
            )
        except Exception as e:
            logger.error(f"Recording {recording_id} download failed: {e}")
            failed = await self.recordings.conditional_update(
                recording_id,
                "status",
                ["pending"],
                status="failed",
                error_message=str(e)[:1000],
            )
            await self.events.append(recording.call_id, "recording_failed", {"error": str(e)})
            await self.session.commit()
            return failed

        attached = await self.recordings.conditional_update(
            recording_id,
            "status",
            ["pending"],
            status="downloaded",
            filename=stored.filename,
            size_bytes=stored.size_bytes,
            content_type=artifact.content_type,
            downloaded_at=datetime.now(timezone.utc),
            error_message=None,
        )
        if attached is None:
            return None

        call = await self.lifecycle.transition(
            recording.call_id,
            CallTrigger.RECORDING_ATTACHED,
            CallStatus.COMPLETED,
            event_payload={"filename": stored.filename},
            completed_at=datetime.now(timezone.utc),
        )
        await self.events.append(
            recording.call_id,
            "recording_downloaded",
            {"filename": stored.filename, "size_bytes": stored.size_bytes},
        )
        await self.session.commit()

        if call is None:
            call = await self.calls.get_by_id(recording.call_id)
        if call is not None:
            await self.notifier.notify_recording_complete(call, attached)
        return attached

    async def apply_transcription_event(self, event: TranscriptionEvent) -> Optional[Recording]:
        """Store a transcription result. Never changes call status."""
        resolved = await self.resolve_call(event.provider_call_id, event.call_id, event.to_number)
        if resolved is None:
            return None
        call = resolved.call

        recording = await self.recordings.get_by_call_id(call.id)
        if recording is None:
            logger.info(f"Transcription for call {call.id} arrived before its recording, ignored")
            return None

        if event.status not in TRANSCRIPTION_FINAL_STATUSES:
            logger.debug(f"Transcription status {event.status} ignored for call {call.id}")
            return None

        values: Dict[str, Any] = {
            "transcription_status": event.status,
            "transcription_id": event.transcription_id,
        }
        if event.status == "completed":
            values["transcription_text"] = event.text or ""

        updated = await self.recordings.conditional_update(
            recording.id, "transcription_status", ["pending"], **values
        )
        if updated is None:
            logger.info(f"Transcription for call {call.id} already {recording.transcription_status}")
            return None

        await self.events.append(
            call.id,
            f"transcription_{event.status}",
            {"transcription_id": event.transcription_id, "length": len(event.text or "")},
        )
        await self.session.commit()
        return updated

    async def apply_recording_status_event(self, event: RecordingStatusEvent) -> Optional[Call]:
        """Track recording progress. ``in-progress`` moves an answered call to ``recording``."""
        resolved = await self.resolve_call(event.provider_call_id, event.call_id)
        if resolved is None:
            return None
        call = resolved.call

        await self.events.append(
            call.id,
            "recording_status",
            {"recording_status": event.recording_status, "recording_id": event.recording_id},
        )

        updated = None
        if event.recording_status == "in-progress":
            updated = await self.lifecycle.transition(
                call.id, CallTrigger.RECORDING_PROGRESS, CallStatus.RECORDING
            )
        await self.session.commit()
        return updated


def get_webhook_reconciler(
    session: AsyncSession, provider: Optional[TelephonyProvider] = None
) -> WebhookReconciler:
    """Get webhook reconciler instance."""
    return WebhookReconciler(session, provider or get_telephony_provider())


async def run_recording_fetch(
    recording_id: str,
    provider: Optional[TelephonyProvider] = None,
    delay_seconds: Optional[float] = None,
) -> None:
    """
    Background task: wait the grace delay, then download and attach a recording.

    The provider may still be finalizing the artifact when its webhook fires.
    """
    provider = provider or get_telephony_provider()
    if delay_seconds is None:
        delay_seconds = get_settings().dispatch.recording_fetch_delay_seconds
    if delay_seconds > 0:
        await asyncio.sleep(delay_seconds)

    try:
        async with get_session_context() as session:
            await WebhookReconciler(session, provider).fetch_and_attach_recording(recording_id)
    except Exception as e:
        logger.error(f"Recording fetch task for {recording_id} crashed: {e}", exc_info=True)

"""Pydantic models for call endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from call_orchestrator.database.models import Call, CallEvent, Recording


class CreateCallRequest(BaseModel):
    """Request model for placing one outbound call."""

    model_config = ConfigDict(populate_by_name=True)

    phone_number: Optional[str] = Field(
        default=None, alias="phoneNumber", description="Destination number in E.164 format"
    )
    custom_message: Optional[str] = Field(
        default=None, alias="customMessage", description="Message spoken to the callee"
    )
    scheduled_for: Optional[datetime] = Field(
        default=None, alias="scheduledFor", description="Dispatch no earlier than this instant"
    )
    metadata: Optional[Dict[str, Any]] = None


class CallAcceptedResponse(BaseModel):
    """Response for an accepted call."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(..., alias="callId")
    status: str

    @classmethod
    def from_call(cls, call: Call) -> "CallAcceptedResponse":
        return cls(call_id=call.id, status=call.status)


class CallResponse(BaseModel):
    """Response model for a call."""

    model_config = ConfigDict(populate_by_name=True)

    call_id: str = Field(..., alias="callId")
    status: str = Field(
        ...,
        description="queued, scheduled, initiating, initiated, ringing, answered, recording, "
        "recording_received, completed, failed, cancelled",
    )
    phone_number: str = Field(..., alias="phoneNumber")
    from_number: str = Field(..., alias="fromNumber")
    message: str
    provider_call_id: Optional[str] = Field(default=None, alias="providerCallId")
    batch_id: Optional[str] = Field(default=None, alias="batchId")
    scheduled_for: Optional[datetime] = Field(default=None, alias="scheduledFor")
    duration_seconds: Optional[int] = Field(default=None, alias="durationSeconds")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")

    @classmethod
    def from_call(cls, call: Call) -> "CallResponse":
        return cls(
            call_id=call.id,
            status=call.status,
            phone_number=call.to_number,
            from_number=call.from_number,
            message=call.message,
            provider_call_id=call.provider_call_id,
            batch_id=call.batch_id,
            scheduled_for=call.scheduled_for,
            duration_seconds=call.duration_seconds,
            error_message=call.error_message,
            metadata=call.call_metadata or {},
            created_at=call.created_at,
            updated_at=call.updated_at,
            completed_at=call.completed_at,
        )


class RecordingResponse(BaseModel):
    """Summary of a call's recording and transcription."""

    model_config = ConfigDict(populate_by_name=True)

    recording_id: str = Field(..., alias="recordingId")
    provider_recording_id: Optional[str] = Field(default=None, alias="recordingSid")
    status: str
    filename: Optional[str] = None
    duration_seconds: Optional[int] = Field(default=None, alias="durationSeconds")
    size_bytes: Optional[int] = Field(default=None, alias="sizeBytes")
    transcription_status: str = Field(..., alias="transcriptionStatus")
    transcription_text: Optional[str] = Field(default=None, alias="transcriptionText")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")
    downloaded_at: Optional[datetime] = Field(default=None, alias="downloadedAt")

    @classmethod
    def from_recording(cls, recording: Recording) -> "RecordingResponse":
        return cls(
            recording_id=recording.id,
            provider_recording_id=recording.provider_recording_id,
            status=recording.status,
            filename=recording.filename,
            duration_seconds=recording.duration_seconds,
            size_bytes=recording.size_bytes,
            transcription_status=recording.transcription_status,
            transcription_text=recording.transcription_text,
            error_message=recording.error_message,
            downloaded_at=recording.downloaded_at,
        )


class CallEventResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(..., alias="eventType")
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_event(cls, event: CallEvent) -> "CallEventResponse":
        return cls(event_type=event.event_type, payload=event.payload or {}, timestamp=event.timestamp)


class CallDetailResponse(CallResponse):
    """A call with its progress, recording and audit trail."""

    progress: int = Field(..., description="Lifecycle progress percentage")
    recording: Optional[RecordingResponse] = None
    events: List[CallEventResponse] = Field(default_factory=list)


class CallListResponse(BaseModel):
    """Response model for listing calls."""

    calls: List[CallResponse]
    total: int


class AccountStatsResponse(BaseModel):
    """Call totals and quota usage for the caller's account."""

    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId")
    total_calls: int = Field(..., alias="totalCalls")
    answered_calls: int = Field(..., alias="answeredCalls", description="Calls that completed")
    total_duration_seconds: int = Field(..., alias="totalDurationSeconds")
    average_duration_seconds: int = Field(..., alias="averageDurationSeconds")
    status_counts: Dict[str, int] = Field(default_factory=dict, alias="statusCounts")
    quota: Dict[str, Any] = Field(default_factory=dict)
    recent_activity: List[CallResponse] = Field(
        default_factory=list, alias="recentActivity", description="Latest calls, newest first"
    )

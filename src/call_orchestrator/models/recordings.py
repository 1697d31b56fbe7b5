"""Pydantic models for recording endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from call_orchestrator.database.models import Recording


class RecordingFileResponse(BaseModel):
    """A downloaded recording and where to fetch it."""

    model_config = ConfigDict(populate_by_name=True)

    recording_id: str = Field(..., alias="recordingId")
    call_id: str = Field(..., alias="callId")
    filename: str
    content_type: Optional[str] = Field(default=None, alias="contentType")
    size_bytes: Optional[int] = Field(default=None, alias="sizeBytes")
    duration_seconds: Optional[int] = Field(default=None, alias="durationSeconds")
    downloaded_at: Optional[datetime] = Field(default=None, alias="downloadedAt")
    path: str = Field(..., description="Download path for this file")

    @classmethod
    def from_recording(cls, recording: Recording, prefix: str) -> "RecordingFileResponse":
        return cls(
            recording_id=recording.id,
            call_id=recording.call_id,
            filename=recording.filename,
            content_type=recording.content_type,
            size_bytes=recording.size_bytes,
            duration_seconds=recording.duration_seconds,
            downloaded_at=recording.downloaded_at,
            path=f"{prefix}/recordings/{recording.filename}",
        )


class RecordingListResponse(BaseModel):
    recordings: List[RecordingFileResponse]
    total: int

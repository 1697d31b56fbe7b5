"""Recording endpoints: list an account's downloaded recordings and fetch the audio."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.auth.dependencies import get_principal
from call_orchestrator.config import get_settings
from call_orchestrator.database.session import get_session
from call_orchestrator.models.recordings import RecordingFileResponse, RecordingListResponse
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.recordings_service import get_recordings_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recordings", tags=["recordings"])


@router.get(
    "",
    response_model=RecordingListResponse,
    status_code=status.HTTP_200_OK,
    summary="List recordings",
    description="List the account's downloaded recordings, newest first.",
)
async def list_recordings(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of records to return"),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> RecordingListResponse:
    recordings = await get_recordings_service(session).list_recordings(principal, skip, limit)
    prefix = get_settings().api_v1_prefix
    return RecordingListResponse(
        recordings=[RecordingFileResponse.from_recording(r, prefix) for r in recordings],
        total=len(recordings),
    )


@router.get(
    "/{filename}",
    response_class=FileResponse,
    status_code=status.HTTP_200_OK,
    summary="Download recording",
    description="The stored audio file. Files of other accounts are reported as not found.",
)
async def download_recording(
    filename: str,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> FileResponse:
    stored = await get_recordings_service(session).open_recording(principal, filename)
    return FileResponse(
        stored.path,
        media_type=stored.recording.content_type or "audio/mpeg",
        filename=filename,
    )

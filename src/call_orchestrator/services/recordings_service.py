"""Read side of downloaded recordings: listing and serving the stored files."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import Recording
from call_orchestrator.exceptions import NotFoundError
from call_orchestrator.repositories.recordings_repository import RecordingsRepository
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.recording_storage_service import (
    RecordingStorageService,
    get_recording_storage_service,
)

logger = logging.getLogger(__name__)


@dataclass
class RecordingFile:
    recording: Recording
    path: Path


class RecordingsService:
    """Recordings are only visible to the account that placed the call."""

    def __init__(self, session: AsyncSession, storage: Optional[RecordingStorageService] = None):
        self.session = session
        self._repo = RecordingsRepository(session)
        self._storage = storage or get_recording_storage_service()

    async def list_recordings(
        self, principal: Principal, skip: int = 0, limit: int = 100
    ) -> List[Recording]:
        return await self._repo.list_downloaded_by_account_id(principal.account_id, skip, limit)

    async def open_recording(self, principal: Principal, filename: str) -> RecordingFile:
        """
        Resolve a stored recording file for download.

        Raises:
            NotFoundError: Unknown file, another account's file, or missing on disk
        """
        recording = await self._repo.get_downloaded_by_filename(principal.account_id, filename)
        path = self._storage.path_for(filename) if recording is not None else None
        if path is None:
            if recording is not None:
                logger.warning(f"Recording {recording.id} is missing its file {filename}")
            raise NotFoundError(resource="Recording", resource_id=filename)
        return RecordingFile(recording=recording, path=path)


def get_recordings_service(session: AsyncSession) -> RecordingsService:
    """Factory for RecordingsService."""
    return RecordingsService(session)

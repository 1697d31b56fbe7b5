"""Local filesystem storage for downloaded call recordings."""

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from call_orchestrator.config import get_settings
from call_orchestrator.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
}

_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


@dataclass(frozen=True)
class StoredRecording:
    filename: str
    path: Path
    size_bytes: int


class RecordingStorageService:
    """Writes recording artifacts under the configured recordings directory."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or get_settings().storage.recordings_dir)

    @staticmethod
    def build_filename(call_id: str, recording_id: str, content_type: str) -> str:
        """``<timestamp>_<callId>_<recordingSid>.<ext>``"""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        extension = _EXTENSIONS.get(content_type.lower(), "mp3")
        return (
            f"{timestamp}_{_UNSAFE.sub('', call_id)}_{_UNSAFE.sub('', recording_id)}.{extension}"
        )

    def _write(self, path: Path, content: bytes) -> int:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path.stat().st_size

    async def save(
        self, call_id: str, recording_id: str, content: bytes, content_type: str = "audio/mpeg"
    ) -> StoredRecording:
        """
        Persist a recording artifact.

        Raises:
            ExternalServiceError: If the artifact is empty or cannot be written
        """
        if not content:
            raise ExternalServiceError(
                service="recording_storage",
                message="Downloaded file is empty (0 bytes)",
                status_code=500,
            )

        filename = self.build_filename(call_id, recording_id, content_type)
        path = self.base_dir / filename
        try:
            size = await asyncio.to_thread(self._write, path, content)
        except OSError as e:
            logger.error(f"Failed to write recording {filename}: {e}")
            raise ExternalServiceError(
                service="recording_storage",
                message=f"Failed to store recording: {e}",
                status_code=500,
            ) from e

        logger.info(f"Recording saved: {filename} ({size} bytes)")
        return StoredRecording(filename=filename, path=path, size_bytes=size)

    def path_for(self, filename: str) -> Optional[Path]:
        """Path of a stored file, or None if the name is unsafe or nothing is stored under it."""
        if not filename or Path(filename).name != filename:
            return None
        path = self.base_dir / filename
        if not path.is_file():
            return None
        return path


def get_recording_storage_service() -> RecordingStorageService:
    """Get recording storage service instance."""
    return RecordingStorageService()

"""Repositories package."""

from call_orchestrator.repositories.api_key_repository import ApiKeyRepository
from call_orchestrator.repositories.base import BaseRepository
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.repositories.quota_repository import QuotaRepository
from call_orchestrator.repositories.recordings_repository import RecordingsRepository

__all__ = [
    "BaseRepository",
    "CallsRepository",
    "RecordingsRepository",
    "CallEventsRepository",
    "QuotaRepository",
    "ApiKeyRepository",
]

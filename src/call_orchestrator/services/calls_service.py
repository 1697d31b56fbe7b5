"""Read side of the call lifecycle: listing and detail views."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import Call, CallEvent, Recording
from call_orchestrator.exceptions import NotFoundError, ValidationError
from call_orchestrator.repositories.call_events_repository import CallEventsRepository
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.repositories.recordings_repository import RecordingsRepository
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.call_state import CallStatus, call_progress
from call_orchestrator.services.quota_service import QuotaService

logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10


@dataclass
class CallPage:
    calls: List[Call]
    total: int


@dataclass
class CallDetail:
    call: Call
    progress: int
    recording: Optional[Recording] = None
    events: List[CallEvent] = field(default_factory=list)


@dataclass
class AccountStats:
    account_id: str
    total_calls: int
    answered_calls: int
    total_duration_seconds: int
    average_duration_seconds: int
    status_counts: Dict[str, int]
    quota: Dict[str, Any]
    recent_calls: List[Call]


class CallsService:
    """Service for reading calls owned by an account."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._repo = CallsRepository(session)
        self._recordings = RecordingsRepository(session)
        self._events = CallEventsRepository(session)

    async def list_calls(
        self,
        principal: Principal,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> CallPage:
        """List an account's calls, newest first."""
        if status is not None:
            try:
                status = CallStatus(status).value
            except ValueError:
                raise ValidationError(
                    f"Unknown call status: {status}",
                    details={"allowed": [s.value for s in CallStatus]},
                )

        calls = await self._repo.get_by_account_id(principal.account_id, status, skip, limit)
        total = await self._repo.count_by_account_id(principal.account_id, status)
        return CallPage(calls=calls, total=total)

    async def get_call_detail(self, principal: Principal, call_id: str) -> CallDetail:
        """
        Load a call with its recording and event history.

        Calls of other accounts are reported as not found.
        """
        if not call_id or not call_id.strip():
            raise ValidationError("call_id is required")

        call = await self._repo.get_by_id(call_id)
        if call is None or call.account_id != principal.account_id:
            raise NotFoundError(resource="Call", resource_id=call_id)

        recording = await self._recordings.get_by_call_id(call.id)
        events = await self._events.get_by_call_id(call.id)
        return CallDetail(
            call=call,
            progress=call_progress(call.status),
            recording=recording,
            events=events,
        )

    async def get_account_stats(self, principal: Principal) -> AccountStats:
        """
        Call totals, quota usage and the latest calls of the caller's account.

        A call counts as answered once it completed.
        """
        totals = await self._repo.status_totals(principal.account_id)
        total_calls = sum(count for count, _ in totals.values())
        total_duration = sum(duration for _, duration in totals.values())
        quota = await QuotaService(self.session).get_usage(principal.account_id)
        recent = await self._repo.get_by_account_id(
            principal.account_id, limit=RECENT_ACTIVITY_LIMIT
        )
        return AccountStats(
            account_id=principal.account_id,
            total_calls=total_calls,
            answered_calls=totals.get(CallStatus.COMPLETED.value, (0, 0))[0],
            total_duration_seconds=total_duration,
            average_duration_seconds=round(total_duration / total_calls) if total_calls else 0,
            status_counts={status: count for status, (count, _) in totals.items()},
            quota=quota,
            recent_calls=recent,
        )


def get_calls_service(session: AsyncSession) -> CallsService:
    """Factory for CallsService."""
    return CallsService(session=session)

"""Call events repository (append-only audit log)."""

import logging
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import CallEvent
from call_orchestrator.exceptions import DatabaseError
from call_orchestrator.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CallEventsRepository(BaseRepository[CallEvent]):
    """Repository for call events. Events are only ever appended."""

    def __init__(self, session: AsyncSession):
        super().__init__(CallEvent, session)

    async def append(
        self, call_id: str, event_type: str, payload: Optional[dict[str, Any]] = None
    ) -> CallEvent:
        """Append an event to a call's log."""
        return await self.create(call_id=call_id, event_type=event_type, payload=payload or {})

    async def get_by_call_id(self, call_id: str, limit: int = 200) -> List[CallEvent]:
        """Get a call's events in append order."""
        try:
            result = await self.session.execute(
                select(CallEvent)
                .where(CallEvent.call_id == call_id)
                .order_by(CallEvent.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting events for call {call_id}: {e}")
            raise DatabaseError("Failed to retrieve call events") from e

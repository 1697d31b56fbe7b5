"""Data access for calls: listings, lookups used by webhook reconciliation, guarded status writes."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import Call
from call_orchestrator.exceptions import DatabaseError
from call_orchestrator.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class CallsRepository(BaseRepository[Call]):
    """Status changes must go through ``conditional_update`` so that concurrent
    writers (dispatch task, webhook deliveries) cannot lose each other's updates.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(Call, session)

    async def get_by_account_id(
        self,
        account_id: str,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Call]:
        """Get calls for an account, newest first, optionally filtered by status."""
        try:
            query = select(Call).where(Call.account_id == account_id)
            if status:
                query = query.where(Call.status == status)
            query = query.order_by(Call.created_at.desc()).offset(skip).limit(limit)

            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting calls for account {account_id}: {e}")
            raise DatabaseError("Failed to retrieve calls") from e

    async def count_by_account_id(self, account_id: str, status: Optional[str] = None) -> int:
        """Count calls for an account."""
        try:
            query = select(func.count(Call.id)).where(Call.account_id == account_id)
            if status:
                query = query.where(Call.status == status)

            result = await self.session.execute(query)
            return result.scalar_one() or 0
        except SQLAlchemyError as e:
            logger.error(f"Error counting calls for account {account_id}: {e}")
            raise DatabaseError("Failed to count calls") from e

    async def status_totals(self, account_id: str) -> Dict[str, Tuple[int, int]]:
        """Per status: how many of the account's calls, and their summed duration in seconds."""
        try:
            result = await self.session.execute(
                select(
                    Call.status,
                    func.count(Call.id),
                    func.coalesce(func.sum(Call.duration_seconds), 0),
                )
                .where(Call.account_id == account_id)
                .group_by(Call.status)
            )
            return {status: (count, int(duration)) for status, count, duration in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Error aggregating calls for account {account_id}: {e}")
            raise DatabaseError("Failed to aggregate calls") from e

    async def get_for_update(self, call_id: str) -> Optional[Call]:
        """
        Re-read a call and lock its row until the transaction ends (no-op on SQLite).

        Read-modify-write of ``call_metadata`` goes through here so concurrent
        webhooks for the same call merge into the latest value.
        """
        try:
            result = await self.session.execute(
                select(Call)
                .where(Call.id == call_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error locking call {call_id}: {e}")
            raise DatabaseError("Failed to retrieve call") from e

    async def get_by_provider_call_id(self, provider_call_id: str) -> Optional[Call]:
        """Get a call by the provider's call id (e.g. Twilio CallSid)."""
        try:
            result = await self.session.execute(
                select(Call)
                .where(Call.provider_call_id == provider_call_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting call by provider id {provider_call_id}: {e}")
            raise DatabaseError("Failed to retrieve call") from e

    async def get_active_by_to_number(
        self, to_number: str, statuses: Iterable[str]
    ) -> List[Call]:
        """Get calls to a destination number whose status is one of ``statuses``."""
        try:
            result = await self.session.execute(
                select(Call)
                .where(Call.to_number == to_number, Call.status.in_(list(statuses)))
                .order_by(Call.created_at.desc())
                .execution_options(populate_existing=True)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting active calls to {to_number}: {e}")
            raise DatabaseError("Failed to retrieve calls") from e

    async def get_by_batch_id(self, batch_id: str, account_id: Optional[str] = None) -> List[Call]:
        """Get the calls of a batch in creation order."""
        try:
            query = select(Call).where(Call.batch_id == batch_id)
            if account_id:
                query = query.where(Call.account_id == account_id)
            query = query.order_by(Call.created_at.asc(), Call.id.asc()).execution_options(
                populate_existing=True
            )

            result = await self.session.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting calls for batch {batch_id}: {e}")
            raise DatabaseError("Failed to retrieve batch calls") from e

    async def get_due_scheduled(self, now: datetime, limit: int = 100) -> List[Call]:
        """Get scheduled calls whose time has come."""
        try:
            result = await self.session.execute(
                select(Call)
                .where(Call.status == "scheduled", Call.scheduled_for <= now)
                .order_by(Call.scheduled_for.asc())
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting due scheduled calls: {e}")
            raise DatabaseError("Failed to retrieve scheduled calls") from e

    async def conditional_update(
        self, call_id: str, expected_statuses: Iterable[str], **values
    ) -> Optional[Call]:
        """Update a call only while its status is one of ``expected_statuses``."""
        return await self.update_where(call_id, "status", expected_statuses, **values)

    async def set_provider_call_id_if_empty(self, call_id: str, provider_call_id: str) -> bool:
        """Store the provider call id unless one is already set."""
        try:
            result = await self.session.execute(
                update(Call)
                .where(Call.id == call_id, Call.provider_call_id.is_(None))
                .values(provider_call_id=provider_call_id)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Error setting provider id on call {call_id}: {e}")
            raise DatabaseError("Failed to update call") from e

"""Account quota repository."""

import logging
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import AccountQuota
from call_orchestrator.exceptions import DatabaseError
from call_orchestrator.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class QuotaRepository(BaseRepository[AccountQuota]):
    """Repository for per-account quota counters (keyed by account_id)."""

    def __init__(self, session: AsyncSession):
        super().__init__(AccountQuota, session)

    async def get_by_account_id(
        self, account_id: str, for_update: bool = False
    ) -> Optional[AccountQuota]:
        """
        Get the quota row for an account.

        Args:
            account_id: Account ID
            for_update: Lock the row until the transaction ends (no-op on SQLite)
        """
        try:
            query = select(AccountQuota).where(AccountQuota.account_id == account_id)
            if for_update:
                query = query.with_for_update()
            result = await self.session.execute(
                query.execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting quota for account {account_id}: {e}")
            raise DatabaseError("Failed to retrieve account quota") from e

    async def ensure_row(self, account_id: str, day_window: str, month_window: str) -> None:
        """
        Insert a zeroed row for the account unless one exists.

        Concurrent first requests for the same account both succeed; the
        losing insert is skipped by the database instead of raising.
        """
        dialect = postgresql if self.session.get_bind().dialect.name == "postgresql" else sqlite
        statement = (
            dialect.insert(AccountQuota)
            .values(
                account_id=account_id,
                daily_count=0,
                monthly_count=0,
                day_window=day_window,
                month_window=month_window,
            )
            .on_conflict_do_nothing(index_elements=["account_id"])
        )
        try:
            await self.session.execute(statement)
        except SQLAlchemyError as e:
            logger.error(f"Error creating quota for account {account_id}: {e}")
            raise DatabaseError("Failed to create account quota") from e

    async def increment(self, account_id: str, count: int) -> None:
        """Add ``count`` to both counters in one statement."""
        try:
            await self.session.execute(
                update(AccountQuota)
                .where(AccountQuota.account_id == account_id)
                .values(
                    daily_count=AccountQuota.daily_count + count,
                    monthly_count=AccountQuota.monthly_count + count,
                )
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error incrementing quota for account {account_id}: {e}")
            raise DatabaseError("Failed to update account quota") from e

    async def set_limits(
        self, account_id: str, daily_limit: Optional[int], monthly_limit: Optional[int]
    ) -> None:
        """Override the configured default limits for an account."""
        try:
            await self.session.execute(
                update(AccountQuota)
                .where(AccountQuota.account_id == account_id)
                .values(daily_limit=daily_limit, monthly_limit=monthly_limit)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error setting quota limits for account {account_id}: {e}")
            raise DatabaseError("Failed to update account quota") from e

"""API key repository."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import ApiKey
from call_orchestrator.exceptions import DatabaseError
from call_orchestrator.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class ApiKeyRepository(BaseRepository[ApiKey]):
    """Repository for client API keys."""

    def __init__(self, session: AsyncSession):
        super().__init__(ApiKey, session)

    async def get_by_hash(self, key_hash: str) -> Optional[ApiKey]:
        """Get an API key by the hash of its raw value."""
        try:
            result = await self.session.execute(select(ApiKey).where(ApiKey.key_hash == key_hash))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting API key by hash: {e}")
            raise DatabaseError("Failed to retrieve API key") from e

    async def touch(self, api_key_id: str, used_at: datetime) -> None:
        """Record the last time a key was used."""
        try:
            await self.session.execute(
                update(ApiKey)
                .where(ApiKey.id == api_key_id)
                .values(last_used_at=used_at)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error updating API key {api_key_id}: {e}")
            raise DatabaseError("Failed to update API key") from e

    async def list_by_account_id(self, account_id: str) -> List[ApiKey]:
        """All keys of an account, newest first, revoked ones included."""
        try:
            result = await self.session.execute(
                select(ApiKey)
                .where(ApiKey.account_id == account_id)
                .order_by(ApiKey.created_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing API keys for account {account_id}: {e}")
            raise DatabaseError("Failed to list API keys") from e

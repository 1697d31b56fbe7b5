"""Recordings repository for data access operations."""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import Call, Recording
from call_orchestrator.exceptions import DatabaseError
from call_orchestrator.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class RecordingsRepository(BaseRepository[Recording]):
    """Repository for call recordings."""

    def __init__(self, session: AsyncSession):
        super().__init__(Recording, session)

    async def get_by_call_id(self, call_id: str) -> Optional[Recording]:
        """Get the recording attached to a call."""
        try:
            result = await self.session.execute(
                select(Recording)
                .where(Recording.call_id == call_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting recording for call {call_id}: {e}")
            raise DatabaseError("Failed to retrieve recording") from e

    async def create_for_call(self, call_id: str, **kwargs) -> Optional[Recording]:
        """
        Create the recording for a call.

        Returns None when the call already has a recording. A unique
        constraint on ``call_id`` backs the existence check, so a concurrent
        duplicate insert also resolves to None. On that path the session is
        rolled back, so this must be the first write of its transaction.
        """
        existing = await self.get_by_call_id(call_id)
        if existing is not None:
            return None

        try:
            recording = Recording(call_id=call_id, **kwargs)
            self.session.add(recording)
            await self.session.flush()
            await self.session.refresh(recording)
            return recording
        except IntegrityError:
            await self.session.rollback()
            logger.info(f"Recording for call {call_id} already exists (concurrent insert)")
            return None
        except SQLAlchemyError as e:
            logger.error(f"Error creating recording for call {call_id}: {e}")
            await self.session.rollback()
            raise DatabaseError("Failed to create recording") from e

    async def conditional_update(
        self,
        recording_id: str,
        field: str,
        expected: Iterable[str],
        **values,
    ) -> Optional[Recording]:
        """Update a recording only while ``field`` holds one of ``expected``."""
        return await self.update_where(recording_id, field, expected, **values)

    async def list_downloaded_by_account_id(
        self, account_id: str, skip: int = 0, limit: int = 100
    ) -> List[Recording]:
        """Downloaded recordings of an account's calls, newest first."""
        try:
            result = await self.session.execute(
                select(Recording)
                .join(Call, Call.id == Recording.call_id)
                .where(Call.account_id == account_id, Recording.status == "downloaded")
                .order_by(Recording.downloaded_at.desc())
                .offset(skip)
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing recordings for account {account_id}: {e}")
            raise DatabaseError("Failed to list recordings") from e

    async def get_downloaded_by_filename(
        self, account_id: str, filename: str
    ) -> Optional[Recording]:
        """A downloaded recording by its stored filename, if it belongs to the account."""
        try:
            result = await self.session.execute(
                select(Recording)
                .join(Call, Call.id == Recording.call_id)
                .where(
                    Call.account_id == account_id,
                    Recording.filename == filename,
                    Recording.status == "downloaded",
                )
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting recording {filename}: {e}")
            raise DatabaseError("Failed to retrieve recording") from e

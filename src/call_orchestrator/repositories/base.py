"""Generic repository with the reads and writes every table here needs."""

import logging
from typing import Any, Generic, Iterable, Optional, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import Base
from call_orchestrator.exceptions import DatabaseError

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository.

    Rows are mutated by webhooks and background tasks in other sessions, so
    reads by id always refresh instances already held in this session's
    identity map.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def _name(self) -> str:
        return self.model.__name__

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        try:
            result = await self.session.execute(
                select(self.model)
                .where(self.model.id == id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting {self._name} {id}: {e}")
            raise DatabaseError(f"Failed to retrieve {self._name}") from e

    async def create(self, **kwargs: Any) -> ModelType:
        """Insert a row and return it with server defaults loaded."""
        try:
            instance = self.model(**kwargs)
            self.session.add(instance)
            await self.session.flush()
            await self.session.refresh(instance)
            return instance
        except SQLAlchemyError as e:
            logger.error(f"Error creating {self._name}: {e}")
            await self.session.rollback()
            raise DatabaseError(f"Failed to create {self._name}") from e

    async def update_where(
        self, id: str, field: str, expected: Iterable[Any], **values: Any
    ) -> Optional[ModelType]:
        """
        Compare-and-set: update a row only while ``field`` holds one of ``expected``.

        The check and the write are a single UPDATE, so two writers racing on
        the same row cannot both succeed.

        Returns:
            The refreshed row, or None if it did not match
        """
        expected = list(expected)
        column = getattr(self.model, field)
        try:
            result = await self.session.execute(
                update(self.model)
                .where(self.model.id == id, column.in_(expected))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self._name} {id}: {e}")
            raise DatabaseError(f"Failed to update {self._name}") from e

        if result.rowcount == 0:
            logger.debug(f"{self._name} {id} not updated: {field} not in {expected}")
            return None
        return await self.get_by_id(id)

"""Celery tasks for releasing scheduled calls."""

import asyncio
import logging

from celery import shared_task

from call_orchestrator.database.session import close_db
from call_orchestrator.services.dispatcher_service import run_scheduled_release

logger = logging.getLogger(__name__)


async def _release() -> list:
    try:
        return await run_scheduled_release()
    finally:
        # The engine is bound to this event loop
        await close_db()


@shared_task(
    bind=True,
    name="call_orchestrator.tasks.scheduling.release_scheduled_calls",
    max_retries=3,
    default_retry_delay=30,
)
def release_scheduled_calls(self) -> dict:
    """
    Move due scheduled calls back to queued and dispatch them.

    Returns:
        Dictionary with the released call ids: {"released": [...]}
    """
    try:
        released = asyncio.run(_release())
        if released:
            logger.info(f"Scheduled release dispatched {len(released)} call(s)")
        return {"released": released}
    except Exception as e:
        logger.error(f"Error releasing scheduled calls: {e}", exc_info=True)
        raise self.retry(exc=e)

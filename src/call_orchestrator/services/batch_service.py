"""Batch dispatcher: admits a list of calls together and dispatches them in sequence."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.config import get_settings
from call_orchestrator.database.models import Call
from call_orchestrator.database.session import get_session_context
from call_orchestrator.exceptions import NotFoundError, ValidationError
from call_orchestrator.repositories.calls_repository import CallsRepository
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.call_state import CallStatus
from call_orchestrator.services.dispatcher_service import (
    CallDispatcher,
    CallRequest,
    mark_dispatch_failed,
    run_dispatch,
    validate_call_request,
)
from call_orchestrator.services.telephony_service import TelephonyProvider, get_telephony_provider

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    batch_id: str
    calls: List[Call] = field(default_factory=list)


class BatchDispatcher:
    """Fans a list of call requests into one admission and sequential dispatches."""

    def __init__(self, session: AsyncSession, provider: TelephonyProvider):
        self.session = session
        self.dispatcher = CallDispatcher(session, provider)
        self.settings = get_settings().dispatch

    async def dispatch_batch(
        self,
        principal: Principal,
        requests: Sequence[CallRequest],
        batch_id: Optional[str] = None,
    ) -> BatchResult:
        """
        Validate, admit and create every call of a batch.

        The batch is admitted or rejected as a whole. Calls are committed
        before returning; dispatch happens in ``run_batch``.

        Raises:
            ValidationError: Empty or oversized batch, or an invalid item
            QuotaExceededError: The whole batch does not fit the allowance
        """
        if not requests:
            raise ValidationError("Batch must contain at least one call")
        if len(requests) > self.settings.max_batch_size:
            raise ValidationError(
                f"Batch size exceeds maximum of {self.settings.max_batch_size} calls",
                details={"max_batch_size": self.settings.max_batch_size, "received": len(requests)},
            )

        validated = []
        errors: Dict[str, Any] = {}
        for index, request in enumerate(requests):
            try:
                validated.append(validate_call_request(request))
            except ValidationError as e:
                errors[str(index)] = e.details.get("validation_errors", e.message)
        if errors:
            raise ValidationError("Invalid calls in batch", errors=errors)

        await self.dispatcher.quota.require_admission(principal.account_id, len(validated))

        batch_id = batch_id or f"batch_{uuid.uuid4().hex[:16]}"
        calls = []
        for item in validated:
            calls.append(await self.dispatcher.create_validated(principal, item, batch_id=batch_id))

        await self.dispatcher.quota.record_admission(principal.account_id, len(calls))
        await self.session.commit()

        logger.info(f"Batch {batch_id} accepted: {len(calls)} calls for account {principal.account_id}")
        return BatchResult(batch_id=batch_id, calls=calls)

    async def get_batch_status(self, principal: Principal, batch_id: str) -> Dict[str, Any]:
        """Aggregate status of a batch's calls."""
        calls = await self.dispatcher.calls.get_by_batch_id(batch_id, principal.account_id)
        if not calls:
            raise NotFoundError(resource="Batch", resource_id=batch_id)

        counts = Counter(call.status for call in calls)
        return {
            "batch_id": batch_id,
            "total_calls": len(calls),
            "status_counts": dict(counts),
            "calls": calls,
        }


def get_batch_dispatcher(
    session: AsyncSession, provider: Optional[TelephonyProvider] = None
) -> BatchDispatcher:
    """Get batch dispatcher instance."""
    return BatchDispatcher(session, provider or get_telephony_provider())


async def run_batch(
    call_ids: Sequence[str],
    provider: Optional[TelephonyProvider] = None,
    delay_ms: Optional[int] = None,
) -> None:
    """
    Background task: dispatch a batch one call at a time.

    A failing call is marked failed and the loop moves on.
    Calls that are no longer queued (scheduled, cancelled) are skipped.
    """
    provider = provider or get_telephony_provider()
    if delay_ms is None:
        delay_ms = get_settings().dispatch.batch_delay_ms

    for index, call_id in enumerate(call_ids):
        if index and delay_ms:
            await asyncio.sleep(delay_ms / 1000)

        try:
            async with get_session_context() as session:
                call = await CallsRepository(session).get_by_id(call_id)
                status = call.status if call else None
            if status != CallStatus.QUEUED.value:
                logger.info(f"Batch call {call_id} skipped in status {status}")
                continue

            await run_dispatch(call_id, provider)
        except Exception as e:
            logger.error(f"Batch step for call {call_id} crashed: {e}", exc_info=True)
            await mark_dispatch_failed(call_id, f"Internal dispatch error: {e}", provider)

    logger.info(f"Batch dispatch finished for {len(call_ids)} call(s)")

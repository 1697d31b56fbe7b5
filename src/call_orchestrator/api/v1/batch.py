"""Batch endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.auth.dependencies import enforce_rate_limit, get_principal
from call_orchestrator.database.session import get_session
from call_orchestrator.models.batch import (
    BatchAcceptedResponse,
    BatchCallRequest,
    BatchStatusResponse,
)
from call_orchestrator.models.calls import CallAcceptedResponse
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.batch_service import get_batch_dispatcher, run_batch
from call_orchestrator.services.call_state import CallStatus
from call_orchestrator.services.dispatcher_service import CallRequest
from call_orchestrator.services.telephony_service import TelephonyProvider, get_telephony_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/batch", tags=["batch"])


@router.post(
    "",
    response_model=BatchAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Dispatch a batch",
    description="Admit a list of calls as one unit and dispatch them one after another.",
)
async def create_batch(
    request: BatchCallRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(enforce_rate_limit),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
) -> BatchAcceptedResponse:
    requests = [
        CallRequest(
            to_number=item.phone_number,
            message=item.custom_message,
            scheduled_for=item.scheduled_for,
            metadata=item.metadata or {},
        )
        for item in request.calls
    ]
    result = await get_batch_dispatcher(session, provider).dispatch_batch(
        principal, requests, batch_id=request.batch_id
    )

    queued = [call.id for call in result.calls if call.status == CallStatus.QUEUED.value]
    if queued:
        background_tasks.add_task(run_batch, queued, provider)

    return BatchAcceptedResponse(
        batch_id=result.batch_id,
        calls=[CallAcceptedResponse.from_call(call) for call in result.calls],
    )


@router.get(
    "/{batch_id}/status",
    response_model=BatchStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Batch status",
)
async def get_batch_status(
    batch_id: str,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> BatchStatusResponse:
    summary = await get_batch_dispatcher(session).get_batch_status(principal, batch_id)
    return BatchStatusResponse(
        batch_id=summary["batch_id"],
        total_calls=summary["total_calls"],
        status_counts=summary["status_counts"],
        calls=[CallAcceptedResponse.from_call(call) for call in summary["calls"]],
    )

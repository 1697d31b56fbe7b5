"""Call endpoints: placing, listing, inspecting and cancelling calls, plus account totals."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.auth.dependencies import enforce_rate_limit, get_principal
from call_orchestrator.database.session import get_session
from call_orchestrator.models.calls import (
    AccountStatsResponse,
    CallAcceptedResponse,
    CallDetailResponse,
    CallEventResponse,
    CallListResponse,
    CallResponse,
    CreateCallRequest,
    RecordingResponse,
)
from call_orchestrator.services.api_key_service import Principal
from call_orchestrator.services.call_state import CallStatus
from call_orchestrator.services.calls_service import get_calls_service
from call_orchestrator.services.dispatcher_service import (
    CallRequest,
    get_call_dispatcher,
    run_dispatch,
)
from call_orchestrator.services.telephony_service import TelephonyProvider, get_telephony_provider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["calls"])


@router.post(
    "/call",
    response_model=CallAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Place a call",
    description="Admit a call against the account quota and dispatch it in the background. "
    "Calls with a future scheduledFor are held until due.",
)
async def create_call(
    request: CreateCallRequest,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(enforce_rate_limit),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
) -> CallAcceptedResponse:
    dispatcher = get_call_dispatcher(session, provider)
    call = await dispatcher.create_call(
        principal,
        CallRequest(
            to_number=request.phone_number,
            message=request.custom_message,
            scheduled_for=request.scheduled_for,
            metadata=request.metadata or {},
        ),
    )

    if call.status == CallStatus.QUEUED.value:
        background_tasks.add_task(run_dispatch, call.id, provider)
    return CallAcceptedResponse.from_call(call)


@router.get(
    "/calls",
    response_model=CallListResponse,
    status_code=status.HTTP_200_OK,
    summary="List calls",
    description="List the account's calls, newest first, optionally filtered by status.",
)
async def list_calls(
    status_filter: Optional[str] = Query(None, alias="status", description="Filter by call status"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum number of records to return"),
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> CallListResponse:
    page = await get_calls_service(session).list_calls(
        principal, status=status_filter, skip=skip, limit=limit
    )
    return CallListResponse(
        calls=[CallResponse.from_call(call) for call in page.calls], total=page.total
    )


@router.get(
    "/calls/{call_id}",
    response_model=CallDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get call",
    description="Get a call with its progress, recording and event history.",
)
async def get_call(
    call_id: str,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> CallDetailResponse:
    detail = await get_calls_service(session).get_call_detail(principal, call_id)
    return CallDetailResponse(
        **CallResponse.from_call(detail.call).model_dump(),
        progress=detail.progress,
        recording=RecordingResponse.from_recording(detail.recording) if detail.recording else None,
        events=[CallEventResponse.from_event(event) for event in detail.events],
    )


@router.post(
    "/calls/{call_id}/cancel",
    response_model=CallAcceptedResponse,
    status_code=status.HTTP_200_OK,
    summary="Cancel call",
    description="Cancel a call that has not finished. Terminal calls return 400.",
)
async def cancel_call(
    call_id: str,
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
    provider: TelephonyProvider = Depends(get_telephony_provider),
) -> CallAcceptedResponse:
    call = await get_call_dispatcher(session, provider).cancel(principal, call_id)
    return CallAcceptedResponse.from_call(call)


@router.get(
    "/stats/account",
    response_model=AccountStatsResponse,
    status_code=status.HTTP_200_OK,
    summary="Account statistics",
    description="Call totals by status, durations, current quota usage and the latest calls.",
)
async def get_account_stats(
    principal: Principal = Depends(get_principal),
    session: AsyncSession = Depends(get_session),
) -> AccountStatsResponse:
    stats = await get_calls_service(session).get_account_stats(principal)
    return AccountStatsResponse(
        account_id=stats.account_id,
        total_calls=stats.total_calls,
        answered_calls=stats.answered_calls,
        total_duration_seconds=stats.total_duration_seconds,
        average_duration_seconds=stats.average_duration_seconds,
        status_counts=stats.status_counts,
        quota=stats.quota,
        recent_activity=[CallResponse.from_call(call) for call in stats.recent_calls],
    )

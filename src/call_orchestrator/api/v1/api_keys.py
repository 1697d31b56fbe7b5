"""Internal endpoints for issuing, listing and revoking client API keys."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.auth.dependencies import require_internal_api_key
from call_orchestrator.database.session import get_session
from call_orchestrator.models.api_keys import (
    ApiKeyCreatedResponse,
    ApiKeyCreateRequest,
    ApiKeyListResponse,
    ApiKeyRevokedResponse,
    ApiKeySummary,
)
from call_orchestrator.services.api_key_service import get_api_key_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.post(
    "",
    response_model=ApiKeyCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue API key",
    description="Issue a key for an account. The raw key is returned once and never stored.",
    dependencies=[Depends(require_internal_api_key)],
)
async def create_api_key(
    request: ApiKeyCreateRequest,
    session: AsyncSession = Depends(get_session),
) -> ApiKeyCreatedResponse:
    api_key, raw_key = await get_api_key_service(session).create_api_key(
        request.account_id, request.name
    )
    await session.commit()
    return ApiKeyCreatedResponse(
        id=api_key.id,
        account_id=api_key.account_id,
        name=api_key.name,
        key=raw_key,
        key_prefix=api_key.key_prefix,
        created_at=api_key.created_at,
    )


@router.get(
    "",
    response_model=ApiKeyListResponse,
    status_code=status.HTTP_200_OK,
    summary="List API keys",
    description="List an account's keys, revoked ones included. Raw keys are never returned.",
    dependencies=[Depends(require_internal_api_key)],
)
async def list_api_keys(
    account_id: str = Query(..., alias="accountId", min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
) -> ApiKeyListResponse:
    keys = await get_api_key_service(session).list_api_keys(account_id)
    return ApiKeyListResponse(
        account_id=account_id, keys=[ApiKeySummary.from_api_key(key) for key in keys]
    )


@router.delete(
    "/{key_id}",
    response_model=ApiKeyRevokedResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke API key",
    description="Deactivate a key. Requests made with it are rejected from then on.",
    dependencies=[Depends(require_internal_api_key)],
)
async def revoke_api_key(
    key_id: str,
    session: AsyncSession = Depends(get_session),
) -> ApiKeyRevokedResponse:
    api_key = await get_api_key_service(session).revoke_api_key(key_id)
    await session.commit()
    return ApiKeyRevokedResponse(key_id=api_key.id)

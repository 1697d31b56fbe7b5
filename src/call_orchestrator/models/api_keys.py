"""Pydantic models for API key issuance and management."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from call_orchestrator.database.models import ApiKey


class ApiKeyCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId", min_length=1, max_length=64)
    name: Optional[str] = Field(default=None, max_length=100)


class ApiKeyCreatedResponse(BaseModel):
    """The raw key is only returned here."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    account_id: str = Field(..., alias="accountId")
    name: Optional[str] = None
    key: str = Field(..., description="Raw API key, send as X-API-Key")
    key_prefix: str = Field(..., alias="keyPrefix")
    created_at: datetime = Field(..., alias="createdAt")


class ApiKeySummary(BaseModel):
    """A stored key without its secret."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    account_id: str = Field(..., alias="accountId")
    name: Optional[str] = None
    key_prefix: str = Field(..., alias="keyPrefix")
    is_active: bool = Field(..., alias="isActive")
    created_at: datetime = Field(..., alias="createdAt")
    last_used_at: Optional[datetime] = Field(default=None, alias="lastUsedAt")

    @classmethod
    def from_api_key(cls, api_key: ApiKey) -> "ApiKeySummary":
        return cls(
            id=api_key.id,
            account_id=api_key.account_id,
            name=api_key.name,
            key_prefix=api_key.key_prefix,
            is_active=api_key.is_active,
            created_at=api_key.created_at,
            last_used_at=api_key.last_used_at,
        )


class ApiKeyListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    account_id: str = Field(..., alias="accountId")
    keys: List[ApiKeySummary]


class ApiKeyRevokedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = "API key revoked successfully"
    key_id: str = Field(..., alias="keyId")

"""API key issuance and authentication."""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from call_orchestrator.database.models import ApiKey
from call_orchestrator.exceptions import AuthenticationError, NotFoundError, ValidationError
from call_orchestrator.repositories.api_key_repository import ApiKeyRepository

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "ok_"


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a client endpoint."""

    account_id: str
    api_key_id: Optional[str] = None


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


class ApiKeyService:
    """Service for API key operations. Raw keys are never stored."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._repo = ApiKeyRepository(session)

    async def create_api_key(
        self, account_id: str, name: Optional[str] = None
    ) -> tuple[ApiKey, str]:
        """
        Issue a new key for an account.

        Returns:
            The stored key row and the raw key, which is only available here
        """
        if not account_id or not account_id.strip():
            raise ValidationError("account_id is required")

        raw_key = f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"
        api_key = await self._repo.create(
            key_hash=hash_api_key(raw_key),
            key_prefix=raw_key[:10],
            account_id=account_id.strip(),
            name=name,
            is_active=True,
        )
        logger.info(f"API key {api_key.id} issued for account {api_key.account_id}")
        return api_key, raw_key

    async def authenticate(self, raw_key: Optional[str]) -> Principal:
        """
        Resolve a raw API key to its principal.

        Raises:
            AuthenticationError: If the key is missing, unknown or inactive
        """
        if not raw_key:
            raise AuthenticationError("API key required")

        api_key = await self._repo.get_by_hash(hash_api_key(raw_key.strip()))
        if api_key is None or not api_key.is_active:
            logger.warning(f"Rejected API key with prefix {raw_key[:10]}")
            raise AuthenticationError("Invalid API key")

        await self._repo.touch(api_key.id, datetime.now(timezone.utc))
        return Principal(account_id=api_key.account_id, api_key_id=api_key.id)

    async def list_api_keys(self, account_id: str) -> List[ApiKey]:
        return await self._repo.list_by_account_id(account_id)

    async def revoke_api_key(self, api_key_id: str) -> ApiKey:
        """
        Deactivate a key. Revoking an already revoked key is a no-op.

        Raises:
            NotFoundError: If no key has this id
        """
        api_key = await self._repo.get_by_id(api_key_id)
        if api_key is None:
            raise NotFoundError(resource="API key", resource_id=api_key_id)
        if api_key.is_active:
            api_key.is_active = False
            await self.session.flush()
            logger.info(f"API key {api_key.id} revoked for account {api_key.account_id}")
        return api_key


def get_api_key_service(session: AsyncSession) -> ApiKeyService:
    """Get API key service instance."""
    return ApiKeyService(session)

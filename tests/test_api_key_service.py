"""Tests for API key issuance and authentication."""

import pytest

from call_orchestrator.exceptions import AuthenticationError, NotFoundError, ValidationError
from call_orchestrator.services.api_key_service import ApiKeyService, hash_api_key


async def test_issued_key_authenticates(session):
    service = ApiKeyService(session)
    api_key, raw_key = await service.create_api_key("acct_1", "primary")

    assert api_key.key_hash == hash_api_key(raw_key)
    assert raw_key not in (api_key.key_hash, api_key.key_prefix)

    principal = await service.authenticate(raw_key)
    assert principal.account_id == "acct_1"
    assert principal.api_key_id == api_key.id


async def test_inactive_key_is_rejected(session):
    service = ApiKeyService(session)
    api_key, raw_key = await service.create_api_key("acct_1")
    api_key.is_active = False
    await session.flush()

    with pytest.raises(AuthenticationError):
        await service.authenticate(raw_key)


@pytest.mark.parametrize("raw_key", [None, "", "ok_unknown"])
async def test_missing_or_unknown_key_is_rejected(session, raw_key):
    with pytest.raises(AuthenticationError):
        await ApiKeyService(session).authenticate(raw_key)


async def test_account_id_is_required(session):
    with pytest.raises(ValidationError):
        await ApiKeyService(session).create_api_key("   ")


async def test_revoked_key_is_rejected_and_still_listed(session):
    service = ApiKeyService(session)
    older, _ = await service.create_api_key("acct_1", "old")
    api_key, raw_key = await service.create_api_key("acct_1", "new")
    await service.create_api_key("acct_2")

    revoked = await service.revoke_api_key(api_key.id)
    assert revoked.is_active is False
    assert (await service.revoke_api_key(api_key.id)).is_active is False

    with pytest.raises(AuthenticationError):
        await service.authenticate(raw_key)
    listed = await service.list_api_keys("acct_1")
    assert {key.id for key in listed} == {older.id, api_key.id}


async def test_revoking_unknown_key(session):
    with pytest.raises(NotFoundError):
        await ApiKeyService(session).revoke_api_key("missing")

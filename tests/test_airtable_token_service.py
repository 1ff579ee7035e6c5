try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from airform.clients.airtable_auth import OAuthTokenExchangeError, TokenGrant
from airform.core.config import OAuthSettings
from airform.models.credentials import StoredCredential
from airform.services.airtable_tokens import (
    AirtableTokenService,
    RefreshLocks,
    SessionExpiredError,
)
from airform.services.credentials import CredentialNotFoundError


class DummyOAuthClient:
    def __init__(self, grant: TokenGrant | None = None, *, fail: bool = False) -> None:
        self.grant = grant or TokenGrant(
            access_token="new-access", refresh_token="new-refresh", expires_in=3600
        )
        self.fail = fail
        self.calls: list[str] = []

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.fail:
            raise OAuthTokenExchangeError("invalid_grant")
        return self.grant


def _store_credential(credential_store, *, expires_in: timedelta) -> StoredCredential:
    now = datetime.now(timezone.utc)
    credential = StoredCredential(
        user_id="user-1",
        airtable_user_id="usrABC",
        access_token="old-access",
        refresh_token="old-refresh",
        expires_at=now + expires_in,
        created_at=now,
        updated_at=now,
    )
    credential_store.save(credential)
    return credential


def _service(credential_store, oauth_client) -> AirtableTokenService:
    return AirtableTokenService(
        credentials=credential_store,
        oauth_client=oauth_client,
        oauth_settings=OAuthSettings(),
        locks=RefreshLocks(),
    )


@pytest.mark.anyio
async def test_fresh_token_is_returned_without_refresh(credential_store):
    _store_credential(credential_store, expires_in=timedelta(minutes=10))
    oauth_client = DummyOAuthClient()

    token = await _service(credential_store, oauth_client).ensure_fresh_token(user_id="user-1")

    assert token.access_token == "old-access"
    assert token.refreshed is False
    assert oauth_client.calls == []


@pytest.mark.anyio
async def test_token_inside_refresh_margin_is_refreshed_and_persisted(credential_store):
    _store_credential(credential_store, expires_in=timedelta(minutes=4))
    oauth_client = DummyOAuthClient()

    before = datetime.now(timezone.utc)
    token = await _service(credential_store, oauth_client).ensure_fresh_token(user_id="user-1")

    assert oauth_client.calls == ["old-refresh"]
    assert token.refreshed is True
    assert token.access_token == "new-access"
    assert token.expires_at >= before + timedelta(seconds=3600)

    stored = credential_store.require("user-1")
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "new-refresh"
    assert stored.expires_at == token.expires_at


@pytest.mark.anyio
async def test_expired_token_keeps_refresh_token_when_none_is_rotated(credential_store):
    _store_credential(credential_store, expires_in=timedelta(minutes=-30))
    oauth_client = DummyOAuthClient(
        TokenGrant(access_token="new-access", refresh_token=None, expires_in=3600)
    )

    await _service(credential_store, oauth_client).ensure_fresh_token(user_id="user-1")

    stored = credential_store.require("user-1")
    assert stored.access_token == "new-access"
    assert stored.refresh_token == "old-refresh"


@pytest.mark.anyio
async def test_failed_refresh_leaves_record_untouched(credential_store):
    original = _store_credential(credential_store, expires_in=timedelta(minutes=1))
    oauth_client = DummyOAuthClient(fail=True)

    with pytest.raises(SessionExpiredError):
        await _service(credential_store, oauth_client).ensure_fresh_token(user_id="user-1")

    stored = credential_store.require("user-1")
    assert stored.access_token == original.access_token
    assert stored.refresh_token == original.refresh_token
    assert stored.expires_at == original.expires_at


@pytest.mark.anyio
async def test_missing_credential_raises(credential_store):
    with pytest.raises(CredentialNotFoundError):
        await _service(credential_store, DummyOAuthClient()).ensure_fresh_token(
            user_id="nobody"
        )


@pytest.mark.anyio
async def test_concurrent_requests_share_one_refresh(credential_store):
    _store_credential(credential_store, expires_in=timedelta(seconds=30))
    oauth_client = DummyOAuthClient()
    service = _service(credential_store, oauth_client)

    tokens = await asyncio.gather(
        *(service.ensure_fresh_token(user_id="user-1") for _ in range(5))
    )

    assert oauth_client.calls == ["old-refresh"]
    assert {token.access_token for token in tokens} == {"new-access"}
    assert sum(token.refreshed for token in tokens) == 1


class GatedOAuthClient(DummyOAuthClient):
    """Holds every refresh until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        self.calls.append(refresh_token)
        self.started.set()
        await self.release.wait()
        return self.grant


@pytest.mark.anyio
async def test_cancelled_caller_does_not_let_a_second_refresh_through(credential_store):
    _store_credential(credential_store, expires_in=timedelta(seconds=30))
    oauth_client = GatedOAuthClient()
    service = _service(credential_store, oauth_client)

    first = asyncio.create_task(service.ensure_fresh_token(user_id="user-1"))
    await oauth_client.started.wait()
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    second = asyncio.create_task(service.ensure_fresh_token(user_id="user-1"))
    await asyncio.sleep(0)
    oauth_client.release.set()
    token = await second

    assert oauth_client.calls == ["old-refresh"]
    assert token.access_token == "new-access"
    assert credential_store.require("user-1").refresh_token == "new-refresh"

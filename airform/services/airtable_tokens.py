"""
Helpers for retrieving and refreshing Airtable OAuth tokens.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from airform.clients.airtable_auth import AirtableOAuthClient, OAuthTokenExchangeError
from airform.core.config import OAuthSettings
from airform.models.credentials import StoredCredential
from airform.services.credentials import CredentialStore

logger = logging.getLogger(__name__)


class SessionExpiredError(Exception):
    """Raised when the refresh grant is rejected; the user must authorize again."""


@dataclass(frozen=True)
class FreshToken:
    """An access token that stays valid for at least the refresh margin."""

    user_id: str
    access_token: str
    expires_at: datetime
    refreshed: bool = False


class RefreshLocks:
    """Process-wide registry of per-user refresh locks."""

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def for_user(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock


class AirtableTokenService:
    """Hands out access tokens, refreshing them shortly before they expire."""

    def __init__(
        self,
        *,
        credentials: CredentialStore,
        oauth_client: AirtableOAuthClient,
        oauth_settings: OAuthSettings,
        locks: RefreshLocks,
    ) -> None:
        self._credentials = credentials
        self._oauth = oauth_client
        self._refresh_window = timedelta(seconds=oauth_settings.refresh_margin_seconds)
        self._locks = locks

    def _is_fresh(self, credential: StoredCredential) -> bool:
        expires_at = credential.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > datetime.now(timezone.utc) + self._refresh_window

    async def ensure_fresh_token(self, *, user_id: str) -> FreshToken:
        """Return a usable access token for ``user_id``.

        Raises ``CredentialNotFoundError`` when the user never authorized and
        ``SessionExpiredError`` when Airtable refuses the refresh token.
        """
        credential = self._credentials.require(user_id)
        if self._is_fresh(credential):
            return FreshToken(user_id, credential.access_token, credential.expires_at)

        # The lock is taken inside the shield so a cancelled caller keeps it
        # held until the rotated token is stored.
        return await asyncio.shield(self._refresh_locked(user_id))

    async def _refresh_locked(self, user_id: str) -> FreshToken:
        async with self._locks.for_user(user_id):
            # Another request may have refreshed while we waited for the lock.
            credential = self._credentials.require(user_id)
            if self._is_fresh(credential):
                return FreshToken(user_id, credential.access_token, credential.expires_at)
            return await self._refresh(credential)

    async def _refresh(self, credential: StoredCredential) -> FreshToken:
        refreshed_at = datetime.now(timezone.utc)
        try:
            grant = await self._oauth.refresh_token(credential.refresh_token)
        except OAuthTokenExchangeError as exc:
            logger.warning(
                "Airtable token refresh failed for user %s: %s", credential.user_id, exc
            )
            raise SessionExpiredError("Session expired, please log in again") from exc

        updated = credential.model_copy(
            update={
                "access_token": grant.access_token,
                "refresh_token": grant.refresh_token or credential.refresh_token,
                "expires_at": refreshed_at + timedelta(seconds=grant.expires_in),
                "updated_at": refreshed_at,
            }
        )
        self._credentials.save(updated)
        logger.info("Refreshed Airtable token for user %s", credential.user_id)
        return FreshToken(
            updated.user_id, updated.access_token, updated.expires_at, refreshed=True
        )


__all__ = [
    "AirtableTokenService",
    "FreshToken",
    "RefreshLocks",
    "SessionExpiredError",
]

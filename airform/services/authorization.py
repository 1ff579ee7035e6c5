"""
PKCE authorization flow against Airtable.

``begin`` produces the consent URL plus the two sealed handshake values the
browser has to carry back; ``complete`` checks them against the callback,
exchanges the code, records the credential and mints a session token.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional

from airform.clients.airtable import AirtableAPIError, AirtableClient
from airform.clients.airtable_auth import (
    AirtableOAuthClient,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
    SignatureError,
    derive_code_challenge,
    generate_code_verifier,
    generate_state,
)
from airform.clients.sqlite_store import SQLiteStore
from airform.core.config import OAuthSettings
from airform.models.credentials import StoredCredential
from airform.services.credentials import CredentialNotFoundError, CredentialStore
from airform.services.sessions import SessionManager

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "oauth_state"
VERIFIER_COOKIE_NAME = "code_verifier"
CONSUMED_STATE_PARTITION = "oauth_states"

# Standard OAuth 2.0 authorization error codes; anything else is collapsed.
_PUBLIC_PROVIDER_ERRORS = frozenset(
    {
        "access_denied",
        "invalid_request",
        "invalid_scope",
        "server_error",
        "temporarily_unavailable",
        "unauthorized_client",
        "unsupported_response_type",
    }
)


class AuthorizationError(Exception):
    """Base class for failures that send the browser back to the login page."""

    def __init__(self, error_code: str, message: str | None = None) -> None:
        super().__init__(message or error_code)
        self.error_code = error_code


class InvalidHandshakeError(AuthorizationError):
    """State or verifier missing, forged, expired or mismatched."""


class ProviderRejectedError(AuthorizationError):
    """Airtable reported an error on the callback."""


class AuthorizationFailedError(AuthorizationError):
    """The code exchange or identity lookup failed."""

    def __init__(self, message: str) -> None:
        super().__init__("internal_error", message)


@dataclass(frozen=True)
class AuthorizationRequest:
    authorization_url: str
    state_cookie: str
    verifier_cookie: str


@dataclass(frozen=True)
class AuthorizationResult:
    credential: StoredCredential
    session_token: str


class AuthorizationService:
    """Runs the INITIATED -> CALLBACK_PENDING -> COMPLETED handshake."""

    def __init__(
        self,
        *,
        oauth_client: AirtableOAuthClient,
        airtable_client: AirtableClient,
        credentials: CredentialStore,
        sessions: SessionManager,
        encoder: OAuthStateEncoder,
        oauth_settings: OAuthSettings,
        store: SQLiteStore,
    ) -> None:
        self._oauth = oauth_client
        self._airtable = airtable_client
        self._credentials = credentials
        self._sessions = sessions
        self._encoder = encoder
        self._state_ttl = oauth_settings.state_ttl_seconds
        self._store = store

    def begin(self) -> AuthorizationRequest:
        code_verifier = generate_code_verifier()
        state = generate_state()
        url = self._oauth.build_authorization_url(
            state=state, code_challenge=derive_code_challenge(code_verifier)
        )
        return AuthorizationRequest(
            authorization_url=url,
            state_cookie=self._seal(STATE_COOKIE_NAME, state),
            verifier_cookie=self._seal(VERIFIER_COOKIE_NAME, code_verifier),
        )

    async def complete(
        self,
        *,
        state_cookie: Optional[str],
        verifier_cookie: Optional[str],
        state: Optional[str],
        code: Optional[str],
        error: Optional[str] = None,
    ) -> AuthorizationResult:
        saved_state = self._unseal(STATE_COOKIE_NAME, state_cookie)
        if not saved_state or state != saved_state:
            raise InvalidHandshakeError("invalid_state")
        if not self._consume_state(saved_state):
            logger.warning("Rejected a replayed OAuth callback")
            raise InvalidHandshakeError("invalid_state")

        code_verifier = self._unseal(VERIFIER_COOKIE_NAME, verifier_cookie)
        if not code_verifier:
            raise InvalidHandshakeError("missing_verifier")

        if error:
            logger.info("Airtable rejected the authorization request: %s", error)
            error_code = error if error in _PUBLIC_PROVIDER_ERRORS else "provider_error"
            raise ProviderRejectedError(error_code)

        if not code:
            raise InvalidHandshakeError("missing_code")

        try:
            grant = await self._oauth.exchange_authorization_code(
                code=code, code_verifier=code_verifier
            )
            airtable_user_id = await self._airtable.whoami(grant.access_token)
            credential = self._credentials.upsert_from_grant(
                airtable_user_id=airtable_user_id, grant=grant
            )
        except (OAuthTokenExchangeError, AirtableAPIError, CredentialNotFoundError) as exc:
            logger.warning("Airtable authorization could not be completed: %s", exc)
            raise AuthorizationFailedError(str(exc)) from exc

        logger.info(
            "Airtable account %s connected for user %s",
            credential.airtable_user_id,
            credential.user_id,
        )
        return AuthorizationResult(
            credential=credential,
            session_token=self._sessions.issue(credential.user_id),
        )

    def _consume_state(self, state: str) -> bool:
        """Record ``state`` as used; False when it was already consumed."""
        now = int(time.time())
        self._purge_consumed_states(now)
        return self._store.put_item_if_absent(
            {"pk": CONSUMED_STATE_PARTITION, "sk": state, "consumed_at": now}
        )

    def _purge_consumed_states(self, now: int) -> None:
        # A state older than the TTL is already refused by its cookie timestamp.
        entries = self._store.list_items_with_prefix(
            partition_key=CONSUMED_STATE_PARTITION, sort_key_prefix=""
        )
        expired = [
            (CONSUMED_STATE_PARTITION, entry["sk"])
            for entry in entries
            if now - int(entry.get("consumed_at", 0)) > self._state_ttl
        ]
        if expired:
            self._store.delete_items(expired)

    def _seal(self, kind: str, value: str) -> str:
        return self._encoder.encode({"typ": kind, "value": value, "iat": int(time.time())})

    def _unseal(self, kind: str, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            payload = self._encoder.decode(token)
        except SignatureError:
            logger.info("Rejected a tampered %s cookie", kind)
            return None
        issued_at = payload.get("iat")
        if payload.get("typ") != kind or not isinstance(issued_at, int):
            return None
        if time.time() - issued_at > self._state_ttl:
            return None
        value = payload.get("value")
        return value if isinstance(value, str) else None


__all__ = [
    "AuthorizationError",
    "AuthorizationFailedError",
    "AuthorizationRequest",
    "AuthorizationResult",
    "AuthorizationService",
    "CONSUMED_STATE_PARTITION",
    "InvalidHandshakeError",
    "ProviderRejectedError",
    "STATE_COOKIE_NAME",
    "VERIFIER_COOKIE_NAME",
]

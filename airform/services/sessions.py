"""Stateless session tokens issued after a completed Airtable authorization."""

from __future__ import annotations

import time

from airform.clients.airtable_auth import OAuthStateEncoder, SignatureError

SESSION_COOKIE_NAME = "token"


class InvalidSessionError(Exception):
    """Raised for a session token that is malformed, forged or expired."""


class SessionManager:
    """Mint and verify signed, time-limited session tokens."""

    _TOKEN_TYPE = "session"

    def __init__(self, *, encoder: OAuthStateEncoder, ttl_seconds: int) -> None:
        self._encoder = encoder
        self._ttl_seconds = ttl_seconds

    def issue(self, user_id: str) -> str:
        now = int(time.time())
        return self._encoder.encode(
            {
                "typ": self._TOKEN_TYPE,
                "sub": user_id,
                "iat": now,
                "exp": now + self._ttl_seconds,
            }
        )

    def verify(self, token: str) -> str:
        """Return the user id carried by ``token``."""
        try:
            payload = self._encoder.decode(token)
        except SignatureError as exc:
            raise InvalidSessionError(str(exc)) from exc

        if payload.get("typ") != self._TOKEN_TYPE:
            raise InvalidSessionError("Not a session token.")
        user_id = payload.get("sub")
        expires_at = payload.get("exp")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidSessionError("Session token has no subject.")
        if not isinstance(expires_at, int) or expires_at <= time.time():
            raise InvalidSessionError("Session token has expired.")
        return user_id


__all__ = ["InvalidSessionError", "SESSION_COOKIE_NAME", "SessionManager"]

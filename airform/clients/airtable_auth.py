"""
Airtable OAuth utilities.

These helpers manage the PKCE authorization flow and the token refresh
lifecycle against Airtable's OAuth endpoints.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import secrets
from dataclasses import dataclass
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from fastapi import status

from airform.core.config import AirtableSettings, OAuthSettings


class SignatureError(ValueError):
    """Raised when a signed payload was tampered with or cannot be parsed."""


class OAuthStateEncoder:
    """Encode and decode signed payloads to guard against tampering."""

    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key.encode("utf-8")

    def encode(self, payload: Dict[str, Any]) -> str:
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        token = base64.urlsafe_b64encode(signature + serialized.encode("utf-8"))
        # Unpadded so the value is a legal cookie token.
        return token.rstrip(b"=").decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            padded = token + "=" * (-len(token) % 4)
            decoded = base64.urlsafe_b64decode(padded.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise SignatureError("Malformed signed payload.") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not serialized or not hmac.compare_digest(signature, expected_signature):
            raise SignatureError("Invalid payload signature.")
        try:
            payload = json.loads(serialized)
        except ValueError as exc:
            raise SignatureError("Signed payload is not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise SignatureError("Signed payload must be an object.")
        return payload


def generate_code_verifier() -> str:
    """Return a PKCE verifier built from 512 bits of randomness."""
    return secrets.token_urlsafe(64)


def derive_code_challenge(code_verifier: str) -> str:
    """Return BASE64URL(SHA256(verifier)) without padding, as required for S256."""
    digest = sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    return secrets.token_hex(16)


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint fails or returns an unusable payload."""


@dataclass(frozen=True)
class TokenGrant:
    """Tokens issued by the Airtable token endpoint."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    scope: Optional[str] = None


class AirtableOAuthClient:
    """Build Airtable authorization URLs and exchange or refresh tokens."""

    AUTH_BASE_URL = "https://airtable.com/oauth2/v1/authorize"
    TOKEN_URL = "https://airtable.com/oauth2/v1/token"

    def __init__(
        self,
        airtable_settings: AirtableSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._airtable = airtable_settings
        self._oauth = oauth_settings
        self._transport = transport

    def build_authorization_url(self, *, state: str, code_challenge: str) -> str:
        """Construct the Airtable OAuth consent URL."""
        params = {
            "client_id": self._airtable.client_id,
            "redirect_uri": str(self._airtable.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._oauth.scopes),
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        query = urlencode(params)
        return f"{self.AUTH_BASE_URL}?{query}"

    async def exchange_authorization_code(
        self, *, code: str, code_verifier: str
    ) -> TokenGrant:
        """Exchange an authorization code and its PKCE verifier for tokens."""
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": str(self._airtable.redirect_uri),
            "code_verifier": code_verifier,
        }
        grant = await self._request_tokens(payload)
        if not grant.refresh_token:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Airtable.")
        return grant

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Mint a new access token from a stored refresh token."""
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        return await self._request_tokens(payload)

    async def _request_tokens(self, payload: Dict[str, str]) -> TokenGrant:
        auth = httpx.BasicAuth(self._airtable.client_id, self._airtable.client_secret)
        try:
            async with httpx.AsyncClient(timeout=10.0, transport=self._transport) as client:
                response = await client.post(self.TOKEN_URL, data=payload, auth=auth)
        except httpx.HTTPError as exc:
            raise OAuthTokenExchangeError(f"Token endpoint unreachable: {exc}") from exc

        if response.status_code != status.HTTP_200_OK:
            raise OAuthTokenExchangeError(response.text)

        try:
            token_payload = response.json()
        except ValueError as exc:
            raise OAuthTokenExchangeError("Token endpoint returned invalid JSON.") from exc
        if not isinstance(token_payload, dict):
            raise OAuthTokenExchangeError("Token endpoint returned an unexpected payload.")

        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")
        if not access_token or not expires_in:
            raise OAuthTokenExchangeError("Incomplete token payload returned from Airtable.")

        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError) as exc:
            raise OAuthTokenExchangeError("Token payload has a malformed expires_in.") from exc

        return TokenGrant(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token") or None,
            expires_in=expires_in,
            scope=token_payload.get("scope"),
        )


__all__ = [
    "AirtableOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "SignatureError",
    "TokenGrant",
    "derive_code_challenge",
    "generate_code_verifier",
    "generate_state",
]

"""
Credential store: per-user Airtable tokens on top of the document store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from airform.clients.airtable_auth import TokenGrant
from airform.clients.sqlite_store import SQLiteStore
from airform.models.credentials import StoredCredential
from airform.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

_CREDENTIAL_SORT_KEY = "credential#airtable"
_IDENTITY_SORT_KEY = "user"


class CredentialNotFoundError(Exception):
    """Raised when no usable credential is stored for a user."""


def _user_key(user_id: str) -> str:
    return f"user#{user_id}"


def _identity_key(airtable_user_id: str) -> str:
    return f"airtable#{airtable_user_id}"


class CredentialStore:
    """Reads and atomically replaces encrypted credential records."""

    def __init__(self, *, store: SQLiteStore, cipher: TokenCipherService) -> None:
        self._store = store
        self._cipher = cipher

    def get(self, user_id: str) -> Optional[StoredCredential]:
        """Return the decrypted credential for ``user_id``, if one is stored."""
        record = self._store.get_item(
            partition_key=_user_key(user_id), sort_key=_CREDENTIAL_SORT_KEY
        )
        if not record:
            return None

        encrypted_access = record.get("access_token_encrypted")
        encrypted_refresh = record.get("refresh_token_encrypted")
        if not encrypted_access or not encrypted_refresh or not record.get("expires_at"):
            logger.warning("Credential record for user %s is incomplete", user_id)
            return None

        try:
            access_token = self._cipher.decrypt(encrypted_access)
            refresh_token = self._cipher.decrypt(encrypted_refresh)
        except ValueError:
            logger.warning("Credential record for user %s cannot be decrypted", user_id)
            return None

        return StoredCredential(
            user_id=record["user_id"],
            airtable_user_id=record["airtable_user_id"],
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=record["expires_at"],
            scopes=record.get("scopes") or [],
            created_at=record.get("created_at") or record["updated_at"],
            updated_at=record["updated_at"],
        )

    def require(self, user_id: str) -> StoredCredential:
        credential = self.get(user_id)
        if credential is None:
            raise CredentialNotFoundError(f"No Airtable credential stored for user {user_id}.")
        return credential

    def find_user_id(self, airtable_user_id: str) -> Optional[str]:
        """Map an Airtable user id to the internal user id, if known."""
        item = self._store.get_item(
            partition_key=_identity_key(airtable_user_id), sort_key=_IDENTITY_SORT_KEY
        )
        return item.get("user_id") if item else None

    def save(self, credential: StoredCredential) -> None:
        """Replace the whole credential record, token triple included."""
        self._store.put_items(
            [
                self._serialize(credential),
                {
                    "pk": _identity_key(credential.airtable_user_id),
                    "sk": _IDENTITY_SORT_KEY,
                    "user_id": credential.user_id,
                },
            ]
        )

    def upsert_from_grant(
        self,
        *,
        airtable_user_id: str,
        grant: TokenGrant,
        issued_at: Optional[datetime] = None,
    ) -> StoredCredential:
        """Create or update the credential for an Airtable user after authorization."""
        now = issued_at or datetime.now(timezone.utc)
        user_id = self.find_user_id(airtable_user_id)
        existing = self.get(user_id) if user_id else None

        refresh_token = grant.refresh_token or (existing.refresh_token if existing else None)
        if not refresh_token:
            raise CredentialNotFoundError("Authorization did not yield a refresh token.")

        credential = StoredCredential(
            user_id=user_id or uuid4().hex,
            airtable_user_id=airtable_user_id,
            access_token=grant.access_token,
            refresh_token=refresh_token,
            expires_at=now + timedelta(seconds=grant.expires_in),
            scopes=grant.scope.split() if grant.scope else [],
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.save(credential)
        return credential

    def _serialize(self, credential: StoredCredential) -> Dict[str, Any]:
        return {
            "pk": _user_key(credential.user_id),
            "sk": _CREDENTIAL_SORT_KEY,
            "user_id": credential.user_id,
            "airtable_user_id": credential.airtable_user_id,
            "provider": "airtable",
            "access_token_encrypted": self._cipher.encrypt(credential.access_token),
            "refresh_token_encrypted": self._cipher.encrypt(credential.refresh_token),
            "expires_at": credential.expires_at.isoformat(),
            "scopes": list(credential.scopes),
            "created_at": credential.created_at.isoformat(),
            "updated_at": credential.updated_at.isoformat(),
        }


__all__ = ["CredentialNotFoundError", "CredentialStore"]

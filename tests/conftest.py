"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest

from airform.clients.airtable_auth import OAuthStateEncoder
from airform.clients.sqlite_store import SQLiteStore
from airform.core.config import get_settings
from airform.models.credentials import StoredCredential
from airform.services.credentials import CredentialStore
from airform.services.sessions import SessionManager
from airform.services.token_cipher import TokenCipherService


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "documents.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(secret="test-secret")


@pytest.fixture
def credential_store(store, cipher) -> CredentialStore:
    return CredentialStore(store=store, cipher=cipher)


@pytest.fixture
def session_token(credential_store) -> str:
    """Store a credential for ``user-1`` and return a session token for it."""
    now = datetime.now(timezone.utc)
    credential_store.save(
        StoredCredential(
            user_id="user-1",
            airtable_user_id="usrOne",
            access_token="stored-access",
            refresh_token="stored-refresh",
            expires_at=now + timedelta(hours=1),
        )
    )
    settings = get_settings()
    sessions = SessionManager(
        encoder=OAuthStateEncoder(secret_key=settings.security.session_secret),
        ttl_seconds=60,
    )
    return sessions.issue("user-1")

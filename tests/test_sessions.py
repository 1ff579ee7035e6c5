try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import time

import pytest

from airform.clients.airtable_auth import OAuthStateEncoder
from airform.services.sessions import InvalidSessionError, SessionManager


def _manager(ttl_seconds: int = 60) -> SessionManager:
    return SessionManager(encoder=OAuthStateEncoder(secret_key="k" * 32), ttl_seconds=ttl_seconds)


def test_issued_session_verifies_to_user() -> None:
    manager = _manager()
    token = manager.issue("user-1")

    assert manager.verify(token) == "user-1"


def test_expired_session_is_rejected() -> None:
    manager = _manager(ttl_seconds=-1)

    with pytest.raises(InvalidSessionError):
        manager.verify(manager.issue("user-1"))


def test_session_signed_with_other_secret_is_rejected() -> None:
    foreign = SessionManager(encoder=OAuthStateEncoder(secret_key="other"), ttl_seconds=60)

    with pytest.raises(InvalidSessionError):
        _manager().verify(foreign.issue("user-1"))


def test_handshake_payload_is_not_a_session() -> None:
    encoder = OAuthStateEncoder(secret_key="k" * 32)
    token = encoder.encode(
        {"typ": "oauth_state", "sub": "user-1", "exp": int(time.time()) + 60}
    )

    with pytest.raises(InvalidSessionError):
        _manager().verify(token)

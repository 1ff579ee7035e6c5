"""Expose dependency helpers for FastAPI routers."""

from .auth import get_current_user, get_fresh_token
from .clients import (
    get_airtable_client,
    get_airtable_oauth_client,
    get_airtable_token_service,
    get_authorization_service,
    get_credential_store,
    get_form_service,
    get_form_store,
    get_oauth_state_encoder,
    get_refresh_locks,
    get_session_manager,
    get_sqlite_store,
    get_token_cipher_service,
    get_webhook_service,
)
from .config import get_app_settings

__all__ = [
    "get_airtable_client",
    "get_airtable_oauth_client",
    "get_airtable_token_service",
    "get_app_settings",
    "get_authorization_service",
    "get_credential_store",
    "get_current_user",
    "get_form_service",
    "get_form_store",
    "get_fresh_token",
    "get_oauth_state_encoder",
    "get_refresh_locks",
    "get_session_manager",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_webhook_service",
]

"""
Factory functions to provide shared clients and services as FastAPI dependencies.

Stateless clients and process-wide resources are cached singletons; the
services composed from them are rebuilt per request through ``Depends`` so
tests can override any layer.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from airform.clients import AirtableClient, AirtableOAuthClient, OAuthStateEncoder, SQLiteStore
from airform.core.config import AppSettings, get_settings
from airform.dependencies.config import get_app_settings
from airform.services import (
    AirtableTokenService,
    AuthorizationService,
    CredentialStore,
    FormService,
    FormStore,
    RefreshLocks,
    SessionManager,
    TokenCipherService,
    WebhookService,
)


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Provide the signer for session tokens and handshake cookies."""
    settings = _settings()
    return OAuthStateEncoder(secret_key=settings.security.session_secret)


@lru_cache()
def get_airtable_oauth_client() -> AirtableOAuthClient:
    """Create a singleton Airtable OAuth client."""
    settings = _settings()
    return AirtableOAuthClient(settings.airtable, settings.oauth)


@lru_cache()
def get_airtable_client() -> AirtableClient:
    """Provide the Airtable Web API client."""
    return AirtableClient()


@lru_cache()
def get_sqlite_store() -> SQLiteStore:
    """Provide shared document store."""
    settings = _settings()
    return SQLiteStore(settings.document_store_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.security.session_secret
    return TokenCipherService(secret=secret)


@lru_cache()
def get_refresh_locks() -> RefreshLocks:
    """Per-user refresh locks must be shared by every request in the process."""
    return RefreshLocks()


def get_credential_store(
    store: Annotated[SQLiteStore, Depends(get_sqlite_store)],
    cipher: Annotated[TokenCipherService, Depends(get_token_cipher_service)],
) -> CredentialStore:
    return CredentialStore(store=store, cipher=cipher)


def get_session_manager(
    encoder: Annotated[OAuthStateEncoder, Depends(get_oauth_state_encoder)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> SessionManager:
    return SessionManager(encoder=encoder, ttl_seconds=settings.security.session_ttl_seconds)


def get_airtable_token_service(
    credentials: Annotated[CredentialStore, Depends(get_credential_store)],
    oauth_client: Annotated[AirtableOAuthClient, Depends(get_airtable_oauth_client)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    locks: Annotated[RefreshLocks, Depends(get_refresh_locks)],
) -> AirtableTokenService:
    """Provide helper for managing Airtable OAuth tokens."""
    return AirtableTokenService(
        credentials=credentials,
        oauth_client=oauth_client,
        oauth_settings=settings.oauth,
        locks=locks,
    )


def get_authorization_service(
    oauth_client: Annotated[AirtableOAuthClient, Depends(get_airtable_oauth_client)],
    airtable_client: Annotated[AirtableClient, Depends(get_airtable_client)],
    credentials: Annotated[CredentialStore, Depends(get_credential_store)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    encoder: Annotated[OAuthStateEncoder, Depends(get_oauth_state_encoder)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    store: Annotated[SQLiteStore, Depends(get_sqlite_store)],
) -> AuthorizationService:
    return AuthorizationService(
        oauth_client=oauth_client,
        airtable_client=airtable_client,
        credentials=credentials,
        sessions=sessions,
        encoder=encoder,
        oauth_settings=settings.oauth,
        store=store,
    )


def get_form_store(store: Annotated[SQLiteStore, Depends(get_sqlite_store)]) -> FormStore:
    return FormStore(store)


def get_form_service(
    forms: Annotated[FormStore, Depends(get_form_store)],
    airtable_client: Annotated[AirtableClient, Depends(get_airtable_client)],
    token_service: Annotated[AirtableTokenService, Depends(get_airtable_token_service)],
    cipher: Annotated[TokenCipherService, Depends(get_token_cipher_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> FormService:
    return FormService(
        forms=forms,
        airtable_client=airtable_client,
        token_service=token_service,
        cipher=cipher,
        backend_url=settings.backend_url,
    )


def get_webhook_service(
    forms: Annotated[FormStore, Depends(get_form_store)],
    form_service: Annotated[FormService, Depends(get_form_service)],
    airtable_client: Annotated[AirtableClient, Depends(get_airtable_client)],
    token_service: Annotated[AirtableTokenService, Depends(get_airtable_token_service)],
    cipher: Annotated[TokenCipherService, Depends(get_token_cipher_service)],
) -> WebhookService:
    return WebhookService(
        forms=forms,
        form_service=form_service,
        airtable_client=airtable_client,
        token_service=token_service,
        cipher=cipher,
    )


__all__ = [
    "get_airtable_client",
    "get_airtable_oauth_client",
    "get_airtable_token_service",
    "get_authorization_service",
    "get_credential_store",
    "get_form_service",
    "get_form_store",
    "get_oauth_state_encoder",
    "get_refresh_locks",
    "get_session_manager",
    "get_sqlite_store",
    "get_token_cipher_service",
    "get_webhook_service",
]

"""Service layer exports."""

from .airtable_tokens import AirtableTokenService, FreshToken, RefreshLocks, SessionExpiredError
from .authorization import AuthorizationService
from .credentials import CredentialNotFoundError, CredentialStore
from .forms import FormService, FormStore
from .sessions import SessionManager
from .token_cipher import TokenCipherService
from .webhooks import WebhookService

__all__ = [
    "AirtableTokenService",
    "AuthorizationService",
    "CredentialNotFoundError",
    "CredentialStore",
    "FormService",
    "FormStore",
    "FreshToken",
    "RefreshLocks",
    "SessionExpiredError",
    "SessionManager",
    "TokenCipherService",
    "WebhookService",
]

"""Expose constructed client wrappers."""

from .airtable import AirtableAPIError, AirtableClient, TableNotFoundError
from .airtable_auth import AirtableOAuthClient, OAuthStateEncoder, OAuthTokenExchangeError
from .sqlite_store import SQLiteStore

__all__ = [
    "AirtableAPIError",
    "AirtableClient",
    "AirtableOAuthClient",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "SQLiteStore",
    "TableNotFoundError",
]

"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the routers and the
maintenance scripts share a consistent configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class AirtableSettings(BaseSettings):
    """OAuth client registration for the Airtable integration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., validation_alias="AIRTABLE_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="AIRTABLE_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="AIRTABLE_REDIRECT_URI")


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    refresh_margin_seconds: int = Field(
        300,
        validation_alias="OAUTH_REFRESH_MARGIN",
        description="Access tokens expiring within this window are refreshed first.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "data.records:read",
            "data.records:write",
            "schema.bases:read",
            "webhook:manage",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    session_secret: str = Field(
        ...,
        validation_alias="SESSION_SECRET",
        description="HMAC key used to sign session tokens and handshake cookies.",
    )
    session_ttl_seconds: int = Field(5 * 24 * 60 * 60, validation_alias="SESSION_TTL")
    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )
    cookie_secure: bool = Field(True, validation_alias="COOKIE_SECURE")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    port: int = Field(3000, validation_alias="PORT")
    frontend_base_url: AnyHttpUrl = Field(
        "http://localhost:5173",
        validation_alias="FRONTEND_BASE_URL",
        description="Browser-facing app; OAuth callbacks redirect back here.",
    )
    backend_base_url: AnyHttpUrl = Field(
        "http://localhost:3000",
        validation_alias="BACKEND_BASE_URL",
        description="Public URL of this API, used to build webhook callback URLs.",
    )
    document_store_path: str = Field(
        "data/airform.db",
        validation_alias="DOCUMENT_STORE_PATH",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    airtable: AirtableSettings = Field(default_factory=AirtableSettings)

    @property
    def frontend_url(self) -> str:
        return str(self.frontend_base_url).rstrip("/")

    @property
    def backend_url(self) -> str:
        return str(self.backend_base_url).rstrip("/")


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AirtableSettings",
    "AppSettings",
    "OAuthSettings",
    "SecuritySettings",
    "get_settings",
]

"""
Domain models for Airtable credential persistence.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredCredential(BaseModel):
    """A user's Airtable tokens, decrypted.

    ``access_token``, ``refresh_token`` and ``expires_at`` always travel
    together; the store replaces all three in one write.
    """

    user_id: str = Field(..., description="Internal identifier carried by session tokens.")
    airtable_user_id: str = Field(..., description="Stable Airtable user id (usr...).")
    access_token: str
    refresh_token: str
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def public_view(self) -> Dict[str, Any]:
        """Representation safe to return to the browser."""
        return self.model_dump(
            mode="json",
            exclude={"access_token", "refresh_token", "expires_at", "scopes"},
        )


__all__ = ["StoredCredential"]

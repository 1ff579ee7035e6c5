"""Schemas related to the Airtable OAuth flow and sessions."""

from __future__ import annotations

from pydantic import BaseModel


class CurrentUser(BaseModel):
    """Identity resolved from a verified session token."""

    user_id: str
    airtable_user_id: str


__all__ = ["CurrentUser"]

"""Airtable Web API client for metadata lookups, records and webhooks."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

SUPPORTED_FIELD_TYPES = (
    "singleLineText",
    "multilineText",
    "singleSelect",
    "multipleSelects",
    "email",
    "url",
    "phoneNumber",
    "checkbox",
    "date",
    "multipleAttachments",
)


class AirtableAPIError(Exception):
    """Raised when an Airtable API call fails or cannot be reached."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TableNotFoundError(Exception):
    """Raised when a table is not part of the requested base."""


class AirtableClient:
    """Call the Airtable REST API on behalf of a user."""

    API_BASE_URL = "https://api.airtable.com/v0"

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        url = f"{self.API_BASE_URL}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, headers=headers, json=json, params=params
                )
        except httpx.HTTPError as exc:
            logger.warning("Airtable %s %s failed: %s", method, path, exc)
            raise AirtableAPIError(f"Airtable request failed: {exc}") from exc

        if response.is_error:
            logger.warning(
                "Airtable %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise AirtableAPIError(
                f"Airtable returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise AirtableAPIError("Airtable returned invalid JSON.") from exc

    async def whoami(self, access_token: str) -> str:
        """Return the stable Airtable user id that owns ``access_token``."""
        payload = await self._request("GET", "/meta/whoami", access_token=access_token)
        user_id = payload.get("id")
        if not user_id:
            raise AirtableAPIError("Identity payload did not include a user id.")
        return user_id

    async def list_bases(self, access_token: str) -> List[Dict[str, Any]]:
        payload = await self._request("GET", "/meta/bases", access_token=access_token)
        return payload.get("bases", [])

    async def list_tables(self, access_token: str, base_id: str) -> List[Dict[str, Any]]:
        payload = await self._request(
            "GET", f"/meta/bases/{base_id}/tables", access_token=access_token
        )
        return payload.get("tables", [])

    async def list_fields(
        self, access_token: str, base_id: str, table_id: str
    ) -> List[Dict[str, Any]]:
        """Return the fields of a table that forms can be built from."""
        tables = await self.list_tables(access_token, base_id)
        table = next((item for item in tables if item.get("id") == table_id), None)
        if table is None:
            raise TableNotFoundError(f"Table {table_id} not found in base {base_id}.")

        return [
            {
                "id": field["id"],
                "name": field["name"],
                "type": field["type"],
                "options": field.get("options") or None,
            }
            for field in table.get("fields", [])
            if field.get("type") in SUPPORTED_FIELD_TYPES
        ]

    async def create_record(
        self,
        access_token: str,
        base_id: str,
        table_id: str,
        fields: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Create a single record and return Airtable's representation of it."""
        return await self._request(
            "POST",
            f"/{base_id}/{table_id}",
            access_token=access_token,
            json={"fields": fields},
        )

    async def register_webhook(
        self,
        access_token: str,
        base_id: str,
        table_id: str,
        notification_url: str,
    ) -> Dict[str, Any]:
        """Register a webhook scoped to record changes in one table."""
        specification = {
            "options": {
                "filters": {
                    "dataTypes": ["tableData"],
                    "recordChangeScope": table_id,
                }
            }
        }
        payload = await self._request(
            "POST",
            f"/bases/{base_id}/webhooks",
            access_token=access_token,
            json={"notificationUrl": notification_url, "specification": specification},
        )
        if not payload.get("id") or not payload.get("macSecretBase64"):
            raise AirtableAPIError("Webhook registration returned an incomplete payload.")
        return payload

    async def delete_webhook(self, access_token: str, base_id: str, webhook_id: str) -> None:
        await self._request(
            "DELETE", f"/bases/{base_id}/webhooks/{webhook_id}", access_token=access_token
        )

    async def list_webhook_payloads(
        self,
        access_token: str,
        base_id: str,
        webhook_id: str,
        *,
        cursor: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Fetch the change payloads queued for a webhook, starting at ``cursor``."""
        params = {"cursor": cursor} if cursor is not None else None
        return await self._request(
            "GET",
            f"/bases/{base_id}/webhooks/{webhook_id}/payloads",
            access_token=access_token,
            params=params,
        )


__all__ = [
    "AirtableAPIError",
    "AirtableClient",
    "SUPPORTED_FIELD_TYPES",
    "TableNotFoundError",
]

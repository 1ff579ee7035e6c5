"""Airtable webhook notifications: signature check and deletion sync-back."""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
from hashlib import sha256
from typing import Any, Dict, List, Optional

from airform.clients.airtable import AirtableClient
from airform.models.forms import FormRecord
from airform.services.airtable_tokens import AirtableTokenService
from airform.services.forms import FormService, FormStore
from airform.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Airtable-Content-MAC"
_SIGNATURE_PREFIX = "hmac-sha256="


class WebhookRequestError(Exception):
    """The notification is missing its signature or is not valid JSON."""


class WebhookNotFoundError(Exception):
    """The notification refers to a webhook no form is bound to."""


class WebhookSignatureError(Exception):
    """The notification MAC does not match the webhook secret."""


def compute_signature(mac_secret_base64: str, body: bytes) -> str:
    """Return the ``X-Airtable-Content-MAC`` value Airtable sends for ``body``."""
    key = base64.b64decode(mac_secret_base64)
    return _SIGNATURE_PREFIX + hmac.new(key, body, sha256).hexdigest()


class WebhookService:
    """Processes Airtable change notifications for form tables."""

    def __init__(
        self,
        *,
        forms: FormStore,
        form_service: FormService,
        airtable_client: AirtableClient,
        token_service: AirtableTokenService,
        cipher: TokenCipherService,
    ) -> None:
        self._forms = forms
        self._form_service = form_service
        self._airtable = airtable_client
        self._tokens = token_service
        self._cipher = cipher

    def verify(self, body: bytes, signature: Optional[str]) -> FormRecord:
        """Return the form the notification belongs to once its MAC checks out."""
        if not signature or not body:
            raise WebhookRequestError("Missing signature or body.")
        try:
            notification = json.loads(body)
        except ValueError as exc:
            raise WebhookRequestError("Notification body is not JSON.") from exc

        webhook = notification.get("webhook") if isinstance(notification, dict) else None
        webhook_id = webhook.get("id") if isinstance(webhook, dict) else None
        if not webhook_id:
            raise WebhookRequestError("Notification does not name a webhook.")

        form = self._forms.find_by_webhook(webhook_id)
        if form is None or not form.webhook_secret_encrypted:
            raise WebhookNotFoundError(webhook_id)

        try:
            secret = self._cipher.decrypt(form.webhook_secret_encrypted)
        except ValueError as exc:
            logger.error("Webhook secret of form %s cannot be decrypted", form.form_id)
            raise WebhookSignatureError("Stored webhook secret is unreadable.") from exc
        try:
            expected = compute_signature(secret, body)
        except binascii.Error as exc:
            raise WebhookSignatureError("Stored webhook secret is not base64.") from exc
        if not hmac.compare_digest(expected, signature.strip()):
            raise WebhookSignatureError("Invalid signature.")
        return form

    async def handle_notification(self, body: bytes, signature: Optional[str]) -> int:
        """Verify a notification, pull its payloads and return how many responses changed."""
        form = self.verify(body, signature)
        token = await self._tokens.ensure_fresh_token(user_id=form.owner_id)

        cursor = form.webhook_cursor
        marked = 0
        while True:
            page = await self._airtable.list_webhook_payloads(
                token.access_token, form.base_id, form.webhook_id, cursor=cursor
            )
            for payload in page.get("payloads", []):
                marked += self._form_service.mark_deleted(
                    form, self._destroyed_record_ids(form, payload)
                )
            cursor = page.get("cursor", cursor)
            if not page.get("mightHaveMore"):
                break

        # Re-read so a concurrent edit of the form is not overwritten.
        latest = self._forms.get(form.form_id)
        if latest is not None and latest.webhook_cursor != cursor:
            self._forms.save(latest.model_copy(update={"webhook_cursor": cursor}))

        if marked:
            logger.info("Marked %d responses of form %s as deleted", marked, form.form_id)
        return marked

    @staticmethod
    def _destroyed_record_ids(form: FormRecord, payload: Dict[str, Any]) -> List[str]:
        changes = payload.get("changedTablesById") or {}
        table_changes = changes.get(form.table_id) or {}
        return list(table_changes.get("destroyedRecordIds") or [])


__all__ = [
    "SIGNATURE_HEADER",
    "WebhookNotFoundError",
    "WebhookRequestError",
    "WebhookService",
    "WebhookSignatureError",
    "compute_signature",
]

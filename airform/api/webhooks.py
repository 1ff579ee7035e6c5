"""
Inbound Airtable webhook notifications.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse

from airform.clients.airtable import AirtableAPIError
from airform.dependencies import get_webhook_service
from airform.services import CredentialNotFoundError, SessionExpiredError
from airform.services.webhooks import (
    SIGNATURE_HEADER,
    WebhookNotFoundError,
    WebhookRequestError,
    WebhookSignatureError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/airtable")
async def airtable_webhook(
    request: Request,
    service: Annotated[Any, Depends(get_webhook_service)],
) -> PlainTextResponse:
    """Sync record deletions in Airtable back onto stored responses."""
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        await service.handle_notification(body, signature)
    except WebhookRequestError:
        return PlainTextResponse("Bad request", status_code=HTTPStatus.BAD_REQUEST)
    except WebhookNotFoundError:
        return PlainTextResponse("Webhook not found", status_code=HTTPStatus.NOT_FOUND)
    except WebhookSignatureError:
        logger.warning("Rejected Airtable notification with an invalid signature")
        return PlainTextResponse("Invalid signature", status_code=HTTPStatus.UNAUTHORIZED)
    except (AirtableAPIError, CredentialNotFoundError, SessionExpiredError) as exc:
        logger.error("Airtable webhook processing failed: %s", exc)
        return PlainTextResponse(
            "Server error", status_code=HTTPStatus.INTERNAL_SERVER_ERROR
        )

    return PlainTextResponse("OK", status_code=HTTPStatus.OK)

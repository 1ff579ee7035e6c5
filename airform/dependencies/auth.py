"""
Request-scoped authentication: the session verifier and the token refresh
guard, composed as two explicit dependency stages.
"""

import logging
from http import HTTPStatus
from typing import Annotated, Optional

from fastapi import Cookie, Depends, HTTPException, Request

from airform.dependencies.clients import (
    get_airtable_token_service,
    get_credential_store,
    get_session_manager,
)
from airform.schemas import CurrentUser
from airform.services import (
    AirtableTokenService,
    CredentialNotFoundError,
    CredentialStore,
    FreshToken,
    SessionExpiredError,
    SessionManager,
)
from airform.services.sessions import SESSION_COOKIE_NAME, InvalidSessionError

logger = logging.getLogger(__name__)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=HTTPStatus.UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_token(request: Request, cookie_token: Optional[str]) -> Optional[str]:
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return cookie_token or None


async def get_current_user(
    request: Request,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    credentials: Annotated[CredentialStore, Depends(get_credential_store)],
    token: Annotated[Optional[str], Cookie(alias=SESSION_COOKIE_NAME)] = None,
) -> CurrentUser:
    """Resolve the caller from a bearer header or the session cookie."""
    session_token = _extract_token(request, token)
    if not session_token:
        raise _unauthorized("Unauthorized: No token provided")

    try:
        user_id = sessions.verify(session_token)
    except InvalidSessionError as exc:
        logger.info("Rejected session token: %s", exc)
        raise _unauthorized("Unauthorized: Invalid token") from exc

    credential = credentials.get(user_id)
    if credential is None:
        raise _unauthorized("Unauthorized: User not found")

    return CurrentUser(user_id=credential.user_id, airtable_user_id=credential.airtable_user_id)


async def get_fresh_token(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    token_service: Annotated[AirtableTokenService, Depends(get_airtable_token_service)],
) -> FreshToken:
    """Guarantee a valid Airtable access token before a proxied call."""
    try:
        return await token_service.ensure_fresh_token(user_id=user.user_id)
    except CredentialNotFoundError as exc:
        raise _unauthorized("Unauthorized: User not found") from exc
    except SessionExpiredError as exc:
        raise _unauthorized("Session expired, please log in again") from exc


__all__ = [
    "get_current_user",
    "get_fresh_token",
]

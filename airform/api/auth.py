"""
Airtable OAuth (PKCE) and session routes.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Cookie, Depends, Query, Response
from fastapi.responses import JSONResponse, RedirectResponse

from airform.core.config import AppSettings
from airform.dependencies import (
    get_app_settings,
    get_authorization_service,
    get_credential_store,
    get_current_user,
)
from airform.schemas import CurrentUser
from airform.services.authorization import (
    STATE_COOKIE_NAME,
    VERIFIER_COOKIE_NAME,
    AuthorizationError,
)
from airform.services.sessions import SESSION_COOKIE_NAME

router = APIRouter()
logger = logging.getLogger(__name__)


def _cookie_options(settings: AppSettings) -> dict[str, Any]:
    secure = settings.security.cookie_secure
    # Browsers drop SameSite=None cookies that are not also Secure.
    return {
        "httponly": True,
        "secure": secure,
        "samesite": "none" if secure else "lax",
        "path": "/",
    }


def _clear_handshake_cookies(response: Response, settings: AppSettings) -> None:
    options = _cookie_options(settings)
    response.delete_cookie(STATE_COOKIE_NAME, **options)
    response.delete_cookie(VERIFIER_COOKIE_NAME, **options)


@router.get("/airtable")
async def start_airtable_oauth_flow(
    service: Annotated[Any, Depends(get_authorization_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Response:
    """Generate the PKCE pair and state, then send the browser to Airtable."""
    authorization = service.begin()

    response = RedirectResponse(
        url=authorization.authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT
    )
    options = _cookie_options(settings)
    max_age = settings.oauth.state_ttl_seconds
    response.set_cookie(
        STATE_COOKIE_NAME, authorization.state_cookie, max_age=max_age, **options
    )
    response.set_cookie(
        VERIFIER_COOKIE_NAME, authorization.verifier_cookie, max_age=max_age, **options
    )
    return response


@router.get("/airtable/callback")
async def handle_airtable_oauth_callback(
    service: Annotated[Any, Depends(get_authorization_service)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
    code: Optional[str] = Query(default=None, description="Authorization code."),
    state: Optional[str] = Query(default=None, description="OAuth state echoed back."),
    error: Optional[str] = Query(default=None, description="OAuth error code."),
    oauth_state: Annotated[Optional[str], Cookie(alias=STATE_COOKIE_NAME)] = None,
    code_verifier: Annotated[Optional[str], Cookie(alias=VERIFIER_COOKIE_NAME)] = None,
) -> Response:
    """Complete the handshake, store the credential and start a session."""
    try:
        result = await service.complete(
            state_cookie=oauth_state,
            verifier_cookie=code_verifier,
            state=state,
            code=code,
            error=error,
        )
    except AuthorizationError as exc:
        query = urlencode({"error": exc.error_code})
        response = RedirectResponse(
            url=f"{settings.frontend_url}/login?{query}",
            status_code=HTTPStatus.TEMPORARY_REDIRECT,
        )
        _clear_handshake_cookies(response, settings)
        return response

    response = RedirectResponse(
        url=f"{settings.frontend_url}/auth/callback?auth=success",
        status_code=HTTPStatus.TEMPORARY_REDIRECT,
    )
    _clear_handshake_cookies(response, settings)
    response.set_cookie(
        SESSION_COOKIE_NAME,
        result.session_token,
        max_age=settings.security.session_ttl_seconds,
        **_cookie_options(settings),
    )
    return response


@router.get("/check", status_code=HTTPStatus.OK)
async def check_auth(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    credentials: Annotated[Any, Depends(get_credential_store)],
) -> dict:
    """Return the signed-in user without any token material."""
    credential = credentials.require(user.user_id)
    return {"user": credential.public_view()}


@router.post("/logout", status_code=HTTPStatus.OK)
async def logout(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    settings: Annotated[AppSettings, Depends(get_app_settings)],
) -> Response:
    response = JSONResponse(content={"message": "Logged out successfully"})
    response.delete_cookie(SESSION_COOKIE_NAME, **_cookie_options(settings))
    logger.info("User %s logged out", user.user_id)
    return response

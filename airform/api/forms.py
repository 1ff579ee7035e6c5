"""
Form builder and public submission routes.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException

from airform.clients.airtable import AirtableAPIError
from airform.dependencies import get_current_user, get_form_service, get_fresh_token
from airform.schemas import CurrentUser, FormCreateRequest, FormSubmission
from airform.services import CredentialNotFoundError, FreshToken, SessionExpiredError
from airform.services.forms import (
    FormCreationError,
    FormNotFoundError,
    SubmissionValidationError,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _form_not_found() -> HTTPException:
    return HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Form not found")


@router.post("/create", status_code=HTTPStatus.CREATED)
async def create_form(
    payload: FormCreateRequest,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    token: Annotated[FreshToken, Depends(get_fresh_token)],
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    """Create a form together with the Airtable webhook that keeps it in sync."""
    try:
        form = await service.create_form(
            owner_id=user.user_id, access_token=token.access_token, request=payload
        )
    except FormCreationError as exc:
        logger.warning("Create form failed for user %s: %s", user.user_id, exc)
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR, detail="Failed to create form"
        ) from exc
    return {"form": form.public_view()}


@router.get("/list", status_code=HTTPStatus.OK)
async def list_forms(
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    return {"forms": service.list_forms(owner_id=user.user_id)}


@router.get("/view/{form_id}", status_code=HTTPStatus.OK)
async def view_form(
    form_id: str,
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    """Public view of a form, stripped of owner and webhook details."""
    try:
        form = service.get_form(form_id)
    except FormNotFoundError as exc:
        raise _form_not_found() from exc
    return {"form": form.public_view()}


@router.delete("/delete/{form_id}", status_code=HTTPStatus.OK)
async def delete_form(
    form_id: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    token: Annotated[FreshToken, Depends(get_fresh_token)],
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    try:
        await service.delete_form(
            owner_id=user.user_id, access_token=token.access_token, form_id=form_id
        )
    except FormNotFoundError as exc:
        raise _form_not_found() from exc
    return {"message": "Form deleted successfully"}


@router.post("/submit/{form_id}", status_code=HTTPStatus.OK)
async def submit_form(
    form_id: str,
    payload: FormSubmission,
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    """Accept an anonymous submission and write it to the owner's table."""
    try:
        response = await service.submit(form_id=form_id, answers=payload.answers)
    except FormNotFoundError as exc:
        raise _form_not_found() from exc
    except SubmissionValidationError as exc:
        raise HTTPException(
            status_code=HTTPStatus.UNPROCESSABLE_ENTITY,
            detail={"message": str(exc), "missing": exc.missing_labels},
        ) from exc
    except (AirtableAPIError, CredentialNotFoundError, SessionExpiredError) as exc:
        logger.warning("Submission to form %s failed: %s", form_id, exc)
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Failed to submit form",
        ) from exc
    return {
        "message": "Form submitted successfully",
        "record_id": response.airtable_record_id,
    }


@router.get("/responses/{form_id}", status_code=HTTPStatus.OK)
async def list_responses(
    form_id: str,
    user: Annotated[CurrentUser, Depends(get_current_user)],
    service: Annotated[Any, Depends(get_form_service)],
) -> dict:
    try:
        responses = service.list_responses(owner_id=user.user_id, form_id=form_id)
    except FormNotFoundError as exc:
        raise _form_not_found() from exc
    return {"responses": [response.model_dump(mode="json") for response in responses]}

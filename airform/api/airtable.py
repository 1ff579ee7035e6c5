"""
Read-only Airtable metadata proxied for the form builder.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from airform.clients.airtable import AirtableAPIError, TableNotFoundError
from airform.dependencies import get_airtable_client, get_fresh_token
from airform.services import FreshToken

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/bases", status_code=HTTPStatus.OK)
async def list_bases(
    token: Annotated[FreshToken, Depends(get_fresh_token)],
    airtable: Annotated[Any, Depends(get_airtable_client)],
) -> dict:
    try:
        bases = await airtable.list_bases(token.access_token)
    except AirtableAPIError as exc:
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Failed to fetch bases from Airtable",
        ) from exc
    return {"message": "Bases fetched successfully", "bases": bases}


@router.get("/tables/{base_id}", status_code=HTTPStatus.OK)
async def list_tables(
    base_id: str,
    token: Annotated[FreshToken, Depends(get_fresh_token)],
    airtable: Annotated[Any, Depends(get_airtable_client)],
) -> dict:
    try:
        tables = await airtable.list_tables(token.access_token, base_id)
    except AirtableAPIError as exc:
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Failed to fetch tables",
        ) from exc
    return {"tables": tables}


@router.get("/fields/{table_id}", status_code=HTTPStatus.OK)
async def list_fields(
    table_id: str,
    token: Annotated[FreshToken, Depends(get_fresh_token)],
    airtable: Annotated[Any, Depends(get_airtable_client)],
    base_id: Optional[str] = Query(default=None, alias="baseId"),
) -> dict:
    """List the fields of a table whose types forms can collect."""
    if not base_id:
        raise HTTPException(status_code=HTTPStatus.BAD_REQUEST, detail="baseId is required")

    try:
        fields = await airtable.list_fields(token.access_token, base_id, table_id)
    except TableNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail="Table not found") from exc
    except AirtableAPIError as exc:
        raise HTTPException(
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            detail="Failed to fetch fields",
        ) from exc
    return {"fields": fields}

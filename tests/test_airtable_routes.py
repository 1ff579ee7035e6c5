try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from airform.clients.airtable import AirtableAPIError, TableNotFoundError
from airform.clients.airtable_auth import OAuthStateEncoder
from airform.core.config import get_settings
from airform.main import app
from airform.services import FreshToken, SessionExpiredError, SessionManager


class DummyTokenService:
    def __init__(self) -> None:
        self.expired = False
        self.calls: list[str] = []

    async def ensure_fresh_token(self, *, user_id: str) -> FreshToken:
        self.calls.append(user_id)
        if self.expired:
            raise SessionExpiredError("Session expired, please log in again")
        return FreshToken(
            user_id, "fresh-access", datetime.now(timezone.utc) + timedelta(hours=1)
        )


class DummyAirtableClient:
    def __init__(self) -> None:
        self.fail = False
        self.tokens: list[str] = []

    async def list_bases(self, access_token: str) -> list[dict]:
        self.tokens.append(access_token)
        if self.fail:
            raise AirtableAPIError("boom", status_code=503)
        return [{"id": "appBase", "name": "CRM", "permissionLevel": "create"}]

    async def list_tables(self, access_token: str, base_id: str) -> list[dict]:
        if self.fail:
            raise AirtableAPIError("boom", status_code=503)
        return [{"id": "tblOne", "name": "Leads", "fields": []}]

    async def list_fields(self, access_token: str, base_id: str, table_id: str) -> list[dict]:
        if table_id == "tblMissing":
            raise TableNotFoundError(table_id)
        if self.fail:
            raise AirtableAPIError("boom", status_code=503)
        return [{"id": "fldName", "name": "Name", "type": "singleLineText", "options": None}]


@pytest.fixture()
def proxy_overrides(store, cipher):
    from airform import dependencies

    token_service = DummyTokenService()
    airtable_client = DummyAirtableClient()
    app.dependency_overrides.update(
        {
            dependencies.get_airtable_token_service: lambda: token_service,
            dependencies.get_airtable_client: lambda: airtable_client,
            dependencies.get_sqlite_store: lambda: store,
            dependencies.get_token_cipher_service: lambda: cipher,
        }
    )

    yield token_service, airtable_client

    app.dependency_overrides.clear()


def _client(session_token: str | None = None) -> httpx.AsyncClient:
    headers = {"authorization": f"Bearer {session_token}"} if session_token else None
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="https://testserver",
        headers=headers,
    )


@pytest.mark.anyio
async def test_health_is_public(proxy_overrides):
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_bases_use_the_guarded_token(proxy_overrides, session_token):
    token_service, airtable_client = proxy_overrides

    async with _client(session_token) as client:
        response = await client.get("/api/bases")

    assert response.status_code == 200
    assert response.json()["bases"][0]["id"] == "appBase"
    assert token_service.calls == ["user-1"]
    assert airtable_client.tokens == ["fresh-access"]


@pytest.mark.anyio
async def test_bases_require_a_session(proxy_overrides):
    token_service, airtable_client = proxy_overrides

    async with _client() as client:
        response = await client.get("/api/bases")

    assert response.status_code == 401
    assert token_service.calls == []
    assert airtable_client.tokens == []


@pytest.mark.anyio
async def test_session_for_unknown_user_is_rejected(proxy_overrides):
    settings = get_settings()
    token = SessionManager(
        encoder=OAuthStateEncoder(secret_key=settings.security.session_secret),
        ttl_seconds=60,
    ).issue("ghost")

    async with _client(token) as client:
        response = await client.get("/api/bases")

    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized: User not found"}


@pytest.mark.anyio
async def test_failed_refresh_returns_401_before_calling_airtable(
    proxy_overrides, session_token
):
    token_service, airtable_client = proxy_overrides
    token_service.expired = True

    async with _client(session_token) as client:
        response = await client.get("/api/bases")

    assert response.status_code == 401
    assert response.json() == {"detail": "Session expired, please log in again"}
    assert airtable_client.tokens == []


@pytest.mark.anyio
async def test_provider_failure_is_a_generic_500(proxy_overrides, session_token):
    _, airtable_client = proxy_overrides
    airtable_client.fail = True

    async with _client(session_token) as client:
        bases = await client.get("/api/bases")
        tables = await client.get("/api/tables/appBase")

    assert bases.status_code == 500
    assert bases.json() == {"detail": "Failed to fetch bases from Airtable"}
    assert tables.status_code == 500
    assert tables.json() == {"detail": "Failed to fetch tables"}


@pytest.mark.anyio
async def test_tables_are_listed(proxy_overrides, session_token):
    async with _client(session_token) as client:
        response = await client.get("/api/tables/appBase")

    assert response.status_code == 200
    assert response.json() == {"tables": [{"id": "tblOne", "name": "Leads", "fields": []}]}


@pytest.mark.anyio
async def test_fields_require_base_id(proxy_overrides, session_token):
    async with _client(session_token) as client:
        missing = await client.get("/api/fields/tblOne")
        unknown = await client.get("/api/fields/tblMissing", params={"baseId": "appBase"})
        found = await client.get("/api/fields/tblOne", params={"baseId": "appBase"})

    assert missing.status_code == 400
    assert missing.json() == {"detail": "baseId is required"}
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "Table not found"}
    assert found.status_code == 200
    assert found.json()["fields"][0]["id"] == "fldName"

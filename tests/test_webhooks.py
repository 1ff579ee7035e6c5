try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from airform.main import app
from airform.models.forms import FormRecord, ResponseRecord
from airform.services import FormStore, FreshToken
from airform.services.webhooks import SIGNATURE_HEADER, compute_signature

MAC_SECRET = base64.b64encode(b"webhook-mac-secret").decode()


class DummyTokenService:
    async def ensure_fresh_token(self, *, user_id: str) -> FreshToken:
        return FreshToken(user_id, "owner-access", datetime.now(timezone.utc) + timedelta(hours=1))


class DummyAirtableClient:
    def __init__(self) -> None:
        self.cursors: list[int | None] = []
        self.pages = [
            {
                "payloads": [
                    {
                        "changedTablesById": {
                            "tblApplicants": {"destroyedRecordIds": ["rec1"]},
                            "tblOther": {"destroyedRecordIds": ["rec2"]},
                        }
                    }
                ],
                "cursor": 2,
                "mightHaveMore": True,
            },
            {
                "payloads": [
                    {"changedTablesById": {"tblApplicants": {"changedRecordsById": {}}}}
                ],
                "cursor": 3,
                "mightHaveMore": False,
            },
        ]

    async def list_webhook_payloads(self, access_token, base_id, webhook_id, *, cursor=None):
        self.cursors.append(cursor)
        return self.pages[len(self.cursors) - 1]


@pytest.fixture()
def webhook_setup(store, cipher):
    from airform import dependencies

    forms = FormStore(store)
    form = FormRecord(
        owner_id="user-1",
        base_id="appBase",
        table_id="tblApplicants",
        webhook_id="achHook",
        webhook_secret_encrypted=cipher.encrypt(MAC_SECRET),
    )
    forms.save(form)
    for record_id in ("rec1", "rec2"):
        forms.save_response(
            ResponseRecord(airtable_record_id=record_id, form_id=form.form_id, answers={})
        )

    airtable_client = DummyAirtableClient()
    app.dependency_overrides.update(
        {
            dependencies.get_airtable_token_service: lambda: DummyTokenService(),
            dependencies.get_airtable_client: lambda: airtable_client,
            dependencies.get_sqlite_store: lambda: store,
            dependencies.get_token_cipher_service: lambda: cipher,
        }
    )

    yield forms, form, airtable_client

    app.dependency_overrides.clear()


def _notification(webhook_id: str = "achHook") -> bytes:
    return json.dumps(
        {
            "base": {"id": "appBase"},
            "webhook": {"id": webhook_id},
            "timestamp": "2024-01-01T00:00:00.000Z",
        }
    ).encode()


async def _post(body: bytes, signature: str | None) -> httpx.Response:
    headers = {"content-type": "application/json"}
    if signature is not None:
        headers[SIGNATURE_HEADER] = signature
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="https://testserver"
    ) as client:
        return await client.post("/webhooks/airtable", content=body, headers=headers)


@pytest.mark.anyio
async def test_signed_notification_marks_destroyed_records(webhook_setup):
    forms, form, airtable_client = webhook_setup
    body = _notification()

    response = await _post(body, compute_signature(MAC_SECRET, body))

    assert response.status_code == 200
    assert response.text == "OK"
    assert airtable_client.cursors == [None, 2]
    assert forms.get_response(form.form_id, "rec1").deleted_in_airtable is True
    assert forms.get_response(form.form_id, "rec2").deleted_in_airtable is False
    assert forms.get(form.form_id).webhook_cursor == 3


@pytest.mark.anyio
async def test_invalid_signature_is_rejected(webhook_setup):
    forms, form, airtable_client = webhook_setup
    body = _notification()
    wrong = compute_signature(base64.b64encode(b"other").decode(), body)

    response = await _post(body, wrong)

    assert response.status_code == 401
    assert response.text == "Invalid signature"
    assert airtable_client.cursors == []
    assert forms.get_response(form.form_id, "rec1").deleted_in_airtable is False


@pytest.mark.anyio
async def test_unknown_webhook_is_not_found(webhook_setup):
    body = _notification("achUnknown")

    response = await _post(body, compute_signature(MAC_SECRET, body))

    assert response.status_code == 404
    assert response.text == "Webhook not found"


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("body", "signature"),
    [
        (b"not json", "hmac-sha256=00"),
        (json.dumps({"base": {"id": "appBase"}}).encode(), "hmac-sha256=00"),
        (_notification(), None),
    ],
)
async def test_malformed_notifications_are_bad_requests(webhook_setup, body, signature):
    response = await _post(body, signature)

    assert response.status_code == 400
    assert response.text == "Bad request"


@pytest.mark.anyio
async def test_unreadable_stored_secret_is_rejected(webhook_setup):
    forms, form, airtable_client = webhook_setup
    forms.save(form.model_copy(update={"webhook_secret_encrypted": "not-a-fernet-token"}))
    body = _notification()

    response = await _post(body, compute_signature(MAC_SECRET, body))

    assert response.status_code == 401
    assert response.text == "Invalid signature"
    assert airtable_client.cursors == []

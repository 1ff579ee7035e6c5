"""
Form and response lifecycle: creation with a bound Airtable webhook,
public submissions written back to Airtable, and owner-side listings.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from airform.clients.airtable import AirtableAPIError, AirtableClient
from airform.clients.sqlite_store import SQLiteStore
from airform.models.forms import Condition, FormRecord, Question, ResponseRecord
from airform.schemas.forms import FormCreateRequest
from airform.services.airtable_tokens import AirtableTokenService
from airform.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/airtable"


class FormNotFoundError(Exception):
    """Raised when a form does not exist or is not visible to the caller."""


class FormCreationError(Exception):
    """Raised when the Airtable webhook backing a new form cannot be registered."""


class SubmissionValidationError(Exception):
    """Raised when required questions were left unanswered."""

    def __init__(self, missing_labels: List[str]) -> None:
        super().__init__(f"Please fill in: {', '.join(missing_labels)}")
        self.missing_labels = missing_labels


def is_empty_answer(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return not str(value).strip()


def _condition_holds(condition: Condition, answers: Dict[str, Any]) -> bool:
    answer = answers.get(condition.question_key)
    if condition.operator == "equals":
        return answer == condition.value
    if condition.operator == "notEquals":
        return answer != condition.value
    # contains
    if isinstance(answer, (list, tuple)):
        return condition.value in answer
    if isinstance(answer, str) and condition.value is not None:
        return str(condition.value).lower() in answer.lower()
    return False


def is_question_visible(question: Question, answers: Dict[str, Any]) -> bool:
    rules = question.conditional_rules
    if rules is None or not rules.conditions:
        return True
    results = (_condition_holds(condition, answers) for condition in rules.conditions)
    return all(results) if rules.logic == "AND" else any(results)


class FormStore:
    """Persistence for forms, their lookup indexes and their responses."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    @staticmethod
    def _form_item(form: FormRecord) -> Dict[str, Any]:
        return {"pk": f"form#{form.form_id}", "sk": "form", **form.model_dump(mode="json")}

    def save(self, form: FormRecord) -> None:
        items = [
            self._form_item(form),
            {
                "pk": f"user#{form.owner_id}",
                "sk": f"form#{form.form_id}",
                "form_id": form.form_id,
                "created_at": form.created_at.isoformat(),
            },
        ]
        if form.webhook_id:
            items.append(
                {"pk": f"webhook#{form.webhook_id}", "sk": "form", "form_id": form.form_id}
            )
        self._store.put_items(items)

    def get(self, form_id: str) -> Optional[FormRecord]:
        item = self._store.get_item(partition_key=f"form#{form_id}", sort_key="form")
        return FormRecord.model_validate(item) if item else None

    def find_by_webhook(self, webhook_id: str) -> Optional[FormRecord]:
        pointer = self._store.get_item(partition_key=f"webhook#{webhook_id}", sort_key="form")
        return self.get(pointer["form_id"]) if pointer else None

    def list_for_owner(self, owner_id: str) -> List[FormRecord]:
        pointers = self._store.list_items_with_prefix(
            partition_key=f"user#{owner_id}", sort_key_prefix="form#"
        )
        forms = [self.get(pointer["form_id"]) for pointer in pointers]
        return sorted(
            (form for form in forms if form is not None),
            key=lambda form: form.created_at,
            reverse=True,
        )

    def delete(self, form: FormRecord) -> None:
        keys = [(f"user#{form.owner_id}", f"form#{form.form_id}")]
        if form.webhook_id:
            keys.append((f"webhook#{form.webhook_id}", "form"))
        self._store.delete_items(keys)
        # Drops the form document together with its responses.
        self._store.delete_partition(partition_key=f"form#{form.form_id}")

    def save_response(self, response: ResponseRecord) -> None:
        self._store.put_item(
            {
                "pk": f"form#{response.form_id}",
                "sk": f"response#{response.airtable_record_id}",
                **response.model_dump(mode="json"),
            }
        )

    def get_response(self, form_id: str, record_id: str) -> Optional[ResponseRecord]:
        item = self._store.get_item(
            partition_key=f"form#{form_id}", sort_key=f"response#{record_id}"
        )
        return ResponseRecord.model_validate(item) if item else None

    def list_responses(self, form_id: str) -> List[ResponseRecord]:
        items = self._store.list_items_with_prefix(
            partition_key=f"form#{form_id}", sort_key_prefix="response#"
        )
        responses = [ResponseRecord.model_validate(item) for item in items]
        return sorted(responses, key=lambda response: response.created_at, reverse=True)


class FormService:
    """Coordinates form persistence with the Airtable API."""

    def __init__(
        self,
        *,
        forms: FormStore,
        airtable_client: AirtableClient,
        token_service: AirtableTokenService,
        cipher: TokenCipherService,
        backend_url: str,
    ) -> None:
        self._forms = forms
        self._airtable = airtable_client
        self._tokens = token_service
        self._cipher = cipher
        self._notification_url = f"{backend_url.rstrip('/')}{WEBHOOK_PATH}"

    async def create_form(
        self, *, owner_id: str, access_token: str, request: FormCreateRequest
    ) -> FormRecord:
        """Register the table webhook, then persist the form bound to it."""
        try:
            webhook = await self._airtable.register_webhook(
                access_token, request.base_id, request.table_id, self._notification_url
            )
        except AirtableAPIError as exc:
            raise FormCreationError("Failed to register Airtable webhook.") from exc

        form = FormRecord(
            title=request.title,
            owner_id=owner_id,
            base_id=request.base_id,
            table_id=request.table_id,
            table_name=request.table_name,
            questions=request.questions,
            webhook_id=webhook["id"],
            webhook_secret_encrypted=self._cipher.encrypt(webhook["macSecretBase64"]),
        )
        try:
            self._forms.save(form)
        except sqlite3.Error as exc:
            logger.error("Failed to store form for webhook %s: %s", form.webhook_id, exc)
            await self._discard_webhook(access_token, form)
            raise FormCreationError("Failed to store form.") from exc
        logger.info("Created form %s for user %s", form.form_id, owner_id)
        return form

    async def _discard_webhook(self, access_token: str, form: FormRecord) -> None:
        try:
            await self._airtable.delete_webhook(access_token, form.base_id, form.webhook_id)
        except AirtableAPIError as exc:
            logger.warning(
                "Failed to delete Airtable webhook %s for form %s: %s",
                form.webhook_id,
                form.form_id,
                exc,
            )

    def list_forms(self, *, owner_id: str) -> List[Dict[str, Any]]:
        return [form.summary() for form in self._forms.list_for_owner(owner_id)]

    def get_form(self, form_id: str) -> FormRecord:
        form = self._forms.get(form_id)
        if form is None:
            raise FormNotFoundError(form_id)
        return form

    def get_owned_form(self, *, owner_id: str, form_id: str) -> FormRecord:
        form = self.get_form(form_id)
        if form.owner_id != owner_id:
            raise FormNotFoundError(form_id)
        return form

    async def delete_form(self, *, owner_id: str, access_token: str, form_id: str) -> None:
        """Delete a form; a failing webhook removal is logged, not fatal."""
        form = self.get_owned_form(owner_id=owner_id, form_id=form_id)
        if form.webhook_id:
            await self._discard_webhook(access_token, form)
        self._forms.delete(form)
        logger.info("Deleted form %s", form.form_id)

    async def submit(self, *, form_id: str, answers: Dict[str, Any]) -> ResponseRecord:
        """Write a public submission to Airtable using the form owner's token."""
        form = self._forms.get(form_id)
        if form is None or not form.is_active:
            raise FormNotFoundError(form_id)

        visible = [q for q in form.questions if is_question_visible(q, answers)]
        missing = [
            q.label for q in visible if q.required and is_empty_answer(answers.get(q.question_key))
        ]
        if missing:
            raise SubmissionValidationError(missing)

        accepted = {
            q.question_key: answers[q.question_key]
            for q in visible
            if not is_empty_answer(answers.get(q.question_key))
        }
        fields = {
            q.field_id: accepted[q.question_key] for q in visible if q.question_key in accepted
        }

        token = await self._tokens.ensure_fresh_token(user_id=form.owner_id)
        record = await self._airtable.create_record(
            token.access_token, form.base_id, form.table_id, fields
        )
        record_id = record.get("id")
        if not record_id:
            raise AirtableAPIError("Record creation returned no record id.")

        response = ResponseRecord(airtable_record_id=record_id, form_id=form.form_id, answers=accepted)
        self._forms.save_response(response)
        logger.info("Stored response %s for form %s", record_id, form.form_id)
        return response

    def list_responses(self, *, owner_id: str, form_id: str) -> List[ResponseRecord]:
        form = self.get_owned_form(owner_id=owner_id, form_id=form_id)
        return self._forms.list_responses(form.form_id)

    def mark_deleted(self, form: FormRecord, record_ids: Iterable[str]) -> int:
        """Flag responses whose Airtable records were destroyed."""
        marked = 0
        for record_id in record_ids:
            response = self._forms.get_response(form.form_id, record_id)
            if response is None or response.deleted_in_airtable:
                continue
            self._forms.save_response(
                response.model_copy(
                    update={
                        "deleted_in_airtable": True,
                        "updated_at": datetime.now(timezone.utc),
                    }
                )
            )
            marked += 1
        return marked


__all__ = [
    "FormCreationError",
    "FormNotFoundError",
    "FormService",
    "FormStore",
    "SubmissionValidationError",
    "WEBHOOK_PATH",
    "is_empty_answer",
    "is_question_visible",
]

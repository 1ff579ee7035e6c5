"""
Domain models for forms and the responses collected through them.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

QuestionType = Literal[
    "singleLineText",
    "multilineText",
    "singleSelect",
    "multipleSelects",
    "multipleAttachments",
    "email",
    "url",
    "phoneNumber",
    "checkbox",
    "date",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Condition(BaseModel):
    """Compares the answer to another question against a fixed value."""

    question_key: str
    operator: Literal["equals", "notEquals", "contains"]
    value: Any


class ConditionalRules(BaseModel):
    """Decides whether a question is shown, based on earlier answers."""

    logic: Literal["AND", "OR"]
    conditions: List[Condition] = Field(default_factory=list)


class Question(BaseModel):
    question_key: str = Field(..., min_length=1)
    field_id: str = Field(..., min_length=1, description="Airtable field the answer is written to.")
    label: str = Field(..., min_length=1)
    type: QuestionType
    required: bool = False
    conditional_rules: Optional[ConditionalRules] = None
    original_field_name: Optional[str] = None
    options: List[str] = Field(default_factory=list)


class FormRecord(BaseModel):
    """A form as persisted in the document store."""

    form_id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = "Untitled Form"
    owner_id: str
    base_id: str
    table_id: str
    table_name: Optional[str] = None
    questions: List[Question] = Field(default_factory=list)
    webhook_id: Optional[str] = None
    webhook_secret_encrypted: Optional[str] = None
    webhook_cursor: Optional[int] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def public_view(self) -> Dict[str, Any]:
        """What an anonymous respondent is allowed to see."""
        return self.model_dump(
            mode="json",
            exclude={
                "owner_id",
                "webhook_id",
                "webhook_secret_encrypted",
                "webhook_cursor",
            },
        )

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(
            mode="json",
            include={"form_id", "title", "table_name", "is_active", "created_at"},
        )


class ResponseRecord(BaseModel):
    """One submission, linked to the Airtable record it created."""

    airtable_record_id: str
    form_id: str
    answers: Dict[str, Any] = Field(default_factory=dict)
    deleted_in_airtable: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


__all__ = [
    "Condition",
    "ConditionalRules",
    "FormRecord",
    "Question",
    "QuestionType",
    "ResponseRecord",
]

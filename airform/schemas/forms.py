"""Request payloads for the form builder and public submissions."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from airform.models.forms import Question


class FormCreateRequest(BaseModel):
    """Payload sent by the form builder to create a form."""

    title: str = Field("Untitled Form", min_length=1)
    base_id: str = Field(..., min_length=1, description="Airtable base identifier.")
    table_id: str = Field(..., min_length=1, description="Airtable table identifier.")
    table_name: Optional[str] = None
    questions: List[Question] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _check_question_keys(self) -> "FormCreateRequest":
        keys = [question.question_key for question in self.questions]
        if len(keys) != len(set(keys)):
            raise ValueError("Question keys must be unique.")
        known = set(keys)
        for question in self.questions:
            rules = question.conditional_rules
            if rules is None:
                continue
            for condition in rules.conditions:
                if condition.question_key not in known:
                    raise ValueError(
                        f"Question {question.question_key!r} depends on unknown "
                        f"question {condition.question_key!r}."
                    )
                if condition.question_key == question.question_key:
                    raise ValueError(
                        f"Question {question.question_key!r} cannot depend on itself."
                    )
        return self


class FormSubmission(BaseModel):
    """Answers keyed by question key."""

    answers: Dict[str, Any] = Field(default_factory=dict)


__all__ = ["FormCreateRequest", "FormSubmission"]

"""Public schema exports."""

from .auth import CurrentUser
from .forms import FormCreateRequest, FormSubmission

__all__ = [
    "CurrentUser",
    "FormCreateRequest",
    "FormSubmission",
]

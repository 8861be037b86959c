"""
Error taxonomy of the form engine.

Integrity, hierarchy and concurrency errors abort a unit of work as a whole.
Answer violations are never raised one at a time: the validator collects them
and the instance service raises a single :class:`AnswerSetRejected` carrying
the full list.
"""

from __future__ import annotations

from typing import Any


class FormEngineError(Exception):
    """Base class for every error the engine reports to its callers."""

    status_code = 400
    code = "form_engine_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Structural errors (template reconciliation)
# ---------------------------------------------------------------------------

class TemplateIntegrityError(FormEngineError):
    """An id in the request is not owned by the template being reconciled."""

    status_code = 409
    code = "template_integrity"


class InvalidHierarchyError(FormEngineError):
    """A parent reference is cyclic, dangling or points outside the template."""

    status_code = 422
    code = "invalid_hierarchy"


class TemplateRetiredError(FormEngineError):
    status_code = 409
    code = "template_retired"


class ConcurrentModificationError(FormEngineError):
    """Lost update on a template or instance aggregate."""

    status_code = 409
    code = "concurrent_modification"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

class NotFoundError(FormEngineError):
    status_code = 404
    code = "not_found"


class TemplateNotFoundError(NotFoundError):
    code = "template_not_found"


class InstanceNotFoundError(NotFoundError):
    code = "instance_not_found"


class ReferenceNotFoundError(NotFoundError):
    """A patient, clinician or visit referenced by an instance does not exist."""

    status_code = 422
    code = "reference_not_found"


# ---------------------------------------------------------------------------
# Answer violations
# ---------------------------------------------------------------------------

class AnswerViolation(FormEngineError):
    """One rejected answer. Collected, never raised on its own."""

    status_code = 422
    code = "answer_violation"

    def __init__(self, message: str, *, field_id: int | None = None, field_name: str | None = None):
        super().__init__(message)
        self.field_id = field_id
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "field_id": self.field_id,
            "field_name": self.field_name,
        }


class MissingRequiredFieldError(AnswerViolation):
    code = "missing_required_field"


class UnknownFieldError(AnswerViolation):
    code = "unknown_field"


class InvalidValueError(AnswerViolation):
    code = "invalid_value"


class AnswerSetRejected(FormEngineError):
    """Batch of answer violations; nothing from the submission was persisted."""

    status_code = 422
    code = "answers_rejected"

    def __init__(self, violations: list[AnswerViolation]):
        super().__init__(f"{len(violations)} answer(s) rejected")
        self.violations = list(violations)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["violations"] = [v.to_dict() for v in self.violations]
        return data


class ImmutableInstanceError(FormEngineError):
    """The instance has left draft status and can no longer change."""

    status_code = 409
    code = "immutable_instance"

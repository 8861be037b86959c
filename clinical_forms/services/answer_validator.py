"""
Answer validation against a template's field definitions.

The template's fields are compiled into a JSON Schema over one document per
submission, keyed by field id:

- number: a plain decimal string (sign, digits, optional fraction)
- date: ``YYYY-MM-DD`` checked with the ``date`` format
- single choice: ``enum`` of the allowed values
- multi choice: the ``;``-separated value as an array of unique members
- text / textarea: any string

Every problem of a submission is collected and returned together (an empty
list means the answer set is acceptable), so a client can fix everything in
one round trip. Values are checked exactly as they will be stored.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol

import jsonschema

from clinical_forms.exceptions import (
    AnswerViolation,
    InvalidValueError,
    MissingRequiredFieldError,
    UnknownFieldError,
)
from clinical_forms.models.forms import FieldDefinition, FieldType
from clinical_forms.services.arena import SectionArena

logger = logging.getLogger(__name__)

MULTI_CHOICE_DELIMITER = ";"
NUMBER_PATTERN = r"^-?[0-9]+(\.[0-9]+)?$"
DATE_PATTERN = r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$"

_FORMAT_CHECKER = jsonschema.FormatChecker()


class RawAnswer(Protocol):
    field_id: int
    value: str | None
    section_id: int | None


def _key(field_id: Any) -> str:
    return str(field_id)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def field_schema(field: FieldDefinition) -> dict[str, Any]:
    """JSON Schema fragment for the value of one field."""
    field_type = field.field_type
    if field_type is FieldType.NUMBER:
        return {"type": "string", "pattern": NUMBER_PATTERN}
    if field_type is FieldType.DATE:
        return {"type": "string", "pattern": DATE_PATTERN, "format": "date"}
    if field_type is FieldType.SINGLE_CHOICE:
        return {"type": "string", "enum": field.choices}
    if field_type is FieldType.MULTI_CHOICE:
        return {
            "type": "array",
            "minItems": 1,
            "uniqueItems": True,
            "items": {"type": "string", "enum": field.choices},
        }
    return {"type": "string"}


def compile_schema(fields: Iterable[FieldDefinition]) -> dict[str, Any]:
    """Schema of a whole submission: one property per field id."""
    fields = list(fields)
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "type": "object",
        "properties": {_key(f.id): field_schema(f) for f in fields},
        "propertyNames": {"enum": [_key(f.id) for f in fields]},
        "required": [_key(f.id) for f in fields if f.required],
    }


def _document_value(field: FieldDefinition | None, value: str) -> Any:
    if field is not None and field.field_type is FieldType.MULTI_CHOICE:
        return value.split(MULTI_CHOICE_DELIMITER)
    return value


def _invalid_message(field: FieldDefinition, error: jsonschema.ValidationError) -> str:
    value = error.instance
    if field.field_type is FieldType.NUMBER:
        return f"'{value}' is not a number"
    if field.field_type is FieldType.DATE:
        return f"'{value}' is not a valid date in YYYY-MM-DD format"
    if field.field_type is FieldType.MULTI_CHOICE:
        if error.validator == "uniqueItems":
            return "a choice is listed more than once"
        if value == "":
            return "contains an empty choice"
    return error.message


def _violations(
    schema: dict[str, Any],
    document: dict[str, Any],
    fields: dict[str, FieldDefinition],
    template_id: int | None,
    reported: set[str],
) -> list[AnswerViolation]:
    violations: list[AnswerViolation] = []

    def report(key: str, violation: AnswerViolation) -> None:
        # One violation per field
        if key not in reported:
            reported.add(key)
            violations.append(violation)

    validator = jsonschema.Draft7Validator(schema, format_checker=_FORMAT_CHECKER)
    for error in validator.iter_errors(document):
        if error.validator == "required":
            for key in error.validator_value:
                if key in error.instance:
                    continue
                field = fields[key]
                report(
                    key,
                    MissingRequiredFieldError(
                        f"Field '{field.name}' is required", field_id=field.id, field_name=field.name
                    ),
                )
        elif error.schema_path and error.schema_path[0] == "propertyNames":
            key = error.instance
            report(
                key,
                UnknownFieldError(
                    f"Field {key} is not part of template {template_id}", field_id=int(key)
                ),
            )
        elif error.path:
            key = error.path[0]
            field = fields[key]
            report(
                key,
                InvalidValueError(
                    f"Field '{field.name}': {_invalid_message(field, error)}",
                    field_id=field.id,
                    field_name=field.name,
                ),
            )
        else:
            logger.error("Unexpected schema error on answer document: %s", error.message)
            raise error
    return violations


def validate_value(field: FieldDefinition, value: str | None) -> AnswerViolation | None:
    """Check one raw value against one field definition."""
    document = {} if _is_blank(value) else {_key(field.id): _document_value(field, value)}
    violations = _violations(
        compile_schema([field]), document, {_key(field.id): field}, None, set()
    )
    return violations[0] if violations else None


def validate_answer_set(arena: SectionArena, answers: Iterable[RawAnswer]) -> list[AnswerViolation]:
    """
    Validate a complete answer set against the template held by ``arena``.

    Answers are folded into one document and checked against the compiled
    template schema. Two things the document cannot express are checked
    while folding: a field answered twice, and an answer whose ``section_id``
    disagrees with where the field lives.

    Returns every violation found; an empty list means the set is valid.
    """
    fields = [f for section in arena.walk() for f in arena.fields_of(section.id)]
    by_key = {_key(f.id): f for f in fields}

    violations: list[AnswerViolation] = []
    reported: set[str] = set()
    document: dict[str, Any] = {}
    seen: set[str] = set()

    for answer in answers:
        key = _key(answer.field_id)
        field = by_key.get(key)
        if key in seen:
            if key not in reported:
                reported.add(key)
                violations.append(
                    InvalidValueError(
                        f"Field '{field.name if field else key}' is answered more than once",
                        field_id=answer.field_id,
                        field_name=field.name if field else None,
                    )
                )
            document.pop(key, None)
            continue
        seen.add(key)
        if field is not None and answer.section_id is not None and answer.section_id != field.section_id:
            reported.add(key)
            violations.append(
                UnknownFieldError(
                    f"Field '{field.name}' does not live in section {answer.section_id}",
                    field_id=field.id,
                    field_name=field.name,
                )
            )
            continue
        if not _is_blank(answer.value):
            document[key] = _document_value(field, answer.value)
        elif field is None:
            # A blank answer to an unknown field is still an unknown field
            document[key] = answer.value or ""

    violations.extend(_violations(compile_schema(fields), document, by_key, arena.template_id, reported))

    if violations:
        logger.warning(
            "Answer set for template %s rejected with %d violation(s)",
            arena.template_id, len(violations),
        )
    return violations

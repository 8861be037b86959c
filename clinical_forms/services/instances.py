"""
Form instance assembly: bind a template to a patient encounter and store its
validated answers.

Answer sets are all-or-nothing: the complete set is validated against the
*current* template before any row is written, and a draft's answers are always
replaced as a whole.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from clinical_forms.exceptions import (
    AnswerSetRejected,
    AnswerViolation,
    ConcurrentModificationError,
    ImmutableInstanceError,
    InstanceNotFoundError,
    ReferenceNotFoundError,
    TemplateRetiredError,
)
from clinical_forms.models.database import unit_of_work
from clinical_forms.models.forms import Answer, FormInstance, InstanceStatus
from clinical_forms.schemas.instances import (
    AnswerIn,
    AnswerOut,
    AnswersReplaceRequest,
    InstanceCreateRequest,
    InstanceOut,
    InstanceSubmitRequest,
)
from clinical_forms.services.answer_validator import validate_answer_set
from clinical_forms.services.arena import SectionArena
from clinical_forms.services.audit import log_action
from clinical_forms.services.encryption import encryption
from clinical_forms.services.lookups import ReferenceLookup
from clinical_forms.services.templates import load_template

logger = logging.getLogger(__name__)


@dataclass
class _StoredAnswer:
    field_id: int
    value: str | None
    section_id: int | None = None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def load_instance(db: Session, instance_id: int, *, lock: bool = False) -> FormInstance:
    query = db.query(FormInstance).filter(FormInstance.id == instance_id)
    if lock:
        query = query.with_for_update().populate_existing()
    instance = query.first()
    if instance is None:
        raise InstanceNotFoundError(f"Form instance {instance_id} not found")
    return instance


def _check_references(lookups: ReferenceLookup, request: InstanceCreateRequest) -> None:
    if not lookups.patient_exists(request.patient_id):
        raise ReferenceNotFoundError(f"Patient {request.patient_id} not found")
    if not lookups.clinician_exists(request.clinician_id):
        raise ReferenceNotFoundError(f"Clinician {request.clinician_id} not found")
    if request.visit_id is not None and not lookups.visit_belongs_to(
        request.visit_id, request.patient_id
    ):
        raise ReferenceNotFoundError(
            f"Visit {request.visit_id} not found for patient {request.patient_id}"
        )


def _check_version(instance: FormInstance, expected: int | None) -> None:
    if expected is not None and expected != instance.version:
        raise ConcurrentModificationError(
            f"Form instance {instance.id} is at version {instance.version}, "
            f"request was based on version {expected}"
        )


def _ensure_draft(instance: FormInstance) -> None:
    if instance.status != InstanceStatus.DRAFT.value:
        raise ImmutableInstanceError(
            f"Form instance {instance.id} is {instance.status} and can no longer change"
        )


def _materialize(arena: SectionArena, answers: Iterable[AnswerIn]) -> list[Answer]:
    """Build Answer rows for an answer set that already passed validation."""
    rows = []
    for answer in answers:
        field = arena.fields[answer.field_id]
        rows.append(
            Answer(
                field_id=field.id,
                section_id=field.section_id,
                field_name=field.name,
                encrypted_value=encryption.encrypt(answer.value),
            )
        )
    return rows


def _validate_or_reject(arena: SectionArena, answers) -> None:
    violations = validate_answer_set(arena, answers)
    if violations:
        raise AnswerSetRejected(violations)


def _stored_answers(instance: FormInstance) -> list[_StoredAnswer]:
    # Answers whose field was removed from the template are history, not input
    return [
        _StoredAnswer(field_id=a.field_id, value=encryption.decrypt(a.encrypted_value))
        for a in instance.answers
        if a.field_id is not None
    ]


def instance_to_out(instance: FormInstance) -> InstanceOut:
    return InstanceOut(
        id=instance.id,
        template_id=instance.template_id,
        patient_id=instance.patient_id,
        clinician_id=instance.clinician_id,
        visit_id=instance.visit_id,
        status=InstanceStatus(instance.status),
        price=instance.price,
        version=instance.version,
        created_at=instance.created_at,
        updated_at=instance.updated_at,
        submitted_at=instance.submitted_at,
        answers=[
            AnswerOut(
                id=a.id,
                field_id=a.field_id,
                section_id=a.section_id,
                field_name=a.field_name,
                value=encryption.decrypt(a.encrypted_value),
            )
            for a in instance.answers
        ],
    )


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_instance(
    db: Session,
    request: InstanceCreateRequest,
    *,
    lookups: ReferenceLookup,
    actor: str,
) -> FormInstance:
    """
    Create an instance of a template with its first answer set.

    The template's current price is copied onto the instance; later price
    changes do not affect it.
    """
    with unit_of_work(db):
        template = load_template(db, request.template_id)
        if template.is_retired:
            raise TemplateRetiredError(f"Form template {template.id} is retired")
        _check_references(lookups, request)

        arena = SectionArena.load(db, template.id)
        _validate_or_reject(arena, request.answers)

        instance = FormInstance(
            template_id=template.id,
            patient_id=request.patient_id,
            clinician_id=request.clinician_id,
            visit_id=request.visit_id,
            status=InstanceStatus.DRAFT.value,
            price=template.price,
        )
        instance.answers = _materialize(arena, request.answers)
        if request.status == InstanceStatus.SUBMITTED:
            instance.status = InstanceStatus.SUBMITTED.value
            instance.submitted_at = _now()
        db.add(instance)
        db.flush()

        log_action(
            db,
            actor=actor,
            action="create",
            resource_type="FormInstance",
            resource_id=instance.id,
            detail={
                "template_id": template.id,
                "status": instance.status,
                "answers": len(instance.answers),
            },
        )
    logger.info(
        "Created form instance %s of template %s (%s, %d answers)",
        instance.id, instance.template_id, instance.status, len(instance.answers),
    )
    return instance


def replace_answers(
    db: Session, instance_id: int, request: AnswersReplaceRequest, *, actor: str
) -> FormInstance:
    """Replace the whole answer set of a draft instance."""
    with unit_of_work(db):
        instance = load_instance(db, instance_id, lock=True)
        _ensure_draft(instance)
        _check_version(instance, request.expected_version)

        arena = SectionArena.load(db, instance.template_id)
        _validate_or_reject(arena, request.answers)

        instance.answers = _materialize(arena, request.answers)
        instance.updated_at = _now()
        db.flush()

        log_action(
            db,
            actor=actor,
            action="replace_answers",
            resource_type="FormInstance",
            resource_id=instance.id,
            detail={"answers": len(instance.answers)},
        )
    logger.info("Replaced answers of form instance %s", instance_id)
    return instance


def submit_instance(
    db: Session, instance_id: int, request: InstanceSubmitRequest, *, actor: str
) -> FormInstance:
    """Validate a draft against the current template and make it immutable."""
    with unit_of_work(db):
        instance = load_instance(db, instance_id, lock=True)
        _ensure_draft(instance)
        _check_version(instance, request.expected_version)

        arena = SectionArena.load(db, instance.template_id)
        _validate_or_reject(arena, _stored_answers(instance))

        for answer in instance.answers:
            if answer.field_id is not None:
                answer.section_id = arena.fields[answer.field_id].section_id
        instance.status = InstanceStatus.SUBMITTED.value
        instance.submitted_at = _now()
        db.flush()

        log_action(
            db,
            actor=actor,
            action="submit",
            resource_type="FormInstance",
            resource_id=instance.id,
        )
    logger.info("Form instance %s submitted", instance_id)
    return instance


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def revalidate_instance(db: Session, instance_id: int) -> list[AnswerViolation]:
    """Check a stored instance against the template as it is now."""
    instance = load_instance(db, instance_id)
    arena = SectionArena.load(db, instance.template_id)
    return validate_answer_set(arena, _stored_answers(instance))


def list_instances(
    db: Session,
    *,
    patient_id: UUID | None = None,
    visit_id: int | None = None,
    clinician_id: UUID | None = None,
) -> list[FormInstance]:
    query = db.query(FormInstance)
    if patient_id is not None:
        query = query.filter(FormInstance.patient_id == patient_id)
    if visit_id is not None:
        query = query.filter(FormInstance.visit_id == visit_id)
    if clinician_id is not None:
        query = query.filter(FormInstance.clinician_id == clinician_id)
    return query.order_by(FormInstance.created_at.desc(), FormInstance.id.desc()).all()

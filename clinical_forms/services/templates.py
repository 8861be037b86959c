"""Form template lifecycle: create, reconcile, read, list, retire/delete."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from clinical_forms.exceptions import (
    ConcurrentModificationError,
    TemplateNotFoundError,
    TemplateRetiredError,
)
from clinical_forms.models.database import unit_of_work
from clinical_forms.models.forms import FormInstance, FormTemplate
from clinical_forms.schemas.templates import (
    FieldDefinitionOut,
    SectionNodeOut,
    TemplateCreateRequest,
    TemplateOut,
    TemplateRequest,
    TemplateSummaryOut,
    TemplateUpdateRequest,
)
from clinical_forms.services.arena import SectionArena
from clinical_forms.services.audit import log_action
from clinical_forms.services.reconciler import ChangeSummary, TemplateReconciler

logger = logging.getLogger(__name__)


def load_template(db: Session, template_id: int, *, lock: bool = False) -> FormTemplate:
    """
    Fetch a template or raise TemplateNotFoundError.

    With ``lock`` the row is selected FOR UPDATE and refreshed, serializing
    writers of the same template.
    """
    query = db.query(FormTemplate).filter(FormTemplate.id == template_id)
    if lock:
        query = query.with_for_update().populate_existing()
    template = query.first()
    if template is None:
        raise TemplateNotFoundError(f"Form template {template_id} not found")
    return template


def build_structure(arena: SectionArena) -> list[SectionNodeOut]:
    def node(section) -> SectionNodeOut:
        return SectionNodeOut(
            id=section.id,
            parent_id=section.parent_id,
            name=section.name,
            description=section.description,
            display_order=section.display_order,
            fields=[FieldDefinitionOut.from_row(f) for f in arena.fields_of(section.id)],
            subsections=[node(child) for child in arena.children_of(section.id)],
        )

    return [node(root) for root in arena.roots()]


def get_structure(db: Session, template_id: int) -> list[SectionNodeOut]:
    load_template(db, template_id)
    return build_structure(SectionArena.load(db, template_id))


def template_to_out(db: Session, template: FormTemplate) -> TemplateOut:
    summary = TemplateSummaryOut.model_validate(template)
    return TemplateOut(
        **summary.model_dump(),
        sections=build_structure(SectionArena.load(db, template.id)),
    )


def list_templates(
    db: Session, *, specialty_id: int | None = None, include_retired: bool = False
) -> list[FormTemplate]:
    query = db.query(FormTemplate)
    if specialty_id is not None:
        query = query.filter(FormTemplate.specialty_id == specialty_id)
    if not include_retired:
        query = query.filter(FormTemplate.retired_at.is_(None))
    return query.order_by(FormTemplate.name, FormTemplate.id).all()


def create_template(
    db: Session, request: TemplateCreateRequest, *, actor: str
) -> tuple[FormTemplate, ChangeSummary]:
    """Create a template with its full initial forest in one transaction."""
    with unit_of_work(db):
        template = FormTemplate()
        summary = TemplateReconciler(db, template).reconcile(request)
        log_action(
            db,
            actor=actor,
            action="create",
            resource_type="FormTemplate",
            resource_id=template.id,
            detail=summary.as_dict(),
        )
    logger.info("Created form template %s '%s'", template.id, template.name)
    return template, summary


def reconcile_template(
    db: Session, template_id: int, request: TemplateUpdateRequest, *, actor: str
) -> tuple[FormTemplate, ChangeSummary]:
    """
    Bring a stored template to the desired state described by ``request``.

    Omitted sections and fields are deleted. Either the whole desired state
    is committed or nothing is.
    """
    with unit_of_work(db):
        template = load_template(db, template_id, lock=True)
        if template.is_retired:
            raise TemplateRetiredError(f"Form template {template_id} is retired")
        if request.expected_version is not None and request.expected_version != template.version:
            raise ConcurrentModificationError(
                f"Form template {template_id} is at version {template.version}, "
                f"request was based on version {request.expected_version}"
            )
        summary = TemplateReconciler(db, template).reconcile(request)
        if summary.has_changes:
            log_action(
                db,
                actor=actor,
                action="reconcile",
                resource_type="FormTemplate",
                resource_id=template.id,
                detail=summary.as_dict(),
            )
    return template, summary


def retire_or_delete_template(db: Session, template_id: int, *, actor: str) -> str:
    """
    Hard-delete a template nobody filled yet; soft-retire one that has instances.

    Returns ``"deleted"`` or ``"retired"``.
    """
    with unit_of_work(db):
        template = load_template(db, template_id, lock=True)
        in_use = (
            db.query(FormInstance.id).filter(FormInstance.template_id == template_id).first()
            is not None
        )
        if in_use:
            if not template.is_retired:
                template.retired_at = datetime.now(timezone.utc)
            outcome = "retired"
        else:
            # An empty desired state removes the whole forest
            empty = TemplateRequest(
                name=template.name,
                description=template.description,
                specialty_id=template.specialty_id,
                price=template.price,
                sections=[],
            )
            TemplateReconciler(db, template).reconcile(empty)
            db.delete(template)
            outcome = "deleted"
        log_action(
            db,
            actor=actor,
            action="retire" if in_use else "delete",
            resource_type="FormTemplate",
            resource_id=template_id,
        )
    logger.info("Form template %s %s", template_id, outcome)
    return outcome

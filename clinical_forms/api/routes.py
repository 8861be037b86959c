"""
FastAPI routes – the HTTP surface of the form engine.

Routes stay thin: parse the request, resolve the actor, call one service
function, shape the response. Error-to-status mapping lives in main.py.
"""

from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinical_forms.api.identity import Actor, require_role
from clinical_forms.config import settings
from clinical_forms.models.database import get_db
from clinical_forms.schemas.api import ErrorResponse, HealthResponse
from clinical_forms.schemas.instances import (
    AnswersReplaceRequest,
    InstanceCreateRequest,
    InstanceOut,
    InstanceSubmitRequest,
    ValidationReport,
    ViolationOut,
)
from clinical_forms.schemas.templates import (
    ChangeSummaryOut,
    ReconcileResponse,
    RetireResponse,
    SectionNodeOut,
    TemplateCreateRequest,
    TemplateOut,
    TemplateSummaryOut,
    TemplateUpdateRequest,
)
from clinical_forms.services import instances as instance_service
from clinical_forms.services import templates as template_service
from clinical_forms.services.lookups import ReferenceLookup, SqlReferenceLookup

logger = logging.getLogger(__name__)

router = APIRouter(
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
    }
)

template_admin = require_role(*settings.TEMPLATE_ADMIN_ROLES)
clinician = require_role(*settings.CLINICAL_ROLES)


def get_reference_lookup(db: Session = Depends(get_db)) -> ReferenceLookup:
    return SqlReferenceLookup(db)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)):
    """Basic health endpoint – verifies DB connectivity."""
    try:
        db.execute(text("SELECT 1"))
        db_status = "connected"
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        db_status = "disconnected"
    return HealthResponse(
        status="healthy",
        environment=settings.ENVIRONMENT,
        database=db_status,
    )


# ---------------------------------------------------------------------------
# Form templates
# ---------------------------------------------------------------------------

@router.post("/templates", response_model=ReconcileResponse, status_code=201)
def create_template(
    request: TemplateCreateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(template_admin),
):
    """Create a template together with its whole initial section forest."""
    template, summary = template_service.create_template(db, request, actor=actor.user_id)
    return ReconcileResponse(
        template=template_service.template_to_out(db, template),
        changes=ChangeSummaryOut.model_validate(summary),
    )


@router.get("/templates", response_model=list[TemplateSummaryOut])
def list_templates(
    specialty_id: int | None = Query(None),
    include_retired: bool = Query(False),
    db: Session = Depends(get_db),
):
    return template_service.list_templates(
        db, specialty_id=specialty_id, include_retired=include_retired
    )


@router.get("/templates/{template_id}", response_model=TemplateOut)
def get_template(template_id: int, db: Session = Depends(get_db)):
    template = template_service.load_template(db, template_id)
    return template_service.template_to_out(db, template)


@router.get("/templates/{template_id}/structure", response_model=list[SectionNodeOut])
def get_template_structure(template_id: int, db: Session = Depends(get_db)):
    return template_service.get_structure(db, template_id)


@router.put("/templates/{template_id}", response_model=ReconcileResponse)
def reconcile_template(
    template_id: int,
    request: TemplateUpdateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(template_admin),
):
    """
    Replace the template with the desired state in the body.

    Sections and fields carrying an id keep it; anything stored but omitted
    from the body is deleted.
    """
    template, summary = template_service.reconcile_template(
        db, template_id, request, actor=actor.user_id
    )
    return ReconcileResponse(
        template=template_service.template_to_out(db, template),
        changes=ChangeSummaryOut.model_validate(summary),
    )


@router.delete("/templates/{template_id}", response_model=RetireResponse)
def delete_template(
    template_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(template_admin),
):
    """Delete an unused template; templates with instances are retired instead."""
    outcome = template_service.retire_or_delete_template(db, template_id, actor=actor.user_id)
    return RetireResponse(template_id=template_id, outcome=outcome)


# ---------------------------------------------------------------------------
# Form instances
# ---------------------------------------------------------------------------

@router.post("/instances", response_model=InstanceOut, status_code=201)
def create_instance(
    request: InstanceCreateRequest,
    db: Session = Depends(get_db),
    lookups: ReferenceLookup = Depends(get_reference_lookup),
    actor: Actor = Depends(clinician),
):
    instance = instance_service.create_instance(db, request, lookups=lookups, actor=actor.user_id)
    return instance_service.instance_to_out(instance)


@router.get("/instances", response_model=list[InstanceOut])
def list_instances(
    patient_id: UUID | None = Query(None),
    visit_id: int | None = Query(None),
    clinician_id: UUID | None = Query(None),
    db: Session = Depends(get_db),
):
    instances = instance_service.list_instances(
        db, patient_id=patient_id, visit_id=visit_id, clinician_id=clinician_id
    )
    return [instance_service.instance_to_out(i) for i in instances]


@router.get("/instances/{instance_id}", response_model=InstanceOut)
def get_instance(instance_id: int, db: Session = Depends(get_db)):
    return instance_service.instance_to_out(instance_service.load_instance(db, instance_id))


@router.put("/instances/{instance_id}/answers", response_model=InstanceOut)
def replace_answers(
    instance_id: int,
    request: AnswersReplaceRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(clinician),
):
    """Replace the full answer set of a draft instance."""
    instance = instance_service.replace_answers(db, instance_id, request, actor=actor.user_id)
    return instance_service.instance_to_out(instance)


@router.post("/instances/{instance_id}/submit", response_model=InstanceOut)
def submit_instance(
    instance_id: int,
    request: InstanceSubmitRequest | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(clinician),
):
    instance = instance_service.submit_instance(
        db, instance_id, request or InstanceSubmitRequest(), actor=actor.user_id
    )
    return instance_service.instance_to_out(instance)


@router.get("/instances/{instance_id}/validation", response_model=ValidationReport)
def validate_instance(instance_id: int, db: Session = Depends(get_db)):
    """Re-check a stored instance against the template as it is now."""
    instance = instance_service.load_instance(db, instance_id)
    violations = instance_service.revalidate_instance(db, instance_id)
    return ValidationReport(
        instance_id=instance.id,
        template_id=instance.template_id,
        valid=not violations,
        violations=[ViolationOut(**v.to_dict()) for v in violations],
    )

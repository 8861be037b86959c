"""Pydantic models for form instance requests and responses."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field

from clinical_forms.models.forms import InstanceStatus


class AnswerIn(BaseModel):
    """Raw answer: the value stays a string whatever the field type."""
    field_id: int
    value: str | None = None
    section_id: int | None = Field(None, description="Optional; must match the field's section if given")


class InstanceCreateRequest(BaseModel):
    template_id: int
    patient_id: UUID
    clinician_id: UUID
    visit_id: int | None = None
    status: InstanceStatus = InstanceStatus.DRAFT
    answers: list[AnswerIn] = []


class AnswersReplaceRequest(BaseModel):
    answers: list[AnswerIn] = []
    expected_version: int | None = None


class InstanceSubmitRequest(BaseModel):
    expected_version: int | None = None


class AnswerOut(BaseModel):
    id: int
    field_id: int | None
    section_id: int | None
    field_name: str
    value: str | None


class InstanceOut(BaseModel):
    id: int
    template_id: int
    patient_id: UUID
    clinician_id: UUID
    visit_id: int | None
    status: InstanceStatus
    price: Decimal
    version: int
    created_at: datetime
    updated_at: datetime | None
    submitted_at: datetime | None
    answers: list[AnswerOut] = []


class ViolationOut(BaseModel):
    code: str
    message: str
    field_id: int | None = None
    field_name: str | None = None


class ValidationReport(BaseModel):
    instance_id: int
    template_id: int
    valid: bool
    violations: list[ViolationOut] = []

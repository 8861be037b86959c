"""Existence checks against the patient, clinician and visit records."""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from clinical_forms.models.references import Clinician, Patient, Visit


class ReferenceLookup(Protocol):
    def patient_exists(self, patient_id: UUID) -> bool: ...

    def clinician_exists(self, clinician_id: UUID) -> bool: ...

    def visit_belongs_to(self, visit_id: int, patient_id: UUID) -> bool: ...


class SqlReferenceLookup:
    """Lookups over the read-only reference tables of the records database."""

    def __init__(self, db: Session):
        self.db = db

    def patient_exists(self, patient_id: UUID) -> bool:
        return self.db.get(Patient, patient_id) is not None

    def clinician_exists(self, clinician_id: UUID) -> bool:
        return self.db.get(Clinician, clinician_id) is not None

    def visit_belongs_to(self, visit_id: int, patient_id: UUID) -> bool:
        visit = self.db.get(Visit, visit_id)
        return visit is not None and visit.patient_id == patient_id

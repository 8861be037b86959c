"""
Read-only reference tables owned by the surrounding records system.

The form engine never writes these rows; it only checks that the patient,
clinician and visit an instance points at exist.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Uuid

from clinical_forms.models.database import Base


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ipp = Column(String(64), unique=True, nullable=False, comment="Permanent patient identifier")
    gender = Column(String(16))
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)


class Clinician(Base):
    __tablename__ = "clinicians"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(String(255), nullable=False)
    specialty_id = Column(Integer, nullable=True)


class Visit(Base):
    __tablename__ = "visits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(Uuid, ForeignKey("patients.id"), nullable=False)
    clinician_id = Column(Uuid, ForeignKey("clinicians.id"), nullable=True)
    started_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    ended_at = Column(DateTime, nullable=True)

    __table_args__ = (Index("ix_visits_patient", "patient_id"),)

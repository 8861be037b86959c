"""Shared fixtures: an in-memory SQLite database and a small clinical context."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from clinical_forms.models import audit, forms, references  # noqa: E402,F401
from clinical_forms.models.database import Base  # noqa: E402
from clinical_forms.models.references import Clinician, Patient, Visit  # noqa: E402
from clinical_forms.schemas.templates import TemplateCreateRequest  # noqa: E402
from clinical_forms.services.templates import create_template  # noqa: E402

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def second_session(db):
    """An independent session on the same database, for racing writers."""
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def encounter(db):
    """A patient with one visit held by one clinician."""
    patient = Patient(ipp="IPP-0001", gender="female")
    other_patient = Patient(ipp="IPP-0002", gender="male")
    clinician = Clinician(full_name="Dr. Amina Haddad", specialty_id=1)
    db.add_all([patient, other_patient, clinician])
    db.flush()
    visit = Visit(patient_id=patient.id, clinician_id=clinician.id)
    other_visit = Visit(patient_id=other_patient.id, clinician_id=clinician.id)
    db.add_all([visit, other_visit])
    db.commit()
    return SimpleNamespace(
        patient_id=patient.id,
        other_patient_id=other_patient.id,
        clinician_id=clinician.id,
        visit_id=visit.id,
        other_visit_id=other_visit.id,
    )


def _vitals_request(price="50.0"):
    return TemplateCreateRequest.model_validate(
        {
            "name": "Vital signs",
            "description": "Admission vitals",
            "specialty_id": 1,
            "price": price,
            "sections": [
                {
                    "name": "Vitals",
                    "display_order": 1,
                    "fields": [
                        {"name": "Temperature", "type": "number", "required": True, "unit": "°C"},
                    ],
                }
            ],
        }
    )


def _examination_request():
    return TemplateCreateRequest.model_validate(
        {
            "name": "Cardiology consultation",
            "specialty_id": 2,
            "price": "120.00",
            "sections": [
                {
                    "name": "Examination",
                    "display_order": 1,
                    "fields": [
                        {"name": "Weight", "type": "number", "unit": "kg", "display_order": 1},
                        {"name": "Notes", "type": "textarea", "display_order": 2},
                    ],
                    "subsections": [
                        {
                            "name": "Cardio",
                            "display_order": 1,
                            "fields": [
                                {
                                    "name": "Rhythm",
                                    "type": "radio",
                                    "required": True,
                                    "allowed_values": "regular;irregular",
                                }
                            ],
                        }
                    ],
                },
                {
                    "name": "History",
                    "display_order": 2,
                    "fields": [
                        {
                            "name": "Allergies",
                            "type": "multi_choice",
                            "allowed_values": ["penicillin", "latex", "pollen"],
                            "display_order": 1,
                        },
                        {"name": "Onset", "type": "date", "display_order": 2},
                    ],
                },
            ],
        }
    )


@pytest.fixture
def vitals_template(db):
    template, _ = create_template(db, _vitals_request(), actor="admin-1")
    return template


@pytest.fixture
def exam_template(db):
    template, _ = create_template(db, _examination_request(), actor="admin-1")
    return template


def _desired_state(template, structure):
    """Payload of an update request that describes ``structure`` exactly."""

    def section(node):
        return {
            "id": node.id,
            "name": node.name,
            "description": node.description,
            "display_order": node.display_order,
            "fields": [
                {
                    "id": f.id,
                    "name": f.name,
                    "required": f.required,
                    "type": f.type.value,
                    "placeholder": f.placeholder,
                    "allowed_values": f.allowed_values,
                    "unit": f.unit,
                    "display_order": f.display_order,
                }
                for f in node.fields
            ],
            "subsections": [section(child) for child in node.subsections],
        }

    return {
        "name": template.name,
        "description": template.description,
        "specialty_id": template.specialty_id,
        "price": template.price,
        "sections": [section(s) for s in structure],
    }


@pytest.fixture
def desired_state():
    return _desired_state

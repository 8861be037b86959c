"""
Data model of the dynamic clinical-form engine.

A template's sections form a forest stored as an arena: every SectionNode row
carries its template id and an optional parent id, every FieldDefinition row
carries its section id. No ORM relationships link the nodes of the forest;
the reconciler and the read path work on id references loaded in one query
per table (see clinical_forms.services.arena).
"""

import enum
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship

from clinical_forms.models.database import Base

ALLOWED_VALUES_DELIMITER = ";"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldType(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            return _FIELD_TYPE_ALIASES.get(value.strip().lower())
        return None

    @property
    def is_choice(self) -> bool:
        return self in (FieldType.SINGLE_CHOICE, FieldType.MULTI_CHOICE)


_FIELD_TYPE_ALIASES = {
    "radio": FieldType.SINGLE_CHOICE,
    "select": FieldType.SINGLE_CHOICE,
    "single-choice": FieldType.SINGLE_CHOICE,
    "checkbox": FieldType.MULTI_CHOICE,
    "multi-choice": FieldType.MULTI_CHOICE,
}


class InstanceStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"


def split_allowed_values(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [v.strip() for v in raw.split(ALLOWED_VALUES_DELIMITER) if v.strip()]


def join_allowed_values(values: list[str] | None) -> str | None:
    if not values:
        return None
    return ALLOWED_VALUES_DELIMITER.join(values)


# ---------------------------------------------------------------------------
# Form Template – root aggregate, owns the section forest
# ---------------------------------------------------------------------------
class FormTemplate(Base):
    __tablename__ = "form_templates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    specialty_id = Column(Integer, nullable=False, comment="Reference to the medical specialty (not owned)")
    price = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    version = Column(Integer, nullable=False, comment="Optimistic concurrency counter")
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    retired_at = Column(DateTime, nullable=True, comment="Set instead of deleting once instances exist")

    __table_args__ = (Index("ix_form_templates_specialty", "specialty_id"),)
    __mapper_args__ = {"version_id_col": version}

    @property
    def is_retired(self) -> bool:
        return self.retired_at is not None


# ---------------------------------------------------------------------------
# Section Node – forest node, parent referenced by id only
# ---------------------------------------------------------------------------
class SectionNode(Base):
    __tablename__ = "form_sections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("form_templates.id"), nullable=False)
    parent_id = Column(Integer, ForeignKey("form_sections.id"), nullable=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    display_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_form_sections_template", "template_id"),
        Index("ix_form_sections_parent", "parent_id"),
    )


# ---------------------------------------------------------------------------
# Field Definition – one atomic answer slot inside a section
# ---------------------------------------------------------------------------
class FieldDefinition(Base):
    __tablename__ = "form_fields"

    id = Column(Integer, primary_key=True, autoincrement=True)
    section_id = Column(Integer, ForeignKey("form_sections.id"), nullable=False)
    name = Column(String(255), nullable=False)
    required = Column(Boolean, nullable=False, default=False)
    type = Column(String(32), nullable=False, comment="FieldType value")
    placeholder = Column(String(255))
    allowed_values = Column(Text, comment="';'-delimited choice set, choice types only")
    unit = Column(String(32))
    display_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (Index("ix_form_fields_section", "section_id"),)

    @property
    def field_type(self) -> FieldType:
        return FieldType(self.type)

    @property
    def choices(self) -> list[str]:
        return split_allowed_values(self.allowed_values)


# ---------------------------------------------------------------------------
# Form Instance – one filling of a template for a patient encounter
# ---------------------------------------------------------------------------
class FormInstance(Base):
    __tablename__ = "form_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    template_id = Column(Integer, ForeignKey("form_templates.id"), nullable=False)
    patient_id = Column(Uuid, nullable=False)
    clinician_id = Column(Uuid, nullable=False, comment="Authoring clinician")
    visit_id = Column(Integer, nullable=True)
    status = Column(String(16), nullable=False, default=InstanceStatus.DRAFT.value)
    price = Column(Numeric(10, 2), nullable=False, comment="Template price at creation time")
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)
    submitted_at = Column(DateTime, nullable=True)

    answers = relationship(
        "Answer",
        back_populates="instance",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Answer.id",
    )

    __table_args__ = (
        Index("ix_form_instances_patient", "patient_id"),
        Index("ix_form_instances_visit", "visit_id"),
        Index("ix_form_instances_clinician", "clinician_id"),
        Index("ix_form_instances_template", "template_id"),
    )
    __mapper_args__ = {"version_id_col": version}


# ---------------------------------------------------------------------------
# Answer – one (encrypted) value for one field of an instance
# ---------------------------------------------------------------------------
class Answer(Base):
    __tablename__ = "form_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    instance_id = Column(Integer, ForeignKey("form_instances.id"), nullable=False)
    # Nulled when the field / section is removed from the template
    field_id = Column(Integer, ForeignKey("form_fields.id"), nullable=True)
    section_id = Column(Integer, ForeignKey("form_sections.id"), nullable=True)
    field_name = Column(String(255), nullable=False, comment="Field label at submission time")
    encrypted_value = Column(Text, nullable=True, comment="Fernet-encrypted raw answer")

    instance = relationship("FormInstance", back_populates="answers")

    __table_args__ = (
        Index("ix_form_answers_instance", "instance_id"),
        Index("ix_form_answers_field", "field_id"),
    )

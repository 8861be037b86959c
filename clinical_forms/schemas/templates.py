"""
Pydantic models for form template requests and responses.

Section and field descriptors are tagged unions: a ``new`` node carries no id
and will get one, an ``existing`` node names the stored node it updates. The
``kind`` tag may be omitted, in which case the presence of ``id`` decides.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)

from clinical_forms.models.forms import (
    ALLOWED_VALUES_DELIMITER,
    FieldDefinition,
    FieldType,
    split_allowed_values,
)


def _node_kind(value: Any) -> str:
    if isinstance(value, dict):
        if value.get("kind"):
            return value["kind"]
        return "existing" if value.get("id") is not None else "new"
    return getattr(value, "kind", "new")


# ---------------------------------------------------------------------------
# Field descriptors
# ---------------------------------------------------------------------------

class FieldSpec(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    required: bool = False
    type: FieldType
    placeholder: str | None = None
    allowed_values: list[str] | None = None
    unit: str | None = None
    display_order: int = 0

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value

    @field_validator("allowed_values", mode="before")
    @classmethod
    def _split_delimited(cls, value: Any) -> Any:
        if isinstance(value, str):
            return split_allowed_values(value)
        return value

    @model_validator(mode="after")
    def _check_choice_set(self) -> "FieldSpec":
        if not self.type.is_choice:
            # Only choice types keep a value set
            self.allowed_values = None
            return self
        values = [v.strip() for v in self.allowed_values or [] if v and v.strip()]
        if not values:
            raise ValueError(f"field '{self.name}' of type {self.type.value} needs allowed_values")
        if any(ALLOWED_VALUES_DELIMITER in v for v in values):
            raise ValueError(f"allowed values may not contain '{ALLOWED_VALUES_DELIMITER}'")
        if len(set(values)) != len(values):
            raise ValueError(f"field '{self.name}' lists an allowed value twice")
        self.allowed_values = values
        return self


class NewField(FieldSpec):
    kind: Literal["new"] = "new"


class ExistingField(FieldSpec):
    kind: Literal["existing"] = "existing"
    id: int


FieldDescriptor = Annotated[
    Union[Annotated[NewField, Tag("new")], Annotated[ExistingField, Tag("existing")]],
    Discriminator(_node_kind),
]


# ---------------------------------------------------------------------------
# Section descriptors
# ---------------------------------------------------------------------------

class SectionSpec(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    display_order: int = 0
    ref: str | None = Field(None, description="Request-local key other descriptors may use as parent_ref")
    parent_ref: str | None = Field(None, description="ref of another descriptor in the same request")
    parent_id: int | None = Field(None, description="id of an existing section of this template")
    fields: list[FieldDescriptor] = []
    subsections: list["SectionDescriptor"] = []

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class NewSection(SectionSpec):
    kind: Literal["new"] = "new"


class ExistingSection(SectionSpec):
    kind: Literal["existing"] = "existing"
    id: int


SectionDescriptor = Annotated[
    Union[Annotated[NewSection, Tag("new")], Annotated[ExistingSection, Tag("existing")]],
    Discriminator(_node_kind),
]

SectionSpec.model_rebuild()
NewSection.model_rebuild()
ExistingSection.model_rebuild()


# ---------------------------------------------------------------------------
# Template requests
# ---------------------------------------------------------------------------

class TemplateRequest(BaseModel):
    """Template metadata plus the full desired section forest."""
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    specialty_id: int
    price: Decimal = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    sections: list[SectionDescriptor] = []


class TemplateCreateRequest(TemplateRequest):
    pass


class TemplateUpdateRequest(TemplateRequest):
    """Desired state: anything stored but omitted here is deleted."""
    expected_version: int | None = Field(
        None, description="Reject the update if the stored template version differs"
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class FieldDefinitionOut(BaseModel):
    id: int
    section_id: int
    name: str
    required: bool
    type: FieldType
    placeholder: str | None
    allowed_values: list[str] | None
    unit: str | None
    display_order: int

    @classmethod
    def from_row(cls, field: FieldDefinition) -> "FieldDefinitionOut":
        return cls(
            id=field.id,
            section_id=field.section_id,
            name=field.name,
            required=field.required,
            type=field.field_type,
            placeholder=field.placeholder,
            allowed_values=field.choices or None,
            unit=field.unit,
            display_order=field.display_order,
        )


class SectionNodeOut(BaseModel):
    id: int
    parent_id: int | None
    name: str
    description: str | None
    display_order: int
    fields: list[FieldDefinitionOut] = []
    subsections: list["SectionNodeOut"] = []


class TemplateSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    specialty_id: int
    price: Decimal
    version: int
    created_at: datetime
    updated_at: datetime | None
    retired_at: datetime | None


class TemplateOut(TemplateSummaryOut):
    sections: list[SectionNodeOut] = []


class ChangeSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    metadata_changed: bool = False
    sections_created: int = 0
    sections_updated: int = 0
    sections_deleted: int = 0
    fields_created: int = 0
    fields_updated: int = 0
    fields_deleted: int = 0


class ReconcileResponse(BaseModel):
    template: TemplateOut
    changes: ChangeSummaryOut


class RetireResponse(BaseModel):
    template_id: int
    outcome: Literal["deleted", "retired"]

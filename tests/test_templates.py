"""Tests for the template lifecycle: reads, listing, retire and delete."""

import pytest

from clinical_forms.exceptions import TemplateNotFoundError, TemplateRetiredError
from clinical_forms.models.audit import AuditLog
from clinical_forms.models.forms import FieldDefinition, FormTemplate, SectionNode
from clinical_forms.schemas.instances import AnswerIn, InstanceCreateRequest
from clinical_forms.schemas.templates import TemplateUpdateRequest
from clinical_forms.services.instances import create_instance
from clinical_forms.services.lookups import SqlReferenceLookup
from clinical_forms.services.templates import (
    get_structure,
    list_templates,
    load_template,
    reconcile_template,
    retire_or_delete_template,
    template_to_out,
)


def _fill(db, encounter, template):
    temperature = get_structure(db, template.id)[0].fields[0]
    request = InstanceCreateRequest(
        template_id=template.id,
        patient_id=encounter.patient_id,
        clinician_id=encounter.clinician_id,
        answers=[AnswerIn(field_id=temperature.id, value="37.2")],
    )
    return create_instance(db, request, lookups=SqlReferenceLookup(db), actor="doctor-7")


def test_unknown_template_is_not_found(db):
    with pytest.raises(TemplateNotFoundError):
        load_template(db, 404)
    with pytest.raises(TemplateNotFoundError):
        get_structure(db, 404)


def test_template_out_embeds_the_forest(db, exam_template):
    out = template_to_out(db, exam_template)

    assert out.name == "Cardiology consultation"
    assert out.version == 1
    assert [s.name for s in out.sections] == ["Examination", "History"]
    assert out.sections[0].subsections[0].fields[0].allowed_values == ["regular", "irregular"]


def test_list_filters_by_specialty(db, vitals_template, exam_template):
    assert [t.id for t in list_templates(db)] == [exam_template.id, vitals_template.id]
    assert [t.id for t in list_templates(db, specialty_id=1)] == [vitals_template.id]
    assert list_templates(db, specialty_id=99) == []


def test_unused_template_is_deleted_with_its_forest(db, exam_template):
    template_id = exam_template.id

    assert retire_or_delete_template(db, template_id, actor="admin-1") == "deleted"

    assert db.query(FormTemplate).count() == 0
    assert db.query(SectionNode).count() == 0
    assert db.query(FieldDefinition).count() == 0
    with pytest.raises(TemplateNotFoundError):
        load_template(db, template_id)
    entry = db.query(AuditLog).filter(AuditLog.action == "delete").one()
    assert entry.resource_id == str(template_id)


def test_deleting_one_template_leaves_the_other_alone(db, vitals_template, exam_template):
    retire_or_delete_template(db, exam_template.id, actor="admin-1")

    assert [s.name for s in get_structure(db, vitals_template.id)] == ["Vitals"]
    assert db.query(FieldDefinition).count() == 1


def test_template_in_use_is_retired(db, encounter, vitals_template):
    _fill(db, encounter, vitals_template)

    assert retire_or_delete_template(db, vitals_template.id, actor="admin-1") == "retired"

    template = load_template(db, vitals_template.id)
    assert template.is_retired
    assert list_templates(db) == []
    assert [t.id for t in list_templates(db, include_retired=True)] == [template.id]
    # Structure stays readable for the instances that use it
    assert [s.name for s in get_structure(db, template.id)] == ["Vitals"]


def test_retiring_twice_keeps_the_first_date(db, encounter, vitals_template):
    _fill(db, encounter, vitals_template)
    retire_or_delete_template(db, vitals_template.id, actor="admin-1")
    retired_at = load_template(db, vitals_template.id).retired_at

    assert retire_or_delete_template(db, vitals_template.id, actor="admin-1") == "retired"
    assert load_template(db, vitals_template.id).retired_at == retired_at


def test_retired_template_cannot_be_reconciled(db, encounter, vitals_template, desired_state):
    _fill(db, encounter, vitals_template)
    retire_or_delete_template(db, vitals_template.id, actor="admin-1")
    state = desired_state(vitals_template, get_structure(db, vitals_template.id))
    state["name"] = "Vital signs (v2)"

    with pytest.raises(TemplateRetiredError):
        reconcile_template(
            db, vitals_template.id, TemplateUpdateRequest.model_validate(state), actor="admin-1"
        )
    assert load_template(db, vitals_template.id).name == "Vital signs"

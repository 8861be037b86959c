"""HTTP-level tests: identity headers, status codes and the error envelope."""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from clinical_forms.main import app
from clinical_forms.models.database import get_db

ADMIN = {"X-User-Id": "admin-1", "X-User-Role": "admin"}
DOCTOR = {"X-User-Id": "doctor-7", "X-User-Role": "doctor"}

VITALS = {
    "name": "Vital signs",
    "specialty_id": 1,
    "price": "50.0",
    "sections": [
        {
            "name": "Vitals",
            "fields": [{"name": "Temperature", "type": "number", "required": True, "unit": "°C"}],
        }
    ],
}


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _create_vitals(client):
    response = client.post("/api/v1/templates", json=VITALS, headers=ADMIN)
    assert response.status_code == 201
    return response.json()["template"]


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["database"] == "connected"


def test_identity_headers_are_required(client):
    response = client.post("/api/v1/templates", json=VITALS)
    assert response.status_code == 401
    assert response.json()["ok"] is False


def test_clinicians_cannot_edit_templates(client):
    response = client.post("/api/v1/templates", json=VITALS, headers=DOCTOR)
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "api_error"


def test_create_and_read_template(client):
    body = client.post("/api/v1/templates", json=VITALS, headers=ADMIN).json()
    assert body["changes"]["sections_created"] == 1
    assert body["changes"]["fields_created"] == 1

    template_id = body["template"]["id"]
    fetched = client.get(f"/api/v1/templates/{template_id}").json()
    assert fetched["sections"][0]["fields"][0]["name"] == "Temperature"

    structure = client.get(f"/api/v1/templates/{template_id}/structure").json()
    assert [s["name"] for s in structure] == ["Vitals"]

    listed = client.get("/api/v1/templates", params={"specialty_id": 1}).json()
    assert [t["id"] for t in listed] == [template_id]


def test_missing_template_uses_error_envelope(client):
    response = client.get("/api/v1/templates/999")
    assert response.status_code == 404
    assert response.json() == {
        "ok": False,
        "error": {"code": "template_not_found", "message": "Form template 999 not found"},
    }


def test_malformed_body_is_rejected(client):
    response = client.post("/api/v1/templates", json={"specialty_id": 1}, headers=ADMIN)
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_request"


def test_put_with_cycle_is_rejected(client):
    template = _create_vitals(client)
    section = template["sections"][0]
    payload = {
        "name": "Vital signs",
        "specialty_id": 1,
        "sections": [{"id": section["id"], "name": "Vitals", "parent_id": section["id"]}],
    }

    response = client.put(f"/api/v1/templates/{template['id']}", json=payload, headers=ADMIN)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "invalid_hierarchy"


def test_instance_flow(client, encounter):
    template = _create_vitals(client)
    temperature = template["sections"][0]["fields"][0]
    payload = {
        "template_id": template["id"],
        "patient_id": str(encounter.patient_id),
        "clinician_id": str(encounter.clinician_id),
        "visit_id": encounter.visit_id,
        "answers": [{"field_id": temperature["id"], "value": "37.5"}],
    }

    created = client.post("/api/v1/instances", json=payload, headers=DOCTOR)
    assert created.status_code == 201
    instance = created.json()
    assert instance["status"] == "draft"
    assert Decimal(instance["price"]) == Decimal("50")
    assert instance["answers"][0]["value"] == "37.5"

    rejected = client.put(
        f"/api/v1/instances/{instance['id']}/answers",
        json={"answers": [{"field_id": temperature["id"], "value": ""}]},
        headers=DOCTOR,
    )
    assert rejected.status_code == 422
    error = rejected.json()["error"]
    assert error["code"] == "answers_rejected"
    assert error["violations"] == [
        {
            "code": "missing_required_field",
            "message": error["violations"][0]["message"],
            "field_id": temperature["id"],
            "field_name": "Temperature",
        }
    ]

    report = client.get(f"/api/v1/instances/{instance['id']}/validation").json()
    assert report["valid"] is True

    submitted = client.post(f"/api/v1/instances/{instance['id']}/submit", headers=DOCTOR)
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "submitted"

    frozen = client.put(
        f"/api/v1/instances/{instance['id']}/answers",
        json={"answers": [{"field_id": temperature["id"], "value": "38"}]},
        headers=DOCTOR,
    )
    assert frozen.status_code == 409
    assert frozen.json()["error"]["code"] == "immutable_instance"

    listed = client.get("/api/v1/instances", params={"patient_id": str(encounter.patient_id)}).json()
    assert [i["id"] for i in listed] == [instance["id"]]


def test_delete_template_reports_outcome(client):
    template = _create_vitals(client)

    response = client.delete(f"/api/v1/templates/{template['id']}", headers=ADMIN)

    assert response.json() == {"template_id": template["id"], "outcome": "deleted"}
    assert client.get(f"/api/v1/templates/{template['id']}").status_code == 404

"""Tests for the HTTP surface, using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from emr_forms.api.routes import get_session_store
from emr_forms.main import app
from emr_forms.services.builder import BuilderSessionStore


@pytest.fixture
def client():
    store = BuilderSessionStore()
    app.dependency_overrides[get_session_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def _questionnaire() -> dict:
    return {
        "resourceType": "Questionnaire",
        "id": "intake",
        "status": "active",
        "title": "Intake",
        "item": [
            {"linkId": "email", "type": "string", "text": "Email", "required": True},
            {
                "linkId": "smoker",
                "type": "choice",
                "answerOption": [{"valueCoding": {"code": "yes", "display": "Yes"}}],
            },
            {
                "linkId": "packs",
                "type": "integer",
                "enableWhen": [{"question": "smoker", "operator": "=", "answerString": "yes"}],
            },
        ],
    }


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ---------------------------------------------------------------------------
# Stateless engine
# ---------------------------------------------------------------------------

def test_parse_questionnaire(client):
    response = client.post("/api/v1/questionnaires/parse", json=_questionnaire())
    assert response.status_code == 200
    body = response.json()
    assert [f["linkId"] for f in body["template"]["fields"]] == ["email", "smoker", "packs"]
    assert body["json_schema"]["required"] == ["email"]


def test_parse_rejects_malformed_questionnaire(client):
    response = client.post(
        "/api/v1/questionnaires/parse",
        json={"resourceType": "Questionnaire", "status": "draft", "item": [{"type": "string"}]},
    )
    assert response.status_code == 422
    assert any("linkId" in message for message in response.json()["detail"])


def test_build_questionnaire(client):
    template = {
        "title": "Form",
        "fields": [{"linkId": "q1", "type": "radio", "label": "Pick", "options": [{"value": "a", "label": "A"}]}],
    }
    response = client.post("/api/v1/questionnaires/build", json=template)
    assert response.status_code == 200
    item = response.json()["item"][0]
    assert item["type"] == "choice"
    assert item["answerOption"][0]["valueCoding"]["code"] == "a"


def test_validate_form_respects_visibility(client):
    payload = {
        "fields": [
            {"linkId": "smoker", "type": "radio"},
            {
                "linkId": "packs",
                "type": "integer",
                "required": True,
                "conditional": {"conditions": [{"questionId": "smoker", "answer": "yes"}]},
            },
        ],
        "answers": {"smoker": "no"},
    }
    body = client.post("/api/v1/forms/validate", json=payload).json()
    assert body["is_valid"] is True
    assert body["visible_link_ids"] == ["smoker"]

    payload["answers"] = {"smoker": "yes"}
    body = client.post("/api/v1/forms/validate", json=payload).json()
    assert body["errors"] == {"packs": ["This field is required"]}


def test_visibility_endpoint(client):
    payload = {
        "fields": [
            {"linkId": "a"},
            {"linkId": "b", "conditional": {"conditions": [{"questionId": "a", "answer": "yes"}]}},
        ],
        "answers": {"a": "no", "b": "old"},
    }
    body = client.post("/api/v1/forms/visibility", json=payload).json()
    assert body == {"visible_link_ids": ["a"], "hidden_link_ids": ["b"], "fields_to_clear": ["b"]}


def test_response_endpoint(client):
    payload = {
        "questionnaire": _questionnaire(),
        "answers": {"email": "a@b.co", "smoker": "yes", "packs": 2},
        "status": "completed",
        "subject": "Patient/1",
    }
    body = client.post("/api/v1/forms/response", json=payload).json()
    assert body["resourceType"] == "QuestionnaireResponse"
    assert body["subject"] == {"reference": "Patient/1"}
    assert [item["linkId"] for item in body["item"]] == ["email", "smoker", "packs"]


def test_response_endpoint_rejects_bad_status(client):
    payload = {"questionnaire": _questionnaire(), "status": "done"}
    assert client.post("/api/v1/forms/response", json=payload).status_code == 422


# ---------------------------------------------------------------------------
# Builder sessions
# ---------------------------------------------------------------------------

def _create_session(client) -> str:
    response = client.post("/api/v1/builder/sessions", json={"questionnaire": _questionnaire()})
    assert response.status_code == 201
    return response.json()["session_id"]


def test_session_lifecycle(client):
    session_id = _create_session(client)
    base = f"/api/v1/builder/sessions/{session_id}"

    body = client.post(f"{base}/fields", json={"linkId": "notes", "type": "textarea"}).json()
    assert [f["linkId"] for f in body["view"]["fields"]] == ["email", "smoker", "packs", "notes"]
    assert body["view"]["selectedFieldId"] == "notes"

    body = client.post(f"{base}/reorder", json={"from_index": 3, "to_index": 0}).json()
    assert [f["order"] for f in body["view"]["fields"]] == [0, 1, 2, 3]
    assert body["view"]["fields"][0]["linkId"] == "notes"

    body = client.post(f"{base}/undo").json()
    assert body["view"]["fields"][0]["linkId"] == "email"
    assert body["view"]["canRedo"] is True

    body = client.post(f"{base}/redo").json()
    assert body["view"]["fields"][0]["linkId"] == "notes"

    body = client.patch(f"{base}/fields/notes", json={"updates": {"label": "Notes"}}).json()
    assert body["view"]["fields"][0]["label"] == "Notes"

    body = client.patch(f"{base}/metadata", json={"title": "Renamed", "status": "retired"}).json()
    assert (body["title"], body["status"]) == ("Renamed", "retired")

    exported = client.get(f"{base}/questionnaire").json()
    assert exported["title"] == "Renamed"
    assert exported["item"][0]["linkId"] == "notes"

    assert client.delete(f"{base}/fields/notes").status_code == 200
    assert client.delete(base).status_code == 204
    assert client.get(base).status_code == 404


def test_session_answers_clear_hidden_fields(client):
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    client.post(f"{base}/answers", json={"link_id": "smoker", "value": "yes"})
    client.post(f"{base}/answers", json={"link_id": "packs", "value": 3})
    body = client.post(f"{base}/answers", json={"link_id": "smoker", "value": "no"}).json()
    assert body["cleared_link_ids"] == ["packs"]
    assert body["view"]["visibleLinkIds"] == ["email", "smoker"]


def test_session_select(client):
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    body = client.post(f"{base}/select", json={"field_id": "smoker"}).json()
    assert body["view"]["selectedFieldId"] == "smoker"
    assert client.post(f"{base}/select", json={"field_id": "nope"}).status_code == 404


def test_unknown_session_and_field(client):
    assert client.get("/api/v1/builder/sessions/missing").status_code == 404
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    assert client.patch(f"{base}/fields/missing", json={"updates": {}}).status_code == 404
    assert client.delete(f"{base}/fields/missing").status_code == 404
    assert client.post(f"{base}/answers", json={"link_id": "missing"}).status_code == 404


def test_duplicate_field_id_conflicts(client):
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    response = client.post(f"{base}/fields", json={"id": "email", "linkId": "email2"})
    assert response.status_code == 409


def test_renaming_field_onto_existing_id_conflicts(client):
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    response = client.patch(f"{base}/fields/packs", json={"updates": {"id": "email"}})
    assert response.status_code == 409
    fields = client.get(base).json()["view"]["fields"]
    assert [f["id"] for f in fields] == ["email", "smoker", "packs"]


def test_publish_bumps_version(client):
    base = f"/api/v1/builder/sessions/{_create_session(client)}"
    body = client.post(f"{base}/publish", json={}).json()
    assert (body["version"], body["status"]) == ("1.0", "active")

    body = client.post(f"{base}/publish", json={"major": True}).json()
    assert body["version"] == "2.0"
    assert client.get(f"{base}/questionnaire").json()["version"] == "2.0"


def test_clone_session_starts_new_draft(client):
    source_id = _create_session(client)
    response = client.post(f"/api/v1/builder/sessions/{source_id}/clone", json={"title": "Intake copy"})
    assert response.status_code == 201
    body = response.json()
    assert body["session_id"] != source_id
    assert (body["title"], body["status"], body["version"]) == ("Intake copy", "draft", "1.0")
    assert [f["linkId"] for f in body["view"]["fields"]] == ["email", "smoker", "packs"]


def test_response_values_round_trip(client):
    payload = {"questionnaire": _questionnaire(), "answers": {"email": "a@b.co", "smoker": "yes", "packs": 2}}
    response = client.post("/api/v1/forms/response", json=payload).json()
    values = client.post("/api/v1/forms/response/values", json=response).json()
    assert values == {"email": "a@b.co", "smoker": "yes", "packs": 2}


def test_response_values_rejects_malformed_response(client):
    response = client.post("/api/v1/forms/response/values", json={"resourceType": "QuestionnaireResponse"})
    assert response.status_code == 422


def test_check_rules(client):
    payload = {
        "values": {"email": "user@example.com", "phone": "555-1234", "untracked": "x"},
        "rules": {"email": "email", "phone": {"name": "phone"}},
    }
    body = client.post("/api/v1/validators/check", json=payload).json()
    assert body["is_valid"] is False
    assert body["errors"] == ["Invalid phone number format (use E.164 format: +995XXXXXXXXX)"]
    assert body["results"]["email"] == {"isValid": True}
    assert "untracked" not in body["results"]


def test_check_rules_unknown_validator(client):
    payload = {"values": {"a": "x"}, "rules": {"a": "nope"}}
    assert client.post("/api/v1/validators/check", json=payload).status_code == 422

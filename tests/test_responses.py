"""Tests for QuestionnaireResponse assembly and flattening."""

from datetime import datetime, timezone

import pytest

from emr_forms.models.form import FieldConfig, FormTemplate
from emr_forms.schemas.extensions import ExtensionRegistry
from emr_forms.services.questionnaire import to_questionnaire
from emr_forms.services.responses import create_questionnaire_response, extract_response_values
from emr_forms.services.validation import validate_questionnaire_response

REGISTRY = ExtensionRegistry(base_url="http://example.org/ext", version="v1")
NOW = datetime(2024, 6, 15, 9, 30, tzinfo=timezone.utc)


def _make_questionnaire() -> dict:
    template = FormTemplate.model_validate(
        {
            "id": "intake",
            "title": "Intake",
            "fields": [
                {"linkId": "name", "type": "text", "label": "Name"},
                {"linkId": "age", "type": "integer"},
                {"linkId": "weight", "type": "decimal"},
                {"linkId": "consent", "type": "boolean"},
                {"linkId": "visit", "type": "date"},
                {
                    "linkId": "smoker",
                    "type": "radio",
                    "options": [{"value": "yes", "label": "Yes"}, {"value": "no", "label": "No"}],
                },
                {
                    "linkId": "packs",
                    "type": "integer",
                    "conditional": {"conditions": [{"questionId": "smoker", "answer": "yes"}]},
                },
                {
                    "linkId": "symptoms",
                    "type": "checkbox-group",
                    "options": [{"value": "cough"}, {"value": "fever"}],
                },
                {"linkId": "info", "type": "display", "label": "Thank you"},
            ],
        }
    )
    return to_questionnaire(template, REGISTRY)


def _create(answers: dict, **kwargs) -> dict:
    return create_questionnaire_response(_make_questionnaire(), answers, now=NOW, registry=REGISTRY, **kwargs)


def test_typed_answers():
    response = _create(
        {"name": "Nino", "age": "42", "weight": 70, "consent": "true", "visit": "2024-06-15", "smoker": "no"}
    )
    answers = {item["linkId"]: item.get("answer") for item in response["item"]}
    assert answers["name"] == [{"valueString": "Nino"}]
    assert answers["age"] == [{"valueInteger": 42}]
    assert answers["weight"] == [{"valueDecimal": 70.0}]
    assert answers["consent"] == [{"valueBoolean": True}]
    assert answers["visit"] == [{"valueDate": "2024-06-15"}]
    assert answers["smoker"] == [
        {"valueCoding": {"system": REGISTRY.option_system, "code": "no", "display": "No"}}
    ]
    assert answers["info"] is None


def test_header_fields():
    response = _create({}, status="completed", subject="Patient/1", encounter={"reference": "Encounter/2"})
    assert response["resourceType"] == "QuestionnaireResponse"
    assert response["questionnaire"] == "Questionnaire/intake"
    assert response["status"] == "completed"
    assert response["authored"] == NOW.isoformat()
    assert response["subject"] == {"reference": "Patient/1"}
    assert response["encounter"] == {"reference": "Encounter/2"}
    assert "author" not in response
    assert validate_questionnaire_response(response) == []


def test_hidden_items_are_omitted():
    response = _create({"smoker": "no", "packs": 3})
    assert "packs" not in [item["linkId"] for item in response["item"]]

    response = _create({"smoker": "yes", "packs": 3})
    packs = next(item for item in response["item"] if item["linkId"] == "packs")
    assert packs["answer"] == [{"valueInteger": 3}]


def test_repeating_answers():
    response = _create({"symptoms": ["cough", "fever"]})
    symptoms = next(item for item in response["item"] if item["linkId"] == "symptoms")
    assert [a["valueCoding"]["code"] for a in symptoms["answer"]] == ["cough", "fever"]


def test_non_numeric_answer_is_skipped():
    response = _create({"age": "forty"})
    age = next(item for item in response["item"] if item["linkId"] == "age")
    assert "answer" not in age


def test_invalid_status_raises():
    with pytest.raises(ValueError):
        _create({}, status="done")


def test_extract_response_values_round_trip():
    answers = {"name": "Nino", "age": 42, "smoker": "yes", "packs": 1, "symptoms": ["cough", "fever"]}
    assert extract_response_values(_create(answers)) == answers


def test_extract_response_values_nested():
    response = {
        "resourceType": "QuestionnaireResponse",
        "status": "completed",
        "item": [
            {
                "linkId": "group",
                "item": [{"linkId": "inner", "answer": [{"valueString": "x"}]}],
            },
            {"linkId": "empty"},
        ],
    }
    assert extract_response_values(response) == {"inner": "x"}

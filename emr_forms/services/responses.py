"""
QuestionnaireResponse assembly and flattening.

Answers for fields hidden by conditional logic are never written.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from emr_forms.schemas.extensions import ExtensionRegistry, default_registry
from emr_forms.services.questionnaire import from_questionnaire
from emr_forms.services.visibility import evaluate_visibility

logger = logging.getLogger(__name__)

RESPONSE_STATUSES = ("in-progress", "completed", "amended", "entered-in-error", "stopped")

Reference = Union[str, dict[str, Any], None]


def _reference(value: Reference) -> Optional[dict[str, Any]]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return {"reference": value}
    return value


def _option_display(item: dict[str, Any], code: str) -> Optional[str]:
    for option in item.get("answerOption") or []:
        coding = option.get("valueCoding") or {}
        if coding.get("code") == code:
            return coding.get("display")
    return None


def _answer(item: dict[str, Any], value: Any, registry: ExtensionRegistry) -> Optional[dict[str, Any]]:
    item_type = item.get("type")
    link_id = item.get("linkId")
    try:
        if item_type == "boolean":
            if isinstance(value, str):
                return {"valueBoolean": value.strip().lower() == "true"}
            return {"valueBoolean": bool(value)}
        if item_type == "integer":
            return {"valueInteger": int(value)}
        if item_type == "decimal":
            return {"valueDecimal": float(value)}
    except (TypeError, ValueError):
        logger.warning("Skipping non-numeric answer %r for '%s'", value, link_id)
        return None
    if item_type == "date":
        return {"valueDate": str(value)}
    if item_type == "dateTime":
        return {"valueDateTime": str(value)}
    if item_type == "time":
        return {"valueTime": str(value)}
    if item_type in ("choice", "open-choice"):
        if isinstance(value, dict):
            return {"valueCoding": value}
        code = str(value)
        display = _option_display(item, code)
        if display is None and item_type == "open-choice":
            return {"valueString": code}
        coding = {"system": registry.option_system, "code": code}
        if display is not None:
            coding["display"] = display
        return {"valueCoding": coding}
    if item_type == "attachment" and isinstance(value, dict):
        return {"valueAttachment": value}
    return {"valueString": str(value)}


def _response_item(
    item: dict[str, Any],
    answers: dict[str, Any],
    visible: set[str],
    registry: ExtensionRegistry,
) -> Optional[dict[str, Any]]:
    link_id = item["linkId"]
    if link_id not in visible:
        return None
    entry: dict[str, Any] = {"linkId": link_id}
    if item.get("text"):
        entry["text"] = item["text"]

    value = answers.get(link_id)
    if item.get("type") not in ("display", "group") and value not in (None, "", []):
        values = value if isinstance(value, list) else [value]
        built = [a for a in (_answer(item, v, registry) for v in values) if a is not None]
        if built:
            entry["answer"] = built

    children = [
        child
        for child in (_response_item(c, answers, visible, registry) for c in item.get("item") or [])
        if child is not None
    ]
    if children:
        entry["item"] = children
    return entry


def create_questionnaire_response(
    questionnaire: dict[str, Any],
    answers: dict[str, Any],
    status: str = "in-progress",
    subject: Reference = None,
    encounter: Reference = None,
    author: Reference = None,
    now: Optional[datetime] = None,
    registry: Optional[ExtensionRegistry] = None,
) -> dict[str, Any]:
    """
    Build a QuestionnaireResponse for ``answers`` keyed by linkId.

    Items hidden by conditional logic are left out along with their answers.
    References may be given as "Patient/123" strings or Reference dicts.
    """
    if status not in RESPONSE_STATUSES:
        raise ValueError(f"Invalid QuestionnaireResponse status: {status}")
    registry = registry or default_registry()
    fields = from_questionnaire(questionnaire, registry).fields
    visible = evaluate_visibility(fields, answers)

    response: dict[str, Any] = {"resourceType": "QuestionnaireResponse", "status": status}
    if questionnaire.get("id"):
        response["questionnaire"] = f"Questionnaire/{questionnaire['id']}"
    response["authored"] = (now or datetime.now(timezone.utc)).isoformat()
    for key, value in (("subject", subject), ("encounter", encounter), ("author", author)):
        reference = _reference(value)
        if reference is not None:
            response[key] = reference

    items = (_response_item(i, answers, visible, registry) for i in questionnaire.get("item") or [])
    response["item"] = [i for i in items if i is not None]
    return response


def _answer_value(answer: dict[str, Any]) -> Any:
    for key, value in answer.items():
        if not key.startswith("value"):
            continue
        if key == "valueCoding" and isinstance(value, dict):
            return value.get("code")
        return value
    return None


def extract_response_values(response: dict[str, Any]) -> dict[str, Any]:
    """Flatten a QuestionnaireResponse into ``{linkId: value}``, nested items included."""
    values: dict[str, Any] = {}

    def visit(item: dict[str, Any]) -> None:
        found = [_answer_value(a) for a in item.get("answer") or []]
        if len(found) == 1:
            values[item["linkId"]] = found[0]
        elif found:
            values[item["linkId"]] = found
        for child in item.get("item") or []:
            visit(child)

    for item in response.get("item") or []:
        visit(item)
    return values

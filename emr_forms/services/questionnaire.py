"""
FHIR Questionnaire conversion.

Maps FormTemplate / FieldConfig to Questionnaire / QuestionnaireItem and
back. Attributes FHIR has no native slot for (styling, validation config,
patient binding, builder-only field types, ...) travel in extensions whose
URIs come from an ExtensionRegistry. Extensions this module does not
recognise are kept on the field and written back unchanged.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from emr_forms.models.form import (
    CHOICE_LIKE_TYPES,
    Condition,
    ConditionalLogic,
    ConditionOperator,
    FieldConfig,
    FieldOption,
    FieldStyling,
    FieldType,
    FormStatus,
    FormStyling,
    FormTemplate,
    PatientBinding,
    ValidationConfig,
    carries_answer,
)
from emr_forms.schemas import extensions as ext
from emr_forms.schemas.extensions import TRANSLATION_URL, ExtensionRegistry, default_registry

logger = logging.getLogger(__name__)

FIELD_TO_ITEM_TYPE: dict[FieldType, str] = {
    FieldType.TEXT: "string",
    FieldType.TEXTAREA: "text",
    FieldType.DATE: "date",
    FieldType.DATETIME: "dateTime",
    FieldType.TIME: "time",
    FieldType.INTEGER: "integer",
    FieldType.DECIMAL: "decimal",
    FieldType.BOOLEAN: "boolean",
    FieldType.CHOICE: "choice",
    FieldType.OPEN_CHOICE: "open-choice",
    FieldType.RADIO: "choice",
    FieldType.CHECKBOX_GROUP: "choice",
    FieldType.SIGNATURE: "attachment",
    FieldType.ATTACHMENT: "attachment",
    FieldType.DISPLAY: "display",
    FieldType.GROUP: "group",
}

ITEM_TO_FIELD_TYPE: dict[str, FieldType] = {
    "string": FieldType.TEXT,
    "text": FieldType.TEXTAREA,
    "url": FieldType.TEXT,
    "reference": FieldType.TEXT,
    "date": FieldType.DATE,
    "dateTime": FieldType.DATETIME,
    "time": FieldType.TIME,
    "integer": FieldType.INTEGER,
    "decimal": FieldType.DECIMAL,
    "quantity": FieldType.DECIMAL,
    "boolean": FieldType.BOOLEAN,
    "choice": FieldType.CHOICE,
    "open-choice": FieldType.OPEN_CHOICE,
    "attachment": FieldType.ATTACHMENT,
    "display": FieldType.DISPLAY,
    "group": FieldType.GROUP,
}

# Builder types that collapse onto a shared FHIR type and need a hint to come back.
LOSSY_TYPES = frozenset({FieldType.RADIO, FieldType.CHECKBOX_GROUP, FieldType.SIGNATURE})

_TEMPORAL_INITIAL = {
    FieldType.DATE: "valueDate",
    FieldType.DATETIME: "valueDateTime",
    FieldType.TIME: "valueTime",
}


def _registry(registry: Optional[ExtensionRegistry]) -> ExtensionRegistry:
    return registry if registry is not None else default_registry()


def _json_extension(url: str, model: BaseModel) -> dict[str, Any]:
    return {"url": url, "valueString": json.dumps(model.to_wire(), ensure_ascii=False)}


def _extension_value(extension: dict[str, Any]) -> Any:
    for key, value in extension.items():
        if key.startswith("value"):
            return value
    return None


def _translation(lang: str, content: str) -> dict[str, Any]:
    return {
        "url": TRANSLATION_URL,
        "extension": [
            {"url": "lang", "valueCode": lang},
            {"url": "content", "valueString": content},
        ],
    }


def _read_translation(extension: dict[str, Any]) -> Optional[str]:
    for part in extension.get("extension", []):
        if part.get("url") == "content":
            return part.get("valueString")
    return None


# ---------------------------------------------------------------------------
# Field -> item
# ---------------------------------------------------------------------------

def _typed_initial(field_type: FieldType, value: Any) -> tuple[str, Any]:
    if field_type == FieldType.INTEGER:
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            raise ValueError(f"{value!r} is not a whole number")
        return "valueInteger", int(value)
    if field_type == FieldType.DECIMAL:
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a number")
        return "valueDecimal", float(value) if isinstance(value, str) else value
    if field_type == FieldType.BOOLEAN:
        if isinstance(value, bool):
            return "valueBoolean", value
        text = str(value).strip().lower()
        if text not in ("true", "false"):
            raise ValueError(f"{value!r} is not true or false")
        return "valueBoolean", text == "true"
    return _TEMPORAL_INITIAL.get(field_type, "valueString"), str(value)


def _initial(field: FieldConfig) -> Optional[list[dict[str, Any]]]:
    value = field.default_value
    if value is None or value == "" or not carries_answer(field.type):
        return None
    try:
        key, typed = _typed_initial(field.type, value)
    except (TypeError, ValueError):
        logger.warning(
            "Default value %r does not fit %s field '%s'; writing it as a string",
            value, field.type.value, field.link_id,
        )
        key, typed = "valueString", str(value)
    return [{key: typed}]


def _enable_when(condition: Condition, registry: ExtensionRegistry) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "question": condition.question_id,
        "operator": condition.operator.value,
    }
    answer = condition.answer
    if answer is None and condition.operator == ConditionOperator.EXISTS:
        answer = True
    if isinstance(answer, bool):
        entry["answerBoolean"] = answer
    elif isinstance(answer, int):
        entry["answerInteger"] = answer
    elif isinstance(answer, float):
        entry["answerDecimal"] = answer
    elif isinstance(answer, dict) and "code" in answer:
        entry["answerCoding"] = {"system": registry.option_system, **answer}
    elif answer is not None:
        entry["answerString"] = str(answer)
    return entry


def _answer_options(field: FieldConfig, registry: ExtensionRegistry) -> list[dict[str, Any]]:
    options = []
    for option in field.options:
        entry: dict[str, Any] = {
            "valueCoding": {
                "system": registry.option_system,
                "code": option.value,
                "display": option.label,
            }
        }
        if option.label_en:
            entry["extension"] = [_translation(registry.secondary_language, option.label_en)]
        options.append(entry)
    return options


def _field_extensions(field: FieldConfig, registry: ExtensionRegistry) -> list[dict[str, Any]]:
    extensions: list[dict[str, Any]] = []
    if field.styling is not None:
        extensions.append(_json_extension(registry.url(ext.FIELD_STYLING), field.styling))
    if field.validation is not None:
        extensions.append(_json_extension(registry.url(ext.VALIDATION_CONFIG), field.validation))
    if field.patient_binding is not None:
        extensions.append(_json_extension(registry.url(ext.PATIENT_BINDING), field.patient_binding))
    if field.order is not None:
        extensions.append({"url": registry.url(ext.FIELD_ORDER), "valueInteger": field.order})
    if field.has_text_field:
        extensions.append({"url": registry.url(ext.HAS_TEXT_FIELD), "valueBoolean": True})
    if field.type in LOSSY_TYPES:
        extensions.append({"url": registry.url(ext.FIELD_TYPE), "valueString": field.type.value})
    if field.id != field.link_id:
        extensions.append({"url": registry.url(ext.FIELD_ID), "valueString": field.id})
    if field.width:
        extensions.append({"url": registry.url(ext.FIELD_WIDTH), "valueString": field.width})
    if field.conditional is not None and field.conditional.conditions and not field.conditional.enabled:
        extensions.append(_json_extension(registry.url(ext.CONDITIONAL_LOGIC), field.conditional))
    if field.text:
        extensions.append(_translation(registry.secondary_language, field.text))
    extensions.extend(field.extensions)
    return extensions


def field_to_item(field: FieldConfig, registry: Optional[ExtensionRegistry] = None) -> dict[str, Any]:
    """Serialize one field to a QuestionnaireItem dict."""
    registry = _registry(registry)
    item: dict[str, Any] = {
        "linkId": field.link_id,
        "type": FIELD_TO_ITEM_TYPE.get(field.type, "string"),
    }
    if field.label.strip():
        item["text"] = field.label
    if carries_answer(field.type):
        item["required"] = field.required
    if field.read_only:
        item["readOnly"] = True
    if field.repeats or field.type == FieldType.CHECKBOX_GROUP:
        item["repeats"] = True

    if field.type in CHOICE_LIKE_TYPES and field.options:
        item["answerOption"] = _answer_options(field, registry)
    elif field.options:
        logger.debug("Options on %s field '%s' are not exported", field.type.value, field.link_id)

    initial = _initial(field)
    if initial:
        item["initial"] = initial

    if field.conditional is not None and field.conditional.is_active:
        item["enableWhen"] = [_enable_when(c, registry) for c in field.conditional.conditions]
        item["enableBehavior"] = field.conditional.operator

    extensions = _field_extensions(field, registry)
    if extensions:
        item["extension"] = extensions
    return item


def to_questionnaire(
    template: FormTemplate,
    registry: Optional[ExtensionRegistry] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Serialize a whole form template to a Questionnaire resource dict."""
    registry = _registry(registry)
    document: dict[str, Any] = {"resourceType": "Questionnaire"}
    if template.id:
        document["id"] = template.id
    document["status"] = template.status.value
    document["title"] = template.title
    if template.description:
        document["description"] = template.description
    if template.version:
        document["version"] = template.version
    document["date"] = (
        template.last_modified
        or template.created_date
        or (now or datetime.now(timezone.utc)).isoformat()
    )

    if template.category:
        document["meta"] = {
            "tag": [
                {"system": registry.category_system, "code": category, "display": category}
                for category in template.category
            ]
        }

    extensions: list[dict[str, Any]] = []
    if template.created_by:
        extensions.append({"url": registry.url(ext.CREATED_BY), "valueString": template.created_by})
    if template.form_styling is not None:
        extensions.append(_json_extension(registry.url(ext.FORM_STYLING), template.form_styling))
    extensions.extend(template.extensions)
    if extensions:
        document["extension"] = extensions

    document["item"] = [field_to_item(f, registry) for f in template.fields]
    logger.debug("Built Questionnaire with %d items", len(document["item"]))
    return document


# ---------------------------------------------------------------------------
# Item -> field
# ---------------------------------------------------------------------------

def _parse_json_model(model_cls, raw: Any, link_id: str, what: str):
    """Parse a JSON-string (or dict) extension payload; None when unusable."""
    payload = raw
    if isinstance(raw, str):
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Ignoring malformed %s JSON on item '%s'", what, link_id)
            return None
    if not isinstance(payload, dict):
        logger.warning("Ignoring %s on item '%s': expected an object", what, link_id)
        return None
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        logger.warning("Ignoring invalid %s on item '%s': %s", what, link_id, exc.errors()[0]["msg"])
        return None


def _parse_patient_binding(raw: Any, link_id: str) -> Optional[PatientBinding]:
    if isinstance(raw, str) and not raw.strip().startswith("{"):
        # Older documents stored only the binding key.
        return PatientBinding(binding_key=raw) if raw.strip() else None
    return _parse_json_model(PatientBinding, raw, link_id, "patient binding")


def _condition_answer(entry: dict[str, Any]) -> Any:
    for key in (
        "answerBoolean",
        "answerInteger",
        "answerDecimal",
        "answerString",
        "answerDate",
        "answerDateTime",
        "answerTime",
    ):
        if key in entry:
            return entry[key]
    coding = entry.get("answerCoding")
    if isinstance(coding, dict):
        return coding.get("code")
    return None


def _initial_value(item: dict[str, Any]) -> Any:
    for entry in item.get("initial") or []:
        for key, value in entry.items():
            if key == "valueCoding" and isinstance(value, dict):
                return value.get("code")
            if key.startswith("value") and isinstance(value, (bool, int, float, str)):
                return value
    return None


def _options(item: dict[str, Any]) -> list[FieldOption]:
    options = []
    for entry in item.get("answerOption") or []:
        coding = entry.get("valueCoding")
        if isinstance(coding, dict):
            value = coding.get("code", "")
            label = coding.get("display")
            if label is None:
                label = value
        elif "valueString" in entry:
            value = label = entry["valueString"]
        elif "valueInteger" in entry:
            value = label = str(entry["valueInteger"])
        else:
            logger.warning("Skipping answerOption without a value on item '%s'", item.get("linkId"))
            continue
        label_en = None
        for extension in entry.get("extension") or []:
            if extension.get("url") == TRANSLATION_URL:
                label_en = _read_translation(extension)
        options.append(FieldOption(value=value, label=label, label_en=label_en))
    return options


def item_to_field(item: dict[str, Any], registry: Optional[ExtensionRegistry] = None) -> FieldConfig:
    """Deserialize one QuestionnaireItem dict into a field."""
    registry = _registry(registry)
    link_id = item["linkId"]
    item_type = item.get("type")
    field_type = ITEM_TO_FIELD_TYPE.get(item_type)
    if field_type is None:
        logger.warning("Unknown item type %r on '%s', using 'text'", item_type, link_id)
        field_type = FieldType.TEXT

    data: dict[str, Any] = {
        "id": link_id,
        "link_id": link_id,
        "type": field_type,
        "label": item.get("text") or "",
        "required": bool(item.get("required", False)),
        "read_only": bool(item.get("readOnly", False)),
        "repeats": bool(item.get("repeats", False)),
        "options": _options(item),
        "default_value": _initial_value(item),
    }

    if item.get("enableWhen"):
        data["conditional"] = ConditionalLogic(
            enabled=True,
            operator="any" if item.get("enableBehavior") == "any" else "all",
            conditions=[
                Condition(
                    question_id=entry.get("question", ""),
                    operator=entry.get("operator", "="),
                    answer=_condition_answer(entry),
                )
                for entry in item["enableWhen"]
            ],
        )

    passthrough: list[dict[str, Any]] = []
    fhir_path: Optional[str] = None
    for extension in item.get("extension") or []:
        url = extension.get("url")
        if url == TRANSLATION_URL:
            data["text"] = _read_translation(extension)
            continue
        name = registry.name_for(url)
        value = _extension_value(extension)
        if name == ext.FIELD_STYLING:
            data["styling"] = _parse_json_model(FieldStyling, value, link_id, "field styling")
        elif name == ext.VALIDATION_CONFIG:
            data["validation"] = _parse_json_model(ValidationConfig, value, link_id, "validation config")
        elif name == ext.PATIENT_BINDING:
            data["patient_binding"] = _parse_patient_binding(value, link_id)
        elif name == ext.FHIR_PATH:
            fhir_path = value
        elif name == ext.FIELD_ORDER:
            data["order"] = value if isinstance(value, int) else None
        elif name == ext.HAS_TEXT_FIELD:
            data["has_text_field"] = bool(value)
        elif name == ext.FIELD_TYPE:
            try:
                data["type"] = FieldType(value)
            except ValueError:
                logger.warning("Ignoring unknown field-type hint %r on '%s'", value, link_id)
        elif name == ext.FIELD_ID:
            data["id"] = value or link_id
        elif name == ext.FIELD_WIDTH:
            data["width"] = value
        elif name == ext.CONDITIONAL_LOGIC:
            if "conditional" not in data:
                data["conditional"] = _parse_json_model(ConditionalLogic, value, link_id, "conditional logic")
        else:
            passthrough.append(extension)
    data["extensions"] = passthrough

    binding = data.get("patient_binding")
    if fhir_path and binding is not None and binding.fhir_path is None:
        data["patient_binding"] = binding.model_copy(update={"fhir_path": fhir_path})

    return FieldConfig.model_validate(data)


def _flatten_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    flat = []
    for item in items:
        flat.append(item)
        children = item.get("item") or []
        if children:
            logger.debug("Flattening %d child items of '%s'", len(children), item.get("linkId"))
            flat.extend(_flatten_items(children))
    return flat


def from_questionnaire(
    document: dict[str, Any],
    registry: Optional[ExtensionRegistry] = None,
) -> FormTemplate:
    """Deserialize a Questionnaire resource dict into a form template."""
    if not isinstance(document, dict) or document.get("resourceType") != "Questionnaire":
        raise ValueError("Expected a FHIR Questionnaire resource")
    registry = _registry(registry)

    status = document.get("status", FormStatus.DRAFT.value)
    try:
        form_status = FormStatus(status)
    except ValueError:
        logger.warning("Questionnaire status %r not supported, using 'draft'", status)
        form_status = FormStatus.DRAFT

    created_by = None
    form_styling = None
    passthrough: list[dict[str, Any]] = []
    for extension in document.get("extension") or []:
        name = registry.name_for(extension.get("url"))
        if name == ext.CREATED_BY:
            created_by = _extension_value(extension)
        elif name == ext.FORM_STYLING:
            form_styling = _parse_json_model(
                FormStyling, _extension_value(extension), document.get("id", "<form>"), "form styling"
            )
        else:
            passthrough.append(extension)

    tags = (document.get("meta") or {}).get("tag") or []
    title = document.get("title")
    return FormTemplate(
        id=document.get("id"),
        title=title if title is not None else "Untitled Form",
        description=document.get("description"),
        status=form_status,
        version=document.get("version"),
        fields=[item_to_field(item, registry) for item in _flatten_items(document.get("item") or [])],
        form_styling=form_styling,
        category=[t.get("code", "") for t in tags if t.get("system") == registry.category_system],
        created_by=created_by,
        created_date=document.get("date"),
        last_modified=document.get("date"),
        extensions=passthrough,
    )

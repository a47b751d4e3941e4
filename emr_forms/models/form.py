"""
Form and field models for the form builder.

A FormTemplate owns an ordered list of FieldConfig objects. Every model
accepts the camelCase keys used by the builder UI and stored documents
(linkId, readOnly, defaultValue, ...) as well as snake_case names, and dumps
back to camelCase with ``model_dump(by_alias=True)``.

Loosely typed input is normalised here, once, so downstream services never
re-parse configuration:
- unknown field types fall back to short text
- custom validator names/payloads become a tagged union (or None)
- malformed numeric constraints are dropped
- duplicate option values are dropped (first one wins)
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump using wire (camelCase) names, dropping unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ---------------------------------------------------------------------------
# Closed sets
# ---------------------------------------------------------------------------

class FieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    CHOICE = "choice"
    OPEN_CHOICE = "open-choice"
    RADIO = "radio"
    CHECKBOX_GROUP = "checkbox-group"
    SIGNATURE = "signature"
    ATTACHMENT = "attachment"
    DISPLAY = "display"
    GROUP = "group"


class FormStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


class ConditionOperator(str, Enum):
    EXISTS = "exists"
    EQUALS = "="
    NOT_EQUALS = "!="
    GREATER = ">"
    LESS = "<"
    GREATER_OR_EQUAL = ">="
    LESS_OR_EQUAL = "<="


CHOICE_LIKE_TYPES = frozenset(
    {
        FieldType.CHOICE,
        FieldType.OPEN_CHOICE,
        FieldType.RADIO,
        FieldType.CHECKBOX_GROUP,
    }
)
NON_ANSWER_TYPES = frozenset({FieldType.DISPLAY, FieldType.GROUP})
REPEATABLE_TYPES = CHOICE_LIKE_TYPES | {FieldType.ATTACHMENT}


def is_choice_like(field_type: FieldType) -> bool:
    return field_type in CHOICE_LIKE_TYPES


def accepts_options(field_type: FieldType) -> bool:
    """Whether the field type renders a configurable option list."""
    return field_type in CHOICE_LIKE_TYPES


def is_container(field_type: FieldType) -> bool:
    return field_type == FieldType.GROUP


def carries_answer(field_type: FieldType) -> bool:
    """Display and group fields never hold an answer."""
    return field_type not in NON_ANSWER_TYPES


def supports_repeats(field_type: FieldType) -> bool:
    return field_type in REPEATABLE_TYPES


def coerce_field_type(raw: Any) -> FieldType:
    """Resolve a raw type name, falling back to short text when unknown."""
    if isinstance(raw, FieldType):
        return raw
    try:
        return FieldType(raw)
    except ValueError:
        logger.warning("Unknown field type %r, using 'text'", raw)
        return FieldType.TEXT


# ---------------------------------------------------------------------------
# Custom validator rules (tagged union keyed by ``name``)
# ---------------------------------------------------------------------------

class GeorgianIdRule(BaseModel):
    name: Literal["georgian-id"] = "georgian-id"


class EmailRule(BaseModel):
    name: Literal["email"] = "email"


class PhoneRule(BaseModel):
    name: Literal["phone"] = "phone"


class UrlRule(BaseModel):
    name: Literal["url"] = "url"


class DateRangeRule(CamelModel):
    """Past-date / birthdate style rule with an upper age bound."""

    name: Literal["past-date", "date-range"] = "past-date"
    allow_future: bool = False
    max_age_years: int = Field(default=120, ge=0)


class FutureDateRule(BaseModel):
    name: Literal["future-date"] = "future-date"


CustomValidatorRule = Annotated[
    Union[GeorgianIdRule, EmailRule, PhoneRule, UrlRule, DateRangeRule, FutureDateRule],
    Field(discriminator="name"),
]

_rule_adapter: TypeAdapter = TypeAdapter(CustomValidatorRule)

# Names used by older builder versions and stored documents.
VALIDATOR_ALIASES: dict[str, str] = {
    "georgianPersonalId": "georgian-id",
    "personalId": "georgian-id",
    "personal-id": "georgian-id",
    "birthdate": "past-date",
    "pastDate": "past-date",
    "dateRange": "date-range",
    "futureDate": "future-date",
}


def parse_custom_validator(raw: Any) -> Optional[BaseModel]:
    """
    Parse a custom validator reference into its rule variant.

    Accepts a bare name ("email"), a JSON object string, a dict with a
    ``name`` key, or an already-parsed rule. Anything unusable is logged and
    mapped to None.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, BaseModel):
        return raw
    payload: Any = raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith("{"):
            try:
                payload = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed custom validator JSON: %r", raw)
                return None
        else:
            payload = {"name": text}
    if not isinstance(payload, dict):
        logger.warning("Ignoring custom validator of type %s", type(payload).__name__)
        return None
    payload = dict(payload)
    name = payload.get("name")
    payload["name"] = VALIDATOR_ALIASES.get(name, name)
    try:
        return _rule_adapter.validate_python(payload)
    except ValidationError:
        logger.warning("Ignoring unknown or invalid custom validator %r", raw)
        return None


def _lenient_number(value: Any, *, integer: bool, label: str) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        logger.warning("Ignoring boolean %s constraint", label)
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s constraint: %r", label, value)
        return None
    if integer:
        if not number.is_integer() or number < 0:
            logger.warning("Ignoring invalid %s constraint: %r", label, value)
            return None
        return int(number)
    return number


# ---------------------------------------------------------------------------
# Field building blocks
# ---------------------------------------------------------------------------

class ValidationConfig(CamelModel):
    required: Optional[bool] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    pattern_message: Optional[str] = None
    custom_validator: Optional[CustomValidatorRule] = None

    @field_validator("min_length", "max_length", mode="before")
    @classmethod
    def _lenient_length(cls, value: Any, info) -> Optional[int]:
        return _lenient_number(value, integer=True, label=info.field_name)

    @field_validator("min", "max", mode="before")
    @classmethod
    def _lenient_bound(cls, value: Any, info) -> Optional[float]:
        return _lenient_number(value, integer=False, label=info.field_name)

    @field_validator("custom_validator", mode="before")
    @classmethod
    def _parse_rule(cls, value: Any) -> Any:
        rule = parse_custom_validator(value)
        return rule.model_dump() if rule is not None else None

    def to_wire(self) -> dict[str, Any]:
        data = super().to_wire()
        if self.custom_validator is not None:
            rule = self.custom_validator.model_dump(by_alias=True)
            # Bare rules keep the compact string form used by the UI.
            data["customValidator"] = rule["name"] if len(rule) == 1 else rule
        return data


class FieldOption(CamelModel):
    value: str
    label: str = ""
    label_en: Optional[str] = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class FieldStyling(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    font_size: Optional[str] = None
    font_weight: Optional[str] = None
    color: Optional[str] = None
    background_color: Optional[str] = None
    text_align: Optional[Literal["left", "center", "right"]] = None
    width: Optional[str] = None
    height: Optional[str] = None
    padding: Optional[str] = None
    margin: Optional[str] = None
    resizable: Optional[bool] = None
    input_style: Optional[Literal["underline", "bordered", "dropdown"]] = None
    display: Optional[Literal["block", "inline", "inline-block"]] = None


class FormStyling(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    container: Optional[dict[str, Any]] = None
    title: Optional[dict[str, Any]] = None


class PatientBinding(CamelModel):
    enabled: bool = True
    binding_key: str
    fhir_path: Optional[str] = None
    is_calculated: bool = False
    calculation_type: Optional[Literal["age", "fullName", "custom"]] = None


class Condition(CamelModel):
    question_id: str
    operator: ConditionOperator = ConditionOperator.EQUALS
    answer: Any = None

    @field_validator("operator", mode="before")
    @classmethod
    def _known_operator(cls, value: Any) -> Any:
        if isinstance(value, ConditionOperator):
            return value
        try:
            return ConditionOperator(value)
        except ValueError:
            logger.warning("Unknown condition operator %r, using '='", value)
            return ConditionOperator.EQUALS


class ConditionalLogic(CamelModel):
    enabled: bool = True
    operator: Literal["all", "any"] = "all"
    conditions: list[Condition] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.enabled and len(self.conditions) > 0


# ---------------------------------------------------------------------------
# Field and form
# ---------------------------------------------------------------------------

class FieldConfig(CamelModel):
    """One configurable question in a form."""

    id: str
    link_id: str
    type: FieldType = FieldType.TEXT
    label: str = ""
    text: Optional[str] = None
    required: bool = False
    read_only: bool = False
    repeats: bool = False
    default_value: Optional[Union[bool, int, float, str]] = None

    patient_binding: Optional[PatientBinding] = None
    validation: Optional[ValidationConfig] = None
    styling: Optional[FieldStyling] = None
    options: list[FieldOption] = Field(default_factory=list)
    has_text_field: bool = False
    conditional: Optional[ConditionalLogic] = None

    width: Optional[str] = None
    order: Optional[int] = None

    # FHIR extensions carried through untouched
    extensions: list[dict[str, Any]] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _default_id(cls, data: Any) -> Any:
        if isinstance(data, dict):
            link_id = data.get("linkId", data.get("link_id"))
            if not data.get("id") and link_id:
                data = {**data, "id": link_id}
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, value: Any) -> FieldType:
        return coerce_field_type(value)

    @field_validator("options")
    @classmethod
    def _unique_option_values(cls, options: list[FieldOption]) -> list[FieldOption]:
        seen: set[str] = set()
        unique = []
        for option in options:
            if option.value in seen:
                logger.warning("Dropping duplicate option value %r", option.value)
                continue
            seen.add(option.value)
            unique.append(option)
        return unique

    @property
    def is_required(self) -> bool:
        return self.required or bool(self.validation and self.validation.required)

    def to_wire(self) -> dict[str, Any]:
        data = super().to_wire()
        if self.validation is not None:
            data["validation"] = self.validation.to_wire()
        return data


class FormTemplate(CamelModel):
    id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    status: FormStatus = FormStatus.DRAFT
    version: Optional[str] = None
    fields: list[FieldConfig] = Field(default_factory=list)
    form_styling: Optional[FormStyling] = None
    category: list[str] = Field(default_factory=list)
    created_by: Optional[str] = None
    created_date: Optional[str] = None
    last_modified: Optional[str] = None
    extensions: list[dict[str, Any]] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        data = super().to_wire()
        data["fields"] = [f.to_wire() for f in self.fields]
        return data

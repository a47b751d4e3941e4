"""
Validation schema generation for form fields.

Each answer-carrying field gets a Draft-07 JSON Schema fragment built in a
fixed order (base type, length, numeric bounds, pattern, custom rule) and a
``jsonschema`` validator to run it. Required-ness is applied on top: blank
values are rejected only for required fields, and non-blank values are
always checked against the constraints.

Bad configuration is logged and skipped; it never stops a form from
rendering.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Union

from jsonschema import Draft7Validator, FormatChecker

from emr_forms.models.form import (
    CHOICE_LIKE_TYPES,
    FieldConfig,
    FieldType,
    FormTemplate,
    carries_answer,
)
from emr_forms.models.validation import FieldValidationError, ValidationResult
from emr_forms.services.validators import Clock, get_validator

logger = logging.getLogger(__name__)

REQUIRED_MESSAGE = "This field is required"
CUSTOM_RULE_FORMAT = "custom-rule"
ISO_DATETIME_FORMAT = "iso-datetime"

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}(:\d{2})?$"
DATETIME_SHAPE = re.compile(r"\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}")

_TYPE_MESSAGES = {
    "string": "Must be text",
    "integer": "Must be a whole number",
    "number": "Must be a number",
    "boolean": "Must be true or false",
    "array": "Must be a list of values",
}


class RuleRejected(ValueError):
    """Raised inside a format check to carry the validator's own message."""


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _number_text(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


# ---------------------------------------------------------------------------
# Fragment builders
# ---------------------------------------------------------------------------

def _base_fragments(config: FieldConfig) -> list[dict[str, Any]]:
    """Base type rule for the field's type."""
    field_type = config.type
    if field_type == FieldType.CHECKBOX_GROUP or (
        field_type in CHOICE_LIKE_TYPES and config.repeats
    ):
        return [
            {
                "type": "array",
                "items": {"type": "string", "errorMessage": _TYPE_MESSAGES["string"]},
                "errorMessage": _TYPE_MESSAGES["array"],
            }
        ]
    if field_type == FieldType.INTEGER:
        return [{"type": "integer", "errorMessage": _TYPE_MESSAGES["integer"]}]
    if field_type == FieldType.DECIMAL:
        return [{"type": "number", "errorMessage": _TYPE_MESSAGES["number"]}]
    if field_type == FieldType.BOOLEAN:
        return [{"type": "boolean", "errorMessage": _TYPE_MESSAGES["boolean"]}]

    fragments: list[dict[str, Any]] = [
        {"type": "string", "errorMessage": _TYPE_MESSAGES["string"]}
    ]
    if field_type == FieldType.DATE:
        fragments.append(
            {"pattern": DATE_PATTERN, "errorMessage": "Invalid date format (YYYY-MM-DD)"}
        )
    elif field_type == FieldType.DATETIME:
        fragments.append(
            {"format": ISO_DATETIME_FORMAT, "errorMessage": "Invalid date-time format (ISO 8601)"}
        )
    elif field_type == FieldType.TIME:
        fragments.append(
            {"pattern": TIME_PATTERN, "errorMessage": "Invalid time format (HH:MM or HH:MM:SS)"}
        )
    return fragments


def _constraint_fragments(config: FieldConfig, base_type: str) -> list[dict[str, Any]]:
    rules = config.validation
    if rules is None:
        return []
    fragments: list[dict[str, Any]] = []

    if base_type == "string":
        if rules.min_length is not None:
            fragments.append(
                {"minLength": rules.min_length, "errorMessage": f"Minimum length is {rules.min_length}"}
            )
        if rules.max_length is not None:
            fragments.append(
                {"maxLength": rules.max_length, "errorMessage": f"Maximum length is {rules.max_length}"}
            )
    elif rules.min_length is not None or rules.max_length is not None:
        logger.debug("Length bounds ignored on %s field '%s'", config.type.value, config.link_id)

    if base_type in ("integer", "number"):
        if rules.min is not None:
            fragments.append(
                {"minimum": rules.min, "errorMessage": f"Minimum value is {_number_text(rules.min)}"}
            )
        if rules.max is not None:
            fragments.append(
                {"maximum": rules.max, "errorMessage": f"Maximum value is {_number_text(rules.max)}"}
            )
    elif rules.min is not None or rules.max is not None:
        logger.debug("Numeric bounds ignored on %s field '%s'", config.type.value, config.link_id)

    if rules.pattern:
        try:
            re.compile(rules.pattern)
        except re.error as exc:
            logger.warning(
                "Ignoring invalid pattern %r on field '%s': %s",
                rules.pattern,
                config.link_id,
                exc,
            )
        else:
            fragments.append(
                {"pattern": rules.pattern, "errorMessage": rules.pattern_message or "Invalid format"}
            )

    if rules.custom_validator is not None:
        if base_type == "array":
            logger.warning(
                "Custom validator '%s' ignored on multi-answer field '%s'",
                rules.custom_validator.name,
                config.link_id,
            )
        else:
            fragments.append(
                {"format": CUSTOM_RULE_FORMAT, "x-rule": rules.custom_validator.name}
            )
    return fragments


def _format_checker(config: FieldConfig, clock: Optional[Clock]) -> FormatChecker:
    checker = FormatChecker(formats=())

    @checker.checks(ISO_DATETIME_FORMAT, raises=ValueError)
    def _iso_datetime(instance: Any) -> bool:
        if not isinstance(instance, str):
            return True
        if not DATETIME_SHAPE.match(instance):
            return False
        datetime.fromisoformat(instance.replace("Z", "+00:00"))
        return True

    rule = config.validation.custom_validator if config.validation else None
    if rule is not None:
        check = get_validator(rule, clock)

        @checker.checks(CUSTOM_RULE_FORMAT, raises=RuleRejected)
        def _custom_rule(instance: Any) -> bool:
            result = check(instance)
            if not result.is_valid:
                raise RuleRejected(result.error)
            return True

    return checker


# ---------------------------------------------------------------------------
# Schema objects
# ---------------------------------------------------------------------------

@dataclass
class FieldSchema:
    """Compiled validation rules for one field."""

    link_id: str
    label: str
    required: bool
    body: dict[str, Any]
    validator: Draft7Validator = field(repr=False)

    def check(self, value: Any) -> list[FieldValidationError]:
        if is_blank(value):
            if self.required:
                return [self._error("required", REQUIRED_MESSAGE)]
            return []

        errors = list(self.validator.iter_errors(value))
        type_errors = [e for e in errors if e.validator == "type"]
        if type_errors:
            errors = type_errors
        return [self._error(self._rule_name(e), self._message(e)) for e in errors]

    def messages(self, value: Any) -> list[str]:
        return [error.message for error in self.check(value)]

    def to_json_schema(self) -> dict[str, Any]:
        if self.required:
            return self.body
        return {"anyOf": [{"enum": [None, "", []]}, self.body]}

    def _error(self, rule: str, message: str) -> FieldValidationError:
        return FieldValidationError(
            link_id=self.link_id, label=self.label, rule=rule, message=message
        )

    @staticmethod
    def _rule_name(error) -> str:
        if error.validator == "format":
            return error.schema.get("x-rule", error.validator_value)
        return str(error.validator)

    @staticmethod
    def _message(error) -> str:
        if isinstance(error.cause, RuleRejected) and error.cause.args:
            return str(error.cause.args[0])
        if isinstance(error.schema, dict) and error.schema.get("errorMessage"):
            return error.schema["errorMessage"]
        return error.message


@dataclass
class FormSchema:
    fields: dict[str, FieldSchema] = field(default_factory=dict)

    def __contains__(self, link_id: str) -> bool:
        return link_id in self.fields

    def validate(
        self,
        answers: dict[str, Any],
        visible: Optional[Iterable[str]] = None,
    ) -> ValidationResult:
        """
        Validate an answer map.

        When ``visible`` is given, fields outside it are skipped: a hidden
        field cannot fail validation.
        """
        visible_ids = set(visible) if visible is not None else None
        errors: list[FieldValidationError] = []
        for link_id, schema in self.fields.items():
            if visible_ids is not None and link_id not in visible_ids:
                continue
            errors.extend(schema.check(answers.get(link_id)))
        return ValidationResult(is_valid=not errors, errors=errors)

    def validate_field(self, link_id: str, value: Any) -> list[str]:
        schema = self.fields.get(link_id)
        if schema is None:
            return []
        return schema.messages(value)

    def to_json_schema(self) -> dict[str, Any]:
        """Export the composite Draft-07 object schema."""
        return {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "type": "object",
            "properties": {
                link_id: schema.to_json_schema() for link_id, schema in self.fields.items()
            },
            "required": [link_id for link_id, schema in self.fields.items() if schema.required],
        }


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

SchemaSource = Union[list, tuple, FormTemplate, dict]


def _resolve_fields(source: SchemaSource) -> list[FieldConfig]:
    if isinstance(source, FormTemplate):
        return source.fields
    if isinstance(source, dict):
        if source.get("resourceType") == "Questionnaire":
            from emr_forms.services.questionnaire import from_questionnaire

            return from_questionnaire(source).fields
        raise TypeError("generate_schema() expects a Questionnaire when given a dict")
    if isinstance(source, (list, tuple)):
        return [
            item if isinstance(item, FieldConfig) else FieldConfig.model_validate(item)
            for item in source
        ]
    raise TypeError(
        "generate_schema() needs a field list, FormTemplate or Questionnaire, "
        f"got {type(source).__name__}"
    )


def build_field_schema(config: FieldConfig, clock: Optional[Clock] = None) -> Optional[FieldSchema]:
    """Compile one field; None for display and group fields."""
    if not carries_answer(config.type):
        return None
    fragments = _base_fragments(config)
    base_type = fragments[0]["type"]
    fragments.extend(_constraint_fragments(config, base_type))
    body = {"allOf": fragments}
    return FieldSchema(
        link_id=config.link_id,
        label=config.label,
        required=config.is_required,
        body=body,
        validator=Draft7Validator(body, format_checker=_format_checker(config, clock)),
    )


def generate_schema(source: SchemaSource, clock: Optional[Clock] = None) -> FormSchema:
    """
    Build the composite validation schema for a form.

    ``source`` may be a list of FieldConfig (or field dicts), a FormTemplate,
    or a Questionnaire resource dict. ``clock`` fixes "now" for date rules.
    """
    configs = _resolve_fields(source)
    schema = FormSchema()
    for config in configs:
        field_schema = build_field_schema(config, clock)
        if field_schema is None:
            continue
        if config.link_id in schema.fields:
            logger.warning("Duplicate linkId '%s': last definition wins", config.link_id)
        schema.fields[config.link_id] = field_schema
    logger.debug("Generated schema for %d of %d fields", len(schema.fields), len(configs))
    return schema

"""
JSON Schema validation service for FHIR documents.

Collects every error rather than failing on the first one, and prefixes each
message with the JSON path of the offending node so a caller can point at
the broken item.
"""

from typing import Any

import jsonschema

from emr_forms.schemas.fhir import (
    FHIR_QUESTIONNAIRE_RESPONSE_SCHEMA,
    FHIR_QUESTIONNAIRE_SCHEMA,
)


def _path(error: jsonschema.ValidationError) -> str:
    parts = ["$"]
    for segment in error.absolute_path:
        parts.append(f"[{segment}]" if isinstance(segment, int) else f".{segment}")
    return "".join(parts)


def validate_against_schema(data: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """
    Validate a dict against a JSON schema.
    Returns a list of error messages (empty list = valid).
    """
    validator = jsonschema.Draft7Validator(schema)
    return [f"{_path(error)}: {error.message}" for error in validator.iter_errors(data)]


def validate_questionnaire(document: dict[str, Any]) -> list[str]:
    return validate_against_schema(document, FHIR_QUESTIONNAIRE_SCHEMA)


def validate_questionnaire_response(document: dict[str, Any]) -> list[str]:
    return validate_against_schema(document, FHIR_QUESTIONNAIRE_RESPONSE_SCHEMA)

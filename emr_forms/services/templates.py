"""Template versioning and cloning helpers."""

import copy
import re
from typing import Optional

from emr_forms.models.form import FormStatus, FormTemplate

INITIAL_VERSION = "1.0"

_LEADING_INT = re.compile(r"\s*(\d+)")


def _leading_int(text: str, default: int) -> int:
    match = _LEADING_INT.match(text)
    return int(match.group(1)) if match else default


def increment_version(current: Optional[str] = None) -> str:
    """'1.4' -> '1.5'; a bare major '3' -> '3.1'; nothing -> '1.0'."""
    if not current:
        return INITIAL_VERSION
    parts = current.split(".")
    major = _leading_int(parts[0], 1)
    if len(parts) >= 2:
        return f"{major}.{_leading_int(parts[1], 0) + 1}"
    return f"{major}.1"


def increment_major_version(current: Optional[str] = None) -> str:
    if not current:
        return INITIAL_VERSION
    return f"{_leading_int(current.split('.')[0], 0) + 1}.0"


def clone_template(template: FormTemplate, new_title: str) -> FormTemplate:
    """Copy a template as a new, unsaved draft at version 1.0."""
    return template.model_copy(
        update={
            "id": None,
            "title": new_title,
            "status": FormStatus.DRAFT,
            "version": INITIAL_VERSION,
            "fields": copy.deepcopy(template.fields),
            "category": list(template.category),
            "extensions": copy.deepcopy(template.extensions),
        }
    )

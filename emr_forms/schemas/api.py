"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from emr_forms.models.form import FieldConfig, FormStatus, FormTemplate


# ---------------------------------------------------------------------------
# Stateless engine
# ---------------------------------------------------------------------------

class FormValidationRequest(BaseModel):
    """Field definitions plus the answers to check against them."""
    fields: list[FieldConfig] = Field(default_factory=list)
    answers: dict[str, Any] = Field(default_factory=dict)
    respect_visibility: bool = Field(
        default=True, description="Skip fields hidden by conditional logic"
    )


class FormValidationResponse(BaseModel):
    is_valid: bool
    errors: dict[str, list[str]] = {}
    visible_link_ids: list[str] = []


class VisibilityRequest(BaseModel):
    fields: list[FieldConfig]
    answers: dict[str, Any] = Field(default_factory=dict)


class VisibilityResponse(BaseModel):
    visible_link_ids: list[str]
    hidden_link_ids: list[str]
    fields_to_clear: list[str]


class ParsedQuestionnaire(BaseModel):
    template: dict[str, Any]
    json_schema: dict[str, Any]


class ResponseRequest(BaseModel):
    questionnaire: dict[str, Any]
    answers: dict[str, Any] = Field(default_factory=dict)
    status: str = "in-progress"
    subject: Optional[str] = None
    encounter: Optional[str] = None
    author: Optional[str] = None


class RuleCheckRequest(BaseModel):
    """Values keyed by name, checked against the custom validator named for the same key."""
    values: dict[str, Any] = Field(default_factory=dict)
    rules: dict[str, Any] = Field(default_factory=dict)


class RuleCheckResponse(BaseModel):
    is_valid: bool
    errors: list[str] = []
    results: dict[str, dict[str, Any]] = {}


# ---------------------------------------------------------------------------
# Builder sessions
# ---------------------------------------------------------------------------

class SessionCreateRequest(BaseModel):
    template: Optional[FormTemplate] = None
    questionnaire: Optional[dict[str, Any]] = None


class FieldUpdateRequest(BaseModel):
    updates: dict[str, Any]


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class SelectRequest(BaseModel):
    field_id: Optional[str] = None


class AnswerRequest(BaseModel):
    link_id: str
    value: Any = None


class MetadataRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[FormStatus] = None


class PublishRequest(BaseModel):
    major: bool = False


class CloneRequest(BaseModel):
    title: str = Field(..., min_length=1)


class SessionView(BaseModel):
    session_id: str
    title: str
    description: str
    status: FormStatus
    version: Optional[str] = None
    view: dict[str, Any]
    cleared_link_ids: list[str] = []


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    sessions: int = 0

"""
FastAPI routes: the form engine and builder sessions over JSON.

Engine routes are stateless. Builder routes operate on an in-memory
session held by the BuilderSessionStore dependency.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import ValidationError

from emr_forms.config import settings
from emr_forms.models.form import FormTemplate, parse_custom_validator
from emr_forms.schemas.api import (
    AnswerRequest,
    CloneRequest,
    FieldUpdateRequest,
    FormValidationRequest,
    FormValidationResponse,
    HealthResponse,
    MetadataRequest,
    ParsedQuestionnaire,
    PublishRequest,
    ReorderRequest,
    ResponseRequest,
    RuleCheckRequest,
    RuleCheckResponse,
    SelectRequest,
    SessionCreateRequest,
    SessionView,
    VisibilityRequest,
    VisibilityResponse,
)
from emr_forms.services.builder import BuilderSession, BuilderSessionStore
from emr_forms.services.questionnaire import from_questionnaire, to_questionnaire
from emr_forms.services.responses import create_questionnaire_response, extract_response_values
from emr_forms.services.schema_generator import generate_schema
from emr_forms.services.templates import clone_template
from emr_forms.services.validation import validate_questionnaire, validate_questionnaire_response
from emr_forms.services.validators import (
    batch_validate,
    get_validation_errors,
    get_validator,
    is_all_valid,
)
from emr_forms.services.visibility import evaluate_visibility, fields_to_clear

logger = logging.getLogger(__name__)

router = APIRouter()

_store = BuilderSessionStore()


def get_session_store() -> BuilderSessionStore:
    return _store


def _require_questionnaire(document: dict[str, Any]) -> None:
    errors = validate_questionnaire(document)
    if errors:
        logger.info("Rejected Questionnaire with %d structural errors", len(errors))
        raise HTTPException(status_code=422, detail=errors)


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@router.get("/health", response_model=HealthResponse)
def health_check(store: BuilderSessionStore = Depends(get_session_store)):
    return HealthResponse(status="healthy", environment=settings.ENVIRONMENT, sessions=len(store))


# ---------------------------------------------------------------------------
# Questionnaire conversion
# ---------------------------------------------------------------------------

@router.post("/questionnaires/parse", response_model=ParsedQuestionnaire)
def parse_questionnaire(document: dict[str, Any]):
    """Load a stored Questionnaire into builder form plus its validation schema."""
    _require_questionnaire(document)
    template = from_questionnaire(document)
    return ParsedQuestionnaire(
        template=template.to_wire(),
        json_schema=generate_schema(template).to_json_schema(),
    )


@router.post("/questionnaires/build")
def build_questionnaire(template: FormTemplate) -> dict[str, Any]:
    document = to_questionnaire(template)
    errors = validate_questionnaire(document)
    if errors:
        logger.warning("Built Questionnaire fails structural checks: %s", errors)
    return document


# ---------------------------------------------------------------------------
# Form engine
# ---------------------------------------------------------------------------

@router.post("/forms/validate", response_model=FormValidationResponse)
def validate_form(request: FormValidationRequest):
    visible = evaluate_visibility(request.fields, request.answers)
    schema = generate_schema(request.fields)
    result = schema.validate(request.answers, visible if request.respect_visibility else None)
    return FormValidationResponse(
        is_valid=result.is_valid,
        errors=result.to_error_dict(),
        visible_link_ids=[f.link_id for f in request.fields if f.link_id in visible],
    )


@router.post("/forms/visibility", response_model=VisibilityResponse)
def form_visibility(request: VisibilityRequest):
    visible = evaluate_visibility(request.fields, request.answers)
    return VisibilityResponse(
        visible_link_ids=[f.link_id for f in request.fields if f.link_id in visible],
        hidden_link_ids=[f.link_id for f in request.fields if f.link_id not in visible],
        fields_to_clear=fields_to_clear(request.fields, request.answers),
    )


@router.post("/forms/response")
def build_response(request: ResponseRequest) -> dict[str, Any]:
    _require_questionnaire(request.questionnaire)
    try:
        return create_questionnaire_response(
            request.questionnaire,
            request.answers,
            status=request.status,
            subject=request.subject,
            encounter=request.encounter,
            author=request.author,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/forms/response/values")
def response_values(response: dict[str, Any]) -> dict[str, Any]:
    """Flatten a QuestionnaireResponse back to answers keyed by linkId."""
    errors = validate_questionnaire_response(response)
    if errors:
        raise HTTPException(status_code=422, detail=errors)
    return extract_response_values(response)


@router.post("/validators/check", response_model=RuleCheckResponse)
def check_rules(request: RuleCheckRequest):
    validators = {}
    unknown = []
    for key, raw in request.rules.items():
        rule = parse_custom_validator(raw)
        if rule is None:
            unknown.append(key)
        else:
            validators[key] = get_validator(rule)
    if unknown:
        raise HTTPException(status_code=422, detail=[f"Unknown validator for '{key}'" for key in unknown])

    results = batch_validate(request.values, validators)
    return RuleCheckResponse(
        is_valid=is_all_valid(results),
        errors=get_validation_errors(results),
        results={key: result.to_dict() for key, result in results.items()},
    )


# ---------------------------------------------------------------------------
# Builder sessions
# ---------------------------------------------------------------------------

def _session(session_id: str, store: BuilderSessionStore) -> BuilderSession:
    try:
        return store.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Builder session not found")


def _render(session: BuilderSession, cleared: list[str] | None = None) -> SessionView:
    document = session.builder.document
    return SessionView(
        session_id=session.id,
        title=document.title,
        description=document.description,
        status=document.status,
        version=document.version,
        view=session.view(),
        cleared_link_ids=cleared or [],
    )


@router.post("/builder/sessions", response_model=SessionView, status_code=201)
def create_session(
    request: SessionCreateRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    template = request.template
    if request.questionnaire is not None:
        _require_questionnaire(request.questionnaire)
        template = from_questionnaire(request.questionnaire)
    return _render(store.create(template))


@router.get("/builder/sessions/{session_id}", response_model=SessionView)
def get_session(session_id: str, store: BuilderSessionStore = Depends(get_session_store)):
    return _render(_session(session_id, store))


@router.delete("/builder/sessions/{session_id}", status_code=204)
def delete_session(session_id: str, store: BuilderSessionStore = Depends(get_session_store)):
    _session(session_id, store)
    store.delete(session_id)


@router.post("/builder/sessions/{session_id}/fields", response_model=SessionView)
def add_field(
    session_id: str,
    field: dict[str, Any],
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    try:
        session.builder.add_field(field)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _render(session)


@router.patch("/builder/sessions/{session_id}/fields/{field_id}", response_model=SessionView)
def update_field(
    session_id: str,
    field_id: str,
    request: FieldUpdateRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    try:
        session.builder.update_field(field_id, request.updates)
    except KeyError:
        raise HTTPException(status_code=404, detail="Field not found")
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _render(session)


@router.delete("/builder/sessions/{session_id}/fields/{field_id}", response_model=SessionView)
def delete_field(
    session_id: str,
    field_id: str,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    try:
        session.builder.delete_field(field_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Field not found")
    return _render(session)


@router.post("/builder/sessions/{session_id}/reorder", response_model=SessionView)
def reorder_fields(
    session_id: str,
    request: ReorderRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    session.builder.reorder(request.from_index, request.to_index)
    return _render(session)


@router.post("/builder/sessions/{session_id}/select", response_model=SessionView)
def select_field(
    session_id: str,
    request: SelectRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    try:
        session.builder.select_field(request.field_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Field not found")
    return _render(session)


@router.patch("/builder/sessions/{session_id}/metadata", response_model=SessionView)
def update_metadata(
    session_id: str,
    request: MetadataRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    if request.title is not None:
        session.builder.set_title(request.title)
    if request.description is not None:
        session.builder.set_description(request.description)
    if request.status is not None:
        session.builder.set_status(request.status)
    return _render(session)


@router.post("/builder/sessions/{session_id}/answers", response_model=SessionView)
def set_answer(
    session_id: str,
    request: AnswerRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    try:
        cleared = session.set_answer(request.link_id, request.value)
    except KeyError:
        raise HTTPException(status_code=404, detail="Field not found")
    return _render(session, cleared)


@router.post("/builder/sessions/{session_id}/undo", response_model=SessionView)
def undo(session_id: str, store: BuilderSessionStore = Depends(get_session_store)):
    session = _session(session_id, store)
    session.builder.undo()
    return _render(session)


@router.post("/builder/sessions/{session_id}/redo", response_model=SessionView)
def redo(session_id: str, store: BuilderSessionStore = Depends(get_session_store)):
    session = _session(session_id, store)
    session.builder.redo()
    return _render(session)


@router.post("/builder/sessions/{session_id}/publish", response_model=SessionView)
def publish(
    session_id: str,
    request: PublishRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    session = _session(session_id, store)
    session.builder.publish(major=request.major)
    return _render(session)


@router.post("/builder/sessions/{session_id}/clone", response_model=SessionView, status_code=201)
def clone_session(
    session_id: str,
    request: CloneRequest,
    store: BuilderSessionStore = Depends(get_session_store),
):
    source = _session(session_id, store)
    return _render(store.create(clone_template(source.builder.to_template(), request.title)))


@router.get("/builder/sessions/{session_id}/questionnaire")
def export_questionnaire(
    session_id: str,
    store: BuilderSessionStore = Depends(get_session_store),
) -> dict[str, Any]:
    session = _session(session_id, store)
    return to_questionnaire(session.builder.to_template())

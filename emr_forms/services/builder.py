"""
Builder canvas state: field ordering, selection and snapshot undo/redo.

Every mutating operation pushes a deep copy of the previous document onto
the undo stack and clears the redo stack; operations that change nothing
record no history. Selection changes never record history. After each
mutation every field's ``order`` equals its position.
"""

from __future__ import annotations

import copy
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Union

from pydantic.alias_generators import to_camel

from emr_forms.config import settings
from emr_forms.models.form import (
    CHOICE_LIKE_TYPES,
    FieldConfig,
    FormStatus,
    FormTemplate,
    supports_repeats,
)
from emr_forms.services.schema_generator import generate_schema
from emr_forms.services.templates import increment_major_version, increment_version
from emr_forms.services.visibility import (
    evaluate_visibility,
    find_conditional_cycles,
    prune_hidden_answers,
)

logger = logging.getLogger(__name__)


class IssueKind(str, Enum):
    DUPLICATE_LINK_ID = "duplicate-link-id"
    SELF_REFERENCE = "self-reference"
    CONDITIONAL_CYCLE = "conditional-cycle"
    DANGLING_REFERENCE = "dangling-reference"
    MISSING_OPTIONS = "missing-options"
    REPEATS_IGNORED = "repeats-ignored"


@dataclass(frozen=True)
class IntegrityIssue:
    """A structural problem in the form definition. Never fatal."""

    kind: IssueKind
    link_ids: tuple[str, ...]
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "linkIds": list(self.link_ids), "message": self.message}


@dataclass
class BuilderDocument:
    """Everything undo/redo restores."""

    title: str = ""
    description: str = ""
    status: FormStatus = FormStatus.DRAFT
    version: Optional[str] = None
    fields: list[FieldConfig] = field(default_factory=list)
    selected_field_id: Optional[str] = None


def new_field_id() -> str:
    return f"field-{uuid.uuid4().hex[:8]}"


def _wire_updates(updates: dict[str, Any]) -> dict[str, Any]:
    # snake_case keys are converted; camelCase keys pass through as-is
    return {(to_camel(key) if "_" in key else key): value for key, value in updates.items()}


class FormBuilder:
    """
    Editable form document with undo/redo.

    Usage:
        builder = FormBuilder()
        builder.add_field({"linkId": "age", "type": "integer", "label": "Age"})
        builder.reorder(0, 0)
        builder.undo()
    """

    def __init__(self, template: Optional[FormTemplate] = None, history_limit: Optional[int] = None):
        self.history_limit = history_limit if history_limit is not None else settings.BUILDER_HISTORY_LIMIT
        self.past: list[BuilderDocument] = []
        self.future: list[BuilderDocument] = []
        self._template = template or FormTemplate()
        self.document = self._document_from(self._template)

    # -- read access -------------------------------------------------------

    @property
    def fields(self) -> list[FieldConfig]:
        return self.document.fields

    @property
    def selected_field_id(self) -> Optional[str]:
        return self.document.selected_field_id

    @property
    def can_undo(self) -> bool:
        return len(self.past) > 0

    @property
    def can_redo(self) -> bool:
        return len(self.future) > 0

    def get_field(self, field_id: str) -> FieldConfig:
        return self.fields[self._index_of(field_id)]

    def to_template(self) -> FormTemplate:
        doc = self.document
        return self._template.model_copy(
            update={
                "title": doc.title,
                "description": doc.description or None,
                "status": doc.status,
                "version": doc.version,
                "fields": copy.deepcopy(doc.fields),
            }
        )

    # -- mutations ---------------------------------------------------------

    def add_field(self, new_field: Union[FieldConfig, dict[str, Any]]) -> FieldConfig:
        """Append a field and select it."""
        if isinstance(new_field, dict):
            data = dict(new_field)
            if not data.get("id"):
                data["id"] = data.get("linkId") or data.get("link_id") or new_field_id()
            if not (data.get("linkId") or data.get("link_id")):
                data["linkId"] = data["id"]
            new_field = FieldConfig.model_validate(data)
        if any(f.id == new_field.id for f in self.fields):
            raise ValueError(f"Field id '{new_field.id}' already exists")

        self._record()
        self.document.fields.append(new_field)
        self.document.selected_field_id = new_field.id
        self._normalize_order()
        logger.debug("Added field '%s' (%s)", new_field.link_id, new_field.type.value)
        return new_field

    def update_field(self, field_id: str, updates: dict[str, Any]) -> FieldConfig:
        index = self._index_of(field_id)
        current = self.fields[index]
        before = current.to_wire()
        updated = FieldConfig.model_validate({**before, **_wire_updates(updates)})
        if updated.to_wire() == before:
            return current
        if updated.id != field_id and any(f.id == updated.id for f in self.fields):
            raise ValueError(f"Field id '{updated.id}' already exists")

        self._record()
        self.document.fields[index] = updated
        if self.document.selected_field_id == field_id:
            self.document.selected_field_id = updated.id
        self._normalize_order()
        return self.fields[index]

    def delete_field(self, field_id: str) -> None:
        index = self._index_of(field_id)
        self._record()
        del self.document.fields[index]
        if self.document.selected_field_id == field_id:
            self.document.selected_field_id = None
        self._normalize_order()

    def reorder(self, from_index: int, to_index: int) -> bool:
        """Move a field; out-of-range indices are a no-op and return False."""
        count = len(self.fields)
        if not (0 <= from_index < count and 0 <= to_index < count):
            logger.debug("Ignoring reorder %d -> %d on %d fields", from_index, to_index, count)
            return False
        if from_index == to_index:
            return True
        self._record()
        moved = self.document.fields.pop(from_index)
        self.document.fields.insert(to_index, moved)
        self._normalize_order()
        return True

    def select_field(self, field_id: Optional[str]) -> None:
        if field_id is not None:
            self._index_of(field_id)
        self.document.selected_field_id = field_id

    def set_title(self, title: str) -> None:
        if title != self.document.title:
            self._record()
            self.document.title = title

    def set_description(self, description: str) -> None:
        if description != self.document.description:
            self._record()
            self.document.description = description

    def set_status(self, status: Union[FormStatus, str]) -> None:
        status = FormStatus(status)
        if status != self.document.status:
            self._record()
            self.document.status = status

    def publish(self, major: bool = False) -> str:
        """Bump the version (minor by default) and mark the form active."""
        bump = increment_major_version if major else increment_version
        self._record()
        self.document.version = bump(self.document.version)
        self.document.status = FormStatus.ACTIVE
        logger.info("Published form '%s' as version %s", self.document.title, self.document.version)
        return self.document.version

    def reset(self, template: Optional[FormTemplate] = None) -> None:
        """Replace the document and drop all history."""
        self._template = template or FormTemplate()
        self.document = self._document_from(self._template)
        self.past.clear()
        self.future.clear()

    # -- history -----------------------------------------------------------

    def undo(self) -> bool:
        if not self.past:
            return False
        self.future.append(self.document)
        self.document = self.past.pop()
        return True

    def redo(self) -> bool:
        if not self.future:
            return False
        self.past.append(self.document)
        self.document = self.future.pop()
        return True

    def _record(self) -> None:
        self.past.append(copy.deepcopy(self.document))
        if self.history_limit >= 0 and len(self.past) > self.history_limit:
            del self.past[: len(self.past) - self.history_limit]
        self.future.clear()

    # -- integrity ---------------------------------------------------------

    def check_integrity(self) -> list[IntegrityIssue]:
        issues: list[IntegrityIssue] = []
        fields = self.fields
        link_ids = {f.link_id for f in fields}

        for link_id, count in Counter(f.link_id for f in fields).items():
            if count > 1:
                issues.append(
                    IntegrityIssue(IssueKind.DUPLICATE_LINK_ID, (link_id,), f"linkId '{link_id}' is used by {count} fields")
                )

        for f in fields:
            for condition in f.conditional.conditions if f.conditional else []:
                target = condition.question_id
                if target == f.link_id:
                    issues.append(
                        IntegrityIssue(IssueKind.SELF_REFERENCE, (f.link_id,), f"Field '{f.link_id}' depends on itself")
                    )
                elif target not in link_ids:
                    issues.append(
                        IntegrityIssue(
                            IssueKind.DANGLING_REFERENCE,
                            (f.link_id, target),
                            f"Field '{f.link_id}' depends on unknown field '{target}'",
                        )
                    )
            if f.type in CHOICE_LIKE_TYPES and f.is_required and not f.options:
                issues.append(
                    IntegrityIssue(IssueKind.MISSING_OPTIONS, (f.link_id,), f"Required field '{f.link_id}' has no options")
                )
            if f.repeats and not supports_repeats(f.type):
                issues.append(
                    IntegrityIssue(
                        IssueKind.REPEATS_IGNORED,
                        (f.link_id,),
                        f"'repeats' has no effect on {f.type.value} field '{f.link_id}'",
                    )
                )

        for cycle in find_conditional_cycles(fields):
            if len(cycle) > 1:
                issues.append(
                    IntegrityIssue(
                        IssueKind.CONDITIONAL_CYCLE, tuple(cycle), "Conditional cycle: " + " -> ".join(cycle)
                    )
                )

        for issue in issues:
            logger.warning("Integrity issue [%s]: %s", issue.kind.value, issue.message)
        return issues

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _document_from(template: FormTemplate) -> BuilderDocument:
        fields = copy.deepcopy(template.fields)
        for index, f in enumerate(fields):
            f.order = index
        return BuilderDocument(
            title=template.title,
            description=template.description or "",
            status=template.status,
            version=template.version,
            fields=fields,
        )

    def _index_of(self, field_id: str) -> int:
        for index, f in enumerate(self.fields):
            if f.id == field_id:
                return index
        raise KeyError(field_id)

    def _normalize_order(self) -> None:
        for index, f in enumerate(self.document.fields):
            f.order = index


class BuilderSession:
    """A builder plus the preview answers typed into the canvas."""

    def __init__(
        self,
        session_id: str,
        builder: Optional[FormBuilder] = None,
        clock: Optional[Callable] = None,
    ):
        self.id = session_id
        self.builder = builder or FormBuilder()
        self.answers: dict[str, Any] = {}
        self.clock = clock

    def set_answer(self, link_id: str, value: Any) -> list[str]:
        """Store a preview answer; returns the linkIds whose answers were cleared."""
        if link_id not in {f.link_id for f in self.builder.fields}:
            raise KeyError(link_id)
        answers = {**self.answers, link_id: value}
        self.answers = prune_hidden_answers(self.builder.fields, answers)
        return [key for key in answers if key not in self.answers]

    def view(self) -> dict[str, Any]:
        fields = self.builder.fields
        visible = evaluate_visibility(fields, self.answers)
        result = generate_schema(fields, clock=self.clock).validate(self.answers, visible)
        return {
            "fields": [f.to_wire() for f in fields],
            "selectedFieldId": self.builder.selected_field_id,
            "visibleLinkIds": [f.link_id for f in fields if f.link_id in visible],
            "validationErrors": result.to_error_dict(),
            "canUndo": self.builder.can_undo,
            "canRedo": self.builder.can_redo,
            "diagnostics": [issue.to_dict() for issue in self.builder.check_integrity()],
        }


class BuilderSessionStore:
    """Process-local session registry keyed by session id."""

    def __init__(self):
        self.sessions: dict[str, BuilderSession] = {}

    def create(self, template: Optional[FormTemplate] = None) -> BuilderSession:
        session_id = uuid.uuid4().hex
        session = BuilderSession(session_id, FormBuilder(template))
        self.sessions[session_id] = session
        logger.info("Created builder session %s", session_id)
        return session

    def get(self, session_id: str) -> BuilderSession:
        return self.sessions[session_id]

    def delete(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)

    def __len__(self) -> int:
        return len(self.sessions)

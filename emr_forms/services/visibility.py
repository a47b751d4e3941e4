"""
Conditional visibility evaluation.

Fields are evaluated once each in dependency order (Kahn's algorithm over
the "controller -> dependent" edges), so a field controlled by a hidden
field sees that controller's answer as cleared. Fields on a dependency cycle
cannot be ordered; they are hidden and a warning is logged.

Comparison coercion for ``=`` / ``!=`` (``coerce_pair``):
- both sides numeric-like (numbers or numeric strings) -> numbers
- either side a boolean or a "true"/"false" literal, and both coercible
  -> booleans
- otherwise -> strings
Ordering operators (``>``, ``<``, ``>=``, ``<=``) only compare numbers;
anything else is false.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Iterable, Optional

from emr_forms.models.form import Condition, ConditionalLogic, ConditionOperator, FieldConfig

logger = logging.getLogger(__name__)

_ORDERING = {
    ConditionOperator.GREATER: lambda a, b: a > b,
    ConditionOperator.LESS: lambda a, b: a < b,
    ConditionOperator.GREATER_OR_EQUAL: lambda a, b: a >= b,
    ConditionOperator.LESS_OR_EQUAL: lambda a, b: a <= b,
}


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

def _unwrap(value: Any) -> Any:
    """Codings compare by code; option-like dicts by value."""
    if isinstance(value, dict):
        if "code" in value:
            return value["code"]
        if "value" in value:
            return value["value"]
    return value


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value != ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) > 0
    return True


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def coerce_pair(left: Any, right: Any) -> tuple[Any, Any]:
    """Bring an answer and an expected value to a comparable pair."""
    left, right = _unwrap(left), _unwrap(right)
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return left_number, right_number
    left_bool, right_bool = _as_bool(left), _as_bool(right)
    if left_bool is not None and right_bool is not None:
        return left_bool, right_bool
    return _as_text(left), _as_text(right)


def _values(answer: Any) -> list[Any]:
    if isinstance(answer, (list, tuple, set)):
        return list(answer)
    return [answer]


# ---------------------------------------------------------------------------
# Condition evaluation
# ---------------------------------------------------------------------------

def _equals(actual: Any, expected: Any) -> bool:
    if not _is_present(actual):
        return not _is_present(_unwrap(expected))
    for value in _values(actual):
        left, right = coerce_pair(value, expected)
        if left == right:
            return True
    return False


def evaluate_condition(condition: Condition, answers: dict[str, Any]) -> bool:
    actual = answers.get(condition.question_id)
    operator = condition.operator

    if operator == ConditionOperator.EXISTS:
        present = _is_present(actual)
        # enableWhen semantics: answer=false means "has no answer"
        return not present if _as_bool(condition.answer) is False else present
    if operator == ConditionOperator.EQUALS:
        return _equals(actual, condition.answer)
    if operator == ConditionOperator.NOT_EQUALS:
        return not _equals(actual, condition.answer)

    compare = _ORDERING[operator]
    expected = _as_number(_unwrap(condition.answer))
    if expected is None or not _is_present(actual):
        return False
    for value in _values(actual):
        number = _as_number(_unwrap(value))
        if number is not None and compare(number, expected):
            return True
    return False


def evaluate_conditional(
    logic: Optional[ConditionalLogic],
    answers: dict[str, Any],
    known_ids: Optional[set[str]] = None,
) -> bool:
    """
    Evaluate a field's conditional logic against an answer map.

    Missing, disabled or empty logic means always visible. When ``known_ids``
    is given, a condition referencing an unknown field is false.
    """
    if logic is None or not logic.is_active:
        return True
    results = []
    for condition in logic.conditions:
        if known_ids is not None and condition.question_id not in known_ids:
            results.append(False)
        else:
            results.append(evaluate_condition(condition, answers))
    return any(results) if logic.operator == "any" else all(results)


# ---------------------------------------------------------------------------
# Dependency graph
# ---------------------------------------------------------------------------

def _by_link_id(fields: Iterable[FieldConfig]) -> dict[str, FieldConfig]:
    return {f.link_id: f for f in fields}


def _controllers(field: FieldConfig, known_ids: set[str]) -> set[str]:
    if field.conditional is None or not field.conditional.is_active:
        return set()
    return {c.question_id for c in field.conditional.conditions if c.question_id in known_ids}


def build_dependency_map(fields: Iterable[FieldConfig]) -> dict[str, list[str]]:
    """Map each controlling linkId to the linkIds whose visibility depends on it."""
    by_id = _by_link_id(fields)
    known = set(by_id)
    dependents: dict[str, list[str]] = {}
    for link_id, field in by_id.items():
        for controller in sorted(_controllers(field, known)):
            dependents.setdefault(controller, []).append(link_id)
    return dependents


def find_conditional_cycles(fields: Iterable[FieldConfig]) -> list[list[str]]:
    """
    Strongly connected groups of fields that control each other.

    A self-referencing field is reported as a one-element cycle.
    """
    by_id = _by_link_id(fields)
    known = set(by_id)
    edges = {link_id: sorted(_controllers(field, known)) for link_id, field in by_id.items()}

    # Tarjan's algorithm
    index_of: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    cycles: list[list[str]] = []
    counter = 0

    def visit(node: str) -> None:
        nonlocal counter
        index_of[node] = low[node] = counter
        counter += 1
        stack.append(node)
        on_stack.add(node)
        for target in edges[node]:
            if target not in index_of:
                visit(target)
                low[node] = min(low[node], low[target])
            elif target in on_stack:
                low[node] = min(low[node], index_of[target])
        if low[node] == index_of[node]:
            component = []
            while True:
                member = stack.pop()
                on_stack.discard(member)
                component.append(member)
                if member == node:
                    break
            if len(component) > 1 or node in edges[node]:
                cycles.append(sorted(component))

    for link_id in by_id:
        if link_id not in index_of:
            visit(link_id)
    return cycles


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def evaluate_visibility(fields: Iterable[FieldConfig], answers: dict[str, Any]) -> set[str]:
    """Return the set of visible linkIds for the given answers."""
    by_id = _by_link_id(fields)
    known = set(by_id)
    depends_on = {link_id: _controllers(field, known) for link_id, field in by_id.items()}
    dependents = build_dependency_map(by_id.values())

    in_degree = {link_id: len(deps) for link_id, deps in depends_on.items()}
    queue = [link_id for link_id, degree in in_degree.items() if degree == 0]
    effective = dict(answers)
    visible: set[str] = set()
    resolved: set[str] = set()

    def settle(link_id: str, is_visible: bool) -> None:
        resolved.add(link_id)
        if is_visible:
            visible.add(link_id)
        else:
            effective.pop(link_id, None)
        for dependent in dependents.get(link_id, []):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0 and dependent not in resolved:
                queue.append(dependent)

    while True:
        while queue:
            current = queue.pop(0)
            if current in resolved:
                continue
            settle(current, evaluate_conditional(by_id[current].conditional, effective, known))

        if len(resolved) == len(by_id):
            break
        # Whatever is left sits on or behind a cycle; hide the cycle members
        # and let the fields behind them resolve normally.
        remaining = [f for f in by_id.values() if f.link_id not in resolved]
        cyclic = {
            link_id
            for cycle in find_conditional_cycles(remaining)
            for link_id in cycle
        }
        for link_id in sorted(cyclic):
            logger.warning("Field '%s' is part of a conditional cycle; hiding it", link_id)
            settle(link_id, False)

    return visible


def fields_to_clear(fields: Iterable[FieldConfig], answers: dict[str, Any]) -> list[str]:
    """Hidden fields that still hold a value, in field order."""
    fields = list(fields)
    visible = evaluate_visibility(fields, answers)
    return [
        f.link_id
        for f in fields
        if f.link_id not in visible and _is_present(answers.get(f.link_id))
    ]


def prune_hidden_answers(fields: Iterable[FieldConfig], answers: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``answers`` without values for hidden fields."""
    fields = list(fields)
    stale = set(fields_to_clear(fields, answers))
    return {key: value for key, value in answers.items() if key not in stale}

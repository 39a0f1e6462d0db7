"""
Condition evaluator: a total, side-effect-free function over condition trees.

``evaluate(group, scope, now)`` walks a ``ConditionGroup`` recursively:

  - ``AllOf`` short-circuits on the first false child.
  - ``AnyOf`` short-circuits on the first true child.
  - ``Not`` inverts its single child.
  - ``Condition`` resolves its field path against ``scope`` and applies the
    operator.

Totality
--------
Evaluation never raises for data reasons.  An unresolvable path, a ``None``
value or a type-incompatible comparison makes the leaf ``False``; the only
operator that is true for a missing value is ``IS_EMPTY``.  Booleans are not
treated as numbers.

Scope
-----
A scope is the root the field paths are resolved against: normally the dict
returned by ``build_scope(context, bindings)``, where ``bindings`` holds the
entity bound for this match (``{"crop": CropContext}``) layered on top of the
context's own sections (``farm``, ``weather``, ``finance`` ...).

Path syntax: dotted segments with optional ``[n]`` indexes, e.g.
``weather.forecast[0].rain_probability`` or ``livestock.last_deworming.days_since``.

Date operators
--------------
``DAYS_SINCE_GREATER_THAN`` / ``DAYS_UNTIL_LESS_THAN`` compute whole days
between a date fact and the ``now`` passed in — the single timestamp captured
for the evaluation pass.  No wall-clock reads happen here.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel

from farm_advisor.models.rule import AllOf, AnyOf, Condition, ConditionGroup, Not
from farm_advisor.taxonomy.dse_taxonomy import Operator
from farm_advisor.utils.time_utils import whole_days_between

_SEGMENT_RE = re.compile(r"^([a-z_][a-z0-9_]*)((?:\[\d+\])*)$")
_INDEX_RE = re.compile(r"\[(\d+)\]")


class _Missing:
    """Sentinel for an unresolvable path (distinct from an explicit ``None``)."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


# ── Scope & path resolution ───────────────────────────────────────────────────

def build_scope(context: BaseModel, bindings: Optional[Mapping[str, Any]] = None) -> dict[str, Any]:
    """Flatten a context's top-level fields into a dict and overlay ``bindings``.

    Args:
        context: The ``EvaluationContext`` for this pass.
        bindings: Entity bound for the current match, e.g. ``{"crop": crop}``.

    Returns:
        Dict suitable for ``resolve_field`` / ``evaluate``.
    """
    scope: dict[str, Any] = {name: getattr(context, name) for name in type(context).model_fields}
    if bindings:
        scope.update(bindings)
    return scope


def resolve_field(scope: Any, path: str) -> Any:
    """Resolve a dotted path against ``scope``.

    Returns ``MISSING`` when any segment cannot be followed.  Mappings are
    addressed by key, pydantic models by field or property, sequences by
    ``[n]``.  Private names and callables never resolve.
    """
    current = scope
    for segment in path.split("."):
        m = _SEGMENT_RE.match(segment)
        if m is None:
            return MISSING
        current = _step(current, m.group(1))
        if current is MISSING:
            return MISSING
        for idx in _INDEX_RE.findall(m.group(2)):
            current = _index(current, int(idx))
            if current is MISSING:
                return MISSING
    return current


def _step(obj: Any, name: str) -> Any:
    if obj is None or obj is MISSING or name.startswith("_"):
        return MISSING
    if isinstance(obj, Mapping):
        return obj.get(name, MISSING)
    if isinstance(obj, BaseModel):
        if name in type(obj).model_fields:
            return getattr(obj, name)
        attr = getattr(type(obj), name, None)
        if isinstance(attr, property):
            return getattr(obj, name)
        return MISSING
    return MISSING


def _index(obj: Any, idx: int) -> Any:
    if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes)):
        if 0 <= idx < len(obj):
            return obj[idx]
    return MISSING


# ── Evaluation ────────────────────────────────────────────────────────────────

def evaluate(group: ConditionGroup, scope: Any, now: datetime) -> bool:
    """Evaluate a condition tree against ``scope``.

    Args:
        group: Root of the condition tree.
        scope: Resolution root (see ``build_scope``).
        now: The evaluation pass's captured "now".

    Returns:
        ``True`` if the tree matches.  Never raises for missing or
        mistyped data.
    """
    if isinstance(group, AllOf):
        return all(evaluate(child, scope, now) for child in group.children)
    if isinstance(group, AnyOf):
        return any(evaluate(child, scope, now) for child in group.children)
    if isinstance(group, Not):
        return not evaluate(group.child, scope, now)
    return evaluate_condition(group, scope, now)


def evaluate_condition(condition: Condition, scope: Any, now: datetime) -> bool:
    actual = resolve_field(scope, condition.field)
    return apply_operator(condition.operator, actual, condition.value, now)


def apply_operator(operator: Operator, actual: Any, operand: Any, now: datetime) -> bool:
    """Apply one leaf operator.  Total: returns ``False`` on incompatible types."""
    if operator == Operator.IS_EMPTY:
        return _is_empty(actual)
    if actual is MISSING or actual is None:
        return False

    if operator == Operator.EXISTS:
        return True
    if operator == Operator.EQUALS:
        return _equals(actual, operand)
    if operator == Operator.NOT_EQUALS:
        return not _equals(actual, operand)
    if operator == Operator.GREATER_THAN:
        return _is_number(actual) and _is_number(operand) and actual > operand
    if operator == Operator.GREATER_OR_EQUAL:
        return _is_number(actual) and _is_number(operand) and actual >= operand
    if operator == Operator.LESS_THAN:
        return _is_number(actual) and _is_number(operand) and actual < operand
    if operator == Operator.LESS_OR_EQUAL:
        return _is_number(actual) and _is_number(operand) and actual <= operand
    if operator == Operator.BETWEEN:
        if not _is_number(actual) or not isinstance(operand, Sequence) or len(operand) != 2:
            return False
        low, high = operand
        return _is_number(low) and _is_number(high) and low <= actual <= high
    if operator == Operator.IN:
        return _is_list(operand) and any(_equals(actual, item) for item in operand)
    if operator == Operator.NOT_IN:
        return _is_list(operand) and not any(_equals(actual, item) for item in operand)
    if operator == Operator.CONTAINS:
        return _contains(actual, operand)
    if operator == Operator.DAYS_SINCE_GREATER_THAN:
        if not isinstance(actual, date) or not _is_number(operand):
            return False
        return whole_days_between(actual, now) > operand
    if operator == Operator.DAYS_UNTIL_LESS_THAN:
        if not isinstance(actual, date) or not _is_number(operand):
            return False
        return whole_days_between(now, actual) < operand
    return False


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _is_list(v: Any) -> bool:
    return isinstance(v, Sequence) and not isinstance(v, (str, bytes))


def _equals(actual: Any, operand: Any) -> bool:
    if isinstance(actual, bool) != isinstance(operand, bool):
        return False
    if _is_number(actual) != _is_number(operand):
        return False
    return actual == operand


def _contains(actual: Any, operand: Any) -> bool:
    if isinstance(actual, str):
        return operand is not None and str(operand).lower() in actual.lower()
    if _is_list(actual):
        if isinstance(operand, str):
            needle = operand.lower()
            return any(isinstance(item, str) and item.lower() == needle for item in actual)
        return any(_equals(item, operand) for item in actual)
    return False


def _is_empty(v: Any) -> bool:
    if v is MISSING or v is None:
        return True
    if isinstance(v, (str, bytes, Sequence, Mapping)):
        return len(v) == 0
    return False


# ── Tree inspection ───────────────────────────────────────────────────────────

def iter_conditions(group: ConditionGroup) -> Iterator[Condition]:
    """Yield every leaf condition in depth-first, left-to-right order."""
    if isinstance(group, (AllOf, AnyOf)):
        for child in group.children:
            yield from iter_conditions(child)
    elif isinstance(group, Not):
        yield from iter_conditions(group.child)
    else:
        yield group


def used_fields(group: ConditionGroup) -> tuple[str, ...]:
    """Distinct field paths read by the tree, in first-seen order."""
    return tuple(dict.fromkeys(c.field for c in iter_conditions(group)))

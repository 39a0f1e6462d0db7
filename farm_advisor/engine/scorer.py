"""
Candidate scoring: turns one (rule, match) pair into the computed parts of a
``RecommendationCard`` — priority, confidence, impact, validity window,
reasons and templated text.

All functions here are pure: they read the rule, the scope and the captured
``now``, and never touch the store or the clock.

Confidence formula
------------------
    confidence = clamp(
        base
        + weather_bonus  (if weather facts were available, default 0.10)
        + market_bonus   (if market facts were available, default 0.05),
        0.0, 1.0,
    )

Confidence bands
----------------
    >= 0.80  HIGH
    >= 0.50  MEDIUM
    else     LOW

Priority escalation
-------------------
    priority = escalate_to  if resolve(escalate_field) >= escalate_at
               base         otherwise (including an unresolvable field)

Reasons
-------
One sentence per satisfied leaf condition (leaves under ``Not`` are skipped),
in tree order, de-duplicated and capped at ``max_reasons``.  When no leaf
yields a sentence the rule name is used so every card carries a reason.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from datetime import date, datetime
from typing import Any, Optional

from farm_advisor.engine.conditions import MISSING, apply_operator, resolve_field
from farm_advisor.models.context import EvaluationContext
from farm_advisor.models.recommendation import Impact
from farm_advisor.models.rule import (
    AllOf,
    AnyOf,
    Condition,
    ConditionGroup,
    ConfidenceTemplate,
    ImpactTemplate,
    Not,
    PriorityTemplate,
    Rule,
)
from farm_advisor.taxonomy.dse_taxonomy import ConfidenceLabel, Operator, Priority
from farm_advisor.utils.time_utils import add_days, whole_days_between

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([^}]+?)\s*\}\}")
_INDEX_SUFFIX_RE = re.compile(r"\[\d+\]")

HIGH_CONFIDENCE_THRESHOLD = 0.80
MEDIUM_CONFIDENCE_THRESHOLD = 0.50


# ── Priority / confidence / impact ────────────────────────────────────────────

def compute_priority(template: PriorityTemplate, scope: Any) -> Priority:
    """Resolve the priority template against the matched scope."""
    if template.escalate_to is None or template.escalate_field is None:
        return template.base
    value = resolve_field(scope, template.escalate_field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return template.base
    if template.escalate_at is not None and value >= template.escalate_at:
        return template.escalate_to
    return template.base


def compute_confidence(template: ConfidenceTemplate, context: EvaluationContext) -> float:
    confidence = template.base
    if context.weather is not None:
        confidence += template.weather_bonus
    if context.market is not None:
        confidence += template.market_bonus
    return round(_clamp(confidence, 0.0, 1.0), 4)


def confidence_label(confidence: float) -> ConfidenceLabel:
    """Map a numeric confidence onto its fixed band."""
    if confidence >= HIGH_CONFIDENCE_THRESHOLD:
        return ConfidenceLabel.HIGH
    if confidence >= MEDIUM_CONFIDENCE_THRESHOLD:
        return ConfidenceLabel.MEDIUM
    return ConfidenceLabel.LOW


def compute_impact(template: Optional[ImpactTemplate]) -> Optional[Impact]:
    if template is None:
        return None
    return Impact(type=template.type, value=template.value)


def compute_valid_until(valid_days: Optional[int], now: datetime) -> Optional[datetime]:
    """``now + valid_days``, or ``None`` for "until the next evaluation"."""
    if valid_days is None:
        return None
    return add_days(now, valid_days)


# ── Templates ─────────────────────────────────────────────────────────────────

def render_template(template: Optional[str], scope: Any) -> Optional[str]:
    """Replace ``{{path}}`` placeholders with values resolved from ``scope``.

    Placeholders that do not resolve are left verbatim so a broken template is
    visible rather than silently blank.
    """
    if template is None:
        return None

    def _sub(match: re.Match) -> str:
        value = resolve_field(scope, match.group(1))
        if value is MISSING or value is None:
            return match.group(0)
        return format_value(value)

    return _PLACEHOLDER_RE.sub(_sub, template)


def format_value(value: Any) -> str:
    """Render a context value for display inside titles and reasons."""
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else f"{value:g}"
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(format_value(v) for v in value)
    return str(value)


# ── Reasons ───────────────────────────────────────────────────────────────────

def build_reasons(rule: Rule, scope: Any, now: datetime, max_reasons: int = 5) -> tuple[str, ...]:
    """Assemble human-readable reasons from the satisfied leaves of ``rule``.

    Returns:
        Non-empty tuple of at most ``max_reasons`` distinct sentences.
    """
    reasons: list[str] = []
    for condition in _positive_leaves(rule.condition):
        actual = resolve_field(scope, condition.field)
        if not apply_operator(condition.operator, actual, condition.value, now):
            continue
        sentence = format_condition_reason(condition, actual, now)
        if sentence and sentence not in reasons:
            reasons.append(sentence)
        if len(reasons) >= max_reasons:
            break
    if not reasons:
        reasons.append(f"Conditions for '{rule.name}' were met")
    return tuple(reasons)


def format_condition_reason(condition: Condition, actual: Any, now: datetime) -> Optional[str]:
    """Render one satisfied leaf as a sentence, e.g.
    ``"days since planting is 35 days (threshold: 30)"``.
    """
    name = readable_field_name(condition.field)
    unit = f" {condition.unit}" if condition.unit else ""
    op = condition.operator

    if op == Operator.IS_EMPTY:
        return f"No {name} recorded yet"
    if actual is MISSING or actual is None:
        return None

    shown = format_value(actual)
    if op == Operator.GREATER_OR_EQUAL:
        return f"{name} is {shown}{unit} (threshold: {format_value(condition.value)})"
    if op == Operator.GREATER_THAN:
        return f"{name} is {shown}{unit} (above {format_value(condition.value)})"
    if op == Operator.LESS_OR_EQUAL:
        return f"{name} is {shown}{unit} (max: {format_value(condition.value)})"
    if op == Operator.LESS_THAN:
        return f"{name} is {shown}{unit} (below {format_value(condition.value)})"
    if op == Operator.BETWEEN:
        low, high = condition.value
        return f"{name} is {shown}{unit} (expected: {format_value(low)}-{format_value(high)})"
    if op == Operator.DAYS_SINCE_GREATER_THAN:
        return f"{name} was {whole_days_between(actual, now)} days ago"
    if op == Operator.DAYS_UNTIL_LESS_THAN:
        return f"{name} is in {whole_days_between(now, actual)} days"
    if op == Operator.EXISTS:
        return f"{name} recorded: {shown}"
    return f"{name}: {shown}{unit}"


def readable_field_name(path: str) -> str:
    """``"weather.forecast[0].rain_probability"`` → ``"rain probability"``."""
    last = _INDEX_SUFFIX_RE.sub("", path.rsplit(".", 1)[-1])
    return last.replace("_", " ")


def _positive_leaves(group: ConditionGroup) -> Iterator[Condition]:
    if isinstance(group, (AllOf, AnyOf)):
        for child in group.children:
            yield from _positive_leaves(child)
    elif isinstance(group, Not):
        return
    else:
        yield group


# ── Helper ────────────────────────────────────────────────────────────────────

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))

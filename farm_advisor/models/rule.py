"""
Rule models — condition trees plus recommendation templates.

``ConditionGroup`` is a closed tagged variant discriminated on ``kind``:

  - ``Condition`` (``kind="condition"``, the default when ``kind`` is omitted)
    — leaf predicate ``(field, operator, value)``.
  - ``AllOf``     (``kind="all"``)  — true when every child is true.
  - ``AnyOf``     (``kind="any"``)  — true when at least one child is true.
  - ``Not``       (``kind="not"``)  — inverts its single child.

Trees are built bottom-up from frozen models, so they are finite and acyclic
by construction.

A ``Rule`` pairs a condition tree with targeting (which facts it is evaluated
against) and the templates used to instantiate a ``RecommendationCard``.  Rules
are authored data: they never mutate, and a change in behavior is published as
a new ``version`` under the same ``code``.

JSON authoring example::

    {
      "code": "MAIZE_TOPDRESS_WINDOW",
      "version": 1,
      "targeting": {"entity_type": "CROP_ENTRY", "crop_types": ["Maize"]},
      "condition": {"kind": "all", "children": [
          {"field": "crop.days_since_planting", "operator": "GREATER_OR_EQUAL", "value": 18},
          {"field": "crop.status", "operator": "EQUALS", "value": "GROWING"}
      ]},
      ...
    }
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
    model_validator,
)

from farm_advisor.taxonomy.dse_taxonomy import (
    EntityType,
    Operator,
    Priority,
    RecommendationCategory,
    RuleCategory,
    Season,
)

# Dotted snake_case segments, each optionally followed by one or more [n] indexes.
_FIELD_PATH_RE = re.compile(r"^[a-z_][a-z0-9_]*(\[\d+\])*(\.[a-z_][a-z0-9_]*(\[\d+\])*)*$")
_RULE_CODE_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")

_LIST_OPERATORS = frozenset({Operator.IN, Operator.NOT_IN})
_NUMERIC_OPERATORS = frozenset({
    Operator.GREATER_THAN,
    Operator.LESS_THAN,
    Operator.GREATER_OR_EQUAL,
    Operator.LESS_OR_EQUAL,
    Operator.DAYS_SINCE_GREATER_THAN,
    Operator.DAYS_UNTIL_LESS_THAN,
})


# ── Condition tree ────────────────────────────────────────────────────────────

class Condition(BaseModel):
    """Leaf predicate evaluated against one field of the context.

    Attributes:
        field: Dotted path into the context, e.g. ``crop.days_since_planting``.
        operator: One of the closed ``Operator`` set.
        value: Operand.  A list for IN / NOT_IN, a ``[low, high]`` pair for
            BETWEEN, a number for ordering and day-count operators, ignored by
            EXISTS / IS_EMPTY.
        unit: Optional display unit used when the condition is rendered as a
            reason string (e.g. ``"km/h"``).
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["condition"] = "condition"
    field: str
    operator: Operator
    value: Any = None
    unit: Optional[str] = None

    @field_validator("field")
    @classmethod
    def validate_field_path(cls, v: str) -> str:
        if not _FIELD_PATH_RE.match(v):
            raise ValueError(f"Invalid field path '{v}'.")
        return v

    @model_validator(mode="after")
    def validate_operand_shape(self) -> "Condition":
        if self.operator in _LIST_OPERATORS and not isinstance(self.value, (list, tuple)):
            raise ValueError(f"{self.operator} requires a list operand, got {self.value!r}.")
        if self.operator == Operator.BETWEEN:
            if not isinstance(self.value, (list, tuple)) or len(self.value) != 2:
                raise ValueError(f"BETWEEN requires a [low, high] operand, got {self.value!r}.")
        if self.operator in _NUMERIC_OPERATORS:
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
                raise ValueError(f"{self.operator} requires a numeric operand, got {self.value!r}.")
        return self


class AllOf(BaseModel):
    """Conjunction; short-circuits on the first false child."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["all"] = "all"
    children: tuple[ConditionGroup, ...] = Field(min_length=1)


class AnyOf(BaseModel):
    """Disjunction; short-circuits on the first true child."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["any"] = "any"
    children: tuple[ConditionGroup, ...] = Field(min_length=1)


class Not(BaseModel):
    """Negation of a single child."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["not"] = "not"
    child: ConditionGroup


def _condition_kind(value: Any) -> str:
    if isinstance(value, dict):
        return value.get("kind", "condition")
    return getattr(value, "kind", "condition")


ConditionGroup = Annotated[
    Union[
        Annotated[Condition, Tag("condition")],
        Annotated[AllOf, Tag("all")],
        Annotated[AnyOf, Tag("any")],
        Annotated[Not, Tag("not")],
    ],
    Discriminator(_condition_kind),
]

AllOf.model_rebuild()
AnyOf.model_rebuild()
Not.model_rebuild()


# ── Templates ─────────────────────────────────────────────────────────────────

class PriorityTemplate(BaseModel):
    """Base priority with optional escalation driven by a matched value.

    When ``escalate_field`` resolves to a number ``>= escalate_at`` for the
    matched entity, the candidate gets ``escalate_to`` instead of ``base``
    (e.g. a deworming reminder becomes URGENT once 30 days overdue).
    """

    model_config = ConfigDict(frozen=True)

    base: Priority
    escalate_to: Optional[Priority] = None
    escalate_field: Optional[str] = None
    escalate_at: Optional[float] = None

    @model_validator(mode="after")
    def validate_escalation(self) -> "PriorityTemplate":
        parts = (self.escalate_to, self.escalate_field, self.escalate_at)
        if any(p is not None for p in parts) and not all(p is not None for p in parts):
            raise ValueError(
                "escalate_to, escalate_field and escalate_at must be set together."
            )
        if self.escalate_to is not None and self.escalate_to.rank >= self.base.rank:
            raise ValueError(
                f"escalate_to ({self.escalate_to}) must be more urgent than base ({self.base})."
            )
        if self.escalate_field is not None and not _FIELD_PATH_RE.match(self.escalate_field):
            raise ValueError(f"Invalid escalate_field path '{self.escalate_field}'.")
        return self


class ConfidenceTemplate(BaseModel):
    """Authored base confidence plus data-completeness bonuses.

    The final confidence is ``base`` + ``weather_bonus`` when weather facts were
    available + ``market_bonus`` when market facts were available, clamped to
    ``[0, 1]``.
    """

    model_config = ConfigDict(frozen=True)

    base: float
    weather_bonus: float = 0.10
    market_bonus: float = 0.05

    @field_validator("base")
    @classmethod
    def validate_base(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence base must be in [0.0, 1.0], got {v}.")
        return v


class ImpactTemplate(BaseModel):
    """Expected impact, e.g. ``{"type": "yield_increase", "value": 0.15}``."""

    model_config = ConfigDict(frozen=True)

    type: str
    value: float = 0.0


class ValidityWindow(BaseModel):
    """How long a generated recommendation stays valid.

    ``valid_days=None`` means "until the next evaluation" (no ``valid_until``).
    """

    model_config = ConfigDict(frozen=True)

    valid_days: Optional[int] = None

    @field_validator("valid_days")
    @classmethod
    def validate_days(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            raise ValueError(f"valid_days must be >= 1, got {v}.")
        return v


class RuleTargeting(BaseModel):
    """Which facts a rule is evaluated against.

    ``CROP_ENTRY`` rules are evaluated once per crop entry whose type is in
    ``crop_types`` (``"*"`` matches any); ``LIVESTOCK_ENTRY`` rules likewise
    per livestock entry; ``FARM`` rules once per context.  ``seasons`` and
    ``regions``, when non-empty, gate the whole rule.
    """

    model_config = ConfigDict(frozen=True)

    entity_type: EntityType = EntityType.FARM
    crop_types: tuple[str, ...] = ()
    livestock_types: tuple[str, ...] = ()
    seasons: tuple[Season, ...] = ()
    regions: tuple[str, ...] = ()

    @model_validator(mode="after")
    def validate_entity_filters(self) -> "RuleTargeting":
        if self.entity_type == EntityType.CROP_ENTRY and not self.crop_types:
            raise ValueError("CROP_ENTRY rules must list crop_types (use '*' for any).")
        if self.entity_type == EntityType.LIVESTOCK_ENTRY and not self.livestock_types:
            raise ValueError("LIVESTOCK_ENTRY rules must list livestock_types (use '*' for any).")
        return self


# ── Rule ──────────────────────────────────────────────────────────────────────

class Rule(BaseModel):
    """An authored, versioned decision rule.

    Attributes:
        code: Stable identifier shared by every version of the rule.
        name: Human-readable name.
        description: Static justification shown by the explanation endpoint.
        category: Kind of knowledge encoded (``RuleCategory``).
        recommendation_category: Category of the cards this rule emits.
        version: Positive integer; the catalog evaluates the highest one.
        precedence: Evaluation order within a pass, higher first.
        is_active: Inactive rules are kept for explanation but never fire.
        targeting: Entity expansion and season / region gates.
        condition: Condition tree evaluated per matched entity.
        title_template: Card title; ``{{path}}`` placeholders are resolved
            against the bound entity first, then the context.
        description_template: Card description (same placeholder rules).
        action_steps: Ordered steps (same placeholder rules).
        priority: Priority template.
        confidence: Confidence template.
        impact: Impact template, or ``None``.
        validity: Validity window.
        supersedes: Rule codes whose candidates are dropped for the same
            entity when this rule fires.
        explain_more_url: Knowledge-base link for the card.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str = ""
    category: RuleCategory
    recommendation_category: RecommendationCategory
    version: int = 1
    precedence: int = 0
    is_active: bool = True
    targeting: RuleTargeting = RuleTargeting()
    condition: ConditionGroup
    title_template: str
    description_template: Optional[str] = None
    action_steps: tuple[str, ...] = ()
    priority: PriorityTemplate
    confidence: ConfidenceTemplate
    impact: Optional[ImpactTemplate] = None
    validity: ValidityWindow = ValidityWindow()
    supersedes: tuple[str, ...] = ()
    explain_more_url: Optional[str] = None

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        if not _RULE_CODE_RE.match(v):
            raise ValueError(f"Rule code must be UPPER_SNAKE_CASE, got '{v}'.")
        return v

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"version must be >= 1, got {v}.")
        return v

    @field_validator("title_template")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("title_template must not be empty.")
        return v.strip()

    @model_validator(mode="after")
    def validate_supersedes(self) -> "Rule":
        if self.code in self.supersedes:
            raise ValueError(f"Rule '{self.code}' cannot supersede itself.")
        return self

    @property
    def model_version(self) -> str:
        """Version tag stamped on every card this rule emits."""
        return f"rules_v{self.version}"

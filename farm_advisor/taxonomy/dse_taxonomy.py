"""
Decision support taxonomy.

Closed vocabularies shared by rules, candidates and persisted recommendations:

  - ``RuleCategory``           — what kind of agronomic knowledge a rule encodes.
  - ``RecommendationCategory`` — the user-facing bucket a card is filed under.
  - ``Priority``               — fixed ordinal urgency scale (URGENT first).
  - ``EntityType``             — which fact a recommendation is about.
  - ``Season``                 — Ghana agricultural seasons.
  - ``RecommendationStatus``   — lifecycle states of a persisted recommendation.
  - ``FeedbackType``           — user reactions to a recommendation.
  - ``ConfidenceLabel``        — three fixed confidence bands.
  - ``Operator``               — leaf predicate operators for condition trees.

Usage example::

    from farm_advisor.taxonomy.dse_taxonomy import Priority

    Priority.URGENT.rank < Priority.LOW.rank   # True

This module has NO imports from any other ``farm_advisor`` package.
"""

from enum import StrEnum


class RuleCategory(StrEnum):
    """Kind of knowledge encoded by a rule."""

    CROP_CALENDAR = "CROP_CALENDAR"
    LIVESTOCK_HEALTH = "LIVESTOCK_HEALTH"
    WEATHER_ALERT = "WEATHER_ALERT"
    MARKET_ALERT = "MARKET_ALERT"
    FINANCIAL = "FINANCIAL"
    PEST_DISEASE = "PEST_DISEASE"
    GENERAL = "GENERAL"


class RecommendationCategory(StrEnum):
    """User-facing category a recommendation card is filed under."""

    CROP = "CROP"
    LIVESTOCK = "LIVESTOCK"
    WEATHER = "WEATHER"
    MARKET = "MARKET"
    FINANCE = "FINANCE"
    GENERAL = "GENERAL"


class Priority(StrEnum):
    """Urgency of a recommendation, stored uppercase.

    Ordering is ordinal: ``URGENT`` sorts before ``HIGH`` before ``MEDIUM``
    before ``LOW``. Use ``rank`` for sorting, never the string value.
    """

    URGENT = "URGENT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.URGENT: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


class EntityType(StrEnum):
    """The fact a recommendation is attached to."""

    FARM = "FARM"
    CROP_ENTRY = "CROP_ENTRY"
    LIVESTOCK_ENTRY = "LIVESTOCK_ENTRY"


class Season(StrEnum):
    """Ghana agricultural seasons.

    Major rainy: March–July. Minor dry: August.
    Minor rainy: September–November. Major dry: December–February.
    """

    MAJOR_RAINY = "MAJOR_RAINY"
    MINOR_DRY = "MINOR_DRY"
    MINOR_RAINY = "MINOR_RAINY"
    MAJOR_DRY = "MAJOR_DRY"


class RecommendationStatus(StrEnum):
    """Lifecycle state of a persisted recommendation."""

    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"
    DISMISSED = "DISMISSED"

    @property
    def is_terminal(self) -> bool:
        """COMPLETED and DISMISSED are only reachable via feedback and never re-open."""
        return self in (RecommendationStatus.COMPLETED, RecommendationStatus.DISMISSED)


class FeedbackType(StrEnum):
    """User reaction to a recommendation."""

    HELPFUL = "HELPFUL"
    NOT_HELPFUL = "NOT_HELPFUL"
    COMPLETED = "COMPLETED"
    DISMISSED = "DISMISSED"
    INCORRECT = "INCORRECT"


class ConfidenceLabel(StrEnum):
    """Confidence band derived purely from the numeric confidence."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Operator(StrEnum):
    """Leaf predicate operators for rule condition trees."""

    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_OR_EQUAL = "GREATER_OR_EQUAL"
    LESS_OR_EQUAL = "LESS_OR_EQUAL"
    IN = "IN"
    NOT_IN = "NOT_IN"
    BETWEEN = "BETWEEN"
    CONTAINS = "CONTAINS"
    EXISTS = "EXISTS"
    IS_EMPTY = "IS_EMPTY"
    DAYS_SINCE_GREATER_THAN = "DAYS_SINCE_GREATER_THAN"
    DAYS_UNTIL_LESS_THAN = "DAYS_UNTIL_LESS_THAN"


# Non-terminal fact statuses the context builder pulls.
ACTIVE_CROP_STATUSES: frozenset[str] = frozenset({"PLANNED", "GROWING"})
ACTIVE_LIVESTOCK_STATUSES: frozenset[str] = frozenset({"ACTIVE"})

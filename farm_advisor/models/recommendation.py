"""
Recommendation output models.

``RecommendationCard`` is an engine candidate: produced by ``RulesEngine``
from one (rule, entity) match, before persistence.

``Recommendation`` is a persisted card plus lifecycle fields.  It is created
ACTIVE by the lifecycle manager, moves to EXPIRED when superseded by a fresh
generation or when ``valid_until`` passes, and reaches COMPLETED / DISMISSED
only through ``Feedback``.

``Feedback`` rows are append-only; a feedback row is never updated.

All models are frozen — a status change produces a new row state in the store,
never an in-place mutation of a model instance.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from farm_advisor.taxonomy.dse_taxonomy import (
    ConfidenceLabel,
    EntityType,
    FeedbackType,
    Priority,
    RecommendationCategory,
    RecommendationStatus,
    Season,
)


class Impact(BaseModel):
    """Expected impact of following a recommendation.

    ``value`` is a fraction, e.g. ``0.15`` for a 15% yield increase.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    value: float


class Evidence(BaseModel):
    """Which rules and which context fields produced a recommendation.

    Attributes:
        rules_fired: Rule codes, firing rule first.  Never empty.
        features: Distinct context field paths the firing condition read.
        weather_ref: Observation timestamp of the weather snapshot used, if any.
    """

    model_config = ConfigDict(frozen=True)

    rules_fired: tuple[str, ...] = Field(min_length=1)
    features: tuple[str, ...] = ()
    weather_ref: Optional[str] = None


class RecommendationCard(BaseModel):
    """Engine candidate for a single (rule, entity) match.

    Attributes:
        farm_id: Farm the recommendation is scoped to, if any.
        category: User-facing category.
        priority: Fixed ordinal urgency.
        title: Templated headline.
        description: Templated body text.
        action_steps: Ordered steps for the farmer.
        reason: Human-readable reasons (at least one).
        impact: Expected impact, or ``None``.
        confidence: Score in ``[0.0, 1.0]``.
        confidence_label: Band derived from ``confidence``.
        evidence: Provenance of the card.
        model_version: ``rules_v<version>`` of the firing rule.
        valid_from: The evaluation "now".
        valid_until: End of validity, or ``None`` (until next evaluation).
        entity_type: Which fact the card is about.
        entity_id: PK of that fact; ``None`` for farm-level cards.
        explain_more_url: Knowledge-base link.
    """

    model_config = ConfigDict(frozen=True)

    farm_id: Optional[str] = None
    category: RecommendationCategory
    priority: Priority
    title: str
    description: Optional[str] = None
    action_steps: tuple[str, ...] = ()
    reason: tuple[str, ...] = Field(min_length=1)
    impact: Optional[Impact] = None
    confidence: float
    confidence_label: ConfidenceLabel
    evidence: Evidence
    model_version: str
    valid_from: datetime
    valid_until: Optional[datetime] = None
    entity_type: EntityType = EntityType.FARM
    entity_id: Optional[str] = None
    explain_more_url: Optional[str] = None

    @field_validator("confidence")
    @classmethod
    def validate_confidence(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"confidence must be in [0.0, 1.0], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "RecommendationCard":
        if self.valid_until is not None and self.valid_until < self.valid_from:
            raise ValueError(
                f"valid_until ({self.valid_until}) must be >= valid_from ({self.valid_from})."
            )
        return self

    @property
    def rule_code(self) -> str:
        """Code of the firing rule."""
        return self.evidence.rules_fired[0]

    @property
    def dedup_key(self) -> tuple[str, str, str, str]:
        return (
            str(self.category),
            str(self.entity_type),
            self.entity_id or "",
            self.rule_code,
        )


class Recommendation(RecommendationCard):
    """A persisted card with lifecycle state.

    Attributes:
        id: Opaque PK (uuid4 hex).
        user_id: Owner.
        status: Lifecycle state.
        generation: Per-user generation number the row was inserted under.
        created_at: Insertion time.
        completed_at: Set when COMPLETED feedback is applied.
        dismissed_at: Set when DISMISSED / NOT_HELPFUL feedback is applied.
    """

    id: str
    user_id: str
    status: RecommendationStatus = RecommendationStatus.ACTIVE
    generation: int = 0
    created_at: datetime
    completed_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    @classmethod
    def from_card(
        cls,
        card: RecommendationCard,
        *,
        id: str,
        user_id: str,
        generation: int,
        created_at: datetime,
    ) -> "Recommendation":
        return cls(
            **card.model_dump(),
            id=id,
            user_id=user_id,
            generation=generation,
            created_at=created_at,
        )


class Feedback(BaseModel):
    """A single user reaction to a recommendation.

    Attributes:
        feedback_id: Auto-assigned DB PK; ``None`` before insertion.
        recommendation_id: FK to ``recommendations.id``.
        user_id: Author of the feedback.
        feedback_type: Reaction kind.
        rating: Optional 1–5 rating.
        comment: Free text.
        action_taken: Whether the farmer acted on the recommendation.
        outcome_notes: What happened afterwards.
        created_at: Insertion time.
    """

    model_config = ConfigDict(frozen=True)

    feedback_id: Optional[int] = None
    recommendation_id: str
    user_id: str
    feedback_type: FeedbackType
    rating: Optional[int] = None
    comment: Optional[str] = None
    action_taken: Optional[bool] = None
    outcome_notes: Optional[str] = None
    created_at: datetime

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {v}.")
        return v


class FeedbackHistoryEntry(Feedback):
    """A feedback row joined with the headline of the recommendation it targets."""

    recommendation_title: str
    recommendation_category: RecommendationCategory


class RecommendationDetail(BaseModel):
    """A single recommendation with every feedback row recorded against it."""

    model_config = ConfigDict(frozen=True)

    recommendation: Recommendation
    feedback: tuple[Feedback, ...] = ()


# ── Lifecycle results ─────────────────────────────────────────────────────────

class ContextSummary(BaseModel):
    """What the evaluation pass behind a generated page looked at."""

    model_config = ConfigDict(frozen=True)

    crops_count: int
    livestock_count: int
    season: Season
    unavailable_sources: tuple[str, ...] = ()


class RecommendationPage(BaseModel):
    """Result of the read path.

    Attributes:
        recommendations: Filtered rows in ranking order.
        source: ``"cache"`` when served without evaluation, else ``"generated"``.
        generated_at: Newest ``created_at`` of a cached page, or the pass time.
        rules_evaluated: Active rules walked by the pass (0 for cache hits).
        context: Summary of the evaluated context (generated pages only).
        failed_rules: Codes of rules skipped by partial-evaluation failures.
    """

    model_config = ConfigDict(frozen=True)

    recommendations: tuple[Recommendation, ...] = ()
    source: Literal["cache", "generated"]
    generated_at: datetime
    rules_evaluated: int = 0
    context: Optional[ContextSummary] = None
    failed_rules: tuple[str, ...] = ()


class RefreshResult(BaseModel):
    """Result of a forced refresh.

    Attributes:
        count: Recommendations inserted ACTIVE.
        expired: Previously ACTIVE rows moved to EXPIRED.
        generation: The user's generation number after the refresh.
        generated_at: The pass time.
        failed_rules: Codes of rules skipped by partial-evaluation failures.
    """

    model_config = ConfigDict(frozen=True)

    count: int
    expired: int
    generation: int
    generated_at: datetime
    failed_rules: tuple[str, ...] = ()

"""
Input models for the service facade.

Every public operation validates its raw input through one of these models
before any evaluation runs; a ``pydantic.ValidationError`` is converted into
``farm_advisor.errors.ValidationError`` (with field-level detail) by the
facade.

Enum-valued inputs (category, priority, feedback type) are accepted in any
case and normalized to the stored uppercase form.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from farm_advisor.taxonomy.dse_taxonomy import FeedbackType, Priority, RecommendationCategory


def _upper(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
        return v.upper() if v else None
    return v


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class ListRequest(BaseModel):
    """Filters for the read path."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    farm_id: Optional[str] = None
    category: Optional[RecommendationCategory] = None
    priority: Optional[Priority] = None
    include_expired: bool = False

    normalize_enums = field_validator("category", "priority", mode="before")(_upper)
    normalize_farm = field_validator("farm_id", mode="before")(_blank_to_none)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    farm_id: Optional[str] = None

    normalize_farm = field_validator("farm_id", mode="before")(_blank_to_none)


class ExplainRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    recommendation_id: str

    @field_validator("recommendation_id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("recommendation_id is required.")
        return v.strip()


class FeedbackRequest(BaseModel):
    """A user reaction to record against a recommendation.

    Attributes:
        recommendation_id: Target recommendation (must belong to the caller).
        feedback_type: HELPFUL, NOT_HELPFUL, COMPLETED, DISMISSED or INCORRECT.
        rating: Optional integer rating, 1–5 inclusive.
        comment: Free text.
        action_taken: Whether the farmer acted on the recommendation.
        outcome_notes: What happened afterwards.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    recommendation_id: str
    feedback_type: FeedbackType
    rating: Optional[int] = None
    comment: Optional[str] = None
    action_taken: Optional[bool] = None
    outcome_notes: Optional[str] = None

    normalize_type = field_validator("feedback_type", mode="before")(_upper)

    @field_validator("recommendation_id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("recommendation_id is required.")
        return v.strip()

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {v}.")
        return v


class FeedbackHistoryRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    recommendation_id: Optional[str] = None

    normalize_id = field_validator("recommendation_id", mode="before")(_blank_to_none)

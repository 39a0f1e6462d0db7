"""
Explanation models returned by ``ExplanationReconstructor.explain()``.

An ``Explanation`` is rebuilt on demand from a persisted recommendation plus
the current rule catalog.  ``rule`` is ``None`` and ``rule_available`` is
``False`` when the firing rule code is no longer in the catalog; the stored
reasons are still returned.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from farm_advisor.taxonomy.dse_taxonomy import (
    ConfidenceLabel,
    Priority,
    RecommendationCategory,
    RuleCategory,
)


class RecommendationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: RecommendationCategory
    priority: Priority
    confidence: float
    confidence_label: ConfidenceLabel


class Reasoning(BaseModel):
    """Why the card fired: headline sentence, stored reasons, fields read."""

    model_config = ConfigDict(frozen=True)

    summary: str
    factors: tuple[str, ...] = ()
    data_used: tuple[str, ...] = ()


class RuleSummary(BaseModel):
    """Current catalog entry for the firing rule code (latest version)."""

    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    description: str
    category: RuleCategory
    version: int


class ConfidenceExplanation(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float
    label: ConfidenceLabel
    explanation: str


class ImpactExplanation(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    value: float
    explanation: str


class ActionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    recommended: tuple[str, ...] = ()
    alternatives: tuple[str, ...] = ()


class LearnMore(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    topics: tuple[str, ...] = ()


class Explanation(BaseModel):
    """Human-readable justification for one persisted recommendation."""

    model_config = ConfigDict(frozen=True)

    recommendation: RecommendationSummary
    reasoning: Reasoning
    rule_code: str
    rule_available: bool
    rule: Optional[RuleSummary] = None
    confidence: ConfidenceExplanation
    impact: Optional[ImpactExplanation] = None
    actions: ActionSummary
    learn_more: LearnMore
    generated_at: datetime
    model_version: str

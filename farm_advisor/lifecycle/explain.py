"""
Explanation reconstructor: rebuilds a human-readable justification for one
persisted recommendation from its stored evidence and the current catalog.

Pure read.  The firing rule is ``evidence.rules_fired[0]`` looked up by code
(latest version) in the catalog passed in.  When that code has since been
removed, the explanation is still produced from the stored reasons with
``rule_available=False`` and a rule-unavailable summary.

Confidence bands
----------------
  HIGH    score >= 0.8
  MEDIUM  0.5 <= score < 0.8
  LOW     score < 0.5
"""

from __future__ import annotations

import logging

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.db.repositories.recommendation_repo import RecommendationRepository
from farm_advisor.engine.scorer import HIGH_CONFIDENCE_THRESHOLD, MEDIUM_CONFIDENCE_THRESHOLD
from farm_advisor.errors import NotFoundError
from farm_advisor.models.explanation import (
    ActionSummary,
    ConfidenceExplanation,
    Explanation,
    ImpactExplanation,
    LearnMore,
    Reasoning,
    RecommendationSummary,
    RuleSummary,
)
from farm_advisor.models.recommendation import Recommendation
from farm_advisor.taxonomy.dse_taxonomy import RecommendationCategory

logger = logging.getLogger(__name__)

# ── Text tables ───────────────────────────────────────────────────────────────

_IMPACT_SENTENCES: dict[str, str] = {
    "yield_increase": "Following this recommendation could increase yield by approximately {pct}%.",
    "yield_protection": "This helps protect your yield from potential {pct}% loss.",
    "loss_prevention": "This could prevent up to {pct}% loss of your harvest.",
    "mortality_prevention": "This could reduce mortality risk by approximately {pct}%.",
    "cost_saving": "This could save approximately {pct}% on related costs.",
    "productivity_improvement": "This could improve productivity by approximately {pct}%.",
}
_DEFAULT_IMPACT_SENTENCE = "Expected positive impact on farm performance."

_ALTERNATIVES: dict[RecommendationCategory, tuple[str, ...]] = {
    RecommendationCategory.CROP: (
        "Consult with local extension officer",
        "Check with neighboring farmers",
        "Review crop calendar for your region",
    ),
    RecommendationCategory.LIVESTOCK: (
        "Contact veterinary officer",
        "Check with local agro-vet shop",
        "Review vaccination schedule",
    ),
    RecommendationCategory.WEATHER: (
        "Monitor weather updates",
        "Prepare protective measures",
        "Adjust farm activities accordingly",
    ),
    RecommendationCategory.FINANCE: (
        "Review expense records",
        "Consult with farm advisor",
        "Compare with similar farms",
    ),
}
_DEFAULT_ALTERNATIVES = ("Consult with agricultural expert", "Review best practices")

_TOPICS: dict[RecommendationCategory, tuple[str, ...]] = {
    RecommendationCategory.CROP: (
        "Fertilizer application", "Pest management", "Harvest timing", "Post-harvest handling",
    ),
    RecommendationCategory.LIVESTOCK: (
        "Vaccination schedules", "Feed management", "Disease prevention", "Housing",
    ),
    RecommendationCategory.WEATHER: (
        "Seasonal planning", "Irrigation", "Crop protection", "Storage",
    ),
    RecommendationCategory.FINANCE: (
        "Cost tracking", "Budgeting", "Market timing", "Input sourcing",
    ),
}
_DEFAULT_TOPICS = ("Farm management", "Best practices")


def confidence_explanation(score: float) -> str:
    if score >= HIGH_CONFIDENCE_THRESHOLD:
        return "High confidence: Based on strong evidence and well-established agricultural practices."
    if score >= MEDIUM_CONFIDENCE_THRESHOLD:
        return (
            "Medium confidence: Based on available data, but some factors may vary. "
            "Consider local conditions."
        )
    return "Low confidence: Limited data available. Consult with extension officer for confirmation."


def impact_explanation(impact_type: str, value: float) -> str:
    """Sentence for an impact, with ``value`` rendered as a whole percentage."""
    template = _IMPACT_SENTENCES.get(impact_type)
    if template is None:
        return _DEFAULT_IMPACT_SENTENCE
    return template.format(pct=round(value * 100) if value else 0)


class ExplanationReconstructor:
    """Builds ``Explanation`` objects for persisted recommendations.

    Args:
        repo: Recommendation store.
        catalog: Current rule catalog.
    """

    def __init__(self, repo: RecommendationRepository, catalog: RuleCatalog) -> None:
        self.repo = repo
        self.catalog = catalog

    def explain(self, user_id: str, recommendation_id: str) -> Explanation:
        """Explain one recommendation owned by ``user_id``.

        Raises:
            NotFoundError: Absent or owned by another user.
        """
        rec = self.repo.get(recommendation_id, user_id)
        if rec is None:
            raise NotFoundError("Recommendation")
        return self.build(rec)

    def build(self, rec: Recommendation) -> Explanation:
        rule_code = rec.rule_code
        rule = self.catalog.get(rule_code)
        if rule is None:
            logger.info(
                "Rule %s behind recommendation=%s is no longer in the catalog",
                rule_code, rec.id,
            )

        if rule is not None:
            lead = rec.reason[0] if rec.reason else "conditions were met"
            summary = f"This recommendation was generated because {lead}."
        else:
            summary = (
                f"The rule that generated this recommendation ({rule_code}) is no longer "
                "available; the reasons recorded when it was generated are shown below."
            )

        impact = (
            ImpactExplanation(
                type=rec.impact.type,
                value=rec.impact.value,
                explanation=impact_explanation(rec.impact.type, rec.impact.value),
            )
            if rec.impact is not None
            else None
        )

        url = (
            rec.explain_more_url
            or (rule.explain_more_url if rule is not None else None)
            or f"/knowledge/{rec.category.value.lower()}"
        )

        return Explanation(
            recommendation=RecommendationSummary(
                id=rec.id,
                title=rec.title,
                category=rec.category,
                priority=rec.priority,
                confidence=rec.confidence,
                confidence_label=rec.confidence_label,
            ),
            reasoning=Reasoning(
                summary=summary,
                factors=rec.reason,
                data_used=rec.evidence.features,
            ),
            rule_code=rule_code,
            rule_available=rule is not None,
            rule=(
                RuleSummary(
                    code=rule.code,
                    name=rule.name,
                    description=rule.description,
                    category=rule.category,
                    version=rule.version,
                )
                if rule is not None
                else None
            ),
            confidence=ConfidenceExplanation(
                score=rec.confidence,
                label=rec.confidence_label,
                explanation=confidence_explanation(rec.confidence),
            ),
            impact=impact,
            actions=ActionSummary(
                recommended=rec.action_steps,
                alternatives=_ALTERNATIVES.get(rec.category, _DEFAULT_ALTERNATIVES),
            ),
            learn_more=LearnMore(
                url=url,
                topics=_TOPICS.get(rec.category, _DEFAULT_TOPICS),
            ),
            generated_at=rec.created_at,
            model_version=rec.model_version,
        )

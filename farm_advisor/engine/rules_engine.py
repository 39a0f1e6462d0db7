"""
Rules engine: evaluates a ``RuleCatalog`` against one ``EvaluationContext``.

Algorithm (one pass)
--------------------
1. Capture ``now`` once (defaults to ``context.current_date``); every
   date-relative operator and template in the pass uses it.
2. Walk the catalog's active rules in precedence order.  Region / season gates
   are checked first; targeting then expands the rule into matches:
     - CROP_ENTRY      — one match per crop whose type is listed (``"*"`` = any),
                         bound as ``crop``.
     - LIVESTOCK_ENTRY — one match per livestock entry likewise, bound as
                         ``livestock``.
     - FARM            — a single farm-level match.
3. For each match, evaluate the condition tree; on success build a
   ``RecommendationCard`` via ``engine.scorer``.
4. Dedupe, apply supersession and rank via ``engine.ranker``.

Failure isolation
-----------------
Any exception raised while expanding, evaluating or instantiating one rule is
wrapped in ``PartialEvaluationError``, logged at WARNING and recorded in
``last_failures``; the remaining catalog is still evaluated.  A catalog defect
therefore reduces completeness, never availability.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.engine.conditions import build_scope, evaluate, used_fields
from farm_advisor.engine.ranker import apply_supersession, dedupe_candidates, rank_candidates
from farm_advisor.engine.scorer import (
    build_reasons,
    compute_confidence,
    compute_impact,
    compute_priority,
    compute_valid_until,
    confidence_label,
    render_template,
)
from farm_advisor.errors import PartialEvaluationError
from farm_advisor.models.context import EvaluationContext
from farm_advisor.models.recommendation import Evidence, RecommendationCard
from farm_advisor.models.rule import Rule
from farm_advisor.taxonomy.dse_taxonomy import EntityType
from farm_advisor.utils.time_utils import ensure_utc

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass(frozen=True)
class RuleMatch:
    """One (rule, entity) pairing produced by targeting expansion.

    Attributes:
        rule:        The rule being evaluated.
        entity_type: Fact type the candidate will be attached to.
        entity_id:   PK of the bound entity; ``None`` for farm-level matches.
        bindings:    Names layered over the context scope, e.g. ``{"crop": ...}``.
        farm_id:     Farm owning the bound entity; ``None`` means the context farm.
    """

    rule: Rule
    entity_type: EntityType = EntityType.FARM
    entity_id: Optional[str] = None
    bindings: dict[str, Any] = field(default_factory=dict)
    farm_id: Optional[str] = None


def expand_matches(rule: Rule, context: EvaluationContext) -> list[RuleMatch]:
    """Apply region / season gates and expand ``rule`` into entity matches."""
    targeting = rule.targeting

    if targeting.regions:
        region = context.farm.region if context.farm else None
        if region is None or region not in targeting.regions:
            return []

    if targeting.seasons and context.current_season not in targeting.seasons:
        return []

    if targeting.entity_type == EntityType.CROP_ENTRY:
        return [
            RuleMatch(rule, EntityType.CROP_ENTRY, crop.id, {"crop": crop}, crop.farm_id)
            for crop in context.crops
            if WILDCARD in targeting.crop_types or crop.crop_type in targeting.crop_types
        ]

    if targeting.entity_type == EntityType.LIVESTOCK_ENTRY:
        return [
            RuleMatch(
                rule, EntityType.LIVESTOCK_ENTRY, animal.id, {"livestock": animal}, animal.farm_id,
            )
            for animal in context.livestock
            if WILDCARD in targeting.livestock_types
            or animal.livestock_type in targeting.livestock_types
        ]

    return [RuleMatch(rule)]


def build_candidate(
    match: RuleMatch,
    context: EvaluationContext,
    now: datetime,
    max_reasons: int = 5,
) -> Optional[RecommendationCard]:
    """Evaluate one match; return its card, or ``None`` if the condition fails."""
    rule = match.rule
    scope = build_scope(context, match.bindings)

    if not evaluate(rule.condition, scope, now):
        return None

    confidence = compute_confidence(rule.confidence, context)
    weather_ref = (
        f"weather_{ensure_utc(context.weather.observed_at).date().isoformat()}"
        if context.weather is not None
        else None
    )

    return RecommendationCard(
        farm_id=match.farm_id or context.farm_id,
        category=rule.recommendation_category,
        priority=compute_priority(rule.priority, scope),
        title=render_template(rule.title_template, scope),
        description=render_template(rule.description_template, scope),
        action_steps=tuple(render_template(step, scope) for step in rule.action_steps),
        reason=build_reasons(rule, scope, now, max_reasons),
        impact=compute_impact(rule.impact),
        confidence=confidence,
        confidence_label=confidence_label(confidence),
        evidence=Evidence(
            rules_fired=(rule.code,),
            features=used_fields(rule.condition),
            weather_ref=weather_ref,
        ),
        model_version=rule.model_version,
        valid_from=now,
        valid_until=compute_valid_until(rule.validity.valid_days, now),
        entity_type=match.entity_type,
        entity_id=match.entity_id,
        explain_more_url=rule.explain_more_url,
    )


class RulesEngine:
    """Evaluates a catalog against contexts.

    Args:
        catalog: Immutable rule catalog, passed in explicitly.
        max_reasons: Cap on reason sentences per card.
    """

    def __init__(self, catalog: RuleCatalog, max_reasons: int = 5) -> None:
        self.catalog = catalog
        self.max_reasons = max_reasons
        self.last_failures: list[PartialEvaluationError] = []

    def evaluate(
        self,
        context: EvaluationContext,
        now: Optional[datetime] = None,
    ) -> list[RecommendationCard]:
        """Run one evaluation pass.

        Args:
            context: Facts for one user.
            now: The pass's single "now"; defaults to ``context.current_date``.

        Returns:
            Deduplicated, ranked candidates.  Deterministic for a fixed
            ``(context, catalog, now)``.
        """
        now = ensure_utc(now or context.current_date)
        failures: list[PartialEvaluationError] = []
        candidates: list[RecommendationCard] = []

        for rule in self.catalog.active_rules():
            try:
                matches = expand_matches(rule, context)
            except Exception as exc:
                failures.append(self._record_failure(rule, None, exc))
                continue

            for match in matches:
                try:
                    card = build_candidate(match, context, now, self.max_reasons)
                except Exception as exc:
                    failures.append(self._record_failure(rule, match.entity_id, exc))
                    continue
                if card is not None:
                    candidates.append(card)

        self.last_failures = failures

        deduped = dedupe_candidates(candidates)
        surviving = apply_supersession(deduped, self.catalog.supersedes_map())
        ranked = rank_candidates(surviving)

        logger.debug(
            "Evaluated %d rules for user=%s: %d candidates, %d after dedupe/supersession, %d failures",
            len(self.catalog.active_rules()), context.user_id,
            len(candidates), len(ranked), len(failures),
        )
        return ranked

    def _record_failure(
        self,
        rule: Rule,
        entity_id: Optional[str],
        exc: Exception,
    ) -> PartialEvaluationError:
        error = PartialEvaluationError(rule.code, entity_id, exc)
        logger.warning(
            "Skipping rule: %s", error,
            extra={"rule_code": rule.code, "entity_id": entity_id},
        )
        return error

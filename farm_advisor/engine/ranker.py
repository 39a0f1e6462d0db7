"""
Candidate ranker: dedupes, applies supersession and orders engine output.

Usage flow
----------
1. dedupe_candidates(cards)
   -> list[RecommendationCard]  (one per (category, entity_type, entity_id, rule code))

2. apply_supersession(cards, supersedes)
   -> list[RecommendationCard]  (superseded codes dropped per entity)

3. rank_candidates(cards)
   -> list[RecommendationCard]  (priority, confidence desc, rule code, entity id;
                                 precedence plays no part)

Two *different* rule codes firing for the same entity are both kept unless one
declares that it supersedes the other.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from typing import TypeVar

from farm_advisor.models.recommendation import RecommendationCard

CardT = TypeVar("CardT", bound=RecommendationCard)


def dedupe_candidates(cards: Iterable[CardT]) -> list[CardT]:
    """Keep the first candidate for each dedup key, preserving input order.

    Input order is catalog precedence order, so the earliest candidate is the
    one produced by the highest-precedence rule version.
    """
    seen: set[tuple[str, str, str, str]] = set()
    kept: list[CardT] = []
    for card in cards:
        key = card.dedup_key
        if key in seen:
            continue
        seen.add(key)
        kept.append(card)
    return kept


def apply_supersession(
    cards: Iterable[CardT],
    supersedes: Mapping[str, Iterable[str]],
) -> list[CardT]:
    """Drop candidates whose rule code is superseded by a rule that also fired
    for the same (category, entity_type, entity_id).

    Args:
        cards: Deduplicated candidates.
        supersedes: Rule code → codes it supersedes.

    Returns:
        Surviving candidates, input order preserved.
    """
    cards = list(cards)
    fired: dict[tuple[str, str, str], set[str]] = defaultdict(set)
    for card in cards:
        fired[_entity_key(card)].add(card.rule_code)

    superseded: dict[tuple[str, str, str], set[str]] = defaultdict(set)
    for entity, codes in fired.items():
        for code in codes:
            superseded[entity].update(supersedes.get(code, ()))

    return [c for c in cards if c.rule_code not in superseded[_entity_key(c)]]


def rank_candidates(cards: Iterable[CardT]) -> list[CardT]:
    """Sort by priority (URGENT first), confidence descending, rule code,
    then entity id.  Total and stable for any input."""
    return sorted(
        cards,
        key=lambda c: (c.priority.rank, -c.confidence, c.rule_code, c.entity_id or ""),
    )


def _entity_key(card: RecommendationCard) -> tuple[str, str, str]:
    return (str(card.category), str(card.entity_type), card.entity_id or "")

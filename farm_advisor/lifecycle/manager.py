"""
Recommendation lifecycle manager: cache-vs-regenerate, persistence, expiry and
feedback-driven transitions for one user's recommendation set.

State machine (per row)
-----------------------
    ACTIVE ──(new generation / valid_until passed)──▶ EXPIRED
    ACTIVE | EXPIRED ──(COMPLETED feedback)──────────▶ COMPLETED   (terminal)
    ACTIVE | EXPIRED ──(DISMISSED / NOT_HELPFUL)─────▶ DISMISSED   (terminal)

Read path (``get_or_refresh``)
------------------------------
1. Lazily expire ACTIVE rows whose ``valid_until`` has passed.
2. If the filtered ACTIVE set is non-empty and any row is fresh under the
   ``FreshnessPolicy``, return it (``source="cache"``).
3. Otherwise build a context, run the engine and persist.  The prior set is
   expired only when the pass produced candidates.

Forced refresh (``refresh``)
----------------------------
Always evaluates and always expires the prior ACTIVE set, even when the pass
produced no candidates.

Persistence discipline
----------------------
Expire-then-insert runs inside one SAVEPOINT together with a compare-and-swap
on ``recommendation_generations``.  Either every prior ACTIVE row is EXPIRED
and every new row is ACTIVE, or nothing changed.  A lost CAS or a locked
database raises ``LifecycleConflictError``; the write is retried once with a
fresh generation read, then the error propagates.
"""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.config import EngineConfig
from farm_advisor.context.builder import ContextBuilder
from farm_advisor.db.connection import atomic
from farm_advisor.db.repositories.recommendation_repo import RecommendationRepository
from farm_advisor.engine.rules_engine import RulesEngine
from farm_advisor.errors import LifecycleConflictError, NotFoundError
from farm_advisor.lifecycle.freshness import FreshnessPolicy
from farm_advisor.models.context import EvaluationContext
from farm_advisor.models.recommendation import (
    ContextSummary,
    Feedback,
    FeedbackHistoryEntry,
    Recommendation,
    RecommendationCard,
    RecommendationDetail,
    RecommendationPage,
    RefreshResult,
)
from farm_advisor.models.requests import FeedbackRequest, ListRequest
from farm_advisor.taxonomy.dse_taxonomy import FeedbackType, RecommendationStatus
from farm_advisor.utils.time_utils import ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Feedback types that move a recommendation to a terminal state.
FEEDBACK_TRANSITIONS: dict[FeedbackType, RecommendationStatus] = {
    FeedbackType.COMPLETED: RecommendationStatus.COMPLETED,
    FeedbackType.DISMISSED: RecommendationStatus.DISMISSED,
    FeedbackType.NOT_HELPFUL: RecommendationStatus.DISMISSED,
}

MAX_WRITE_ATTEMPTS = 2


def _new_recommendation_id() -> str:
    return uuid.uuid4().hex


class LifecycleManager:
    """Owns every write to a user's recommendation set.

    Args:
        conn: Open SQLite connection (request-scoped).
        catalog: Immutable rule catalog.
        context_builder: Builds the evaluation context.
        config: Engine / lifecycle parameters.
        freshness: Cache policy; defaults to ``config.freshness_window_minutes``.
        clock: Source of "now"; injectable for tests.
        id_factory: Source of recommendation ids.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        catalog: RuleCatalog,
        context_builder: ContextBuilder,
        config: Optional[EngineConfig] = None,
        freshness: Optional[FreshnessPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = _new_recommendation_id,
    ) -> None:
        self.conn = conn
        self.config = config or EngineConfig()
        self.catalog = catalog
        self.context_builder = context_builder
        self.engine = RulesEngine(catalog, max_reasons=self.config.max_reasons)
        self.freshness = freshness or FreshnessPolicy.from_minutes(
            self.config.freshness_window_minutes
        )
        self.repo = RecommendationRepository(conn)
        self.clock = clock
        self.id_factory = id_factory

    # ── Read path ─────────────────────────────────────────────────────────────

    def get_or_refresh(
        self,
        user_id: str,
        request: Optional[ListRequest] = None,
    ) -> RecommendationPage:
        """Return the user's recommendations, regenerating when stale.

        Args:
            user_id: Caller identity.
            request: Filters; defaults to no filters.

        Raises:
            NotFoundError: Unknown user or foreign farm (generation only).
            LifecycleConflictError: Lost the refresh race twice.
        """
        request = request or ListRequest()
        now = ensure_utc(self.clock())

        if not request.include_expired:
            with atomic(self.conn, "expire_lapsed"):
                lapsed = self.repo.expire_lapsed(user_id, now)
            self.conn.commit()
            if lapsed:
                logger.debug("Lazily expired %d lapsed recommendation(s) for user=%s", lapsed, user_id)

        # Freshness is judged on every matching row; only the page is limited.
        cached = self._list(user_id, request, now, limit=None)
        active = [r for r in cached if r.status == RecommendationStatus.ACTIVE]
        if active and self.freshness.any_fresh(now, (r.created_at for r in active)):
            return RecommendationPage(
                recommendations=tuple(cached[: self.config.list_limit]),
                source="cache",
                generated_at=max(r.created_at for r in active),
            )

        context, cards = self._evaluate(user_id, request.farm_id, now)
        if cards:
            result = self._persist(user_id, cards, now, expire_when_empty=False)
            logger.info(
                "Generated %d recommendation(s) for user=%s (generation %d, %d expired)",
                result.count, user_id, result.generation, result.expired,
            )

        return RecommendationPage(
            recommendations=tuple(self._list(user_id, request, now, self.config.list_limit)),
            source="generated",
            generated_at=now,
            rules_evaluated=len(self.catalog.active_rules()),
            context=ContextSummary(
                crops_count=len(context.crops),
                livestock_count=len(context.livestock),
                season=context.current_season,
                unavailable_sources=context.unavailable_sources,
            ),
            failed_rules=self._failed_rule_codes(),
        )

    # ── Forced refresh ────────────────────────────────────────────────────────

    def refresh(self, user_id: str, farm_id: Optional[str] = None) -> RefreshResult:
        """Re-evaluate unconditionally and replace the ACTIVE set.

        Raises:
            NotFoundError: Unknown user or foreign farm.
            LifecycleConflictError: Lost the refresh race twice.
        """
        now = ensure_utc(self.clock())
        _, cards = self._evaluate(user_id, farm_id, now)
        result = self._persist(user_id, cards, now, expire_when_empty=True)
        logger.info(
            "Refreshed recommendations for user=%s: %d inserted, %d expired (generation %d)",
            user_id, result.count, result.expired, result.generation,
        )
        return result

    # ── Feedback ──────────────────────────────────────────────────────────────

    def apply_feedback(self, user_id: str, request: FeedbackRequest) -> Feedback:
        """Record feedback and apply any status transition it implies.

        The feedback row is always appended.  A terminal recommendation is
        never re-opened or re-stamped; the guarded update simply matches no row.

        Raises:
            NotFoundError: Recommendation absent or owned by another user.
        """
        now = ensure_utc(self.clock())
        if self.repo.get(request.recommendation_id, user_id) is None:
            raise NotFoundError("Recommendation")

        target = FEEDBACK_TRANSITIONS.get(request.feedback_type)
        with atomic(self.conn, "apply_feedback"):
            feedback = self.repo.insert_feedback(Feedback(
                recommendation_id=request.recommendation_id,
                user_id=user_id,
                feedback_type=request.feedback_type,
                rating=request.rating,
                comment=request.comment,
                action_taken=request.action_taken,
                outcome_notes=request.outcome_notes,
                created_at=now,
            ))
            moved = (
                self.repo.transition_status(request.recommendation_id, user_id, target, now)
                if target is not None
                else False
            )
        self.conn.commit()

        logger.info(
            "Recorded %s feedback on recommendation=%s%s",
            request.feedback_type, request.recommendation_id,
            f" → {target}" if moved else "",
        )
        return feedback

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get_detail(self, user_id: str, recommendation_id: str) -> RecommendationDetail:
        """One recommendation plus its feedback.

        Raises:
            NotFoundError: Recommendation absent or owned by another user.
        """
        rec = self.repo.get(recommendation_id, user_id)
        if rec is None:
            raise NotFoundError("Recommendation")
        return RecommendationDetail(
            recommendation=rec,
            feedback=tuple(self.repo.get_feedback_for(recommendation_id)),
        )

    def feedback_history(
        self,
        user_id: str,
        recommendation_id: Optional[str] = None,
    ) -> list[FeedbackHistoryEntry]:
        return self.repo.get_feedback_history(
            user_id, recommendation_id, limit=self.config.feedback_history_limit,
        )

    # ── Internals ─────────────────────────────────────────────────────────────

    def _list(
        self,
        user_id: str,
        request: ListRequest,
        now: datetime,
        limit: Optional[int],
    ) -> list[Recommendation]:
        return self.repo.list_for_user(
            user_id,
            now,
            farm_id=request.farm_id,
            category=request.category,
            priority=request.priority,
            include_expired=request.include_expired,
            limit=limit,
        )

    def _evaluate(
        self,
        user_id: str,
        farm_id: Optional[str],
        now: datetime,
    ) -> tuple[EvaluationContext, list[RecommendationCard]]:
        context = self.context_builder.build(user_id, farm_id, now)
        return context, self.engine.evaluate(context, now)

    def _persist(
        self,
        user_id: str,
        cards: list[RecommendationCard],
        now: datetime,
        expire_when_empty: bool,
    ) -> RefreshResult:
        attempt = 1
        while True:
            try:
                return self._write_generation(user_id, cards, now, expire_when_empty)
            except LifecycleConflictError as exc:
                if attempt >= MAX_WRITE_ATTEMPTS:
                    raise
                attempt += 1
                logger.warning("Retrying refresh after conflict: %s", exc)

    def _write_generation(
        self,
        user_id: str,
        cards: list[RecommendationCard],
        now: datetime,
        expire_when_empty: bool,
    ) -> RefreshResult:
        expected = self.repo.get_generation(user_id)
        generation = expected + 1
        try:
            with atomic(self.conn, "refresh_recommendations"):
                if not self.repo.bump_generation(user_id, expected, now):
                    raise LifecycleConflictError(user_id, f"generation moved past {expected}")
                expired = (
                    self.repo.expire_active(user_id)
                    if cards or expire_when_empty
                    else 0
                )
                count = self.repo.insert_many([
                    Recommendation.from_card(
                        card,
                        id=self.id_factory(),
                        user_id=user_id,
                        generation=generation,
                        created_at=now,
                    )
                    for card in cards
                ])
            self.conn.commit()
        except sqlite3.OperationalError as exc:
            if not _is_lock_error(exc):
                raise
            raise LifecycleConflictError(user_id, str(exc)) from exc

        return RefreshResult(
            count=count,
            expired=expired,
            generation=generation,
            generated_at=now,
            failed_rules=self._failed_rule_codes(),
        )

    def _failed_rule_codes(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(f.rule_code for f in self.engine.last_failures))


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message

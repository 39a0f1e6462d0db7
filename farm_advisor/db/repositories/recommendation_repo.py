"""
Repository for persisted recommendations, their feedback and the per-user
generation marker.

Lifecycle writes
----------------
``expire_active()``          ACTIVE → EXPIRED for every row of one user.
``expire_lapsed()``          ACTIVE → EXPIRED for rows whose ``valid_until``
                             has passed (lazy expiry on read).
``transition_status()``      ACTIVE/EXPIRED → COMPLETED/DISMISSED.  Terminal
                             rows never match the WHERE clause, so a terminal
                             recommendation can never be re-opened.
``bump_generation()``        compare-and-swap on ``recommendation_generations``.

None of these commit; the lifecycle manager wraps them in ``atomic()``.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from farm_advisor.db.repositories.base import BaseRepository, from_json, to_json
from farm_advisor.models.recommendation import (
    Evidence,
    Feedback,
    FeedbackHistoryEntry,
    Impact,
    Recommendation,
)
from farm_advisor.taxonomy.dse_taxonomy import (
    Priority,
    RecommendationCategory,
    RecommendationStatus,
)
from farm_advisor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

# Same ordering as engine.ranker.rank_candidates.
_RANK_ORDER = "priority_rank ASC, confidence DESC, rule_code ASC, COALESCE(entity_id, '') ASC"

_OPEN_STATUSES = (RecommendationStatus.ACTIVE.value, RecommendationStatus.EXPIRED.value)


class RecommendationRepository(BaseRepository):
    """Read/write access to ``recommendations``, ``recommendation_feedback``
    and ``recommendation_generations``."""

    # ── Recommendations ───────────────────────────────────────────────────────

    def insert(self, rec: Recommendation) -> None:
        """Persist one recommendation row."""
        self.execute(
            """
            INSERT INTO recommendations (
                recommendation_id, user_id, farm_id, category, priority, priority_rank,
                title, description, action_steps, reason, impact_type, impact_value,
                confidence, confidence_label, evidence, rule_code, model_version,
                valid_from, valid_until, entity_type, entity_id, explain_more_url,
                status, generation, created_at, completed_at, dismissed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                rec.id,
                rec.user_id,
                rec.farm_id,
                rec.category.value,
                rec.priority.value,
                rec.priority.rank,
                rec.title,
                rec.description,
                to_json(list(rec.action_steps)),
                to_json(list(rec.reason)),
                rec.impact.type if rec.impact else None,
                rec.impact.value if rec.impact else None,
                rec.confidence,
                rec.confidence_label.value,
                to_json(rec.evidence.model_dump(mode="json")),
                rec.rule_code,
                rec.model_version,
                to_db_timestamp(rec.valid_from),
                to_db_timestamp(rec.valid_until),
                rec.entity_type.value,
                rec.entity_id,
                rec.explain_more_url,
                rec.status.value,
                rec.generation,
                to_db_timestamp(rec.created_at),
                to_db_timestamp(rec.completed_at),
                to_db_timestamp(rec.dismissed_at),
            ),
        )

    def insert_many(self, recs: list[Recommendation]) -> int:
        for rec in recs:
            self.insert(rec)
        return len(recs)

    def get(self, recommendation_id: str, user_id: str) -> Optional[Recommendation]:
        """Fetch a recommendation only if it belongs to ``user_id``."""
        row = self.fetchone(
            "SELECT * FROM recommendations WHERE recommendation_id = ? AND user_id = ?;",
            (recommendation_id, user_id),
        )
        return _row_to_recommendation(row) if row else None

    def list_for_user(
        self,
        user_id: str,
        now: datetime,
        farm_id: Optional[str] = None,
        category: Optional[RecommendationCategory] = None,
        priority: Optional[Priority] = None,
        include_expired: bool = False,
        limit: Optional[int] = 50,
    ) -> list[Recommendation]:
        """Filtered, ranked read of a user's recommendations.

        Args:
            user_id: Owner.
            now: Reference time for ``valid_until`` filtering.
            farm_id: Only rows scoped to this farm.
            category: Only rows of this category.
            priority: Only rows of this priority.
            include_expired: When ``False`` only ACTIVE rows still inside their
                validity window are returned.  When ``True`` EXPIRED rows are
                included too (ACTIVE rows first).
            limit: Maximum rows; ``None`` returns every matching row.

        Returns:
            Recommendations in engine ranking order.
        """
        clauses = ["user_id = ?"]
        params: list = [user_id]

        if include_expired:
            clauses.append("status IN (?, ?)")
            params.extend(_OPEN_STATUSES)
        else:
            clauses.append("status = ?")
            params.append(RecommendationStatus.ACTIVE.value)
            clauses.append("(valid_until IS NULL OR valid_until >= ?)")
            params.append(to_db_timestamp(now))

        if farm_id is not None:
            clauses.append("farm_id = ?")
            params.append(farm_id)
        if category is not None:
            clauses.append("category = ?")
            params.append(category.value)
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)

        limit_clause = ""
        if limit is not None:
            limit_clause = "LIMIT ?"
            params.append(limit)
        rows = self.fetchall(
            f"""
            SELECT * FROM recommendations
            WHERE {" AND ".join(clauses)}
            ORDER BY (status = 'ACTIVE') DESC, {_RANK_ORDER}
            {limit_clause};
            """,
            tuple(params),
        )
        return [_row_to_recommendation(r) for r in rows]

    def expire_active(self, user_id: str) -> int:
        """Mark every ACTIVE row of ``user_id`` EXPIRED; return the row count."""
        cursor = self.execute(
            "UPDATE recommendations SET status = 'EXPIRED' WHERE user_id = ? AND status = 'ACTIVE';",
            (user_id,),
        )
        return cursor.rowcount

    def expire_lapsed(self, user_id: str, now: datetime) -> int:
        """Mark ACTIVE rows whose ``valid_until`` is before ``now`` EXPIRED."""
        cursor = self.execute(
            """
            UPDATE recommendations SET status = 'EXPIRED'
            WHERE user_id = ? AND status = 'ACTIVE'
              AND valid_until IS NOT NULL AND valid_until < ?;
            """,
            (user_id, to_db_timestamp(now)),
        )
        return cursor.rowcount

    def transition_status(
        self,
        recommendation_id: str,
        user_id: str,
        status: RecommendationStatus,
        at: datetime,
    ) -> bool:
        """Move an ACTIVE/EXPIRED row to COMPLETED or DISMISSED.

        Returns:
            ``True`` if a row moved; ``False`` if it was already terminal.

        Raises:
            ValueError: If ``status`` is not terminal.
        """
        if status == RecommendationStatus.COMPLETED:
            stamp_column = "completed_at"
        elif status == RecommendationStatus.DISMISSED:
            stamp_column = "dismissed_at"
        else:
            raise ValueError(f"Cannot transition to non-terminal status {status}.")

        cursor = self.execute(
            f"""
            UPDATE recommendations SET status = ?, {stamp_column} = ?
            WHERE recommendation_id = ? AND user_id = ? AND status IN (?, ?);
            """,
            (status.value, to_db_timestamp(at), recommendation_id, user_id, *_OPEN_STATUSES),
        )
        return cursor.rowcount == 1

    def count_by_status(self, user_id: str) -> dict[str, int]:
        rows = self.fetchall(
            """
            SELECT status, COUNT(*) AS n FROM recommendations
            WHERE user_id = ?
            GROUP BY status;
            """,
            (user_id,),
        )
        return {r["status"]: int(r["n"]) for r in rows}

    # ── Generation marker ─────────────────────────────────────────────────────

    def get_generation(self, user_id: str) -> int:
        """Current generation for ``user_id``; 0 if never refreshed."""
        return int(self.scalar(
            "SELECT generation FROM recommendation_generations WHERE user_id = ?;",
            (user_id,),
            default=0,
        ))

    def bump_generation(self, user_id: str, expected: int, at: datetime) -> bool:
        """Compare-and-swap the generation from ``expected`` to ``expected + 1``.

        Returns:
            ``True`` if this caller won; ``False`` if another writer moved the
            marker first.
        """
        stamp = to_db_timestamp(at)
        if expected == 0:
            cursor = self.execute(
                """
                INSERT OR IGNORE INTO recommendation_generations (user_id, generation, updated_at)
                VALUES (?, 1, ?);
                """,
                (user_id, stamp),
            )
            if cursor.rowcount == 1:
                return True

        cursor = self.execute(
            """
            UPDATE recommendation_generations
            SET generation = generation + 1, updated_at = ?
            WHERE user_id = ? AND generation = ?;
            """,
            (stamp, user_id, expected),
        )
        return cursor.rowcount == 1

    # ── Feedback ──────────────────────────────────────────────────────────────

    def insert_feedback(self, feedback: Feedback) -> Feedback:
        """Append a feedback row; return it with ``feedback_id`` assigned."""
        cursor = self.execute(
            """
            INSERT INTO recommendation_feedback (
                recommendation_id, user_id, feedback_type, rating, comment,
                action_taken, outcome_notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                feedback.recommendation_id,
                feedback.user_id,
                feedback.feedback_type.value,
                feedback.rating,
                feedback.comment,
                None if feedback.action_taken is None else int(feedback.action_taken),
                feedback.outcome_notes,
                to_db_timestamp(feedback.created_at),
            ),
        )
        return feedback.model_copy(update={"feedback_id": int(cursor.lastrowid)})

    def get_feedback_for(self, recommendation_id: str) -> list[Feedback]:
        """All feedback rows for one recommendation, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM recommendation_feedback
            WHERE recommendation_id = ?
            ORDER BY created_at ASC, feedback_id ASC;
            """,
            (recommendation_id,),
        )
        return [Feedback(**_feedback_fields(r)) for r in rows]

    def get_feedback_history(
        self,
        user_id: str,
        recommendation_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[FeedbackHistoryEntry]:
        """A user's feedback, newest first, joined with recommendation headlines."""
        sql = """
            SELECT f.*, r.title AS recommendation_title, r.category AS recommendation_category
            FROM recommendation_feedback f
            JOIN recommendations r ON r.recommendation_id = f.recommendation_id
            WHERE f.user_id = ?
        """
        params: list = [user_id]
        if recommendation_id is not None:
            sql += " AND f.recommendation_id = ?"
            params.append(recommendation_id)
        sql += " ORDER BY f.created_at DESC, f.feedback_id DESC LIMIT ?;"
        params.append(limit)

        return [
            FeedbackHistoryEntry(
                **_feedback_fields(r),
                recommendation_title=r["recommendation_title"],
                recommendation_category=r["recommendation_category"],
            )
            for r in self.fetchall(sql, tuple(params))
        ]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_recommendation(row: sqlite3.Row) -> Recommendation:
    impact = (
        Impact(type=row["impact_type"], value=row["impact_value"] or 0.0)
        if row["impact_type"]
        else None
    )
    return Recommendation(
        id=row["recommendation_id"],
        user_id=row["user_id"],
        farm_id=row["farm_id"],
        category=row["category"],
        priority=row["priority"],
        title=row["title"],
        description=row["description"],
        action_steps=tuple(from_json(row["action_steps"], [])),
        reason=tuple(from_json(row["reason"], [])),
        impact=impact,
        confidence=row["confidence"],
        confidence_label=row["confidence_label"],
        evidence=Evidence(**from_json(row["evidence"], {})),
        model_version=row["model_version"],
        valid_from=from_db_timestamp(row["valid_from"]),
        valid_until=from_db_timestamp(row["valid_until"]),
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        explain_more_url=row["explain_more_url"],
        status=row["status"],
        generation=row["generation"],
        created_at=from_db_timestamp(row["created_at"]),
        completed_at=from_db_timestamp(row["completed_at"]),
        dismissed_at=from_db_timestamp(row["dismissed_at"]),
    )


def _feedback_fields(row: sqlite3.Row) -> dict:
    return {
        "feedback_id": row["feedback_id"],
        "recommendation_id": row["recommendation_id"],
        "user_id": row["user_id"],
        "feedback_type": row["feedback_type"],
        "rating": row["rating"],
        "comment": row["comment"],
        "action_taken": None if row["action_taken"] is None else bool(row["action_taken"]),
        "outcome_notes": row["outcome_notes"],
        "created_at": from_db_timestamp(row["created_at"]),
    }

"""
Tests for service.py — the facade's input validation and error boundary.

What we test
------------
- A missing user id is rejected as ``unauthenticated`` before any work.
- Malformed params become ``validation_error`` with per-field detail.
- NotFoundError → ``not_found``; LifecycleConflictError → ``conflict``.
- Any other exception → ``internal_error`` with a generic message.
- Happy paths: list, refresh, feedback, explain, get and feedback history.
- Enum params are accepted in any case.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.errors import LifecycleConflictError
from farm_advisor.models.rule import Rule
from farm_advisor.service import DecisionSupportService
from farm_advisor.taxonomy.dse_taxonomy import FeedbackType, RecommendationStatus

NOW = datetime(2026, 4, 15, 8, 0, tzinfo=timezone.utc)


def _catalog() -> RuleCatalog:
    return RuleCatalog([
        Rule.model_validate({
            "code": "FARM_CHECKIN",
            "name": "Farm Check-in",
            "category": "GENERAL",
            "recommendation_category": "GENERAL",
            "condition": {"field": "farm.id", "operator": "EXISTS"},
            "title_template": "Walk {{farm.name}}",
            "action_steps": ["Inspect every plot"],
            "priority": {"base": "LOW"},
            "confidence": {"base": 0.6},
            "explain_more_url": "/knowledge/general/checkin",
        }),
    ])


@pytest.fixture
def service(seeded_db) -> DecisionSupportService:
    return DecisionSupportService(seeded_db, _catalog(), clock=lambda: NOW)


def _first_id(service: DecisionSupportService) -> str:
    result = service.list("user-1")
    assert result.ok
    return result.data.recommendations[0].id


class TestAuthentication:
    @pytest.mark.parametrize("user_id", [None, ""])
    def test_missing_user(self, service, user_id):
        result = service.list(user_id)
        assert not result.ok
        assert result.error.code == "unauthenticated"
        assert service.lifecycle.repo.count_by_status("user-1") == {}

    def test_every_operation_checks(self, service):
        results = [
            service.refresh(None),
            service.explain(None, {"recommendation_id": "x"}),
            service.feedback(None, {"recommendation_id": "x", "feedback_type": "HELPFUL"}),
            service.get(None, "x"),
            service.feedback_history(None),
        ]
        assert {r.error.code for r in results} == {"unauthenticated"}


class TestValidation:
    def test_unknown_category(self, service):
        result = service.list("user-1", {"category": "SPACE"})
        assert result.error.code == "validation_error"
        assert "category" in result.error.fields

    def test_unknown_param(self, service):
        result = service.list("user-1", {"colour": "green"})
        assert result.error.code == "validation_error"
        assert "colour" in result.error.fields

    def test_rating_out_of_range(self, service):
        rec_id = _first_id(service)
        result = service.feedback(
            "user-1", {"recommendation_id": rec_id, "feedback_type": "HELPFUL", "rating": 9},
        )
        assert result.error.code == "validation_error"
        assert "rating" in result.error.fields
        assert service.lifecycle.repo.get_feedback_for(rec_id) == []

    def test_blank_recommendation_id(self, service):
        result = service.explain("user-1", {"recommendation_id": "   "})
        assert result.error.code == "validation_error"
        assert "recommendation_id" in result.error.fields

    def test_missing_feedback_type(self, service):
        result = service.feedback("user-1", {"recommendation_id": "x"})
        assert "feedback_type" in result.error.fields


class TestErrorMapping:
    def test_not_found(self, service):
        result = service.explain("user-1", {"recommendation_id": "missing"})
        assert result.error.code == "not_found"
        assert result.error.message == "Recommendation not found."

    def test_unknown_user_is_not_found(self, service):
        assert service.list("nobody").error.code == "not_found"

    def test_conflict(self, service, monkeypatch):
        def lose_race(user_id, farm_id=None):
            raise LifecycleConflictError(user_id)

        monkeypatch.setattr(service.lifecycle, "refresh", lose_race)
        result = service.refresh("user-1")
        assert result.error.code == "conflict"

    def test_unexpected_error(self, service, monkeypatch):
        def crash(user_id, request=None):
            raise RuntimeError("secret stack detail")

        monkeypatch.setattr(service.lifecycle, "get_or_refresh", crash)
        result = service.list("user-1")
        assert result.error.code == "internal_error"
        assert result.error.message == "An unexpected error occurred."
        assert result.data is None


class TestHappyPaths:
    def test_list_then_cache(self, service):
        first = service.list("user-1")
        second = service.list("user-1", {"category": "general"})

        assert first.ok and first.data.source == "generated"
        assert second.data.source == "cache"
        assert [r.title for r in second.data.recommendations] == ["Walk Ama's Farm"]

    def test_refresh(self, service):
        service.list("user-1")
        result = service.refresh("user-1", {"farm_id": "farm-1"})
        assert result.ok
        assert (result.data.count, result.data.expired, result.data.generation) == (1, 1, 2)

    def test_feedback_and_get(self, service):
        rec_id = _first_id(service)
        result = service.feedback(
            "user-1", {"recommendation_id": rec_id, "feedback_type": "completed", "rating": 4},
        )
        assert result.ok
        assert result.data.feedback_type == FeedbackType.COMPLETED

        detail = service.get("user-1", rec_id).data
        assert detail.recommendation.status == RecommendationStatus.COMPLETED
        assert len(detail.feedback) == 1

    def test_explain(self, service):
        rec_id = _first_id(service)
        explanation = service.explain("user-1", {"recommendation_id": rec_id}).data
        assert explanation.rule_available
        assert explanation.learn_more.url == "/knowledge/general/checkin"

    def test_feedback_history(self, service):
        rec_id = _first_id(service)
        service.feedback("user-1", {"recommendation_id": rec_id, "feedback_type": "HELPFUL"})
        result = service.feedback_history("user-1", {"recommendation_id": rec_id})
        assert [h.recommendation_title for h in result.data] == ["Walk Ama's Farm"]

"""
Tests for models/recommendation.py and models/requests.py.

What we test
------------
RecommendationCard:
  - confidence outside [0, 1] is rejected.
  - valid_until before valid_from is rejected.
  - evidence.rules_fired and reason must be non-empty.
  - rule_code / dedup_key derive from the firing rule.
Recommendation.from_card():
  - copies every card field and adds lifecycle fields (ACTIVE by default).
Feedback:
  - rating outside 1-5 is rejected.
Request models:
  - enum inputs are case-normalized; blank farm ids become None.
  - unknown keys are rejected (extra="forbid").
  - blank recommendation ids are rejected.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from pydantic import ValidationError

from farm_advisor.models.recommendation import (
    Evidence,
    Feedback,
    Recommendation,
    RecommendationCard,
)
from farm_advisor.models.requests import (
    ExplainRequest,
    FeedbackHistoryRequest,
    FeedbackRequest,
    ListRequest,
    RefreshRequest,
)
from farm_advisor.taxonomy.dse_taxonomy import (
    ConfidenceLabel,
    EntityType,
    FeedbackType,
    Priority,
    RecommendationCategory,
    RecommendationStatus,
)

_NOW = datetime(2026, 4, 15, 8, 0, tzinfo=timezone.utc)


def _card(**overrides: Any) -> RecommendationCard:
    data: dict[str, Any] = {
        "farm_id": "farm-1",
        "category": RecommendationCategory.CROP,
        "priority": Priority.HIGH,
        "title": "Top Dress Maize",
        "reason": ("days since planting is 20 days (threshold: 18)",),
        "confidence": 0.85,
        "confidence_label": ConfidenceLabel.HIGH,
        "evidence": Evidence(rules_fired=("MAIZE_TOPDRESS_WINDOW",), features=("crop.days_since_planting",)),
        "model_version": "rules_v1",
        "valid_from": _NOW,
        "valid_until": _NOW + timedelta(days=10),
        "entity_type": EntityType.CROP_ENTRY,
        "entity_id": "crop-1",
    }
    data.update(overrides)
    return RecommendationCard(**data)


class TestRecommendationCard:
    @pytest.mark.parametrize("confidence", [-0.01, 1.2])
    def test_confidence_bounds(self, confidence):
        with pytest.raises(ValidationError):
            _card(confidence=confidence)

    @pytest.mark.parametrize("confidence", [0.0, 1.0])
    def test_confidence_edges_allowed(self, confidence):
        assert _card(confidence=confidence).confidence == confidence

    def test_window_order(self):
        with pytest.raises(ValidationError):
            _card(valid_until=_NOW - timedelta(seconds=1))

    def test_open_ended_validity(self):
        assert _card(valid_until=None).valid_until is None

    def test_evidence_must_name_a_rule(self):
        with pytest.raises(ValidationError):
            Evidence(rules_fired=())

    def test_reason_must_be_non_empty(self):
        with pytest.raises(ValidationError):
            _card(reason=())

    def test_rule_code_and_dedup_key(self):
        card = _card()
        assert card.rule_code == "MAIZE_TOPDRESS_WINDOW"
        assert card.dedup_key == ("CROP", "CROP_ENTRY", "crop-1", "MAIZE_TOPDRESS_WINDOW")

    def test_farm_level_dedup_key(self):
        card = _card(entity_type=EntityType.FARM, entity_id=None)
        assert card.dedup_key[2] == ""


class TestRecommendation:
    def test_from_card(self):
        card = _card()
        rec = Recommendation.from_card(
            card, id="rec-1", user_id="user-1", generation=4, created_at=_NOW,
        )
        assert rec.status == RecommendationStatus.ACTIVE
        assert rec.generation == 4
        assert rec.title == card.title
        assert rec.evidence == card.evidence
        assert rec.completed_at is None and rec.dismissed_at is None

    def test_frozen(self):
        rec = Recommendation.from_card(
            _card(), id="rec-1", user_id="user-1", generation=1, created_at=_NOW,
        )
        with pytest.raises(ValidationError):
            rec.status = RecommendationStatus.DISMISSED


class TestFeedback:
    def test_rating_bounds(self):
        with pytest.raises(ValidationError):
            Feedback(
                recommendation_id="rec-1",
                user_id="user-1",
                feedback_type=FeedbackType.HELPFUL,
                rating=6,
                created_at=_NOW,
            )


# ── Request models ────────────────────────────────────────────────────────────

class TestListRequest:
    def test_defaults(self):
        request = ListRequest()
        assert request.category is None
        assert request.include_expired is False

    def test_case_insensitive_enums(self):
        request = ListRequest.model_validate({"category": "crop", "priority": " urgent "})
        assert request.category == RecommendationCategory.CROP
        assert request.priority == Priority.URGENT

    def test_blank_values_become_none(self):
        request = ListRequest.model_validate({"farm_id": "  ", "category": ""})
        assert request.farm_id is None
        assert request.category is None

    def test_unknown_category(self):
        with pytest.raises(ValidationError):
            ListRequest.model_validate({"category": "FORESTRY"})

    def test_extra_keys_rejected(self):
        with pytest.raises(ValidationError):
            ListRequest.model_validate({"farmId": "farm-1"})


def test_refresh_request_blank_farm():
    assert RefreshRequest.model_validate({"farm_id": ""}).farm_id is None


def test_explain_request_requires_id():
    with pytest.raises(ValidationError):
        ExplainRequest.model_validate({"recommendation_id": "   "})


def test_feedback_history_request_optional_id():
    assert FeedbackHistoryRequest.model_validate({}).recommendation_id is None


class TestFeedbackRequest:
    def test_normalizes_type(self):
        request = FeedbackRequest.model_validate(
            {"recommendation_id": " rec-1 ", "feedback_type": "not_helpful", "rating": 2},
        )
        assert request.feedback_type == FeedbackType.NOT_HELPFUL
        assert request.recommendation_id == "rec-1"

    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_out_of_range(self, rating):
        with pytest.raises(ValidationError):
            FeedbackRequest.model_validate(
                {"recommendation_id": "rec-1", "feedback_type": "HELPFUL", "rating": rating},
            )

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            FeedbackRequest.model_validate({"recommendation_id": "rec-1", "feedback_type": "LIKE"})

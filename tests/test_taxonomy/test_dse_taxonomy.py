"""
Tests for taxonomy/dse_taxonomy.py and the season helpers in utils/time_utils.py.

What we test
------------
- Priority.rank is ordinal with URGENT first, independent of string order.
- Only COMPLETED and DISMISSED are terminal statuses.
- Enum values are the uppercase strings stored in SQLite.
- current_season() follows the Ghana agricultural calendar.
- whole_days_between() floors toward negative infinity.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from farm_advisor.taxonomy.dse_taxonomy import (
    FeedbackType,
    Operator,
    Priority,
    RecommendationStatus,
    Season,
)
from farm_advisor.utils.time_utils import current_season, whole_days_between


class TestPriority:
    def test_rank_order(self):
        ordered = sorted(Priority, key=lambda p: p.rank)
        assert ordered == [Priority.URGENT, Priority.HIGH, Priority.MEDIUM, Priority.LOW]

    def test_rank_differs_from_alphabetical(self):
        assert sorted(p.value for p in Priority)[0] == "HIGH"
        assert Priority.URGENT.rank == 0

    def test_values_are_uppercase(self):
        assert Priority("URGENT") is Priority.URGENT
        with pytest.raises(ValueError):
            Priority("urgent")


class TestRecommendationStatus:
    @pytest.mark.parametrize(
        "status, terminal",
        [
            (RecommendationStatus.ACTIVE, False),
            (RecommendationStatus.EXPIRED, False),
            (RecommendationStatus.COMPLETED, True),
            (RecommendationStatus.DISMISSED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert status.is_terminal is terminal


def test_feedback_types_closed_set():
    assert {f.value for f in FeedbackType} == {
        "HELPFUL", "NOT_HELPFUL", "COMPLETED", "DISMISSED", "INCORRECT",
    }


def test_operator_count():
    assert len(Operator) == 14


class TestSeasons:
    @pytest.mark.parametrize(
        "month, season",
        [
            (1, Season.MAJOR_DRY),
            (3, Season.MAJOR_RAINY),
            (7, Season.MAJOR_RAINY),
            (8, Season.MINOR_DRY),
            (10, Season.MINOR_RAINY),
            (12, Season.MAJOR_DRY),
        ],
    )
    def test_current_season(self, month, season):
        assert current_season(date(2026, month, 15)) == season


class TestWholeDays:
    def test_partial_day_floors(self):
        start = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)
        end = datetime(2026, 4, 3, 0, 0, tzinfo=timezone.utc)
        assert whole_days_between(start, end) == 1

    def test_negative_floors_down(self):
        start = datetime(2026, 4, 2, 0, 0, tzinfo=timezone.utc)
        end = datetime(2026, 4, 1, 12, 0, tzinfo=timezone.utc)
        assert whole_days_between(start, end) == -1

    def test_naive_treated_as_utc(self):
        assert whole_days_between(datetime(2026, 4, 1), date(2026, 4, 11)) == 10

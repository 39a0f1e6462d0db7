"""
Tests for db/repositories — round-trips and the lifecycle-critical queries.

What we test
------------
RecommendationRepository:
  - insert / get round-trip, including JSON columns and timestamps.
  - get() hides rows owned by another user.
  - list_for_user(): ACTIVE only by default, lapsed validity filtered, filters,
    include_expired puts ACTIVE rows first, ranking order.
  - expire_active() / expire_lapsed() counts.
  - transition_status() never re-opens a terminal row.
  - bump_generation() is a compare-and-swap.
  - Feedback rows round-trip and the history joins headlines.
FarmRepository:
  - Ownership-checked farm lookup, first farm by created_at, task counts.
Observation repositories:
  - Latest weather per region; latest market price per product.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from farm_advisor.db.repositories.farm_repo import FarmRepository
from farm_advisor.db.repositories.finance_repo import FinanceRepository
from farm_advisor.db.repositories.observation_repo import MarketRepository, WeatherRepository
from farm_advisor.db.repositories.recommendation_repo import RecommendationRepository
from farm_advisor.models.context import CurrentWeather, ForecastDay, MarketPrice, WeatherContext
from farm_advisor.models.farm import (
    ExpenseRecord,
    FarmRecord,
    IncomeRecord,
    TaskRecord,
    UserRecord,
)
from farm_advisor.models.recommendation import Evidence, Feedback, Impact, Recommendation
from farm_advisor.taxonomy.dse_taxonomy import (
    ConfidenceLabel,
    EntityType,
    FeedbackType,
    Priority,
    RecommendationCategory,
    RecommendationStatus,
)

NOW = datetime(2026, 4, 15, 8, 0, tzinfo=timezone.utc)


def _rec(rec_id: str, **overrides: Any) -> Recommendation:
    data: dict[str, Any] = {
        "id": rec_id,
        "user_id": "user-1",
        "farm_id": "farm-1",
        "category": RecommendationCategory.CROP,
        "priority": Priority.HIGH,
        "title": "Apply NPK to Maize",
        "description": "Top dressing window.",
        "action_steps": ("Apply NPK 15-15-15", "Water after application"),
        "reason": ("days since planting is 21 days (threshold: 18)",),
        "impact": Impact(type="yield_increase", value=0.15),
        "confidence": 0.85,
        "confidence_label": ConfidenceLabel.HIGH,
        "evidence": Evidence(
            rules_fired=("MAIZE_TOPDRESS_WINDOW",),
            features=("crop.days_since_planting",),
            weather_ref="weather_2026-04-15",
        ),
        "model_version": "rules_v1",
        "valid_from": NOW,
        "valid_until": NOW + timedelta(days=10),
        "entity_type": EntityType.CROP_ENTRY,
        "entity_id": f"crop-{rec_id}",
        "generation": 1,
        "created_at": NOW,
    }
    data.update(overrides)
    return Recommendation(**data)


@pytest.fixture
def repo(seeded_db) -> RecommendationRepository:
    return RecommendationRepository(seeded_db)


# ── Recommendations ───────────────────────────────────────────────────────────

class TestRecommendationRoundTrip:
    def test_insert_and_get(self, repo):
        original = _rec("r1")
        repo.insert(original)
        loaded = repo.get("r1", "user-1")
        assert loaded == original

    def test_open_ended_validity(self, repo):
        repo.insert(_rec("r1", valid_until=None, impact=None))
        loaded = repo.get("r1", "user-1")
        assert loaded.valid_until is None
        assert loaded.impact is None

    def test_other_users_rows_hidden(self, repo, seeded_db):
        FarmRepository(seeded_db).insert_user(UserRecord(user_id="user-2", name="Kofi"))
        repo.insert(_rec("r1"))
        assert repo.get("r1", "user-2") is None


class TestListForUser:
    def test_ranked_active_only(self, repo):
        repo.insert_many([
            _rec("low", priority=Priority.LOW),
            _rec("urgent", priority=Priority.URGENT, confidence=0.5, confidence_label=ConfidenceLabel.MEDIUM),
            _rec("high", priority=Priority.HIGH),
            _rec("done", status=RecommendationStatus.COMPLETED),
        ])
        ids = [r.id for r in repo.list_for_user("user-1", NOW)]
        assert ids == ["urgent", "high", "low"]

    def test_lapsed_validity_filtered(self, repo):
        repo.insert(_rec("old", valid_from=NOW - timedelta(days=5), valid_until=NOW - timedelta(days=1)))
        repo.insert(_rec("fresh"))
        assert [r.id for r in repo.list_for_user("user-1", NOW)] == ["fresh"]

    def test_filters(self, repo):
        repo.insert_many([
            _rec("crop"),
            _rec("weather", category=RecommendationCategory.WEATHER, entity_type=EntityType.FARM, entity_id=None),
            _rec("urgent", priority=Priority.URGENT),
        ])
        assert [r.id for r in repo.list_for_user("user-1", NOW, category=RecommendationCategory.WEATHER)] == ["weather"]
        assert [r.id for r in repo.list_for_user("user-1", NOW, priority=Priority.URGENT)] == ["urgent"]
        assert repo.list_for_user("user-1", NOW, farm_id="farm-other") == []

    def test_include_expired_active_first(self, repo):
        repo.insert_many([
            _rec("expired", status=RecommendationStatus.EXPIRED, priority=Priority.URGENT),
            _rec("active", priority=Priority.LOW),
            _rec("dismissed", status=RecommendationStatus.DISMISSED),
        ])
        ids = [r.id for r in repo.list_for_user("user-1", NOW, include_expired=True)]
        assert ids == ["active", "expired"]

    def test_limit(self, repo):
        repo.insert_many([_rec(f"r{i}") for i in range(5)])
        assert len(repo.list_for_user("user-1", NOW, limit=2)) == 2


class TestStatusWrites:
    def test_expire_active(self, repo):
        repo.insert_many([_rec("a"), _rec("b"), _rec("c", status=RecommendationStatus.DISMISSED)])
        assert repo.expire_active("user-1") == 2
        assert repo.count_by_status("user-1") == {"EXPIRED": 2, "DISMISSED": 1}

    def test_expire_lapsed(self, repo):
        repo.insert_many([
            _rec("lapsed", valid_from=NOW - timedelta(days=3), valid_until=NOW - timedelta(hours=1)),
            _rec("open", valid_until=None),
            _rec("current"),
        ])
        assert repo.expire_lapsed("user-1", NOW) == 1
        assert repo.get("lapsed", "user-1").status == RecommendationStatus.EXPIRED

    def test_transition_to_terminal(self, repo):
        repo.insert(_rec("r1"))
        assert repo.transition_status("r1", "user-1", RecommendationStatus.DISMISSED, NOW) is True
        rec = repo.get("r1", "user-1")
        assert rec.status == RecommendationStatus.DISMISSED
        assert rec.dismissed_at == NOW

    def test_terminal_never_reopened(self, repo):
        repo.insert(_rec("r1"))
        repo.transition_status("r1", "user-1", RecommendationStatus.DISMISSED, NOW)
        assert repo.transition_status("r1", "user-1", RecommendationStatus.COMPLETED, NOW) is False
        rec = repo.get("r1", "user-1")
        assert rec.status == RecommendationStatus.DISMISSED
        assert rec.completed_at is None

    def test_expired_can_complete(self, repo):
        repo.insert(_rec("r1", status=RecommendationStatus.EXPIRED))
        assert repo.transition_status("r1", "user-1", RecommendationStatus.COMPLETED, NOW) is True

    def test_non_terminal_target_rejected(self, repo):
        repo.insert(_rec("r1"))
        with pytest.raises(ValueError):
            repo.transition_status("r1", "user-1", RecommendationStatus.EXPIRED, NOW)


class TestGeneration:
    def test_starts_at_zero(self, repo):
        assert repo.get_generation("user-1") == 0

    def test_compare_and_swap(self, repo):
        assert repo.bump_generation("user-1", 0, NOW) is True
        assert repo.get_generation("user-1") == 1
        assert repo.bump_generation("user-1", 0, NOW) is False
        assert repo.bump_generation("user-1", 1, NOW) is True
        assert repo.get_generation("user-1") == 2


class TestFeedbackRows:
    def _feedback(self, **overrides: Any) -> Feedback:
        data: dict[str, Any] = {
            "recommendation_id": "r1",
            "user_id": "user-1",
            "feedback_type": FeedbackType.HELPFUL,
            "rating": 4,
            "comment": "Worked well",
            "action_taken": True,
            "created_at": NOW,
        }
        data.update(overrides)
        return Feedback(**data)

    def test_insert_assigns_id(self, repo):
        repo.insert(_rec("r1"))
        stored = repo.insert_feedback(self._feedback())
        assert stored.feedback_id is not None
        assert repo.get_feedback_for("r1") == [stored]

    def test_history_newest_first(self, repo):
        repo.insert_many([_rec("r1"), _rec("r2", title="First Weeding Due")])
        repo.insert_feedback(self._feedback())
        repo.insert_feedback(self._feedback(
            recommendation_id="r2",
            feedback_type=FeedbackType.NOT_HELPFUL,
            created_at=NOW + timedelta(hours=1),
        ))
        history = repo.get_feedback_history("user-1")
        assert [h.recommendation_id for h in history] == ["r2", "r1"]
        assert history[0].recommendation_title == "First Weeding Due"
        assert history[0].recommendation_category == RecommendationCategory.CROP

    def test_history_for_one_recommendation(self, repo):
        repo.insert_many([_rec("r1"), _rec("r2")])
        repo.insert_feedback(self._feedback())
        repo.insert_feedback(self._feedback(recommendation_id="r2"))
        assert [h.recommendation_id for h in repo.get_feedback_history("user-1", "r2")] == ["r2"]


# ── Farm state ────────────────────────────────────────────────────────────────

class TestFarmRepository:
    def test_get_farm_checks_owner(self, seeded_db):
        repo = FarmRepository(seeded_db)
        repo.insert_user(UserRecord(user_id="user-2", name="Kofi"))
        assert repo.get_farm("farm-1", "user-1").name == "Ama's Farm"
        assert repo.get_farm("farm-1", "user-2") is None

    def test_first_farm_is_oldest(self, seeded_db):
        repo = FarmRepository(seeded_db)
        repo.insert_farm(FarmRecord(
            farm_id="farm-0", user_id="user-1", name="New Plot",
            created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        ))
        assert repo.get_first_farm("user-1").farm_id == "farm-1"

    def test_task_counts(self, seeded_db):
        repo = FarmRepository(seeded_db)
        repo.insert_task(TaskRecord(task_id="t1", user_id="user-1", title="Weed", due_date=NOW - timedelta(days=2)))
        repo.insert_task(TaskRecord(task_id="t2", user_id="user-1", title="Spray", status="IN_PROGRESS",
                                    due_date=NOW + timedelta(days=2)))
        repo.insert_task(TaskRecord(task_id="t3", user_id="user-1", title="Sell", status="COMPLETED",
                                    due_date=NOW - timedelta(days=5)))
        repo.insert_task(TaskRecord(task_id="t4", user_id="user-1", title="Plan"))
        assert repo.count_active_tasks("user-1") == 3
        assert repo.count_overdue_tasks("user-1", NOW) == 1


def test_finance_window(seeded_db):
    repo = FinanceRepository(seeded_db)
    since = NOW - timedelta(days=30)
    repo.insert_expense(ExpenseRecord(user_id="user-1", category="Fertilizer", amount=300.0, expense_date=NOW))
    repo.insert_expense(ExpenseRecord(user_id="user-1", category="Fertilizer", amount=200.0, expense_date=since))
    repo.insert_expense(ExpenseRecord(user_id="user-1", category="Labour", amount=90.0,
                                      expense_date=since - timedelta(days=1)))
    repo.insert_income(IncomeRecord(user_id="user-1", product_type="Maize", total_amount=450.0, income_date=NOW))
    assert repo.expenses_by_category("user-1", since) == {"Fertilizer": 500.0}
    assert repo.income_by_product("user-1", since) == {"Maize": 450.0}


# ── Observations ──────────────────────────────────────────────────────────────

def _weather(observed_at: datetime, temperature: float) -> WeatherContext:
    return WeatherContext(
        region="Ashanti",
        observed_at=observed_at,
        current=CurrentWeather(
            temperature=temperature, humidity=80.0, wind_speed=10.0,
            condition="Rain", rain_probability=65.0,
        ),
        forecast=(ForecastDay(
            day=observed_at.date(), temp_high=31.0, temp_low=22.0,
            rain_probability=65.0, wind_speed=10.0, condition="Rain",
        ),),
    )


class TestObservationRepositories:
    def test_latest_weather(self, in_memory_db):
        repo = WeatherRepository(in_memory_db)
        repo.insert_snapshot(_weather(NOW - timedelta(hours=6), 27.0))
        latest = _weather(NOW, 31.0)
        repo.insert_snapshot(latest)
        assert repo.get_latest("Ashanti") == latest
        assert repo.get_latest("Volta") is None

    def test_weather_requires_region(self, in_memory_db):
        weather = _weather(NOW, 30.0).model_copy(update={"region": None})
        with pytest.raises(ValueError):
            WeatherRepository(in_memory_db).insert_snapshot(weather)

    def test_latest_price_per_product(self, in_memory_db):
        repo = MarketRepository(in_memory_db)
        repo.insert_price(MarketPrice(product="Maize", market="Kumasi", price=300.0, unit="bag",
                                      observed_at=NOW - timedelta(days=1)), region="Ashanti")
        repo.insert_price(MarketPrice(product="maize", market="Kumasi", price=320.0, unit="bag",
                                      trend="up", observed_at=NOW), region="Ashanti")
        repo.insert_price(MarketPrice(product="Rice", market="Accra", price=500.0, unit="bag",
                                      observed_at=NOW), region=None)
        repo.insert_price(MarketPrice(product="Yam", market="Tamale", price=80.0, unit="tuber",
                                      observed_at=NOW), region="Northern")

        prices = repo.get_latest_prices("Ashanti")
        assert [(p.product, p.price) for p in prices] == [("maize", 320.0), ("Rice", 500.0)]
        assert len(repo.get_latest_prices()) == 3

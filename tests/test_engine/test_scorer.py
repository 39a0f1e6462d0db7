"""
Tests for engine/scorer.py — priority, confidence, templates and reasons.

What we test
------------
compute_confidence():
  - Weather / market bonuses are added only when the section is present.
  - Result is clamped to [0, 1].
confidence_label():
  - Band edges at 0.80 and 0.50.
compute_priority():
  - Escalates when the escalation field reaches the threshold.
  - Falls back to base for unresolvable or non-numeric fields.
render_template():
  - Placeholders resolve; unresolved placeholders stay verbatim.
build_reasons():
  - One sentence per satisfied leaf, leaves under Not skipped.
  - Capped at max_reasons; never empty.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from farm_advisor.engine.conditions import build_scope
from farm_advisor.engine.scorer import (
    build_reasons,
    compute_confidence,
    compute_priority,
    compute_valid_until,
    confidence_label,
    format_value,
    readable_field_name,
    render_template,
)
from farm_advisor.models.context import (
    CropContext,
    CurrentWeather,
    EvaluationContext,
    FarmContext,
    MarketContext,
    WeatherContext,
)
from farm_advisor.models.rule import ConfidenceTemplate, PriorityTemplate, Rule
from farm_advisor.taxonomy.dse_taxonomy import ConfidenceLabel, Priority, Season

NOW = datetime(2026, 4, 15, 8, 0, tzinfo=timezone.utc)


def _weather() -> WeatherContext:
    return WeatherContext(
        region="Ashanti",
        observed_at=NOW,
        current=CurrentWeather(
            temperature=30.0, humidity=75.0, wind_speed=8.0,
            condition="Partly Cloudy", rain_probability=20.0,
        ),
    )


def _context(weather: bool = False, market: bool = False) -> EvaluationContext:
    return EvaluationContext(
        user_id="user-1",
        farm=FarmContext(id="farm-1", name="Ama's Farm", region="Ashanti", overdue_tasks=3),
        crops=(CropContext(
            id="crop-1",
            crop_type="Maize",
            status="GROWING",
            planting_date=NOW - timedelta(days=35),
            days_since_planting=35,
            fertilizer_gap_days=35,
        ),),
        weather=_weather() if weather else None,
        market=MarketContext() if market else None,
        current_date=NOW,
        current_season=Season.MAJOR_RAINY,
    )


def _scope(context: EvaluationContext | None = None) -> dict:
    context = context or _context()
    return build_scope(context, {"crop": context.crops[0]})


def _rule(condition: dict, name: str = "Maize Top Dressing") -> Rule:
    return Rule.model_validate({
        "code": "R1",
        "name": name,
        "category": "CROP_CALENDAR",
        "recommendation_category": "CROP",
        "targeting": {"entity_type": "CROP_ENTRY", "crop_types": ["*"]},
        "condition": condition,
        "title_template": "Top Dress",
        "priority": {"base": "MEDIUM"},
        "confidence": {"base": 0.7},
    })


# ── Confidence ────────────────────────────────────────────────────────────────

class TestConfidence:
    @pytest.mark.parametrize(
        "weather, market, expected",
        [
            (False, False, 0.7),
            (True, False, 0.8),
            (False, True, 0.75),
            (True, True, 0.85),
        ],
    )
    def test_bonuses(self, weather, market, expected):
        template = ConfidenceTemplate(base=0.7)
        assert compute_confidence(template, _context(weather, market)) == pytest.approx(expected)

    def test_clamped_to_one(self):
        template = ConfidenceTemplate(base=0.95)
        assert compute_confidence(template, _context(True, True)) == 1.0

    def test_clamped_to_zero(self):
        template = ConfidenceTemplate(base=0.0, weather_bonus=-0.5)
        assert compute_confidence(template, _context(weather=True)) == 0.0

    @pytest.mark.parametrize(
        "confidence, label",
        [
            (0.95, ConfidenceLabel.HIGH),
            (0.80, ConfidenceLabel.HIGH),
            (0.79, ConfidenceLabel.MEDIUM),
            (0.50, ConfidenceLabel.MEDIUM),
            (0.49, ConfidenceLabel.LOW),
            (0.0, ConfidenceLabel.LOW),
        ],
    )
    def test_labels(self, confidence, label):
        assert confidence_label(confidence) == label


# ── Priority ──────────────────────────────────────────────────────────────────

class TestPriority:
    def _template(self) -> PriorityTemplate:
        return PriorityTemplate(
            base=Priority.MEDIUM,
            escalate_to=Priority.URGENT,
            escalate_field="farm.overdue_tasks",
            escalate_at=3,
        )

    def test_escalates_at_threshold(self):
        assert compute_priority(self._template(), _scope()) == Priority.URGENT

    def test_below_threshold(self):
        template = self._template().model_copy(update={"escalate_at": 4})
        assert compute_priority(template, _scope()) == Priority.MEDIUM

    def test_unresolvable_field_uses_base(self):
        template = self._template().model_copy(update={"escalate_field": "livestock.age_in_days"})
        assert compute_priority(template, _scope()) == Priority.MEDIUM

    def test_non_numeric_field_uses_base(self):
        template = self._template().model_copy(update={"escalate_field": "crop.status"})
        assert compute_priority(template, _scope()) == Priority.MEDIUM

    def test_no_escalation(self):
        assert compute_priority(PriorityTemplate(base=Priority.LOW), _scope()) == Priority.LOW


# ── Templates ─────────────────────────────────────────────────────────────────

class TestRenderTemplate:
    def test_resolves_placeholders(self):
        assert render_template("Apply NPK to {{crop.crop_type}}", _scope()) == "Apply NPK to Maize"

    def test_whitespace_inside_braces(self):
        assert render_template("{{ farm.overdue_tasks }} Overdue Tasks", _scope()) == "3 Overdue Tasks"

    def test_unresolved_left_verbatim(self):
        assert render_template("Price {{market.by_product.maize.price}}", _scope()) == (
            "Price {{market.by_product.maize.price}}"
        )

    def test_none_passes_through(self):
        assert render_template(None, _scope()) is None


class TestFormatting:
    @pytest.mark.parametrize(
        "value, shown",
        [(35.0, "35"), (12.5, "12.5"), (True, "yes"), (False, "no"), (("a", "b"), "a, b"), (NOW, "2026-04-15")],
    )
    def test_format_value(self, value, shown):
        assert format_value(value) == shown

    def test_readable_field_name(self):
        assert readable_field_name("weather.forecast[0].rain_probability") == "rain probability"

    def test_valid_until(self):
        assert compute_valid_until(10, NOW) == NOW + timedelta(days=10)
        assert compute_valid_until(None, NOW) is None


# ── Reasons ───────────────────────────────────────────────────────────────────

class TestBuildReasons:
    def test_threshold_sentence(self):
        rule = _rule({"field": "crop.days_since_planting", "operator": "GREATER_OR_EQUAL", "value": 30, "unit": "days"})
        assert build_reasons(rule, _scope(), NOW) == ("days since planting is 35 days (threshold: 30)",)

    def test_one_per_satisfied_leaf(self):
        rule = _rule({"kind": "any", "children": [
            {"field": "crop.days_since_planting", "operator": "LESS_THAN", "value": 10},
            {"field": "crop.fertilizer_gap_days", "operator": "GREATER_THAN", "value": 21, "unit": "days"},
            {"field": "crop.last_activity", "operator": "IS_EMPTY"},
        ]})
        assert build_reasons(rule, _scope(), NOW) == (
            "fertilizer gap days is 35 days (above 21)",
            "No last activity recorded yet",
        )

    def test_not_subtree_skipped(self):
        rule = _rule({"kind": "all", "children": [
            {"field": "crop.days_since_planting", "operator": "BETWEEN", "value": [30, 40]},
            {"kind": "not", "child": {"field": "crop.status", "operator": "EQUALS", "value": "PLANNED"}},
        ]})
        assert build_reasons(rule, _scope(), NOW) == ("days since planting is 35 (expected: 30-40)",)

    def test_capped(self):
        rule = _rule({"kind": "all", "children": [
            {"field": "crop.days_since_planting", "operator": "GREATER_OR_EQUAL", "value": 30},
            {"field": "crop.days_since_planting", "operator": "LESS_OR_EQUAL", "value": 40},
            {"field": "crop.fertilizer_gap_days", "operator": "GREATER_OR_EQUAL", "value": 18},
        ]})
        assert len(build_reasons(rule, _scope(), NOW, max_reasons=2)) == 2

    def test_duplicate_sentences_collapse(self):
        rule = _rule({"kind": "all", "children": [
            {"field": "crop.days_since_planting", "operator": "GREATER_OR_EQUAL", "value": 30},
            {"field": "crop.days_since_planting", "operator": "GREATER_OR_EQUAL", "value": 30},
        ]})
        assert len(build_reasons(rule, _scope(), NOW)) == 1

    def test_fallback_uses_rule_name(self):
        rule = _rule(
            {"kind": "not", "child": {"field": "crop.status", "operator": "EQUALS", "value": "PLANNED"}},
            name="Growing Crop Check",
        )
        assert build_reasons(rule, _scope(), NOW) == ("Conditions for 'Growing Crop Check' were met",)

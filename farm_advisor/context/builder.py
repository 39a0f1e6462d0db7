"""
Fact/context builder: assembles the immutable ``EvaluationContext`` one
evaluation pass runs against.

Sources
-------
  identity   users                       mandatory: unknown user → NotFoundError
  farm       farms + tasks               mandatory once requested: an explicit
                                         farm_id not owned by the user → NotFoundError
  crops      crop_entries + activities   PLANNED / GROWING only
  livestock  livestock_entries + health  ACTIVE only
  weather    WeatherProvider             stored snapshot or live Open-Meteo
  market     market_prices + alerts      latest price per product
  finance    expenses + incomes          trailing window (default 30 days)

Every optional source is fetched independently.  A failure is raised as
``UpstreamUnavailableError``, logged at WARNING, replaced with a neutral
default (``()`` / ``None``) and its name recorded in
``EvaluationContext.unavailable_sources``.  Rules referencing a defaulted
section simply do not match.

Scoping: with an explicit ``farm_id`` crops and livestock are limited to that
farm; without one the user's first farm supplies ``farm`` and crops/livestock
span all of the user's farms.  Each crop and livestock context carries its own
``farm_id`` so cards for those entities are attributed to the right farm.

All derived day counts use the single ``now`` passed to ``build()``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional, TypeVar

from farm_advisor.config import ContextConfig, WeatherConfig
from farm_advisor.context.weather_client import (
    OpenMeteoClient,
    StoredWeatherProvider,
    WeatherProvider,
)
from farm_advisor.db.repositories.crop_repo import CropRepository
from farm_advisor.db.repositories.farm_repo import FarmRepository
from farm_advisor.db.repositories.finance_repo import FinanceRepository
from farm_advisor.db.repositories.livestock_repo import LivestockRepository
from farm_advisor.db.repositories.observation_repo import MarketRepository, WeatherRepository
from farm_advisor.errors import NotFoundError, UpstreamUnavailableError
from farm_advisor.models.context import (
    ActivityEvent,
    ActivitySummary,
    CropContext,
    DewormingEvent,
    EvaluationContext,
    FarmContext,
    FinanceContext,
    LivestockContext,
    MarketContext,
    PriceAlert,
    VaccinationDue,
    VaccinationEvent,
    WeatherContext,
)
from farm_advisor.models.farm import CropEntryRecord, FarmRecord, LivestockEntryRecord
from farm_advisor.utils.time_utils import (
    current_season,
    days_until,
    ensure_utc,
    utcnow,
    whole_days_between,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

FERTILIZER_ACTIVITY = "FERTILIZER_APPLICATION"
WEEDING_ACTIVITY = "WEEDING"


def weather_provider_from_config(config: WeatherConfig, conn: sqlite3.Connection) -> WeatherProvider:
    """Pick the weather provider named by ``config.provider``."""
    if config.provider == "open_meteo":
        return OpenMeteoClient(
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
            forecast_days=config.forecast_days,
        )
    return StoredWeatherProvider(WeatherRepository(conn))


class ContextBuilder:
    """Builds ``EvaluationContext`` snapshots from the store.

    Args:
        conn: Open SQLite connection.
        config: History limits and finance window.
        weather_provider: Weather source; defaults to stored snapshots.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: Optional[ContextConfig] = None,
        weather_provider: Optional[WeatherProvider] = None,
    ) -> None:
        self.config = config or ContextConfig()
        self.farms = FarmRepository(conn)
        self.crops = CropRepository(conn)
        self.livestock = LivestockRepository(conn)
        self.market = MarketRepository(conn)
        self.finance = FinanceRepository(conn)
        self.weather_provider = weather_provider or StoredWeatherProvider(WeatherRepository(conn))

    def build(
        self,
        user_id: str,
        farm_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationContext:
        """Assemble the context for ``user_id``.

        Args:
            user_id: Caller identity.
            farm_id: Optional explicit farm scope.
            now: Evaluation time; captured from the clock if omitted.

        Raises:
            NotFoundError: Unknown user, or ``farm_id`` not owned by the user.
        """
        now = ensure_utc(now or utcnow())

        user = self.farms.get_user(user_id)
        if user is None:
            raise NotFoundError("User")

        if farm_id is not None:
            farm_record = self.farms.get_farm(farm_id, user_id)
            if farm_record is None:
                raise NotFoundError("Farm")
        else:
            farm_record = self.farms.get_first_farm(user_id)

        farm = self._farm_context(farm_record, now) if farm_record else None
        region = farm.region if farm and farm.region else user.region

        unavailable: list[str] = []
        crops = self._optional(
            "crops", lambda: self._crop_contexts(user_id, farm_id, now), (), unavailable,
        )
        livestock = self._optional(
            "livestock", lambda: self._livestock_contexts(user_id, farm_id, now), (), unavailable,
        )
        weather = (
            self._optional("weather", lambda: self._weather_context(region, now), None, unavailable)
            if region
            else None
        )
        market = self._optional(
            "market", lambda: self._market_context(user_id, region), None, unavailable,
        )
        finance = self._optional(
            "finance", lambda: self._finance_context(user_id, now), None, unavailable,
        )

        context = EvaluationContext(
            user_id=user_id,
            farm=farm,
            crops=crops,
            livestock=livestock,
            weather=weather,
            market=market,
            finance=finance,
            current_date=now,
            current_season=current_season(now),
            unavailable_sources=tuple(unavailable),
        )
        logger.debug(
            "Built context user=%s farm=%s: %d crops, %d livestock, unavailable=%s",
            user_id, context.farm_id, len(crops), len(livestock), unavailable or "none",
        )
        return context

    # ── Source isolation ──────────────────────────────────────────────────────

    def _optional(
        self,
        source: str,
        fetch: Callable[[], T],
        default: T,
        unavailable: list[str],
    ) -> T:
        try:
            return _fetch_source(source, fetch)
        except UpstreamUnavailableError as exc:
            logger.warning(
                "Using neutral default for unavailable source: %s", exc,
                extra={"source": source},
            )
            unavailable.append(source)
            return default

    # ── Per-source builders ───────────────────────────────────────────────────

    def _farm_context(self, farm: FarmRecord, now: datetime) -> FarmContext:
        return FarmContext(
            id=farm.farm_id,
            name=farm.name,
            region=farm.region,
            district=farm.district,
            size=farm.size,
            size_unit=farm.size_unit,
            total_crops=self.farms.count_crop_entries(farm.farm_id),
            total_livestock=self.farms.count_livestock_entries(farm.farm_id),
            active_tasks=self.farms.count_active_tasks(farm.user_id),
            overdue_tasks=self.farms.count_overdue_tasks(farm.user_id, now),
        )

    def _crop_contexts(
        self,
        user_id: str,
        farm_id: Optional[str],
        now: datetime,
    ) -> tuple[CropContext, ...]:
        return tuple(
            self._crop_context(entry, now)
            for entry in self.crops.get_active_entries(user_id, farm_id)
        )

    def _crop_context(self, entry: CropEntryRecord, now: datetime) -> CropContext:
        planting_date = ensure_utc(entry.planting_date or now)
        days_since_planting = whole_days_between(planting_date, now)

        activities = self.crops.get_recent_activities(
            entry.crop_entry_id, self.config.activity_limit,
        )
        # Activities arrive newest first, so the first one seen per type is its latest.
        counts: dict[str, int] = {}
        last_dates: dict[str, datetime] = {}
        for activity in activities:
            counts[activity.activity_type] = counts.get(activity.activity_type, 0) + 1
            last_dates.setdefault(activity.activity_type, activity.activity_date)

        def gap(activity_type: str) -> int:
            last = last_dates.get(activity_type)
            return whole_days_between(last, now) if last else days_since_planting

        last_activity = (
            ActivityEvent(
                type=activities[0].activity_type,
                date=activities[0].activity_date,
                days_since=whole_days_between(activities[0].activity_date, now),
            )
            if activities
            else None
        )

        return CropContext(
            id=entry.crop_entry_id,
            farm_id=entry.farm_id,
            crop_type=entry.crop_type,
            variety=entry.variety,
            status=entry.status,
            planting_date=planting_date,
            days_since_planting=days_since_planting,
            expected_harvest_date=entry.expected_harvest_date,
            days_to_harvest=days_until(entry.expected_harvest_date, now),
            area_planted=entry.land_area,
            area_unit=entry.land_area_unit,
            last_activity=last_activity,
            activities_logged=tuple(
                ActivitySummary(type=t, count=n, last_date=last_dates.get(t))
                for t, n in counts.items()
            ),
            fertilizer_gap_days=gap(FERTILIZER_ACTIVITY),
            weeding_gap_days=gap(WEEDING_ACTIVITY),
            yield_quantity=entry.yield_quantity,
            yield_unit=entry.yield_unit,
        )

    def _livestock_contexts(
        self,
        user_id: str,
        farm_id: Optional[str],
        now: datetime,
    ) -> tuple[LivestockContext, ...]:
        return tuple(
            self._livestock_context(entry, now)
            for entry in self.livestock.get_active_entries(user_id, farm_id)
        )

    def _livestock_context(self, entry: LivestockEntryRecord, now: datetime) -> LivestockContext:
        date_acquired = ensure_utc(entry.acquired_date or now)
        records = self.livestock.get_recent_health_records(
            entry.livestock_entry_id, self.config.health_record_limit,
        )
        vaccinations = [r for r in records if r.record_type == "VACCINATION"]
        dewormings = [r for r in records if r.record_type == "DEWORMING"]

        last_vaccination = (
            VaccinationEvent(
                name=vaccinations[0].vaccine_name or "Unknown",
                date=vaccinations[0].record_date,
                days_since=whole_days_between(vaccinations[0].record_date, now),
            )
            if vaccinations
            else None
        )
        last_deworming = (
            DewormingEvent(
                date=dewormings[0].record_date,
                days_since=whole_days_between(dewormings[0].record_date, now),
            )
            if dewormings
            else None
        )

        # Only the latest record per vaccine counts, even when it has no next due date.
        due: dict[str, VaccinationDue] = {}
        seen: set[str] = set()
        for record in vaccinations:
            name = record.vaccine_name or "Unknown"
            if name in seen:
                continue
            seen.add(name)
            if record.next_due_date is None:
                continue
            due[name] = VaccinationDue(
                name=name,
                due_date=record.next_due_date,
                days_overdue=whole_days_between(record.next_due_date, now),
            )

        return LivestockContext(
            id=entry.livestock_entry_id,
            farm_id=entry.farm_id,
            livestock_type=entry.livestock_type,
            breed=entry.breed,
            quantity=entry.quantity,
            date_acquired=date_acquired,
            age_in_days=whole_days_between(date_acquired, now),
            status=entry.status,
            last_vaccination=last_vaccination,
            last_deworming=last_deworming,
            vaccinations_due=tuple(due.values()),
            mortality_rate=mortality_rate(entry.initial_quantity, entry.quantity),
        )

    def _weather_context(self, region: str, now: datetime) -> Optional[WeatherContext]:
        return self.weather_provider.get_weather(region, now)

    def _market_context(self, user_id: str, region: Optional[str]) -> MarketContext:
        prices = self.market.get_latest_prices(region)
        by_product = {p.product.lower(): p for p in prices}

        alerts: list[PriceAlert] = []
        for alert in self.market.get_active_price_alerts(user_id):
            price = by_product.get(alert.product.lower())
            if price is None:
                continue
            triggered = (
                price.price >= alert.target_price
                if alert.condition == "above"
                else price.price <= alert.target_price
            )
            if triggered:
                alerts.append(PriceAlert(
                    product=alert.product,
                    condition=alert.condition,
                    target_price=alert.target_price,
                    current_price=price.price,
                ))

        return MarketContext(prices=tuple(prices), alerts=tuple(alerts), by_product=by_product)

    def _finance_context(self, user_id: str, now: datetime) -> FinanceContext:
        since = now - timedelta(days=self.config.finance_window_days)
        expenses = self.finance.expenses_by_category(user_id, since)
        income = self.finance.income_by_product(user_id, since)
        total_expenses = sum(expenses.values())
        total_income = sum(income.values())
        return FinanceContext(
            window_days=self.config.finance_window_days,
            total_expenses=total_expenses,
            total_income=total_income,
            net_profit=total_income - total_expenses,
            cash_flow=total_income - total_expenses,
            expenses_by_category=expenses,
            income_by_product=income,
        )


# ── Helpers ───────────────────────────────────────────────────────────────────

def _fetch_source(source: str, fetch: Callable[[], T]) -> T:
    """Run ``fetch``; re-raise store and parse failures as ``UpstreamUnavailableError``."""
    try:
        return fetch()
    except UpstreamUnavailableError:
        raise
    except (sqlite3.Error, ValueError) as exc:
        raise UpstreamUnavailableError(source, exc) from exc


def mortality_rate(initial_quantity: Optional[int], quantity: int) -> Optional[float]:
    """Fraction of the initial head count lost; ``None`` when unknown."""
    if not initial_quantity or initial_quantity < quantity:
        return None
    return round((initial_quantity - quantity) / initial_quantity, 4)


"""
Evaluation context models — the "facts" a rule is evaluated against.

An ``EvaluationContext`` is an immutable snapshot of one user's farm state,
built fresh by ``ContextBuilder.build()`` for every evaluation pass and owned
exclusively by that pass.  Every model is frozen and every sequence is a tuple,
so neither the engine nor a rule template can mutate the snapshot.

Field paths used in rule conditions address these models directly, e.g.
``crop.days_since_planting`` (the bound crop entry), ``farm.overdue_tasks``,
``weather.forecast[0].rain_probability`` or ``finance.net_profit``.

Sub-sources that failed while the context was built are listed in
``unavailable_sources``; the corresponding section is ``None`` (or an empty
tuple) so conditions that reference it simply do not match.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from farm_advisor.taxonomy.dse_taxonomy import Season

PriceTrend = Literal["up", "down", "stable"]


# ── Farm ──────────────────────────────────────────────────────────────────────

class FarmContext(BaseModel):
    """Farm identity plus task aggregates.

    Attributes:
        id: Farm PK.
        name: Display name.
        region: Administrative region (drives weather lookup and rule targeting).
        district: District within the region.
        size: Farm size in ``size_unit``.
        total_crops: Count of all crop entries on the farm.
        total_livestock: Count of all livestock entries on the farm.
        active_tasks: Tasks in PENDING / IN_PROGRESS.
        overdue_tasks: Active tasks whose due date has passed.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    region: Optional[str] = None
    district: Optional[str] = None
    size: Optional[float] = None
    size_unit: str = "acres"
    total_crops: int = 0
    total_livestock: int = 0
    active_tasks: int = 0
    overdue_tasks: int = 0


# ── Crops ─────────────────────────────────────────────────────────────────────

class ActivityEvent(BaseModel):
    """Most recent activity logged against a crop entry."""

    model_config = ConfigDict(frozen=True)

    type: str
    date: datetime
    days_since: int


class ActivitySummary(BaseModel):
    """Count and last date of one activity type for a crop entry."""

    model_config = ConfigDict(frozen=True)

    type: str
    count: int
    last_date: Optional[datetime] = None


class CropContext(BaseModel):
    """A crop entry in a non-terminal status (PLANNED or GROWING).

    ``fertilizer_gap_days`` / ``weeding_gap_days`` fall back to
    ``days_since_planting`` when no such activity was ever logged.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    farm_id: Optional[str] = None
    crop_type: str
    variety: Optional[str] = None
    status: str
    planting_date: datetime
    days_since_planting: int
    expected_harvest_date: Optional[datetime] = None
    days_to_harvest: Optional[int] = None
    area_planted: Optional[float] = None
    area_unit: Optional[str] = None
    last_activity: Optional[ActivityEvent] = None
    activities_logged: tuple[ActivitySummary, ...] = ()
    fertilizer_gap_days: Optional[int] = None
    weeding_gap_days: Optional[int] = None
    yield_quantity: Optional[float] = None
    yield_unit: Optional[str] = None


# ── Livestock ─────────────────────────────────────────────────────────────────

class VaccinationEvent(BaseModel):
    """Most recent vaccination for a livestock entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    date: datetime
    days_since: int


class DewormingEvent(BaseModel):
    """Most recent deworming for a livestock entry."""

    model_config = ConfigDict(frozen=True)

    date: datetime
    days_since: int


class VaccinationDue(BaseModel):
    """A scheduled vaccination whose due date is known."""

    model_config = ConfigDict(frozen=True)

    name: str
    due_date: datetime
    days_overdue: int


class LivestockContext(BaseModel):
    """An ACTIVE livestock entry with its derived health history."""

    model_config = ConfigDict(frozen=True)

    id: str
    farm_id: Optional[str] = None
    livestock_type: str
    breed: Optional[str] = None
    quantity: int
    date_acquired: datetime
    age_in_days: int
    status: str
    last_vaccination: Optional[VaccinationEvent] = None
    last_deworming: Optional[DewormingEvent] = None
    vaccinations_due: tuple[VaccinationDue, ...] = ()
    mortality_rate: Optional[float] = None


# ── Weather ───────────────────────────────────────────────────────────────────

class CurrentWeather(BaseModel):
    """Observed conditions.  ``wind_speed`` in km/h, ``temperature`` in °C."""

    model_config = ConfigDict(frozen=True)

    temperature: float
    humidity: float
    wind_speed: float
    condition: str
    rain_probability: float


class ForecastDay(BaseModel):
    """One day of the weather forecast."""

    model_config = ConfigDict(frozen=True)

    day: date
    temp_high: float
    temp_low: float
    rain_probability: float
    wind_speed: float
    condition: str


class WeatherAlert(BaseModel):
    """A published weather warning for the region."""

    model_config = ConfigDict(frozen=True)

    type: str
    severity: str
    message: str


class WeatherContext(BaseModel):
    """Latest weather summary for the farm's region."""

    model_config = ConfigDict(frozen=True)

    region: Optional[str] = None
    observed_at: datetime
    current: CurrentWeather
    forecast: tuple[ForecastDay, ...] = ()
    alerts: tuple[WeatherAlert, ...] = ()


# ── Market ────────────────────────────────────────────────────────────────────

class MarketPrice(BaseModel):
    """Latest observed price for one product at one market."""

    model_config = ConfigDict(frozen=True)

    product: str
    market: str
    price: float
    unit: str
    trend: PriceTrend = "stable"
    change_percent: float = 0.0
    observed_at: Optional[datetime] = None


class PriceAlert(BaseModel):
    """A user price alert that has been triggered by the current price."""

    model_config = ConfigDict(frozen=True)

    product: str
    condition: Literal["above", "below"]
    target_price: float
    current_price: float


class MarketContext(BaseModel):
    """Market prices for the products relevant to the user's farm.

    ``by_product`` maps a lowercase product name to its latest price so rules
    can address ``market.by_product.maize.change_percent``.
    """

    model_config = ConfigDict(frozen=True)

    prices: tuple[MarketPrice, ...] = ()
    alerts: tuple[PriceAlert, ...] = ()
    by_product: dict[str, MarketPrice] = Field(default_factory=dict)


# ── Finance ───────────────────────────────────────────────────────────────────

class FinanceContext(BaseModel):
    """Trailing finance aggregates (window from ``context.finance_window_days``)."""

    model_config = ConfigDict(frozen=True)

    window_days: int = 30
    total_expenses: float = 0.0
    total_income: float = 0.0
    net_profit: float = 0.0
    cash_flow: float = 0.0
    expenses_by_category: dict[str, float] = Field(default_factory=dict)
    income_by_product: dict[str, float] = Field(default_factory=dict)


# ── Root snapshot ─────────────────────────────────────────────────────────────

class EvaluationContext(BaseModel):
    """Immutable snapshot of one user's farm state.

    Attributes:
        user_id: Owner of every fact in the snapshot.
        farm: Farm scope, or ``None`` when the user has no farm.
        crops: Crop entries in PLANNED / GROWING.
        livestock: ACTIVE livestock entries.
        weather: Latest weather summary, or ``None`` when unavailable.
        market: Latest market prices, or ``None`` when unavailable.
        finance: Trailing finance aggregates, or ``None`` when unavailable.
        current_date: The single "now" captured for this evaluation.
        current_season: Season derived from ``current_date``.
        unavailable_sources: Sub-sources that failed and were defaulted.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    farm: Optional[FarmContext] = None
    crops: tuple[CropContext, ...] = ()
    livestock: tuple[LivestockContext, ...] = ()
    weather: Optional[WeatherContext] = None
    market: Optional[MarketContext] = None
    finance: Optional[FinanceContext] = None
    current_date: datetime
    current_season: Season
    unavailable_sources: tuple[str, ...] = ()

    @property
    def farm_id(self) -> Optional[str]:
        return self.farm.id if self.farm else None

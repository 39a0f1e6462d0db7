"""
Weather sources for the context builder.

Two providers share one method, ``get_weather(region, now)``:

``StoredWeatherProvider``
  Reads the latest ``weather_snapshots`` row for the region (written by the
  wider application's weather sync).  Default.

``OpenMeteoClient``
  Fetches a live forecast from the Open-Meteo API for the region's capital.
  No API key required.

API:   https://api.open-meteo.com/v1/forecast
Docs:  https://open-meteo.com/en/docs

Request shape::

    GET /v1/forecast?latitude=5.6037&longitude=-0.187
        &current=temperature_2m,relative_humidity_2m,wind_speed_10m,weather_code
        &daily=weather_code,temperature_2m_max,temperature_2m_min,
               precipitation_probability_max,wind_speed_10m_max
        &timezone=Africa/Accra&forecast_days=3

Transport failures, non-2xx responses and malformed payloads all surface as
``UpstreamUnavailableError("weather")``; the context builder absorbs it.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, ClassVar, Optional, Protocol

import httpx

from farm_advisor.db.repositories.observation_repo import WeatherRepository
from farm_advisor.errors import UpstreamUnavailableError
from farm_advisor.models.context import (
    CurrentWeather,
    ForecastDay,
    WeatherAlert,
    WeatherContext,
)

logger = logging.getLogger(__name__)

# Regional capitals: (latitude, longitude).
GHANA_REGION_COORDINATES: dict[str, tuple[float, float]] = {
    "Greater Accra": (5.6037, -0.1870),
    "Ashanti":       (6.6885, -1.6244),
    "Western":       (4.9340, -1.7137),
    "Central":       (5.1053, -1.2466),
    "Eastern":       (6.0941, -0.2591),
    "Volta":         (6.6008, 0.4713),
    "Northern":      (9.4008, -0.8393),
    "Upper East":    (10.7856, -0.8514),
    "Upper West":    (10.0601, -2.5099),
    "Bono":          (7.3349, -2.3123),
    "Bono East":     (7.5909, -1.9344),
    "Ahafo":         (6.8036, -2.5172),
    "Western North": (6.2058, -2.4894),
    "Oti":           (8.0706, 0.1795),
    "North East":    (10.5273, -0.3698),
    "Savannah":      (9.0833, -1.8167),
}

# Thresholds for alerts derived from the forecast.
HEAVY_RAIN_PROBABILITY = 80.0
HEAT_ALERT_TEMP_C = 38.0
STRONG_WIND_KMH = 40.0


class WeatherProvider(Protocol):
    def get_weather(self, region: str, now: datetime) -> Optional[WeatherContext]:
        ...


class StoredWeatherProvider:
    """Latest stored snapshot for a region."""

    def __init__(self, repo: WeatherRepository) -> None:
        self.repo = repo

    def get_weather(self, region: str, now: datetime) -> Optional[WeatherContext]:
        return self.repo.get_latest(region)


class OpenMeteoClient:
    """Live forecast client for the Open-Meteo API.

    Usage::

        client = OpenMeteoClient()
        weather = client.get_weather("Ashanti", utcnow())

    Args:
        base_url: Forecast endpoint.
        timeout_seconds: Per-request timeout.
        forecast_days: Days of daily forecast to request.
        client: Optional pre-built ``httpx.Client`` (tests inject one with a
            ``MockTransport``).  When omitted a client is created per call.
    """

    CURRENT_FIELDS: ClassVar[str] = "temperature_2m,relative_humidity_2m,wind_speed_10m,weather_code"
    DAILY_FIELDS: ClassVar[str] = (
        "weather_code,temperature_2m_max,temperature_2m_min,"
        "precipitation_probability_max,wind_speed_10m_max"
    )

    def __init__(
        self,
        base_url: str = "https://api.open-meteo.com/v1/forecast",
        timeout_seconds: float = 10.0,
        forecast_days: int = 3,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self.forecast_days = forecast_days
        self._client = client

    def get_weather(self, region: str, now: datetime) -> Optional[WeatherContext]:
        """Fetch and parse the forecast for ``region``.

        Returns:
            ``None`` if the region has no known coordinates.

        Raises:
            UpstreamUnavailableError: On HTTP failure or an unparseable payload.
        """
        coords = GHANA_REGION_COORDINATES.get(region)
        if coords is None:
            logger.warning("No coordinates for region '%s'; skipping live weather.", region)
            return None

        latitude, longitude = coords
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": self.CURRENT_FIELDS,
            "daily": self.DAILY_FIELDS,
            "timezone": "Africa/Accra",
            "forecast_days": self.forecast_days,
        }

        try:
            if self._client is not None:
                resp = self._client.get(self.base_url, params=params, timeout=self.timeout_seconds)
            else:
                with httpx.Client() as client:
                    resp = client.get(self.base_url, params=params, timeout=self.timeout_seconds)
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailableError("weather", exc) from exc

        try:
            return parse_forecast(payload, region, now)
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise UpstreamUnavailableError("weather", exc) from exc


# ── Parsing ───────────────────────────────────────────────────────────────────

def describe_weather_code(code: Optional[int]) -> str:
    """Map a WMO weather interpretation code to a short condition label."""
    if code is None:
        return "Unknown"
    if code == 0:
        return "Clear"
    if code in (1, 2):
        return "Partly Cloudy"
    if code == 3:
        return "Cloudy"
    if code in (45, 48):
        return "Fog"
    if 51 <= code <= 57:
        return "Drizzle"
    if 61 <= code <= 67 or 80 <= code <= 82:
        return "Rain"
    if 95 <= code <= 99:
        return "Thunderstorm"
    return "Unknown"


def parse_forecast(payload: dict[str, Any], region: str, now: datetime) -> WeatherContext:
    """Build a ``WeatherContext`` from an Open-Meteo response body."""
    current = payload["current"]
    daily = payload.get("daily") or {}

    forecast = tuple(
        ForecastDay(
            day=date.fromisoformat(day),
            temp_high=daily["temperature_2m_max"][i],
            temp_low=daily["temperature_2m_min"][i],
            rain_probability=daily["precipitation_probability_max"][i] or 0.0,
            wind_speed=daily["wind_speed_10m_max"][i],
            condition=describe_weather_code(daily["weather_code"][i]),
        )
        for i, day in enumerate(daily.get("time", []))
    )

    return WeatherContext(
        region=region,
        observed_at=now,
        current=CurrentWeather(
            temperature=current["temperature_2m"],
            humidity=current["relative_humidity_2m"],
            wind_speed=current["wind_speed_10m"],
            condition=describe_weather_code(current.get("weather_code")),
            rain_probability=forecast[0].rain_probability if forecast else 0.0,
        ),
        forecast=forecast,
        alerts=derive_alerts(forecast),
    )


def derive_alerts(forecast: tuple[ForecastDay, ...]) -> tuple[WeatherAlert, ...]:
    """Alerts for heavy rain, heat and strong wind in the forecast window."""
    alerts: list[WeatherAlert] = []
    for day in forecast:
        if day.rain_probability >= HEAVY_RAIN_PROBABILITY:
            alerts.append(WeatherAlert(
                type="HEAVY_RAIN",
                severity="warning",
                message=f"Heavy rain likely on {day.day.isoformat()} ({day.rain_probability:.0f}%).",
            ))
        if day.temp_high >= HEAT_ALERT_TEMP_C:
            alerts.append(WeatherAlert(
                type="HEAT",
                severity="warning",
                message=f"High of {day.temp_high:.0f}°C expected on {day.day.isoformat()}.",
            ))
        if day.wind_speed >= STRONG_WIND_KMH:
            alerts.append(WeatherAlert(
                type="STRONG_WIND",
                severity="advisory",
                message=f"Winds up to {day.wind_speed:.0f} km/h on {day.day.isoformat()}.",
            ))
    return tuple(alerts)

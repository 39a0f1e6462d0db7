"""
Tests for context/weather_client.py — Open-Meteo client and parsing.

All HTTP calls go through ``httpx.MockTransport``; nothing touches the network.

What we test
------------
- The request carries the region's coordinates and requested fields.
- A well-formed payload parses into current conditions, forecast and alerts.
- Unknown regions return None without an HTTP call.
- Non-2xx responses, transport errors and malformed payloads raise
  UpstreamUnavailableError("weather").
- describe_weather_code() maps WMO codes to labels.
- StoredWeatherProvider reads the latest snapshot.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import httpx
import pytest

from farm_advisor.context.weather_client import (
    OpenMeteoClient,
    StoredWeatherProvider,
    describe_weather_code,
    parse_forecast,
)
from farm_advisor.db.repositories.observation_repo import WeatherRepository
from farm_advisor.errors import UpstreamUnavailableError
from farm_advisor.models.context import CurrentWeather, WeatherContext

NOW = datetime(2026, 4, 15, 8, 0, tzinfo=timezone.utc)


def _payload() -> dict[str, Any]:
    return {
        "latitude": 6.69,
        "longitude": -1.62,
        "current": {
            "time": "2026-04-15T08:00",
            "temperature_2m": 29.4,
            "relative_humidity_2m": 84,
            "wind_speed_10m": 11.2,
            "weather_code": 2,
        },
        "daily": {
            "time": ["2026-04-15", "2026-04-16", "2026-04-17"],
            "weather_code": [61, 95, 1],
            "temperature_2m_max": [31.5, 38.2, 33.0],
            "temperature_2m_min": [22.1, 23.4, 22.8],
            "precipitation_probability_max": [85, None, 10],
            "wind_speed_10m_max": [14.0, 42.5, 12.1],
        },
    }


def _client(handler) -> OpenMeteoClient:
    return OpenMeteoClient(client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestOpenMeteoClient:
    def test_request_parameters(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_payload())

        _client(handler).get_weather("Ashanti", NOW)

        (request,) = seen
        params = request.url.params
        assert params["latitude"] == "6.6885"
        assert params["longitude"] == "-1.6244"
        assert params["timezone"] == "Africa/Accra"
        assert params["forecast_days"] == "3"
        assert "precipitation_probability_max" in params["daily"]

    def test_parses_payload(self):
        weather = _client(lambda request: httpx.Response(200, json=_payload())).get_weather("Ashanti", NOW)

        assert weather.region == "Ashanti"
        assert weather.observed_at == NOW
        assert weather.current.temperature == 29.4
        assert weather.current.condition == "Partly Cloudy"
        assert weather.current.rain_probability == 85
        assert [d.day for d in weather.forecast] == [date(2026, 4, 15), date(2026, 4, 16), date(2026, 4, 17)]
        assert weather.forecast[1].condition == "Thunderstorm"
        assert weather.forecast[1].rain_probability == 0.0

    def test_derived_alerts(self):
        weather = _client(lambda request: httpx.Response(200, json=_payload())).get_weather("Ashanti", NOW)
        assert [a.type for a in weather.alerts] == ["HEAVY_RAIN", "HEAT", "STRONG_WIND"]
        assert weather.alerts[2].severity == "advisory"

    def test_unknown_region(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json=_payload())

        assert _client(handler).get_weather("Atlantis", NOW) is None
        assert calls == []

    def test_server_error(self):
        with pytest.raises(UpstreamUnavailableError) as exc_info:
            _client(lambda request: httpx.Response(503)).get_weather("Ashanti", NOW)
        assert exc_info.value.source == "weather"

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailableError):
            _client(handler).get_weather("Ashanti", NOW)

    def test_invalid_json(self):
        with pytest.raises(UpstreamUnavailableError):
            _client(lambda request: httpx.Response(200, text="<html>")).get_weather("Ashanti", NOW)

    def test_missing_current_block(self):
        payload = _payload()
        del payload["current"]
        with pytest.raises(UpstreamUnavailableError):
            _client(lambda request: httpx.Response(200, json=payload)).get_weather("Ashanti", NOW)


class TestParseForecast:
    def test_no_daily_block(self):
        payload = _payload()
        del payload["daily"]
        weather = parse_forecast(payload, "Ashanti", NOW)
        assert weather.forecast == ()
        assert weather.current.rain_probability == 0.0
        assert weather.alerts == ()

    @pytest.mark.parametrize(
        "code, label",
        [(0, "Clear"), (2, "Partly Cloudy"), (3, "Cloudy"), (45, "Fog"), (53, "Drizzle"),
         (61, "Rain"), (81, "Rain"), (95, "Thunderstorm"), (None, "Unknown"), (71, "Unknown")],
    )
    def test_describe_weather_code(self, code, label):
        assert describe_weather_code(code) == label


def test_stored_provider(in_memory_db):
    snapshot = WeatherContext(
        region="Northern",
        observed_at=NOW,
        current=CurrentWeather(temperature=36.0, humidity=30.0, wind_speed=20.0,
                               condition="Clear", rain_probability=5.0),
    )
    WeatherRepository(in_memory_db).insert_snapshot(snapshot)
    provider = StoredWeatherProvider(WeatherRepository(in_memory_db))
    assert provider.get_weather("Northern", NOW) == snapshot
    assert provider.get_weather("Volta", NOW) is None

"""
Repositories for external observations: weather snapshots, market prices and
user price alerts.

Weather snapshots store the current conditions in columns and the forecast /
alert lists as JSON; they round-trip as ``WeatherContext``.  Market prices
round-trip as ``MarketPrice``.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from farm_advisor.db.repositories.base import BaseRepository, from_json, to_json
from farm_advisor.models.context import (
    CurrentWeather,
    ForecastDay,
    MarketPrice,
    WeatherAlert,
    WeatherContext,
)
from farm_advisor.models.farm import PriceAlertRecord
from farm_advisor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class WeatherRepository(BaseRepository):
    """Read/write access to ``weather_snapshots``."""

    def insert_snapshot(self, weather: WeatherContext) -> int:
        """Persist a weather summary and return its ``snapshot_id``.

        Raises:
            ValueError: If ``weather.region`` is not set.
        """
        if not weather.region:
            raise ValueError("Cannot store a weather snapshot without a region.")
        cursor = self.execute(
            """
            INSERT INTO weather_snapshots (
                region, observed_at, temperature, humidity, wind_speed,
                condition, rain_probability, forecast_json, alerts_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                weather.region,
                to_db_timestamp(weather.observed_at),
                weather.current.temperature,
                weather.current.humidity,
                weather.current.wind_speed,
                weather.current.condition,
                weather.current.rain_probability,
                to_json([d.model_dump(mode="json") for d in weather.forecast]),
                to_json([a.model_dump(mode="json") for a in weather.alerts]),
            ),
        )
        return int(cursor.lastrowid)

    def get_latest(self, region: str) -> Optional[WeatherContext]:
        """Most recent snapshot for ``region``, or ``None``."""
        row = self.fetchone(
            """
            SELECT * FROM weather_snapshots
            WHERE region = ?
            ORDER BY observed_at DESC, snapshot_id DESC
            LIMIT 1;
            """,
            (region,),
        )
        return _row_to_weather(row) if row else None


class MarketRepository(BaseRepository):
    """Read/write access to ``market_prices`` and ``price_alerts``."""

    def insert_price(self, price: MarketPrice, region: Optional[str] = None) -> int:
        """Persist one observed price and return its ``price_id``.

        Raises:
            ValueError: If ``price.observed_at`` is not set.
        """
        if price.observed_at is None:
            raise ValueError("Cannot store a market price without observed_at.")
        cursor = self.execute(
            """
            INSERT INTO market_prices (
                product, market, region, price, unit, trend, change_percent, observed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                price.product,
                price.market,
                region,
                price.price,
                price.unit,
                price.trend,
                price.change_percent,
                to_db_timestamp(price.observed_at),
            ),
        )
        return int(cursor.lastrowid)

    def get_latest_prices(self, region: Optional[str] = None) -> list[MarketPrice]:
        """Latest price per product (case-insensitive).

        Args:
            region: If given, consider prices for this region plus national
                prices (``region IS NULL``); otherwise all prices.

        Returns:
            One ``MarketPrice`` per product, ordered by product name.
        """
        rows = self.fetchall(
            """
            SELECT * FROM (
                SELECT mp.*,
                       ROW_NUMBER() OVER (
                           PARTITION BY lower(product)
                           ORDER BY observed_at DESC, price_id DESC
                       ) AS rn
                FROM market_prices mp
                WHERE ? IS NULL OR region IS NULL OR region = ?
            )
            WHERE rn = 1
            ORDER BY lower(product);
            """,
            (region, region),
        )
        return [
            MarketPrice(
                product=r["product"],
                market=r["market"],
                price=r["price"],
                unit=r["unit"],
                trend=r["trend"],
                change_percent=r["change_percent"],
                observed_at=from_db_timestamp(r["observed_at"]),
            )
            for r in rows
        ]

    def insert_price_alert(self, alert: PriceAlertRecord) -> int:
        cursor = self.execute(
            """
            INSERT INTO price_alerts (user_id, product, condition, target_price, is_active)
            VALUES (?, ?, ?, ?, ?);
            """,
            (alert.user_id, alert.product, alert.condition, alert.target_price, int(alert.is_active)),
        )
        return int(cursor.lastrowid)

    def get_active_price_alerts(self, user_id: str) -> list[PriceAlertRecord]:
        rows = self.fetchall(
            """
            SELECT * FROM price_alerts
            WHERE user_id = ? AND is_active = 1
            ORDER BY alert_id;
            """,
            (user_id,),
        )
        return [
            PriceAlertRecord(
                alert_id=r["alert_id"],
                user_id=r["user_id"],
                product=r["product"],
                condition=r["condition"],
                target_price=r["target_price"],
                is_active=bool(r["is_active"]),
            )
            for r in rows
        ]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_weather(row: sqlite3.Row) -> WeatherContext:
    return WeatherContext(
        region=row["region"],
        observed_at=from_db_timestamp(row["observed_at"]),
        current=CurrentWeather(
            temperature=row["temperature"],
            humidity=row["humidity"],
            wind_speed=row["wind_speed"],
            condition=row["condition"],
            rain_probability=row["rain_probability"],
        ),
        forecast=tuple(ForecastDay(**d) for d in from_json(row["forecast_json"], [])),
        alerts=tuple(WeatherAlert(**a) for a in from_json(row["alerts_json"], [])),
    )

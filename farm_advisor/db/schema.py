"""
SQLite schema DDL — all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is **idempotent**:
safe to call on an already-initialized database (e.g. after restart or in tests).

The schema has two halves:

  Farm state (read by the context builder; written by the wider application):
    users, farms, tasks, crop_entries, crop_activities, livestock_entries,
    livestock_health_records, weather_snapshots, market_prices, price_alerts,
    expenses, incomes

  Decision support (owned by the lifecycle manager):
    recommendations, recommendation_feedback, recommendation_generations

Table creation order respects foreign key dependencies:
  1. users                     (no FKs)
  2. farms                     (→ users)
  3. tasks                     (→ users, farms)
  4. crop_entries              (→ users, farms)
  5. crop_activities           (→ crop_entries)
  6. livestock_entries         (→ users, farms)
  7. livestock_health_records  (→ livestock_entries)
  8. weather_snapshots         (no FKs)
  9. market_prices             (no FKs)
  10. price_alerts             (→ users)
  11. expenses / incomes       (→ users, farms)
  12. recommendations          (→ users, farms)
  13. recommendation_feedback  (→ recommendations, users)
  14. recommendation_generations (→ users)

Timestamps are stored as fixed-width UTC ISO-8601 text
(see ``utils.time_utils.to_db_timestamp``) so string comparison in SQL is
time comparison.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

# ── Farm state ────────────────────────────────────────────────────────────────

_DDL_USERS = f"""
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT    PRIMARY KEY,
    name        TEXT    NOT NULL,
    email       TEXT    UNIQUE,
    region      TEXT,
    created_at  TEXT    NOT NULL DEFAULT {_NOW}
);
"""

_DDL_FARMS = f"""
CREATE TABLE IF NOT EXISTS farms (
    farm_id     TEXT    PRIMARY KEY,
    user_id     TEXT    NOT NULL REFERENCES users(user_id),
    name        TEXT    NOT NULL,
    region      TEXT,
    district    TEXT,
    size        REAL,
    size_unit   TEXT    NOT NULL DEFAULT 'acres',
    created_at  TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_farms_user ON farms(user_id, created_at);
"""

_DDL_TASKS = f"""
CREATE TABLE IF NOT EXISTS tasks (
    task_id     TEXT    PRIMARY KEY,
    user_id     TEXT    NOT NULL REFERENCES users(user_id),
    farm_id     TEXT    REFERENCES farms(farm_id),
    title       TEXT    NOT NULL,
    status      TEXT    NOT NULL DEFAULT 'PENDING'
                        CHECK (status IN ('PENDING', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED')),
    due_date    TEXT,
    created_at  TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks(user_id, status);
"""

_DDL_CROP_ENTRIES = f"""
CREATE TABLE IF NOT EXISTS crop_entries (
    crop_entry_id         TEXT    PRIMARY KEY,
    user_id               TEXT    NOT NULL REFERENCES users(user_id),
    farm_id               TEXT    NOT NULL REFERENCES farms(farm_id),
    crop_type             TEXT    NOT NULL,
    variety               TEXT,
    status                TEXT    NOT NULL DEFAULT 'PLANNED'
                                  CHECK (status IN ('PLANNED', 'GROWING', 'HARVESTED', 'FAILED')),
    planting_date         TEXT,
    expected_harvest_date TEXT,
    land_area             REAL,
    land_area_unit        TEXT,
    yield_quantity        REAL,
    yield_unit            TEXT,
    created_at            TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_crop_entries_user_status ON crop_entries(user_id, status);
"""

_DDL_CROP_ACTIVITIES = f"""
CREATE TABLE IF NOT EXISTS crop_activities (
    activity_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    crop_entry_id  TEXT    NOT NULL REFERENCES crop_entries(crop_entry_id) ON DELETE CASCADE,
    activity_type  TEXT    NOT NULL,
    activity_date  TEXT    NOT NULL,
    notes          TEXT,
    created_at     TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_crop_activities_entry_date
    ON crop_activities(crop_entry_id, activity_date DESC);
"""

_DDL_LIVESTOCK_ENTRIES = f"""
CREATE TABLE IF NOT EXISTS livestock_entries (
    livestock_entry_id  TEXT    PRIMARY KEY,
    user_id             TEXT    NOT NULL REFERENCES users(user_id),
    farm_id             TEXT    NOT NULL REFERENCES farms(farm_id),
    livestock_type      TEXT    NOT NULL,
    breed               TEXT,
    quantity            INTEGER NOT NULL DEFAULT 0 CHECK (quantity >= 0),
    initial_quantity    INTEGER,
    acquired_date       TEXT,
    status              TEXT    NOT NULL DEFAULT 'ACTIVE'
                                CHECK (status IN ('ACTIVE', 'SOLD', 'DECEASED', 'TRANSFERRED')),
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_livestock_entries_user_status ON livestock_entries(user_id, status);
"""

_DDL_LIVESTOCK_HEALTH_RECORDS = f"""
CREATE TABLE IF NOT EXISTS livestock_health_records (
    record_id           INTEGER PRIMARY KEY AUTOINCREMENT,
    livestock_entry_id  TEXT    NOT NULL REFERENCES livestock_entries(livestock_entry_id) ON DELETE CASCADE,
    record_type         TEXT    NOT NULL
                                CHECK (record_type IN ('VACCINATION', 'DEWORMING', 'TREATMENT', 'CHECKUP')),
    record_date         TEXT    NOT NULL,
    vaccine_name        TEXT,
    next_due_date       TEXT,
    notes               TEXT,
    created_at          TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_health_records_entry_date
    ON livestock_health_records(livestock_entry_id, record_date DESC);
"""

_DDL_WEATHER_SNAPSHOTS = f"""
CREATE TABLE IF NOT EXISTS weather_snapshots (
    snapshot_id       INTEGER PRIMARY KEY AUTOINCREMENT,
    region            TEXT    NOT NULL,
    observed_at       TEXT    NOT NULL,
    temperature       REAL    NOT NULL,
    humidity          REAL    NOT NULL,
    wind_speed        REAL    NOT NULL,
    condition         TEXT    NOT NULL,
    rain_probability  REAL    NOT NULL DEFAULT 0,
    forecast_json     TEXT    NOT NULL DEFAULT '[]',
    alerts_json       TEXT    NOT NULL DEFAULT '[]',
    created_at        TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_weather_region_time
    ON weather_snapshots(region, observed_at DESC);
"""

_DDL_MARKET_PRICES = f"""
CREATE TABLE IF NOT EXISTS market_prices (
    price_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    product         TEXT    NOT NULL,
    market          TEXT    NOT NULL,
    region          TEXT,
    price           REAL    NOT NULL CHECK (price >= 0),
    unit            TEXT    NOT NULL,
    trend           TEXT    NOT NULL DEFAULT 'stable'
                            CHECK (trend IN ('up', 'down', 'stable')),
    change_percent  REAL    NOT NULL DEFAULT 0,
    observed_at     TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_market_prices_product_time
    ON market_prices(product, observed_at DESC);
"""

_DDL_PRICE_ALERTS = f"""
CREATE TABLE IF NOT EXISTS price_alerts (
    alert_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL REFERENCES users(user_id),
    product       TEXT    NOT NULL,
    condition     TEXT    NOT NULL CHECK (condition IN ('above', 'below')),
    target_price  REAL    NOT NULL,
    is_active     INTEGER NOT NULL DEFAULT 1,
    created_at    TEXT    NOT NULL DEFAULT {_NOW}
);
"""

_DDL_EXPENSES = f"""
CREATE TABLE IF NOT EXISTS expenses (
    expense_id    INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL REFERENCES users(user_id),
    farm_id       TEXT    REFERENCES farms(farm_id),
    category      TEXT    NOT NULL,
    amount        REAL    NOT NULL CHECK (amount >= 0),
    expense_date  TEXT    NOT NULL,
    created_at    TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_expenses_user_date ON expenses(user_id, expense_date);
"""

_DDL_INCOMES = f"""
CREATE TABLE IF NOT EXISTS incomes (
    income_id     INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id       TEXT    NOT NULL REFERENCES users(user_id),
    farm_id       TEXT    REFERENCES farms(farm_id),
    product_type  TEXT    NOT NULL,
    total_amount  REAL    NOT NULL CHECK (total_amount >= 0),
    income_date   TEXT    NOT NULL,
    created_at    TEXT    NOT NULL DEFAULT {_NOW}
);
CREATE INDEX IF NOT EXISTS idx_incomes_user_date ON incomes(user_id, income_date);
"""

# ── Decision support ──────────────────────────────────────────────────────────

_DDL_RECOMMENDATIONS = """
CREATE TABLE IF NOT EXISTS recommendations (
    recommendation_id  TEXT    PRIMARY KEY,
    user_id            TEXT    NOT NULL REFERENCES users(user_id),
    farm_id            TEXT    REFERENCES farms(farm_id),
    category           TEXT    NOT NULL,
    priority           TEXT    NOT NULL
                               CHECK (priority IN ('URGENT', 'HIGH', 'MEDIUM', 'LOW')),
    priority_rank      INTEGER NOT NULL,
    title              TEXT    NOT NULL,
    description        TEXT,
    action_steps       TEXT    NOT NULL DEFAULT '[]',
    reason             TEXT    NOT NULL,
    impact_type        TEXT,
    impact_value       REAL,
    confidence         REAL    NOT NULL CHECK (confidence >= 0.0 AND confidence <= 1.0),
    confidence_label   TEXT    NOT NULL,
    evidence           TEXT    NOT NULL,
    rule_code          TEXT    NOT NULL,
    model_version      TEXT    NOT NULL,
    valid_from         TEXT    NOT NULL,
    valid_until        TEXT,
    entity_type        TEXT    NOT NULL DEFAULT 'FARM',
    entity_id          TEXT,
    explain_more_url   TEXT,
    status             TEXT    NOT NULL DEFAULT 'ACTIVE'
                               CHECK (status IN ('ACTIVE', 'EXPIRED', 'COMPLETED', 'DISMISSED')),
    generation         INTEGER NOT NULL DEFAULT 0,
    created_at         TEXT    NOT NULL,
    completed_at       TEXT,
    dismissed_at       TEXT
);
CREATE INDEX IF NOT EXISTS idx_recommendations_user_status
    ON recommendations(user_id, status);
CREATE INDEX IF NOT EXISTS idx_recommendations_user_created
    ON recommendations(user_id, created_at DESC);
"""

_DDL_RECOMMENDATION_FEEDBACK = """
CREATE TABLE IF NOT EXISTS recommendation_feedback (
    feedback_id        INTEGER PRIMARY KEY AUTOINCREMENT,
    recommendation_id  TEXT    NOT NULL REFERENCES recommendations(recommendation_id),
    user_id            TEXT    NOT NULL REFERENCES users(user_id),
    feedback_type      TEXT    NOT NULL
                               CHECK (feedback_type IN ('HELPFUL', 'NOT_HELPFUL', 'COMPLETED', 'DISMISSED', 'INCORRECT')),
    rating             INTEGER CHECK (rating IS NULL OR (rating >= 1 AND rating <= 5)),
    comment            TEXT,
    action_taken       INTEGER,
    outcome_notes      TEXT,
    created_at         TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_feedback_recommendation
    ON recommendation_feedback(recommendation_id);
"""

_DDL_RECOMMENDATION_GENERATIONS = """
CREATE TABLE IF NOT EXISTS recommendation_generations (
    user_id     TEXT    PRIMARY KEY REFERENCES users(user_id),
    generation  INTEGER NOT NULL DEFAULT 0,
    updated_at  TEXT    NOT NULL
);
"""

# ── Ordered list of all DDL to apply ──────────────────────────────────────────

_ALL_DDL: list[str] = [
    _DDL_USERS,
    _DDL_FARMS,
    _DDL_TASKS,
    _DDL_CROP_ENTRIES,
    _DDL_CROP_ACTIVITIES,
    _DDL_LIVESTOCK_ENTRIES,
    _DDL_LIVESTOCK_HEALTH_RECORDS,
    _DDL_WEATHER_SNAPSHOTS,
    _DDL_MARKET_PRICES,
    _DDL_PRICE_ALERTS,
    _DDL_EXPENSES,
    _DDL_INCOMES,
    _DDL_RECOMMENDATIONS,
    _DDL_RECOMMENDATION_FEEDBACK,
    _DDL_RECOMMENDATION_GENERATIONS,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "users",
    "farms",
    "tasks",
    "crop_entries",
    "crop_activities",
    "livestock_entries",
    "livestock_health_records",
    "weather_snapshots",
    "market_prices",
    "price_alerts",
    "expenses",
    "incomes",
    "recommendations",
    "recommendation_feedback",
    "recommendation_generations",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent — safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return index names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]

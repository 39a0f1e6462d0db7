"""
Shared pytest fixtures for the farm advisor test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``seeded_db``: ``in_memory_db`` plus one user (``user-1``) owning one
    farm (``farm-1``) in the Ashanti region.
  - ``fixed_now``: The single evaluation "now" used across the suite
    (mid-April, so the Ghana season is MAJOR_RAINY).
  - ``ghana_catalog``: The authored rule catalog shipped in ``config/rules``.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Generator

import pytest

from farm_advisor.catalog.loader import load_catalog
from farm_advisor.catalog.registry import RuleCatalog
from farm_advisor.config import resolve_path
from farm_advisor.db.repositories.farm_repo import FarmRepository
from farm_advisor.db.schema import apply_schema
from farm_advisor.models.farm import FarmRecord, UserRecord

FIXED_NOW = datetime(2026, 4, 15, 8, 0, 0, tzinfo=timezone.utc)


# ── Database fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Schema is applied idempotently.
    Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


@pytest.fixture
def seeded_db(in_memory_db: sqlite3.Connection) -> sqlite3.Connection:
    """``in_memory_db`` with ``user-1`` and their farm ``farm-1`` inserted."""
    repo = FarmRepository(in_memory_db)
    repo.insert_user(UserRecord(user_id="user-1", name="Ama Mensah", region="Ashanti"))
    repo.insert_farm(FarmRecord(
        farm_id="farm-1",
        user_id="user-1",
        name="Ama's Farm",
        region="Ashanti",
        district="Ejisu",
        size=4.5,
        created_at=datetime(2025, 1, 10, tzinfo=timezone.utc),
    ))
    in_memory_db.commit()
    return in_memory_db


# ── Time & catalog ────────────────────────────────────────────────────────────

@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture(scope="session")
def ghana_catalog() -> RuleCatalog:
    """The authored catalog from ``config/rules/ghana_rules_v1.json``."""
    return load_catalog(resolve_path("config/rules/ghana_rules_v1.json"))

"""
Incremental schema changes for databases created by an older ``apply_schema()``.

``apply_schema()`` always builds the current layout, so a fresh database only
needs these steps recorded, not run for effect.  Every step is idempotent and
runs inside its own SAVEPOINT together with the row that records it in
``schema_versions``; a failing step leaves neither its changes nor its marker.

To add a step, write a function taking the connection and append a
``Migration`` to ``MIGRATIONS`` with the next zero-padded version id.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass

from farm_advisor.db.connection import atomic

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    apply: Callable[[sqlite3.Connection], None]


_VERSION_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS schema_versions (
        version_id  TEXT NOT NULL PRIMARY KEY,
        applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
        description TEXT
    );
"""


def get_applied_versions(conn: sqlite3.Connection) -> set[str]:
    conn.execute(_VERSION_TABLE_DDL)
    conn.commit()
    return {row[0] for row in conn.execute("SELECT version_id FROM schema_versions;")}


# ── Steps ─────────────────────────────────────────────────────────────────────

def _baseline(conn: sqlite3.Connection) -> None:
    """Nothing to change; marks the layout ``apply_schema()`` shipped with."""


def _feedback_history_index(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_feedback_user_created "
        "ON recommendation_feedback(user_id, created_at DESC);"
    )


def _recommendation_rule_code(conn: sqlite3.Connection) -> None:
    columns = {row[1] for row in conn.execute("PRAGMA table_info(recommendations);")}
    if "rule_code" in columns:
        return
    conn.execute("ALTER TABLE recommendations ADD COLUMN rule_code TEXT NOT NULL DEFAULT '';")
    conn.execute(
        "UPDATE recommendations SET rule_code = json_extract(evidence, '$.rules_fired[0]');"
    )


MIGRATIONS: tuple[Migration, ...] = (
    Migration("0001_baseline", "Record the baseline layout", _baseline),
    Migration(
        "0002_feedback_history_index",
        "Index recommendation_feedback by (user_id, created_at)",
        _feedback_history_index,
    ),
    Migration(
        "0003_recommendation_rule_code",
        "Add and backfill recommendations.rule_code",
        _recommendation_rule_code,
    ),
)


def run_migrations(conn: sqlite3.Connection) -> int:
    """Apply every step not yet recorded in ``schema_versions``.

    Returns:
        Number of steps applied by this call.

    Raises:
        sqlite3.Error: A step failed; it was rolled back and not recorded.
    """
    applied = get_applied_versions(conn)
    pending = [m for m in MIGRATIONS if m.version not in applied]
    if not pending:
        logger.debug("Schema is current (%d migrations recorded).", len(MIGRATIONS))
        return 0

    for migration in pending:
        logger.info("Applying migration %s: %s", migration.version, migration.description)
        with atomic(conn, "schema_migration"):
            migration.apply(conn)
            conn.execute(
                "INSERT INTO schema_versions (version_id, description) VALUES (?, ?);",
                (migration.version, migration.description),
            )
        conn.commit()

    logger.info("Applied %d migration(s).", len(pending))
    return len(pending)

"""
Base repository providing shared SQLite execution helpers.

Every repository receives a ``sqlite3.Connection`` at construction time; the
connection is opened and owned by the caller (``get_connection()`` in the CLI,
the ``in_memory_db`` fixture in tests).  Transaction boundaries belong to the
caller too: repositories never commit.

Design:
  - No ORM: all SQL is explicit and lives in repository methods.
  - Repositories speak pydantic models (or plain scalars), not raw rows.
  - ``row_factory = sqlite3.Row`` gives dict-like row access throughout.
  - JSON columns go through ``to_json`` / ``from_json``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

logger = logging.getLogger(__name__)

Params = tuple[Any, ...] | dict[str, Any]


class BaseRepository:
    """Shared SQL execution helpers for all repository classes.

    Attributes:
        conn: The active ``sqlite3.Connection``.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def execute(self, sql: str, params: Params = ()) -> sqlite3.Cursor:
        """Execute a single SQL statement with ``?`` or ``:name`` placeholders."""
        logger.debug("SQL: %s | params: %s", " ".join(sql.split()), params)
        return self.conn.execute(sql, params)

    def executemany(self, sql: str, params_list: list[Params]) -> sqlite3.Cursor:
        """Execute ``sql`` once per element of ``params_list``."""
        logger.debug("SQL (many): %s | count: %d", " ".join(sql.split()), len(params_list))
        return self.conn.executemany(sql, params_list)

    def fetchone(self, sql: str, params: Params = ()) -> Optional[sqlite3.Row]:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Params = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def scalar(self, sql: str, params: Params = (), default: Any = None) -> Any:
        """Return the first column of the first row, or ``default``."""
        row = self.fetchone(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]


def to_json(value: Any) -> str:
    """Serialize a JSON column value (tuples become arrays)."""
    return json.dumps(value, default=str)


def from_json(value: Optional[str], default: Any = None) -> Any:
    """Deserialize a JSON column value; ``None``/empty yields ``default``."""
    if not value:
        return default
    return json.loads(value)

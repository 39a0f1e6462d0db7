"""
SQLite connection management.

Provides two context managers:

``get_connection()``
  - Enables foreign key enforcement (OFF by default in SQLite).
  - Enables WAL journal mode so readers are not blocked by a refresh.
  - Sets a busy timeout to handle lock contention between concurrent refreshes.
  - Uses ``sqlite3.Row`` factory so rows behave like dicts.
  - Commits on clean exit, rolls back on exception.

``atomic()``
  - Wraps a unit of work in a named SAVEPOINT.  On exception the savepoint is
    rolled back wholly and the exception re-raised; on success it is released.
    Savepoints nest, so ``atomic()`` is safe inside an open transaction.

Usage::

    from farm_advisor.db.connection import atomic, get_connection

    with get_connection("data/db/farm_advisor.db") as conn:
        with atomic(conn, "refresh"):
            conn.execute("UPDATE recommendations SET ...")
            conn.execute("INSERT INTO recommendations ...")
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

logger = logging.getLogger(__name__)

_SAVEPOINT_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@contextmanager
def get_connection(
    db_path: str | Path,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> Generator[sqlite3.Connection, None, None]:
    """Open a configured SQLite connection as a context manager.

    Args:
        db_path: Path to the SQLite file, or ``":memory:"``.
        wal_mode: Enable WAL journal mode (ignored for in-memory databases).
        busy_timeout_ms: Milliseconds to wait on a locked database.

    Yields:
        An open ``sqlite3.Connection`` with row factory set.

    Raises:
        sqlite3.Error: On connection or PRAGMA failure.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), timeout=busy_timeout_ms / 1000)
    conn.row_factory = sqlite3.Row

    try:
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")
        if wal_mode and str(db_path) != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL;")
        logger.debug("Opened SQLite connection: %s", db_path)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        logger.exception("Transaction rolled back due to error.")
        raise
    finally:
        conn.close()
        logger.debug("Closed SQLite connection: %s", db_path)


@contextmanager
def atomic(conn: sqlite3.Connection, name: str = "unit_of_work") -> Generator[sqlite3.Connection, None, None]:
    """Run the enclosed statements inside a SAVEPOINT.

    Args:
        conn: Open connection.
        name: Savepoint identifier (letters, digits, underscore).

    Yields:
        ``conn`` itself.

    Raises:
        ValueError: If ``name`` is not a plain identifier.
    """
    if not _SAVEPOINT_NAME.match(name):
        raise ValueError(f"Invalid savepoint name: {name!r}")

    conn.execute(f"SAVEPOINT {name};")
    try:
        yield conn
    except BaseException:
        conn.execute(f"ROLLBACK TO SAVEPOINT {name};")
        conn.execute(f"RELEASE SAVEPOINT {name};")
        logger.debug("Rolled back savepoint %s", name)
        raise
    else:
        conn.execute(f"RELEASE SAVEPOINT {name};")

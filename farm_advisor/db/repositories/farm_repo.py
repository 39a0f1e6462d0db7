"""
Repositories for users, farms and tasks.

Ownership is enforced in SQL: ``get_farm()`` only returns a farm whose
``user_id`` matches the caller, so "absent" and "not yours" look the same.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Optional

from farm_advisor.db.repositories.base import BaseRepository
from farm_advisor.models.farm import FarmRecord, TaskRecord, UserRecord
from farm_advisor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)

_ACTIVE_TASK_STATUSES = ("PENDING", "IN_PROGRESS")


class FarmRepository(BaseRepository):
    """Read/write access to ``users``, ``farms`` and ``tasks``."""

    # ── Users ─────────────────────────────────────────────────────────────────

    def insert_user(self, user: UserRecord) -> None:
        self.execute(
            "INSERT INTO users (user_id, name, email, region) VALUES (?, ?, ?, ?);",
            (user.user_id, user.name, user.email, user.region),
        )

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        row = self.fetchone("SELECT * FROM users WHERE user_id = ?;", (user_id,))
        if row is None:
            return None
        return UserRecord(
            user_id=row["user_id"],
            name=row["name"],
            email=row["email"],
            region=row["region"],
        )

    # ── Farms ─────────────────────────────────────────────────────────────────

    def insert_farm(self, farm: FarmRecord) -> None:
        self.execute(
            """
            INSERT INTO farms (farm_id, user_id, name, region, district, size, size_unit, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, COALESCE(?, strftime('%Y-%m-%dT%H:%M:%fZ', 'now')));
            """,
            (
                farm.farm_id,
                farm.user_id,
                farm.name,
                farm.region,
                farm.district,
                farm.size,
                farm.size_unit,
                to_db_timestamp(farm.created_at),
            ),
        )

    def get_farm(self, farm_id: str, user_id: str) -> Optional[FarmRecord]:
        """Fetch a farm only if it belongs to ``user_id``."""
        row = self.fetchone(
            "SELECT * FROM farms WHERE farm_id = ? AND user_id = ?;",
            (farm_id, user_id),
        )
        return _row_to_farm(row) if row else None

    def get_first_farm(self, user_id: str) -> Optional[FarmRecord]:
        """The user's oldest farm, used when no farm is specified."""
        row = self.fetchone(
            """
            SELECT * FROM farms
            WHERE user_id = ?
            ORDER BY created_at ASC, farm_id ASC
            LIMIT 1;
            """,
            (user_id,),
        )
        return _row_to_farm(row) if row else None

    def count_crop_entries(self, farm_id: str) -> int:
        return int(self.scalar(
            "SELECT COUNT(*) FROM crop_entries WHERE farm_id = ?;", (farm_id,), default=0,
        ))

    def count_livestock_entries(self, farm_id: str) -> int:
        return int(self.scalar(
            "SELECT COUNT(*) FROM livestock_entries WHERE farm_id = ?;", (farm_id,), default=0,
        ))

    # ── Tasks ─────────────────────────────────────────────────────────────────

    def insert_task(self, task: TaskRecord) -> None:
        self.execute(
            """
            INSERT INTO tasks (task_id, user_id, farm_id, title, status, due_date)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                task.task_id,
                task.user_id,
                task.farm_id,
                task.title,
                task.status,
                to_db_timestamp(task.due_date),
            ),
        )

    def count_active_tasks(self, user_id: str) -> int:
        return int(self.scalar(
            "SELECT COUNT(*) FROM tasks WHERE user_id = ? AND status IN (?, ?);",
            (user_id, *_ACTIVE_TASK_STATUSES),
            default=0,
        ))

    def count_overdue_tasks(self, user_id: str, now: datetime) -> int:
        """Active tasks whose due date is before ``now``."""
        return int(self.scalar(
            """
            SELECT COUNT(*) FROM tasks
            WHERE user_id = ? AND status IN (?, ?)
              AND due_date IS NOT NULL AND due_date < ?;
            """,
            (user_id, *_ACTIVE_TASK_STATUSES, to_db_timestamp(now)),
            default=0,
        ))


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_farm(row: sqlite3.Row) -> FarmRecord:
    return FarmRecord(
        farm_id=row["farm_id"],
        user_id=row["user_id"],
        name=row["name"],
        region=row["region"],
        district=row["district"],
        size=row["size"],
        size_unit=row["size_unit"],
        created_at=from_db_timestamp(row["created_at"]),
    )

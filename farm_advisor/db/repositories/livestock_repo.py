"""
Repository for livestock entries and their health records.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from farm_advisor.db.repositories.base import BaseRepository
from farm_advisor.models.farm import HealthRecord, LivestockEntryRecord
from farm_advisor.taxonomy.dse_taxonomy import ACTIVE_LIVESTOCK_STATUSES
from farm_advisor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class LivestockRepository(BaseRepository):
    """Read/write access to ``livestock_entries`` and ``livestock_health_records``."""

    def insert_entry(self, entry: LivestockEntryRecord) -> None:
        self.execute(
            """
            INSERT INTO livestock_entries (
                livestock_entry_id, user_id, farm_id, livestock_type, breed,
                quantity, initial_quantity, acquired_date, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.livestock_entry_id,
                entry.user_id,
                entry.farm_id,
                entry.livestock_type,
                entry.breed,
                entry.quantity,
                entry.initial_quantity,
                to_db_timestamp(entry.acquired_date),
                entry.status,
            ),
        )

    def insert_health_record(self, record: HealthRecord) -> int:
        """Insert a health record and return its ``record_id``."""
        cursor = self.execute(
            """
            INSERT INTO livestock_health_records (
                livestock_entry_id, record_type, record_date,
                vaccine_name, next_due_date, notes
            ) VALUES (?, ?, ?, ?, ?, ?);
            """,
            (
                record.livestock_entry_id,
                record.record_type,
                to_db_timestamp(record.record_date),
                record.vaccine_name,
                to_db_timestamp(record.next_due_date),
                record.notes,
            ),
        )
        return int(cursor.lastrowid)

    def get_active_entries(
        self,
        user_id: str,
        farm_id: Optional[str] = None,
    ) -> list[LivestockEntryRecord]:
        """ACTIVE livestock entries, optionally scoped to one farm."""
        statuses = sorted(ACTIVE_LIVESTOCK_STATUSES)
        sql = f"""
            SELECT * FROM livestock_entries
            WHERE user_id = ? AND status IN ({", ".join("?" * len(statuses))})
        """
        params: list = [user_id, *statuses]
        if farm_id is not None:
            sql += " AND farm_id = ?"
            params.append(farm_id)
        sql += " ORDER BY acquired_date ASC, livestock_entry_id ASC;"
        return [_row_to_entry(r) for r in self.fetchall(sql, tuple(params))]

    def get_recent_health_records(
        self,
        livestock_entry_id: str,
        limit: int = 20,
    ) -> list[HealthRecord]:
        """Most recent health records for one entry, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM livestock_health_records
            WHERE livestock_entry_id = ?
            ORDER BY record_date DESC, record_id DESC
            LIMIT ?;
            """,
            (livestock_entry_id, limit),
        )
        return [
            HealthRecord(
                record_id=r["record_id"],
                livestock_entry_id=r["livestock_entry_id"],
                record_type=r["record_type"],
                record_date=from_db_timestamp(r["record_date"]),
                vaccine_name=r["vaccine_name"],
                next_due_date=from_db_timestamp(r["next_due_date"]),
                notes=r["notes"],
            )
            for r in rows
        ]


def _row_to_entry(row: sqlite3.Row) -> LivestockEntryRecord:
    return LivestockEntryRecord(
        livestock_entry_id=row["livestock_entry_id"],
        user_id=row["user_id"],
        farm_id=row["farm_id"],
        livestock_type=row["livestock_type"],
        breed=row["breed"],
        quantity=row["quantity"],
        initial_quantity=row["initial_quantity"],
        acquired_date=from_db_timestamp(row["acquired_date"]),
        status=row["status"],
    )

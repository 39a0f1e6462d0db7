"""
Repository for crop entries and their logged activities.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from farm_advisor.db.repositories.base import BaseRepository
from farm_advisor.models.farm import CropActivityRecord, CropEntryRecord
from farm_advisor.taxonomy.dse_taxonomy import ACTIVE_CROP_STATUSES
from farm_advisor.utils.time_utils import from_db_timestamp, to_db_timestamp

logger = logging.getLogger(__name__)


class CropRepository(BaseRepository):
    """Read/write access to ``crop_entries`` and ``crop_activities``."""

    def insert_entry(self, entry: CropEntryRecord) -> None:
        self.execute(
            """
            INSERT INTO crop_entries (
                crop_entry_id, user_id, farm_id, crop_type, variety, status,
                planting_date, expected_harvest_date, land_area, land_area_unit,
                yield_quantity, yield_unit
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                entry.crop_entry_id,
                entry.user_id,
                entry.farm_id,
                entry.crop_type,
                entry.variety,
                entry.status,
                to_db_timestamp(entry.planting_date),
                to_db_timestamp(entry.expected_harvest_date),
                entry.land_area,
                entry.land_area_unit,
                entry.yield_quantity,
                entry.yield_unit,
            ),
        )

    def insert_activity(self, activity: CropActivityRecord) -> int:
        """Insert an activity and return its ``activity_id``."""
        cursor = self.execute(
            """
            INSERT INTO crop_activities (crop_entry_id, activity_type, activity_date, notes)
            VALUES (?, ?, ?, ?);
            """,
            (
                activity.crop_entry_id,
                activity.activity_type,
                to_db_timestamp(activity.activity_date),
                activity.notes,
            ),
        )
        return int(cursor.lastrowid)

    def get_active_entries(
        self,
        user_id: str,
        farm_id: Optional[str] = None,
    ) -> list[CropEntryRecord]:
        """Crop entries in PLANNED / GROWING, optionally scoped to one farm.

        Args:
            user_id: Owner.
            farm_id: If given, only entries on this farm.

        Returns:
            Entries ordered by planting date, then id.
        """
        statuses = sorted(ACTIVE_CROP_STATUSES)
        sql = f"""
            SELECT * FROM crop_entries
            WHERE user_id = ? AND status IN ({", ".join("?" * len(statuses))})
        """
        params: list = [user_id, *statuses]
        if farm_id is not None:
            sql += " AND farm_id = ?"
            params.append(farm_id)
        sql += " ORDER BY planting_date ASC, crop_entry_id ASC;"
        return [_row_to_entry(r) for r in self.fetchall(sql, tuple(params))]

    def get_recent_activities(
        self,
        crop_entry_id: str,
        limit: int = 10,
    ) -> list[CropActivityRecord]:
        """Most recent activities for one entry, newest first."""
        rows = self.fetchall(
            """
            SELECT * FROM crop_activities
            WHERE crop_entry_id = ?
            ORDER BY activity_date DESC, activity_id DESC
            LIMIT ?;
            """,
            (crop_entry_id, limit),
        )
        return [
            CropActivityRecord(
                activity_id=r["activity_id"],
                crop_entry_id=r["crop_entry_id"],
                activity_type=r["activity_type"],
                activity_date=from_db_timestamp(r["activity_date"]),
                notes=r["notes"],
            )
            for r in rows
        ]


def _row_to_entry(row: sqlite3.Row) -> CropEntryRecord:
    return CropEntryRecord(
        crop_entry_id=row["crop_entry_id"],
        user_id=row["user_id"],
        farm_id=row["farm_id"],
        crop_type=row["crop_type"],
        variety=row["variety"],
        status=row["status"],
        planting_date=from_db_timestamp(row["planting_date"]),
        expected_harvest_date=from_db_timestamp(row["expected_harvest_date"]),
        land_area=row["land_area"],
        land_area_unit=row["land_area_unit"],
        yield_quantity=row["yield_quantity"],
        yield_unit=row["yield_unit"],
    )

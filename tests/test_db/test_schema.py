"""
Tests for db/schema.py, db/migrations.py and db/connection.py.

What we test
------------
- apply_schema() creates every table and is idempotent.
- Lookup indexes exist after schema + migrations.
- CHECK constraints reject out-of-range confidence and unknown statuses.
- run_migrations() applies every migration once, then none.
- atomic() rolls the enclosed work back on error and releases on success.
- get_connection() enables foreign keys and commits on clean exit.
"""

from __future__ import annotations

import sqlite3

import pytest

from farm_advisor.db.connection import atomic, get_connection
from farm_advisor.db.migrations import MIGRATIONS, Migration, get_applied_versions, run_migrations
from farm_advisor.db.schema import (
    ALL_TABLE_NAMES,
    apply_schema,
    get_existing_indexes,
    get_existing_tables,
)


class TestSchema:
    def test_all_tables_created(self, in_memory_db):
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_idempotent(self, in_memory_db):
        apply_schema(in_memory_db)
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_recommendation_indexes(self, in_memory_db):
        indexes = set(get_existing_indexes(in_memory_db))
        assert {"idx_recommendations_user_status", "idx_recommendations_user_created"} <= indexes

    def test_unknown_status_rejected(self, seeded_db):
        with pytest.raises(sqlite3.IntegrityError):
            seeded_db.execute(
                """
                INSERT INTO recommendations (
                    recommendation_id, user_id, category, priority, priority_rank, title,
                    reason, confidence, confidence_label, evidence, rule_code, model_version,
                    valid_from, status, created_at
                ) VALUES ('r', 'user-1', 'CROP', 'HIGH', 1, 't', '[]', 0.5, 'MEDIUM', '{}',
                          'R1', 'rules_v1', '2026-04-15', 'ARCHIVED', '2026-04-15');
                """
            )

    def test_confidence_range_enforced(self, seeded_db):
        with pytest.raises(sqlite3.IntegrityError):
            seeded_db.execute(
                """
                INSERT INTO recommendations (
                    recommendation_id, user_id, category, priority, priority_rank, title,
                    reason, confidence, confidence_label, evidence, rule_code, model_version,
                    valid_from, created_at
                ) VALUES ('r', 'user-1', 'CROP', 'HIGH', 1, 't', '[]', 1.5, 'HIGH', '{}',
                          'R1', 'rules_v1', '2026-04-15', '2026-04-15');
                """
            )

    def test_foreign_keys_enforced(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO farms (farm_id, user_id, name) VALUES ('f', 'nobody', 'x');"
            )


class TestMigrations:
    def test_applies_each_once(self, in_memory_db):
        assert run_migrations(in_memory_db) == len(MIGRATIONS)
        assert run_migrations(in_memory_db) == 0
        assert get_applied_versions(in_memory_db) == {m.version for m in MIGRATIONS}

    def test_failed_step_not_recorded(self, in_memory_db, monkeypatch):
        def broken(conn):
            conn.execute("CREATE TABLE half_done (x INTEGER);")
            raise sqlite3.OperationalError("step failed")

        monkeypatch.setattr(
            "farm_advisor.db.migrations.MIGRATIONS",
            (Migration("9999_broken", "Always fails", broken),),
        )
        with pytest.raises(sqlite3.OperationalError):
            run_migrations(in_memory_db)
        assert "9999_broken" not in get_applied_versions(in_memory_db)
        assert "half_done" not in get_existing_tables(in_memory_db)

    def test_feedback_history_index(self, in_memory_db):
        run_migrations(in_memory_db)
        assert "idx_feedback_user_created" in get_existing_indexes(in_memory_db)


class TestAtomic:
    def test_rollback_on_error(self, seeded_db):
        with pytest.raises(RuntimeError):
            with atomic(seeded_db, "write_test"):
                seeded_db.execute("UPDATE users SET name = 'Changed' WHERE user_id = 'user-1';")
                raise RuntimeError("boom")
        name = seeded_db.execute("SELECT name FROM users WHERE user_id = 'user-1';").fetchone()[0]
        assert name == "Ama Mensah"

    def test_release_on_success(self, seeded_db):
        with atomic(seeded_db, "write_test"):
            seeded_db.execute("UPDATE users SET name = 'Changed' WHERE user_id = 'user-1';")
        name = seeded_db.execute("SELECT name FROM users WHERE user_id = 'user-1';").fetchone()[0]
        assert name == "Changed"

    def test_nested_inner_rollback(self, seeded_db):
        with atomic(seeded_db, "outer"):
            seeded_db.execute("UPDATE users SET name = 'Outer' WHERE user_id = 'user-1';")
            with pytest.raises(ValueError):
                with atomic(seeded_db, "inner"):
                    seeded_db.execute("UPDATE users SET region = 'Volta' WHERE user_id = 'user-1';")
                    raise ValueError("inner failed")
        row = seeded_db.execute("SELECT name, region FROM users WHERE user_id = 'user-1';").fetchone()
        assert (row["name"], row["region"]) == ("Outer", "Ashanti")

    def test_rejects_bad_savepoint_name(self, in_memory_db):
        with pytest.raises(ValueError):
            with atomic(in_memory_db, "drop table; --"):
                pass


class TestGetConnection:
    def test_file_database(self, tmp_path):
        db_path = tmp_path / "nested" / "farm.db"
        with get_connection(db_path) as conn:
            assert conn.execute("PRAGMA foreign_keys;").fetchone()[0] == 1
            apply_schema(conn)
            conn.execute("INSERT INTO users (user_id, name) VALUES ('u1', 'Kofi');")

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM users;").fetchone()[0] == 1
            assert conn.execute("PRAGMA journal_mode;").fetchone()[0] == "wal"

    def test_rollback_on_exception(self, tmp_path):
        db_path = tmp_path / "farm.db"
        with get_connection(db_path) as conn:
            apply_schema(conn)

        with pytest.raises(RuntimeError):
            with get_connection(db_path) as conn:
                conn.execute("INSERT INTO users (user_id, name) VALUES ('u1', 'Kofi');")
                raise RuntimeError("abort")

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM users;").fetchone()[0] == 0

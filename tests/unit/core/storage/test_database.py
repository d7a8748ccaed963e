"""Tests for WellnessDatabase: schema creation, versioning, lifecycle."""

from __future__ import annotations

import pytest

from companion.core.storage.database import SCHEMA_VERSION, DatabaseError, WellnessDatabase


class TestInitialization:
    def test_in_memory_initialize(self):
        db = WellnessDatabase(":memory:")
        db.initialize()
        assert db.connection is not None
        db.close()

    def test_double_initialize_is_idempotent(self):
        db = WellnessDatabase(":memory:")
        db.initialize()
        conn1 = db.connection
        db.initialize()
        assert db.connection is conn1
        db.close()

    def test_connection_before_init_raises(self):
        db = WellnessDatabase(":memory:")
        with pytest.raises(DatabaseError, match="not initialized"):
            _ = db.connection

    def test_context_manager(self):
        with WellnessDatabase(":memory:") as db:
            assert db.connection is not None
        with pytest.raises(DatabaseError):
            _ = db.connection

    def test_file_database_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "wellness.db"
        with WellnessDatabase(str(path)) as db:
            assert db.get_schema_version() == SCHEMA_VERSION
        assert path.exists()


class TestSchema:
    def test_schema_version_recorded(self):
        with WellnessDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION

    def test_tables_created(self):
        expected_tables = {"samples", "kv_store", "schema_version", "audit_log"}
        with WellnessDatabase(":memory:") as db:
            cursor = db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
            )
            tables = {row[0] for row in cursor.fetchall()}
            for t in expected_tables:
                assert t in tables, f"Missing table: {t}"

    def test_indexes_created(self):
        expected = {"idx_samples_stream_ts", "idx_audit_timestamp", "idx_audit_action"}
        with WellnessDatabase(":memory:") as db:
            cursor = db.connection.execute(
                "SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_%'"
            )
            indexes = {row[0] for row in cursor.fetchall()}
            assert expected <= indexes

    def test_reopen_keeps_single_version_row(self, tmp_path):
        path = str(tmp_path / "wellness.db")
        with WellnessDatabase(path):
            pass
        with WellnessDatabase(path) as db:
            count = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()[0]
            assert count == 1

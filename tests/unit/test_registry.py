"""
Unit tests for the migration registry.

Tests version tracking, record immutability, legacy import and checksum
integrity checks.
"""

import sqlite3

import pytest

from forgedb.migration.errors import DuplicateVersionError, MigrationError
from forgedb.migration.registry import MigrationRecord, MigrationRegistry


def create_legacy_table(conn, versions):
    conn.execute("""
        CREATE TABLE schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TEXT DEFAULT (datetime('now'))
        )
    """)
    for version in versions:
        conn.execute(
            "INSERT INTO schema_migrations (version, applied_at) VALUES (?, ?)",
            (version, f"2024-01-0{version} 12:00:00")
        )


@pytest.mark.unit
@pytest.mark.registry
class TestRegistryBasics:
    """Tests for version queries and recording."""

    def test_current_version_without_table(self, conn):
        registry = MigrationRegistry(conn)
        assert registry.current_version() == 0
        assert registry.applied_migrations() == []
        assert registry.is_applied(1) is False

    def test_ensure_registry_table_is_idempotent(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        registry.ensure_registry_table()
        assert registry.current_version() == 0

    def test_record_and_query(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        registry.record_migration(1, "Base schema", checksum="abc", execution_time_ms=12)
        registry.record_migration(3, "Chapter edits")

        assert registry.current_version() == 3
        assert registry.is_applied(1)
        assert not registry.is_applied(2)

        records = registry.applied_migrations()
        assert [r.version for r in records] == [1, 3]
        first = records[0]
        assert isinstance(first, MigrationRecord)
        assert first.name == "Base schema"
        assert first.checksum == "abc"
        assert first.execution_time_ms == 12
        assert first.can_rollback is False
        assert first.applied_at

    def test_applied_migrations_ascending(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        for version in (5, 2, 4):
            registry.record_migration(version, f"m{version}")
        assert [r.version for r in registry.applied_migrations()] == [2, 4, 5]

    def test_duplicate_version_rejected(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        registry.record_migration(1, "first")

        with pytest.raises(DuplicateVersionError) as exc_info:
            registry.record_migration(1, "again")

        assert exc_info.value.version == 1
        assert isinstance(exc_info.value, MigrationError)
        assert registry.applied_migrations()[0].name == "first"

    def test_other_constraint_errors_propagate(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()

        with pytest.raises(sqlite3.IntegrityError) as exc_info:
            registry.record_migration(1, None)

        assert not isinstance(exc_info.value, DuplicateVersionError)
        assert not registry.is_applied(1)

    def test_record_joins_open_transaction(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()

        conn.execute("BEGIN")
        registry.record_migration(1, "rolled back")
        conn.execute("ROLLBACK")

        assert registry.current_version() == 0

    def test_switches_connection_to_autocommit(self):
        connection = sqlite3.connect(":memory:")
        try:
            MigrationRegistry(connection)
            assert connection.isolation_level is None
        finally:
            connection.close()


@pytest.mark.unit
@pytest.mark.registry
class TestLegacyImport:
    """Tests for importing the legacy schema_migrations ledger."""

    def test_no_legacy_table(self, conn):
        registry = MigrationRegistry(conn)
        assert registry.migrate_from_old_schema() == 0

    def test_imports_legacy_rows(self, conn):
        create_legacy_table(conn, [1, 2, 3])
        registry = MigrationRegistry(conn)

        assert registry.migrate_from_old_schema() == 3
        records = registry.applied_migrations()
        assert [r.version for r in records] == [1, 2, 3]
        assert records[0].name == "migration_001"
        assert records[0].checksum == "legacy"
        assert records[0].applied_at == "2024-01-01 12:00:00"
        assert all(not r.can_rollback for r in records)

    def test_import_runs_once(self, conn):
        create_legacy_table(conn, [1, 2])
        registry = MigrationRegistry(conn)
        registry.migrate_from_old_schema()

        conn.execute("INSERT INTO schema_migrations (version) VALUES (3)")
        assert registry.migrate_from_old_schema() == 0
        assert registry.current_version() == 2

    def test_import_skipped_when_registry_populated(self, conn):
        create_legacy_table(conn, [1, 2, 3])
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        registry.record_migration(1, "Base schema")

        assert registry.migrate_from_old_schema() == 0
        assert [r.version for r in registry.applied_migrations()] == [1]

    def test_legacy_table_left_untouched(self, conn):
        create_legacy_table(conn, [1, 2])
        MigrationRegistry(conn).migrate_from_old_schema()
        count = conn.execute("SELECT COUNT(*) FROM schema_migrations").fetchone()[0]
        assert count == 2

    def test_empty_legacy_table(self, conn):
        create_legacy_table(conn, [])
        registry = MigrationRegistry(conn)
        assert registry.migrate_from_old_schema() == 0
        assert registry.current_version() == 0


@pytest.mark.unit
@pytest.mark.registry
class TestIntegrity:
    """Tests for checksum-based change detection."""

    def test_checksum_is_stable(self):
        first = MigrationRegistry.calculate_checksum("CREATE TABLE t (a INT);")
        second = MigrationRegistry.calculate_checksum("  CREATE TABLE t (a INT);\n")
        assert first == second
        assert len(first) == 16

    def test_detects_modified_script(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        original = "CREATE TABLE t (a INT);"
        registry.record_migration(1, "t", checksum=registry.calculate_checksum(original))
        registry.record_migration(2, "u", checksum=registry.calculate_checksum("SELECT 1;"))

        modified = registry.verify_integrity({
            1: "CREATE TABLE t (a INT, b INT);",
            2: "SELECT 1;",
        })
        assert modified == [1]

    def test_skips_unfingerprinted_records(self, conn):
        create_legacy_table(conn, [1])
        registry = MigrationRegistry(conn)
        registry.migrate_from_old_schema()
        registry.record_migration(2, "inline", checksum="inline")

        assert registry.verify_integrity({1: "anything", 2: "anything"}) == []

    def test_missing_script_is_not_modified(self, conn):
        registry = MigrationRegistry(conn)
        registry.ensure_registry_table()
        registry.record_migration(1, "t", checksum="0123456789abcdef")
        assert registry.verify_integrity({}) == []

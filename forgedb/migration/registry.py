"""
Migration registry: the persistent ledger of applied schema versions.

Replaces the legacy single-column ``schema_migrations`` table with
``migration_registry``, which also records a name, checksum, rollback
capability and execution time per version. Legacy rows are imported once;
the legacy table itself is left in place.
"""

import sqlite3
import logging
from dataclasses import dataclass
from typing import Dict, List

from .base_migration import calculate_checksum, ensure_autocommit, table_exists
from .errors import DuplicateVersionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MigrationRecord:
    """One applied migration."""

    version: int
    name: str
    applied_at: str
    can_rollback: bool
    checksum: str
    execution_time_ms: int = 0


class MigrationRegistry:
    """
    Ledger of applied migrations, backed by the injected connection.

    Nothing is cached: every read goes to the database so version decisions
    are never made against stale state. Writes never commit on their own;
    inside MigrationRunner they join the migration's transaction.
    """

    REGISTRY_TABLE = "migration_registry"
    LEGACY_TABLE = "schema_migrations"

    def __init__(self, conn: sqlite3.Connection):
        """
        Initialize registry.

        Args:
            conn: Open connection to the database being migrated
        """
        ensure_autocommit(conn)
        self.conn = conn

    calculate_checksum = staticmethod(calculate_checksum)

    def ensure_registry_table(self) -> None:
        """Create the registry table if it does not exist."""
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.REGISTRY_TABLE} (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL DEFAULT (datetime('now')),
                can_rollback INTEGER NOT NULL DEFAULT 0,
                checksum TEXT NOT NULL DEFAULT '',
                execution_time_ms INTEGER NOT NULL DEFAULT 0
            )
        """)
        logger.debug("Migration registry table ensured")

    def _table_exists(self, table: str) -> bool:
        return table_exists(self.conn, table)

    def current_version(self) -> int:
        """
        Get the current schema version.

        Returns:
            Highest recorded version, or 0 if nothing is recorded
        """
        if not self._table_exists(self.REGISTRY_TABLE):
            return 0

        row = self.conn.execute(
            f"SELECT MAX(version) FROM {self.REGISTRY_TABLE}"
        ).fetchone()
        return row[0] if row[0] is not None else 0

    def is_applied(self, version: int) -> bool:
        """Check if a specific version has been recorded."""
        if not self._table_exists(self.REGISTRY_TABLE):
            return False
        row = self.conn.execute(
            f"SELECT 1 FROM {self.REGISTRY_TABLE} WHERE version = ?",
            (version,)
        ).fetchone()
        return row is not None

    def record_migration(self, version: int, name: str, can_rollback: bool = False,
                         checksum: str = "", execution_time_ms: int = 0) -> None:
        """
        Record a migration as applied.

        Args:
            version: Schema version that was applied
            name: Migration name
            can_rollback: Whether a down-script exists for this version
            checksum: Script fingerprint (see calculate_checksum)
            execution_time_ms: How long the migration took

        Raises:
            DuplicateVersionError: If the version is already recorded
            sqlite3.IntegrityError: For any other constraint violation
        """
        try:
            self.conn.execute(
                f"""
                INSERT INTO {self.REGISTRY_TABLE}
                (version, name, can_rollback, checksum, execution_time_ms)
                VALUES (?, ?, ?, ?, ?)
                """,
                (version, name, 1 if can_rollback else 0, checksum, execution_time_ms)
            )
        except sqlite3.IntegrityError as e:
            if self.is_applied(version):
                raise DuplicateVersionError(version) from e
            raise

        logger.info(f"Recorded migration {version:03d} ({name}) in {execution_time_ms} ms")

    def applied_migrations(self) -> List[MigrationRecord]:
        """
        Get all applied migrations.

        Returns:
            Migration records ordered by ascending version
        """
        if not self._table_exists(self.REGISTRY_TABLE):
            return []

        cursor = self.conn.execute(
            f"""
            SELECT version, name, applied_at, can_rollback, checksum, execution_time_ms
            FROM {self.REGISTRY_TABLE}
            ORDER BY version ASC
            """
        )
        return [
            MigrationRecord(
                version=row[0],
                name=row[1],
                applied_at=row[2],
                can_rollback=bool(row[3]),
                checksum=row[4],
                execution_time_ms=row[5],
            )
            for row in cursor.fetchall()
        ]

    def migrate_from_old_schema(self) -> int:
        """
        Import rows from the legacy schema_migrations table.

        Runs only when the legacy table exists and the registry is empty, so
        repeated calls are no-ops. The legacy table is not modified.

        Returns:
            Number of legacy rows imported
        """
        if not self._table_exists(self.LEGACY_TABLE):
            return 0

        self.ensure_registry_table()
        if self.current_version() > 0:
            logger.debug("Migration registry already populated, skipping legacy import")
            return 0

        legacy_rows = self.conn.execute(
            f"SELECT version, applied_at FROM {self.LEGACY_TABLE} ORDER BY version ASC"
        ).fetchall()

        if not legacy_rows:
            return 0

        self.conn.execute("BEGIN")
        try:
            for version, applied_at in legacy_rows:
                self.conn.execute(
                    f"""
                    INSERT INTO {self.REGISTRY_TABLE}
                    (version, name, applied_at, can_rollback, checksum, execution_time_ms)
                    VALUES (?, ?, COALESCE(?, datetime('now')), 0, 'legacy', 0)
                    """,
                    (version, f"migration_{version:03d}", applied_at)
                )
            self.conn.execute("COMMIT")
        except sqlite3.Error:
            self.conn.execute("ROLLBACK")
            logger.error("✗ Legacy ledger import failed, registry left empty")
            raise

        logger.info(f"Imported {len(legacy_rows)} legacy migrations from {self.LEGACY_TABLE}")
        return len(legacy_rows)

    def verify_integrity(self, scripts: Dict[int, str]) -> List[int]:
        """
        Find applied migrations whose script changed after being applied.

        Args:
            scripts: Mapping of version to current script text

        Returns:
            Versions whose recorded checksum differs from the current script
        """
        modified = []
        for record in self.applied_migrations():
            script = scripts.get(record.version)
            # Imported and inline records carry no script fingerprint
            if script is None or record.checksum in ("", "legacy", "inline"):
                continue
            current = calculate_checksum(script)
            if current != record.checksum:
                logger.warning(
                    f"⚠ Migration {record.version:03d} modified after being applied "
                    f"(expected {record.checksum}, found {current})"
                )
                modified.append(record.version)
        return modified

"""
Schema version management and migration orchestration.

MigrationRunner brings a database up to date:

    Start → BackupPhase → RegistryBootstrap → {ApplyPending}* → Done

Each ApplyPending step is BEGIN → execute statements → record version →
COMMIT. Any failure rolls the migration back and aborts the whole run.
"""

import sqlite3
import time
import logging
from typing import Dict, List, Optional

from .backup_manager import BackupManager
from .base_migration import Migration, ScriptMigration, ensure_autocommit
from .catalog import MigrationCatalog
from .errors import MigrationError
from .registry import MigrationRegistry

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Applies pending catalog migrations to one database.

    Responsibilities:
    - Take a best-effort backup before the first pending migration
    - Bootstrap the registry and import the legacy ledger
    - Apply pending migrations in order, one transaction each
    - Report migration status
    """

    def __init__(self, conn: sqlite3.Connection, catalog: MigrationCatalog,
                 registry: Optional[MigrationRegistry] = None,
                 backup_manager: Optional[BackupManager] = None):
        """
        Initialize migration runner.

        Args:
            conn: Connection to the database being migrated
            catalog: Ordered migrations to apply
            registry: Ledger of applied versions (created from conn if omitted)
            backup_manager: Used for the pre-migration backup; None disables it
        """
        ensure_autocommit(conn)
        self.conn = conn
        self.catalog = catalog
        self.registry = registry or MigrationRegistry(conn)
        self.backup_manager = backup_manager

    def run_migrations(self) -> int:
        """
        Apply all pending migrations.

        Idempotent: with nothing pending this is a version check and returns.

        Returns:
            Number of migrations applied

        Raises:
            MigrationError: If any migration fails (it is rolled back first)
        """
        logger.info("Running database migrations...")

        # Read-only peek so an up-to-date database is not backed up on every start
        if self.catalog.pending(self.registry.current_version()):
            self._backup_phase()

        self.registry.ensure_registry_table()
        self.registry.migrate_from_old_schema()

        current_version = self.registry.current_version()
        logger.info(f"Current schema version: {current_version}")

        pending = self.catalog.pending(current_version)
        if not pending:
            logger.info("No pending migrations")
            return 0

        logger.info(f"Pending migrations: {len(pending)}")
        for migration in pending:
            logger.info(f"  - {migration}")

        applied = 0
        for migration in pending:
            if not migration.is_available():
                logger.info(f"Migration file {migration.source_name} not found, skipping")
                continue
            self._apply_migration(migration)
            applied += 1

        logger.info(f"✓ All migrations complete ({applied} applied)")
        return applied

    def _backup_phase(self) -> None:
        if self.backup_manager is None:
            return

        result = self.backup_manager.create_backup_sync("pre-migration")
        if not result.success:
            # Transaction rollback already protects the schema itself
            logger.warning(f"⚠ Pre-migration backup failed, continuing: {result.error}")
        elif result.backup_path is not None:
            logger.info(f"Pre-migration backup: {result.backup_path}")

    def _apply_migration(self, migration: Migration) -> None:
        """
        Apply one migration inside its own transaction.

        Raises:
            MigrationError: If the migration fails; the transaction is rolled back
        """
        logger.info(f"Applying migration {migration.version:03d}: {migration.description}")
        start = time.monotonic()

        try:
            checksum = migration.checksum()
            self.conn.execute("BEGIN")
            migration.up(self.conn)

            if not migration.verify(self.conn):
                raise MigrationError(f"Migration {migration.version} verification failed")

            self.registry.record_migration(
                migration.version,
                migration.name,
                can_rollback=migration.can_rollback,
                checksum=checksum,
                execution_time_ms=int((time.monotonic() - start) * 1000),
            )
            self.conn.execute("COMMIT")

        except Exception as e:
            self._rollback(migration)
            logger.error(f"✗ Migration {migration.version:03d} failed: {e}")
            if isinstance(e, MigrationError):
                raise
            raise MigrationError(f"Migration {migration.version} failed: {e}") from e

        logger.info(f"✓ Migration {migration.version:03d} applied successfully")

    def _rollback(self, migration: Migration) -> None:
        if not self.conn.in_transaction:
            return
        try:
            self.conn.execute("ROLLBACK")
            logger.info(f"Rolled back migration {migration.version:03d}")
        except sqlite3.Error as e:
            logger.error(f"✗ Rollback of migration {migration.version:03d} failed: {e}")

    def get_pending_migrations(self) -> List[Migration]:
        """Catalog entries above the current version."""
        return self.catalog.pending(self.registry.current_version())

    def get_migration_status(self) -> Dict:
        """
        Get migration status.

        Returns:
            Status dictionary with current_version, applied_count,
            pending_file_names, pending_versions and modified_versions
        """
        current_version = self.registry.current_version()
        applied = self.registry.applied_migrations()
        pending = self.catalog.pending(current_version)

        scripts = {}
        for migration in self.catalog:
            if isinstance(migration, ScriptMigration) and migration.version <= current_version:
                script = migration.load_script()
                if script is not None:
                    scripts[migration.version] = script

        return {
            'current_version': current_version,
            'latest_version': self.catalog.latest_version,
            'applied_count': len(applied),
            'pending_count': len(pending),
            'pending_file_names': [m.source_name for m in pending],
            'pending_versions': [m.version for m in pending],
            'modified_versions': self.registry.verify_integrity(scripts),
        }

    def rollback_last_migration(self) -> None:
        """
        Roll back the most recent migration.

        No down-scripts are stored, so after snapshotting the current state
        this always refuses.

        Raises:
            MigrationError: Always
        """
        if self.backup_manager is not None:
            result = self.backup_manager.create_backup_sync("pre-rollback")
            if not result.success:
                logger.warning(f"⚠ Pre-rollback backup failed: {result.error}")

        applied = self.registry.applied_migrations()
        if not applied:
            raise MigrationError("No migrations have been applied")

        last = applied[-1]
        logger.error(
            f"Cannot rollback migration {last.version:03d} ({last.name}) - no down-script stored; "
            f"restore a backup instead"
        )
        raise MigrationError(f"Migration {last.version} does not support rollback")

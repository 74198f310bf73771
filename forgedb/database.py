"""
Database connection factory and process-start schema hook.

Callers open one connection with open_database() and pass it explicitly to
the migration and backup components. ensure_schema_current() is meant to run
once at startup, before the application accepts traffic; any exception it
raises should abort startup.
"""

import sqlite3
import logging
from pathlib import Path
from typing import Optional

from .config import DatabaseConfig, load_config
from .migration import BackupManager, MigrationRunner, build_default_catalog

logger = logging.getLogger(__name__)


def open_database(db_path: str, journal_mode: str = "WAL") -> sqlite3.Connection:
    """
    Open the database in autocommit mode with foreign keys enabled.

    Args:
        db_path: Database file (":memory:" for a private in-memory database)
        journal_mode: SQLite journal mode (WAL, DELETE, ...)

    Returns:
        Open connection
    """
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    if journal_mode:
        mode = conn.execute(f"PRAGMA journal_mode={journal_mode}").fetchone()
        logger.debug(f"Opened {db_path} (journal_mode={mode[0] if mode else 'unknown'})")
    return conn


def create_backup_manager(config: DatabaseConfig,
                          conn: Optional[sqlite3.Connection] = None) -> BackupManager:
    """Backup manager for the configured database."""
    return BackupManager(
        db_path=config.database_path,
        backup_dir=config.backup_dir,
        max_backups=config.max_backups,
        conn=conn,
    )


def ensure_schema_current(config: Optional[DatabaseConfig] = None,
                          conn: Optional[sqlite3.Connection] = None) -> int:
    """
    Bring the database schema up to date.

    A fresh install (no database file yet) is not backed up.

    Args:
        config: Database configuration (loaded from config/database.yaml if omitted)
        conn: Existing connection to migrate; opened from config if omitted

    Returns:
        Number of migrations applied

    Raises:
        MigrationError: If a migration fails
    """
    config = config or load_config()
    catalog = build_default_catalog(config.manifest_path)
    backup_manager = None
    if config.backup_before_migrate and Path(config.database_path).exists():
        backup_manager = create_backup_manager(config, conn)

    owns_connection = conn is None
    if owns_connection:
        conn = open_database(config.database_path, config.journal_mode)

    try:
        runner = MigrationRunner(conn, catalog, backup_manager=backup_manager)
        return runner.run_migrations()
    finally:
        if owns_connection:
            conn.close()

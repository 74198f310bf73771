"""
Database migration system for forgedb.

This package provides versioned schema migrations, a persistent migration
ledger, and snapshot backups for the embedded SQLite store.

Components:
- sql_parser: Splits migration scripts into executable statements
- registry: Ledger of applied schema versions
- backup_manager: Snapshot creation, restore, verification and retention
- version_manager: Migration orchestration (MigrationRunner)
- catalog: Ordered manifest of versions and their sources
"""

from .errors import MigrationError, DuplicateVersionError, BackupError
from .base_migration import Migration, ScriptMigration
from .sql_parser import parse_sql_statements
from .registry import MigrationRegistry, MigrationRecord
from .backup_manager import BackupManager, BackupInfo, BackupResult
from .catalog import MigrationCatalog, build_default_catalog
from .version_manager import MigrationRunner

__all__ = [
    'Migration',
    'ScriptMigration',
    'MigrationError',
    'DuplicateVersionError',
    'BackupError',
    'parse_sql_statements',
    'MigrationRegistry',
    'MigrationRecord',
    'BackupManager',
    'BackupInfo',
    'BackupResult',
    'MigrationCatalog',
    'build_default_catalog',
    'MigrationRunner',
]

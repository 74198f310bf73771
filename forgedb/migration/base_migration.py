"""
Base migration classes and utilities.

A migration is a versioned, one-directional schema change. Two kinds exist:

- Inline migrations subclass Migration and implement up() in Python, for
  changes that need to inspect the live schema first.
- Script migrations (ScriptMigration) carry SQL text, either inline or read
  from an external ``NNN_description.sql`` file.
"""

import hashlib
import sqlite3
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Union
from pathlib import Path

from .errors import MigrationError
from .sql_errors import execute_statement
from .sql_parser import parse_sql_statements

logger = logging.getLogger(__name__)


def calculate_checksum(sql: str) -> str:
    """Short SHA-256 fingerprint of a script, used to detect edited migrations."""
    return hashlib.sha256(sql.strip().encode("utf-8")).hexdigest()[:16]


class Migration(ABC):
    """
    Base class for database migrations.

    Each migration must define:
    - version: Integer version number (sequential)
    - description: Human-readable description of what the migration does
    - up(): Method to apply the migration
    - verify(): Optional method to verify migration succeeded

    up() runs inside the transaction opened by MigrationRunner, so it must
    not commit or roll back on its own.

    Example:
        class AddSeriesColumns(Migration):
            version = 2
            description = "Add series columns to projects"

            def up(self, conn: sqlite3.Connection):
                if not column_exists(conn, "projects", "series_bible"):
                    conn.execute("ALTER TABLE projects ADD COLUMN series_bible TEXT")

            def verify(self, conn: sqlite3.Connection) -> bool:
                return column_exists(conn, "projects", "series_bible")
    """

    # Subclasses must define these
    version: int
    description: str

    # No down-scripts are stored for any migration yet
    can_rollback: bool = False

    def __init__(self):
        """Initialize migration."""
        if not hasattr(self, 'version') or not isinstance(self.version, int):
            raise ValueError(f"{self.__class__.__name__} must define version as integer")
        if not hasattr(self, 'description') or not isinstance(self.description, str):
            raise ValueError(f"{self.__class__.__name__} must define description as string")
        if self.version < 1:
            raise ValueError(f"{self.__class__.__name__} version must be positive")

    @property
    def name(self) -> str:
        """Name recorded in the migration registry."""
        return self.description

    @property
    def source_name(self) -> str:
        """Label used in status reports for pending migrations."""
        return f"{self.version:03d}_{self.__class__.__name__}"

    def is_available(self) -> bool:
        """Whether the migration source can be loaded."""
        return True

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        """
        Apply the migration.

        Args:
            conn: SQLite connection to the database

        Raises:
            sqlite3.Error: If a statement fails
        """
        pass

    def checksum(self) -> str:
        """Fingerprint recorded with the migration."""
        return "inline"

    def verify(self, conn: sqlite3.Connection) -> bool:
        """
        Verify that the migration was applied successfully.

        Args:
            conn: SQLite connection to the database

        Returns:
            True if migration is verified, False otherwise
        """
        # Default: assume success if no verification implemented
        return True

    def __str__(self) -> str:
        """String representation of migration."""
        return f"Migration{self.version:03d}: {self.description}"

    def __repr__(self) -> str:
        """Developer representation of migration."""
        return f"<{self.__class__.__name__} version={self.version}>"


class ScriptMigration(Migration):
    """
    Migration whose source is a SQL script.

    The script is either held inline (``sql``) or read from an external file
    (``path``). A missing external file makes the migration unavailable; the
    runner skips it instead of failing, which keeps sparse catalogs working.

    up() executes the parsed statements one at a time so that replay errors
    ("already exists", "duplicate column") can be tolerated per statement.
    """

    def __init__(self, version: int, description: Optional[str] = None,
                 sql: Optional[str] = None, path: Optional[Union[str, Path]] = None):
        if (sql is None) == (path is None):
            raise ValueError("ScriptMigration needs exactly one of sql or path")

        self.version = version
        self.path = Path(path) if path is not None else None
        self.sql = sql
        if description is None:
            description = self.path.stem if self.path is not None else f"migration_{version:03d}"
        self.description = description
        super().__init__()

    @property
    def source_name(self) -> str:
        if self.path is not None:
            return self.path.name
        return f"{self.version:03d}_{self.description}"

    def is_available(self) -> bool:
        if self.path is None:
            return True
        return self.path.is_file()

    def load_script(self) -> Optional[str]:
        """
        Load the script text.

        Returns:
            The SQL text, or None if the external file is absent
        """
        if self.sql is not None:
            return self.sql
        if not self.path.is_file():
            return None
        return self.path.read_text(encoding="utf-8")

    def statements(self) -> List[str]:
        """Parse the script into executable statements."""
        script = self.load_script()
        if script is None:
            raise MigrationError(f"Migration script not found: {self.path}")
        return parse_sql_statements(script)

    def checksum(self) -> str:
        script = self.load_script()
        if script is None:
            raise MigrationError(f"Migration script not found: {self.path}")
        return calculate_checksum(script)

    def up(self, conn: sqlite3.Connection) -> None:
        """Execute each statement, skipping replayed object creations."""
        statements = self.statements()
        logger.debug(f"Migration {self.version}: {len(statements)} statements")
        for statement in statements:
            execute_statement(conn, statement)

    def __repr__(self) -> str:
        source = self.path.name if self.path is not None else "inline"
        return f"<{self.__class__.__name__} version={self.version} source={source}>"


def ensure_autocommit(conn: sqlite3.Connection) -> None:
    """
    Switch the connection to autocommit so BEGIN/COMMIT are issued explicitly.

    The sqlite3 module otherwise opens transactions implicitly before DML,
    which would collide with the explicit per-migration transaction.
    """
    if conn.isolation_level is not None:
        if conn.in_transaction:
            conn.commit()
        conn.isolation_level = None
        logger.debug("Connection switched to autocommit mode")


def table_exists(conn: sqlite3.Connection, table: str) -> bool:
    """Check whether a table exists in the main schema."""
    cursor = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?",
        (table,)
    )
    return cursor.fetchone() is not None


def column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    """Check whether a column exists on a table."""
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cursor.fetchall())

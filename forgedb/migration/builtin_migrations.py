"""
Inline migrations for the bundled schema.

These need to look at the live schema before changing it, so they are
written in Python instead of as scripts.
"""

import sqlite3
import logging
from typing import List

from .base_migration import Migration, column_exists, table_exists

logger = logging.getLogger(__name__)


class SeriesSupportMigration(Migration):
    """Add series columns to books and projects, plus book transitions."""

    version = 2
    description = "Add series support columns and book_transitions table"

    BOOK_COLUMNS = [
        ("ending_state", "TEXT"),
        ("book_summary", "TEXT"),
        ("timeline_end", "TEXT"),
    ]
    PROJECT_COLUMNS = [
        ("series_bible", "TEXT"),
        ("book_count", "INTEGER DEFAULT 1"),
    ]

    def up(self, conn: sqlite3.Connection):
        """Add missing columns and create book_transitions."""
        added = 0
        for table, columns in (("books", self.BOOK_COLUMNS), ("projects", self.PROJECT_COLUMNS)):
            for column, definition in columns:
                if column_exists(conn, table, column):
                    logger.info(f"{table}.{column} already exists")
                    continue
                conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
                added += 1

        if not table_exists(conn, "book_transitions"):
            conn.execute("""
                CREATE TABLE book_transitions (
                    id TEXT PRIMARY KEY,
                    project_id TEXT NOT NULL,
                    from_book_id TEXT NOT NULL,
                    to_book_id TEXT NOT NULL,
                    time_gap TEXT,
                    gap_summary TEXT,
                    created_at TEXT DEFAULT (datetime('now')),
                    FOREIGN KEY (project_id) REFERENCES projects(id) ON DELETE CASCADE,
                    FOREIGN KEY (from_book_id) REFERENCES books(id) ON DELETE CASCADE,
                    FOREIGN KEY (to_book_id) REFERENCES books(id) ON DELETE CASCADE
                )
            """)
            conn.execute("CREATE INDEX idx_transitions_project ON book_transitions(project_id)")
        else:
            logger.info("book_transitions table already exists")

        logger.info(f"✓ Added {added} series columns")

    def verify(self, conn: sqlite3.Connection) -> bool:
        """Verify every column and the transitions table exist."""
        for table, columns in (("books", self.BOOK_COLUMNS), ("projects", self.PROJECT_COLUMNS)):
            for column, _ in columns:
                if not column_exists(conn, table, column):
                    return False
        return table_exists(conn, "book_transitions")


def get_migrations() -> List[Migration]:
    """
    Get all inline migrations in order.

    Returns:
        List of Migration instances
    """
    return [
        SeriesSupportMigration(),
    ]

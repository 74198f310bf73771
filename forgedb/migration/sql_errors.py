"""
Classification of SQLite errors raised while replaying migrations.

A migration that partially applied before a crash leaves objects behind.
Re-running it then fails with "already exists" or "duplicate column name".
Those failures are safe to skip, but only for statements that create objects
or add columns; anything else is a real error.
"""

import re
import sqlite3
import logging

logger = logging.getLogger(__name__)

# Primary result code for generic SQL errors; "already exists" and
# "duplicate column" both surface under it.
SQLITE_ERROR = getattr(sqlite3, "SQLITE_ERROR", 1)

_IGNORABLE_MESSAGES = (
    "already exists",
    "duplicate column name",
)

_CREATION_STATEMENT = re.compile(
    r"^\s*(CREATE\b|ALTER\s+TABLE\b.*\bADD\b)",
    re.IGNORECASE | re.DOTALL,
)


def is_creation_statement(statement: str) -> bool:
    """True for CREATE ... and ALTER TABLE ... ADD [COLUMN] statements."""
    return _CREATION_STATEMENT.match(statement) is not None


def is_already_exists_error(error: sqlite3.Error) -> bool:
    """
    True if the engine reported that an object or column already exists.

    Uses the structured result code when the driver exposes it (Python 3.11+),
    then narrows by message since SQLite reports both conditions under the
    generic SQLITE_ERROR code. Without a code, only the message is checked.
    """
    code = getattr(error, "sqlite_errorcode", None)
    if code is not None and (code & 0xFF) != SQLITE_ERROR:
        return False
    if code is None and not isinstance(error, sqlite3.OperationalError):
        return False

    message = str(error).lower()
    return any(fragment in message for fragment in _IGNORABLE_MESSAGES)


def is_ignorable_error(error: sqlite3.Error, statement: str) -> bool:
    """Whether a failed statement can be skipped as a replayed creation."""
    return is_already_exists_error(error) and is_creation_statement(statement)


def execute_statement(conn: sqlite3.Connection, statement: str) -> bool:
    """
    Execute a single migration statement.

    Returns:
        True if executed, False if skipped as already applied

    Raises:
        sqlite3.Error: For any failure that is not an ignorable replay error
    """
    try:
        conn.execute(statement)
        return True
    except sqlite3.Error as e:
        if is_ignorable_error(e, statement):
            logger.info(f"Skipping (already exists): {_preview(statement)} [{e}]")
            return False
        logger.error(f"✗ Statement failed: {_preview(statement)} [{e}]")
        raise


def _preview(statement: str, width: int = 60) -> str:
    flat = " ".join(statement.split())
    if len(flat) <= width:
        return flat
    return flat[:width] + "..."

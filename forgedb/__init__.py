"""
forgedb - schema migrations and snapshot backups for an embedded SQLite store.

Usage:
    from forgedb.database import ensure_schema_current
    ensure_schema_current()
"""

__version__ = "1.0.0"

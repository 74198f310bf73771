"""
Pytest configuration and shared fixtures for forgedb tests.
"""

import pytest
import os
import sqlite3

# Add the repository root to path for imports
import sys
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))


@pytest.fixture
def db_path(tmp_path):
    """Path for a file-backed test database (not created yet)."""
    return tmp_path / "data" / "forgedb.db"


@pytest.fixture
def backup_dir(tmp_path):
    """Backup directory for snapshot tests."""
    return tmp_path / "backups"


@pytest.fixture
def conn():
    """In-memory database in autocommit mode."""
    connection = sqlite3.connect(":memory:", isolation_level=None)
    yield connection
    connection.close()


@pytest.fixture
def file_conn(db_path):
    """File-backed database in autocommit mode with one table."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(str(db_path), isolation_level=None)
    connection.execute("CREATE TABLE notes (id INTEGER PRIMARY KEY, body TEXT)")
    connection.execute("INSERT INTO notes (body) VALUES ('first')")
    yield connection
    connection.close()


@pytest.fixture
def migrations_dir(tmp_path):
    """Directory of numbered migration scripts."""
    directory = tmp_path / "migrations"
    directory.mkdir()
    (directory / "001_create_authors.sql").write_text(
        "CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT NOT NULL);\n"
    )
    (directory / "002_add_author_bio.sql").write_text(
        "-- Biography column\n"
        "ALTER TABLE authors ADD COLUMN bio TEXT;\n"
    )
    (directory / "003_create_posts.sql").write_text(
        "CREATE TABLE posts (\n"
        "    id INTEGER PRIMARY KEY,\n"
        "    author_id INTEGER NOT NULL,\n"
        "    title TEXT NOT NULL -- shown in listings\n"
        ");\n"
        "CREATE INDEX idx_posts_author ON posts(author_id);\n"
    )
    return directory


@pytest.fixture
def temp_config_file(tmp_path):
    """Create temporary configuration file for testing."""
    config_content = f"""
database:
  path: "{tmp_path / 'config-db.db'}"
  journal_mode: delete

backups:
  directory: "{tmp_path / 'config-backups'}"
  max_backups: 4
  before_migrate: false

migrations:
  manifest:
"""
    config_file = tmp_path / "database.yaml"
    config_file.write_text(config_content)
    return str(config_file)


# Pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "parser: Tests for the SQL statement parser"
    )
    config.addinivalue_line(
        "markers", "registry: Tests for the migration registry"
    )
    config.addinivalue_line(
        "markers", "backup: Tests for snapshot backups"
    )
    config.addinivalue_line(
        "markers", "migrations: Tests for the migration runner and catalog"
    )
    config.addinivalue_line(
        "markers", "config: Tests for configuration loading"
    )
    config.addinivalue_line(
        "markers", "cli: Tests for the command-line interface"
    )

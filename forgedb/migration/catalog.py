"""
Ordered catalog of schema migrations.

Maps each schema version to its source: an inline Migration subclass, an
inline SQL string, or an external ``NNN_description.sql`` file. Entries
whose external file is absent stay in the catalog; the runner skips them.
"""

import re
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import yaml

from .base_migration import Migration, ScriptMigration

logger = logging.getLogger(__name__)

SCRIPT_FILENAME = re.compile(r"^(\d+)_(.+)\.sql$")

SCHEMA_DIR = Path(__file__).resolve().parent.parent / "schema"
DEFAULT_MANIFEST = SCHEMA_DIR / "manifest.yaml"


class MigrationCatalog:
    """Versioned migrations kept in ascending order."""

    def __init__(self, migrations: Optional[Iterable[Migration]] = None):
        self._migrations: List[Migration] = []
        for migration in migrations or []:
            self.register(migration)

    def register(self, migration: Migration) -> None:
        """
        Add a migration.

        Raises:
            ValueError: If the version is already registered
        """
        if any(m.version == migration.version for m in self._migrations):
            raise ValueError(f"Duplicate migration version in catalog: {migration.version}")
        self._migrations.append(migration)
        self._migrations.sort(key=lambda m: m.version)

    def get(self, version: int) -> Optional[Migration]:
        for migration in self._migrations:
            if migration.version == version:
                return migration
        return None

    def versions(self) -> List[int]:
        return [m.version for m in self._migrations]

    def pending(self, current_version: int) -> List[Migration]:
        """Migrations above the current version, ascending."""
        return [m for m in self._migrations if m.version > current_version]

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def __iter__(self):
        return iter(list(self._migrations))

    def __len__(self) -> int:
        return len(self._migrations)

    @classmethod
    def discover(cls, directory: Union[str, Path]) -> "MigrationCatalog":
        """
        Build a catalog from ``NNN_description.sql`` files in a directory.

        Files that do not follow the naming convention are ignored.
        """
        directory = Path(directory)
        catalog = cls()
        if not directory.is_dir():
            logger.warning(f"Migrations directory not found: {directory}")
            return catalog

        for script in sorted(directory.glob("*.sql")):
            match = SCRIPT_FILENAME.match(script.name)
            if not match:
                logger.debug(f"Ignoring non-migration file: {script.name}")
                continue
            catalog.register(ScriptMigration(
                version=int(match.group(1)),
                description=match.group(2).replace("_", " "),
                path=script,
            ))

        logger.debug(f"Discovered {len(catalog)} migrations in {directory}")
        return catalog

    @classmethod
    def from_manifest(cls, manifest_path: Union[str, Path]) -> "MigrationCatalog":
        """
        Build a catalog from a YAML manifest.

        Manifest format::

            migrations:
              - version: 1
                file: schema.sql
                description: Base schema
              - version: 2
                sql: "ALTER TABLE books ADD COLUMN subtitle TEXT;"

        ``file`` paths are relative to the manifest's directory. Listed files
        may be absent (sparse catalog).

        Raises:
            FileNotFoundError: If the manifest does not exist
            ValueError: If an entry is malformed or a version repeats
        """
        manifest_path = Path(manifest_path)
        with open(manifest_path, 'r', encoding="utf-8") as f:
            manifest = yaml.safe_load(f) or {}

        base_dir = manifest_path.parent
        catalog = cls()
        for entry in manifest.get("migrations", []):
            if not isinstance(entry, dict) or "version" not in entry:
                raise ValueError(f"Invalid manifest entry in {manifest_path}: {entry!r}")

            version = int(entry["version"])
            description = entry.get("description")
            if "file" in entry:
                catalog.register(ScriptMigration(
                    version, description=description, path=base_dir / entry["file"]
                ))
            elif "sql" in entry:
                catalog.register(ScriptMigration(version, description=description, sql=entry["sql"]))
            else:
                raise ValueError(f"Manifest entry {version} needs 'file' or 'sql'")

        logger.debug(f"Loaded {len(catalog)} migrations from {manifest_path}")
        return catalog


def build_default_catalog(manifest_path: Optional[Union[str, Path]] = None) -> MigrationCatalog:
    """
    Catalog for the bundled schema: manifest entries plus inline migrations.

    Args:
        manifest_path: Override for the bundled manifest
    """
    from .builtin_migrations import get_migrations

    catalog = MigrationCatalog.from_manifest(manifest_path or DEFAULT_MANIFEST)
    for migration in get_migrations():
        catalog.register(migration)
    return catalog

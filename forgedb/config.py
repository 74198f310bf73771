"""
Database configuration loader.

Reads config/database.yaml and applies environment overrides:

- FORGEDB_DATABASE_PATH: database file
- FORGEDB_BACKUP_DIR: backup directory
- FORGEDB_MAX_BACKUPS: retention count
"""

import os
import yaml
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/database.yaml"

ENV_DATABASE_PATH = "FORGEDB_DATABASE_PATH"
ENV_BACKUP_DIR = "FORGEDB_BACKUP_DIR"
ENV_MAX_BACKUPS = "FORGEDB_MAX_BACKUPS"


@dataclass
class DatabaseConfig:
    """Settings for the database, its migrations and backups."""

    database_path: str = "data/forgedb.db"
    backup_dir: str = "data/backups"
    max_backups: int = 10
    manifest_path: Optional[str] = None
    journal_mode: str = "WAL"
    backup_before_migrate: bool = True


class ConfigLoader:
    """Loads database configuration from YAML and the environment."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        """
        Initialize config loader.

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = config_path
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load YAML configuration."""
        if not os.path.exists(self.config_path):
            logger.debug(f"Database config not found: {self.config_path}, using defaults")
            return self._get_default_config()

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
            return config or self._get_default_config()
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load database config: {e}, using defaults")
            return self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration."""
        return {
            "database": {
                "path": DatabaseConfig.database_path,
                "journal_mode": DatabaseConfig.journal_mode,
            },
            "backups": {
                "directory": DatabaseConfig.backup_dir,
                "max_backups": DatabaseConfig.max_backups,
                "before_migrate": DatabaseConfig.backup_before_migrate,
            },
            "migrations": {
                "manifest": None,
            },
        }

    def _expand_env_vars(self, value: Any) -> Any:
        """Expand ${VAR} references in config values."""
        if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
            env_var = value[2:-1]
            return os.environ.get(env_var, "")
        return value

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.config.get(name) or {}
        if not isinstance(section, dict):
            logger.warning(f"Config section '{name}' is not a mapping, ignoring it")
            return {}
        return {key: self._expand_env_vars(value) for key, value in section.items()}

    def build(self) -> DatabaseConfig:
        """
        Build the effective configuration.

        Environment variables win over file values, which win over defaults.
        """
        database = self._section("database")
        backups = self._section("backups")
        migrations = self._section("migrations")

        config = DatabaseConfig(
            database_path=database.get("path") or DatabaseConfig.database_path,
            backup_dir=backups.get("directory") or DatabaseConfig.backup_dir,
            max_backups=_to_int(backups.get("max_backups"), DatabaseConfig.max_backups, "max_backups"),
            manifest_path=migrations.get("manifest") or None,
            journal_mode=str(database.get("journal_mode") or DatabaseConfig.journal_mode).upper(),
            backup_before_migrate=_to_bool(backups.get("before_migrate"), DatabaseConfig.backup_before_migrate),
        )

        if os.environ.get(ENV_DATABASE_PATH):
            config.database_path = os.environ[ENV_DATABASE_PATH]
        if os.environ.get(ENV_BACKUP_DIR):
            config.backup_dir = os.environ[ENV_BACKUP_DIR]
        if os.environ.get(ENV_MAX_BACKUPS):
            config.max_backups = _to_int(os.environ[ENV_MAX_BACKUPS], config.max_backups, ENV_MAX_BACKUPS)

        return config


def _to_int(value: Any, default: int, label: str) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {label} value {value!r}, using {default}")
        return default
    if number < 1:
        logger.warning(f"{label} must be at least 1, using {default}")
        return default
    return number


def _to_bool(value: Any, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> DatabaseConfig:
    """Load the effective database configuration."""
    return ConfigLoader(config_path).build()

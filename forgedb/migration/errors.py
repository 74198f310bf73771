"""Exceptions raised by the migration and backup subsystem."""


class MigrationError(Exception):
    """Raised when migration fails."""
    pass


class DuplicateVersionError(MigrationError):
    """Raised when a migration version is recorded twice."""

    def __init__(self, version: int):
        super().__init__(f"Migration version {version} is already recorded")
        self.version = version


class BackupError(IOError):
    """Raised when a backup cannot be created."""
    pass

"""
Automated backup management for the database.

Creates timestamped snapshots before migrations and around other risky
operations, restores them, and keeps the backup directory bounded.

A snapshot is the database file plus its optional ``-wal`` and ``-shm``
side-files. They form one logical unit: restore and delete always act on
all of them together. Snapshot names carry UTC timestamps so they sort
chronologically regardless of the host clock's offset.
"""

import asyncio
import os
import re
import shutil
import sqlite3
import time
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Dict, Optional, Union

from .errors import BackupError

logger = logging.getLogger(__name__)

SQLITE_HEADER = b"SQLite format 3\x00"
SIDE_FILE_SUFFIXES = ("-wal", "-shm")
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_MAX_BACKUPS = 10

PathLike = Union[str, Path]


@dataclass
class BackupInfo:
    """A snapshot found in the backup directory."""

    filename: str
    path: Path
    size_bytes: int
    created_at: datetime
    reason: Optional[str]


@dataclass
class BackupResult:
    """Outcome of a synchronous backup; never raised, always returned."""

    success: bool
    backup_path: Optional[Path] = None
    error: Optional[str] = None
    duration_ms: int = 0
    size_bytes: int = 0


def side_files(path: Path) -> List[Path]:
    """Paths of the ``-wal``/``-shm`` siblings of a database file."""
    return [Path(f"{path}{suffix}") for suffix in SIDE_FILE_SUFFIXES]


def resolve_database_path(conn: sqlite3.Connection) -> Optional[Path]:
    """File backing the connection's main schema, or None for in-memory databases."""
    for row in conn.execute("PRAGMA database_list").fetchall():
        if row[1] == "main":
            return Path(row[2]) if row[2] else None
    return None


class BackupManager:
    """
    Manages database backups for safe migrations.

    Features:
    - Consistent online snapshots via SQLite's backup API (create_backup)
    - Raw file-copy snapshots for process start, before any pool exists
      (create_backup_sync)
    - Restore with pre-restore snapshot and side-file handling
    - Retention pruning after every successful backup
    - Header-based backup verification
    """

    def __init__(self, db_path: Optional[PathLike] = None, backup_dir: Optional[PathLike] = None,
                 max_backups: int = DEFAULT_MAX_BACKUPS, conn: Optional[sqlite3.Connection] = None,
                 product: str = "forgedb"):
        """
        Initialize backup manager.

        Args:
            db_path: Database file to protect (resolved from conn if omitted)
            backup_dir: Directory to store backups (default: data/backups)
            max_backups: Number of snapshots kept by retention pruning
            conn: Open connection, used for WAL checkpoints and in-memory databases
            product: Filename prefix for snapshots
        """
        if db_path is None and conn is not None:
            db_path = resolve_database_path(conn)
        if max_backups < 1:
            raise ValueError("max_backups must be at least 1")

        self.db_path = Path(db_path) if db_path else None
        self.backup_dir = Path(backup_dir) if backup_dir else Path("data") / "backups"
        self.max_backups = max_backups
        self.conn = conn
        self.product = product
        self._filename_pattern = re.compile(
            rf"^{re.escape(product)}-(\d{{4}}-\d{{2}}-\d{{2}}_\d{{2}}-\d{{2}}-\d{{2}})-(\d{{3}})-(.+)\.db$"
        )
        logger.debug(f"Backup manager initialized: {self.backup_dir}")

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def _ensure_backup_dir(self) -> None:
        if not self.backup_dir.exists():
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created backup directory: {self.backup_dir}")

    @staticmethod
    def sanitize_reason(reason: str) -> str:
        """Lowercase the reason and replace anything but [a-z0-9] with '-'."""
        return re.sub(r"[^a-z0-9]", "-", (reason or "manual").lower()) or "manual"

    def generate_filename(self, reason: str, when: Optional[datetime] = None) -> str:
        """
        Build a snapshot filename.

        Format: ``<product>-YYYY-MM-DD_HH-MM-SS-mmm-<reason>.db`` in UTC.
        Naive ``when`` values are taken to be UTC already.
        """
        when = when or datetime.now(timezone.utc)
        if when.tzinfo is not None:
            when = when.astimezone(timezone.utc)
        stamp = f"{when.strftime(TIMESTAMP_FORMAT)}-{when.microsecond // 1000:03d}"
        return f"{self.product}-{stamp}-{self.sanitize_reason(reason)}.db"

    def _next_backup_path(self, reason: str) -> Path:
        when = datetime.now(timezone.utc)
        candidate = self.backup_dir / self.generate_filename(reason, when)
        # Keep names unique when snapshots land in the same millisecond
        while candidate.exists():
            when += timedelta(milliseconds=1)
            candidate = self.backup_dir / self.generate_filename(reason, when)
        return candidate

    def parse_filename(self, filename: str) -> Optional[Dict]:
        """
        Recover creation time and reason from a snapshot filename.

        Returns:
            Dict with 'created_at' and 'reason', or None if the name does not
            follow the convention
        """
        match = self._filename_pattern.match(filename)
        if not match:
            return None
        try:
            created = datetime.strptime(match.group(1), TIMESTAMP_FORMAT)
        except ValueError:
            return None
        created = created.replace(microsecond=int(match.group(2)) * 1000, tzinfo=timezone.utc)
        return {
            'created_at': created,
            'reason': match.group(3).replace("-", " "),
        }

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_backup(self, reason: str = "manual") -> Path:
        """
        Create a consistent snapshot using SQLite's online backup API.

        Safe while other connections read or write, and correct in WAL mode.

        Args:
            reason: Reason for the backup (e.g., 'pre-migration', 'manual')

        Returns:
            Path to the backup file

        Raises:
            BackupError: If backup creation fails
        """
        start = time.monotonic()
        backup_path: Optional[Path] = None

        try:
            self._ensure_backup_dir()
            backup_path = self._next_backup_path(reason)

            if self.db_path is not None and self.db_path.exists():
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, self._copy_with_backup_api, self.db_path, backup_path)
            elif self.conn is not None:
                # In-memory database: only the owning connection can read it
                self._backup_connection(self.conn, backup_path)
            else:
                raise FileNotFoundError(f"Database not found: {self.db_path}")

            size = backup_path.stat().st_size
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(f"✓ Backup created: {backup_path} ({size:,} bytes, {duration_ms} ms, reason={reason})")

        except Exception as e:
            if backup_path is not None:
                self._remove_snapshot_files(backup_path)
            logger.error(f"✗ Backup creation failed (reason={reason}): {e}")
            raise BackupError(f"Backup failed: {e}") from e

        self.clean_old_backups(self.max_backups)
        return backup_path

    @staticmethod
    def _backup_connection(source: sqlite3.Connection, backup_path: Path) -> None:
        target = sqlite3.connect(str(backup_path))
        try:
            source.backup(target)
        finally:
            target.close()

    def _copy_with_backup_api(self, db_path: Path, backup_path: Path) -> None:
        source = sqlite3.connect(str(db_path), timeout=30.0)
        try:
            self._backup_connection(source, backup_path)
        finally:
            source.close()

    def create_backup_sync(self, reason: str = "manual") -> BackupResult:
        """
        Create a backup by copying the database file and its side-files.

        Not safe against concurrent writers: only call this before any
        connection pool is opened (e.g. at process start).

        Args:
            reason: Reason for the backup

        Returns:
            BackupResult; failures are reported, not raised
        """
        start = time.monotonic()

        if self.db_path is None or not self.db_path.exists():
            logger.info(f"No database at {self.db_path}, nothing to back up")
            return BackupResult(success=True)

        backup_path: Optional[Path] = None
        try:
            self._ensure_backup_dir()
            backup_path = self._next_backup_path(reason)

            logger.info(f"Creating backup: {self.db_path} → {backup_path}")
            shutil.copy2(self.db_path, backup_path)
            for source, target in zip(side_files(self.db_path), side_files(backup_path)):
                if source.exists():
                    shutil.copy2(source, target)

            size = backup_path.stat().st_size
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(f"✓ Backup created (sync): {backup_path} ({size:,} bytes, {duration_ms} ms)")

        except Exception as e:
            if backup_path is not None:
                self._remove_snapshot_files(backup_path)
            logger.error(f"✗ Sync backup failed (reason={reason}): {e}")
            return BackupResult(
                success=False,
                error=str(e),
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        self.clean_old_backups(self.max_backups)
        return BackupResult(
            success=True,
            backup_path=backup_path,
            duration_ms=duration_ms,
            size_bytes=size,
        )

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_from_backup(self, backup_path: PathLike) -> None:
        """
        Restore the database from a snapshot.

        WARNING: overwrites the live database. A pre-restore snapshot of the
        current state is attempted first. With an open connection the
        snapshot is copied into it through the backup API, so the
        connection stays valid. Otherwise the files are swapped on disk.

        Args:
            backup_path: Snapshot to restore

        Raises:
            FileNotFoundError: If the snapshot does not exist
            BackupError: If the snapshot is not a SQLite database or the
                target database path is unknown
            OSError: If files cannot be replaced
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise FileNotFoundError(f"Backup file not found: {backup_path}")
        if not self.verify_backup(backup_path):
            raise BackupError(f"Not a valid SQLite backup: {backup_path}")
        if self.db_path is None:
            raise BackupError("Cannot determine current database path")

        logger.info(f"Restoring backup: {backup_path} → {self.db_path}")

        # Stage every file first so pruning by the pre-restore backup
        # cannot remove the snapshot being restored
        staged = self._stage_restore(backup_path)
        try:
            if self.db_path.exists():
                try:
                    await self.create_backup("pre-restore")
                except BackupError as e:
                    logger.warning(f"⚠ Could not create pre-restore backup, proceeding anyway: {e}")

            if self.conn is not None:
                self._copy_into_connection(staged[self.db_path])
            else:
                self._checkpoint_wal()
                self._swap_in(staged)
        finally:
            for temp in staged.values():
                if temp.exists():
                    temp.unlink()

        logger.info(f"✓ Database restored from backup: {backup_path}")

    def _stage_restore(self, backup_path: Path) -> Dict[Path, Path]:
        """Copy snapshot files next to the live database; returns target → temp."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        staged: Dict[Path, Path] = {}
        staged_main = Path(f"{self.db_path}.restore-tmp")
        sources = [backup_path] + side_files(backup_path)
        targets = [self.db_path] + side_files(self.db_path)
        # Side-files sit beside the staged main file so SQLite can open the
        # staged copy with its WAL
        temps = [staged_main] + side_files(staged_main)
        try:
            for source, target, temp in zip(sources, targets, temps):
                if source.exists():
                    shutil.copy2(source, temp)
                    staged[target] = temp
        except OSError:
            for temp in staged.values():
                if temp.exists():
                    temp.unlink()
            raise
        return staged

    def _copy_into_connection(self, staged_main: Path) -> None:
        # The open connection keeps its file handle, so the snapshot is
        # written through it instead of replacing files underneath it
        source = sqlite3.connect(str(staged_main))
        try:
            source.backup(self.conn)
        except sqlite3.Error as e:
            raise BackupError(f"Failed to restore into open database: {e}") from e
        finally:
            source.close()
            for side_file in side_files(staged_main):
                if side_file.exists():
                    side_file.unlink()

    def _checkpoint_wal(self) -> None:
        if self.conn is None:
            return
        try:
            self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        except sqlite3.Error as e:
            logger.debug(f"WAL checkpoint before restore failed: {e}")

    def _swap_in(self, staged: Dict[Path, Path]) -> None:
        """
        Replace the live database files with the staged ones, all or none.

        Live files are moved aside first. Stale live side-files without a
        staged counterpart are dropped, since they would otherwise be
        replayed against the restored file. Any failure puts the original
        files back before re-raising.
        """
        live_files = [self.db_path] + side_files(self.db_path)
        moved_aside: Dict[Path, Path] = {}
        try:
            for live in live_files:
                if live.exists():
                    aside = Path(f"{live}.restore-old")
                    os.replace(live, aside)
                    moved_aside[live] = aside
            for target, temp in staged.items():
                os.replace(temp, target)
        except OSError:
            logger.error("✗ Restore swap failed, putting original files back")
            for live in live_files:
                if live.exists() and live not in moved_aside:
                    live.unlink()
            for live, aside in moved_aside.items():
                if live.exists():
                    live.unlink()
                os.replace(aside, live)
            raise

        for live, aside in moved_aside.items():
            aside.unlink()
            if live not in staged:
                logger.debug(f"Removed stale side-file: {live}")

    # ------------------------------------------------------------------
    # Listing, retention, deletion
    # ------------------------------------------------------------------

    def list_backups(self) -> List[BackupInfo]:
        """
        List available backups.

        Returns:
            Snapshots sorted by creation time, newest first
        """
        if not self.backup_dir.exists():
            return []

        backups = []
        for backup_file in self.backup_dir.glob(f"{self.product}-*.db"):
            try:
                stat = backup_file.stat()
            except OSError as e:
                logger.warning(f"Could not read backup {backup_file}: {e}")
                continue

            parsed = self.parse_filename(backup_file.name)
            if parsed is not None:
                created, reason = parsed['created_at'], parsed['reason']
            else:
                created, reason = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc), None

            backups.append(BackupInfo(
                filename=backup_file.name,
                path=backup_file,
                size_bytes=stat.st_size,
                created_at=created,
                reason=reason,
            ))

        backups.sort(key=lambda b: (b.created_at, b.filename), reverse=True)
        return backups

    def clean_old_backups(self, keep: Optional[int] = None) -> int:
        """
        Remove the oldest snapshots beyond the retention count.

        Args:
            keep: Number of snapshots to keep (default: max_backups)

        Returns:
            Number of snapshots deleted
        """
        keep = self.max_backups if keep is None else keep
        backups = self.list_backups()
        if len(backups) <= keep:
            return 0

        deleted = 0
        for backup in backups[max(keep, 0):]:
            try:
                self._remove_snapshot_files(backup.path)
                logger.info(f"Deleted old backup: {backup.filename}")
                deleted += 1
            except OSError as e:
                logger.error(f"Failed to delete {backup.path}: {e}")

        logger.info(f"✓ Cleanup complete: {deleted} backups deleted, {keep} kept")
        return deleted

    def delete_backup(self, backup_path: PathLike) -> None:
        """
        Delete one snapshot and its side-files.

        Raises:
            FileNotFoundError: If the snapshot does not exist
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise FileNotFoundError(f"Backup not found: {backup_path}")
        self._remove_snapshot_files(backup_path)
        logger.info(f"Deleted backup: {backup_path.name}")

    @staticmethod
    def _remove_snapshot_files(path: Path) -> None:
        for file_path in [path] + side_files(path):
            if file_path.exists():
                file_path.unlink()

    def get_latest_backup(self) -> Optional[BackupInfo]:
        """Most recent snapshot, or None."""
        backups = self.list_backups()
        return backups[0] if backups else None

    def get_backup_summary(self) -> Dict:
        """
        Get summary of backup status.

        Returns:
            Dictionary with backup statistics
        """
        backups = self.list_backups()

        if not backups:
            return {
                'total_backups': 0,
                'total_size_bytes': 0,
                'oldest_backup': None,
                'newest_backup': None,
                'backup_directory': str(self.backup_dir)
            }

        return {
            'total_backups': len(backups),
            'total_size_bytes': sum(b.size_bytes for b in backups),
            'oldest_backup': backups[-1].filename,
            'newest_backup': backups[0].filename,
            'backup_directory': str(self.backup_dir)
        }

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_backup(self, backup_path: PathLike) -> bool:
        """
        Check that a file starts with the SQLite header.

        Args:
            backup_path: Path to backup file

        Returns:
            True if the header matches, False on mismatch or any I/O error
        """
        try:
            with open(backup_path, "rb") as f:
                header = f.read(len(SQLITE_HEADER))
        except OSError as e:
            logger.debug(f"Backup verification failed for {backup_path}: {e}")
            return False

        if header == SQLITE_HEADER:
            return True
        logger.warning(f"⚠ Not a SQLite database: {backup_path}")
        return False

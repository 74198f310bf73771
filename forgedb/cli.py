"""
forgedb Command-Line Interface

Usage:
    forgedb migrate
    forgedb status
    forgedb rollback
    forgedb backup create --reason manual
    forgedb backup list
    forgedb backup restore data/backups/forgedb-....db
"""

import sys
import asyncio
import logging
import argparse
from pathlib import Path

from . import __version__
from .config import DEFAULT_CONFIG_PATH, load_config
from .database import create_backup_manager, ensure_schema_current, open_database
from .migration import MigrationError, MigrationRunner, build_default_catalog

logger = logging.getLogger(__name__)


def cmd_migrate(args):
    """Apply pending migrations."""
    config = load_config(args.config)
    if args.no_backup:
        config.backup_before_migrate = False

    print(f"Database: {config.database_path}")
    applied = ensure_schema_current(config)

    if applied:
        print(f"✓ Applied {applied} migration(s)")
    else:
        print("✓ Database schema is up to date")
    return 0


def cmd_status(args):
    """Show schema version and pending migrations."""
    config = load_config(args.config)
    if not Path(config.database_path).exists():
        print(f"✗ Database not found: {config.database_path}")
        return 1

    conn = open_database(config.database_path, config.journal_mode)
    try:
        runner = MigrationRunner(conn, build_default_catalog(config.manifest_path))
        status = runner.get_migration_status()
    finally:
        conn.close()

    print("Migration Status")
    print("=" * 60)
    print(f"  Database:        {config.database_path}")
    print(f"  Current version: {status['current_version']}")
    print(f"  Latest version:  {status['latest_version']}")
    print(f"  Applied:         {status['applied_count']}")
    print(f"  Pending:         {status['pending_count']}")

    for name in status['pending_file_names']:
        print(f"    - {name}")

    if status['modified_versions']:
        versions = ", ".join(str(v) for v in status['modified_versions'])
        print(f"\n⚠️  Scripts changed after being applied: {versions}")

    return 0


def cmd_rollback(args):
    """Attempt to roll back the last migration."""
    config = load_config(args.config)
    conn = open_database(config.database_path, config.journal_mode)
    try:
        runner = MigrationRunner(
            conn,
            build_default_catalog(config.manifest_path),
            backup_manager=create_backup_manager(config),
        )
        runner.rollback_last_migration()
    except MigrationError as e:
        print(f"❌ {e}")
        print("Use 'forgedb backup restore <file>' to return to an earlier state.")
        return 1
    finally:
        conn.close()
    return 0


def cmd_backup(args):
    """Manage database snapshots."""
    config = load_config(args.config)
    manager = create_backup_manager(config)

    if args.action == 'create':
        path = asyncio.run(manager.create_backup(args.reason))
        print(f"✓ Backup created: {path}")
        return 0

    if args.action == 'list':
        backups = manager.list_backups()
        if not backups:
            print(f"No backups in {manager.backup_dir}")
            return 0
        print(f"Backups in {manager.backup_dir}:")
        for backup in backups[:args.limit]:
            created = backup.created_at.strftime("%Y-%m-%d %H:%M:%S UTC")
            print(f"  {created}  {backup.size_bytes:>12,} B  {backup.filename}")
        summary = manager.get_backup_summary()
        print(f"\nTotal: {summary['total_backups']} backups, {summary['total_size_bytes']:,} bytes")
        return 0

    if args.action == 'clean':
        deleted = manager.clean_old_backups(args.keep)
        print(f"✓ Deleted {deleted} old backup(s)")
        return 0

    if not args.backup_file:
        print(f"❌ backup {args.action} requires a backup file")
        return 1

    if args.action == 'verify':
        if manager.verify_backup(args.backup_file):
            print(f"✓ Valid SQLite backup: {args.backup_file}")
            return 0
        print(f"✗ Not a valid SQLite backup: {args.backup_file}")
        return 1

    if args.action == 'restore':
        if not args.force:
            answer = input(f"Overwrite {config.database_path} with {args.backup_file}? [y/N] ")
            if answer.strip().lower() not in ('y', 'yes'):
                print("Restore cancelled")
                return 1
        asyncio.run(manager.restore_from_backup(args.backup_file))
        print(f"✓ Database restored from {args.backup_file}")
        return 0

    if args.action == 'delete':
        manager.delete_backup(args.backup_file)
        print(f"✓ Deleted {args.backup_file}")
        return 0

    print(f"❌ Unknown backup action: {args.action}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forgedb",
        description="forgedb - SQLite schema migrations and backups",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  forgedb migrate                               # Apply pending migrations
  forgedb migrate --no-backup                   # Skip the pre-migration backup
  forgedb status                                # Show schema version
  forgedb backup create --reason nightly        # Take a snapshot
  forgedb backup list                           # List snapshots, newest first
  forgedb backup verify FILE                    # Check a snapshot header
  forgedb backup restore FILE --force           # Restore without prompting
  forgedb backup clean --keep 5                 # Keep the 5 newest snapshots
        """
    )

    parser.add_argument('--version', action='version', version=f'forgedb {__version__}')
    parser.add_argument('--config', default=DEFAULT_CONFIG_PATH,
                        help=f'Database config file (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output')

    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    # Migrate command
    migrate_parser = subparsers.add_parser('migrate', help='Apply pending migrations')
    migrate_parser.add_argument('--no-backup', action='store_true',
                                help='Skip the pre-migration backup')
    migrate_parser.set_defaults(func=cmd_migrate)

    # Status command
    status_parser = subparsers.add_parser('status', help='Show migration status')
    status_parser.set_defaults(func=cmd_status)

    # Rollback command
    rollback_parser = subparsers.add_parser('rollback', help='Roll back the last migration')
    rollback_parser.set_defaults(func=cmd_rollback)

    # Backup command
    backup_parser = subparsers.add_parser('backup', help='Manage database backups')
    backup_parser.add_argument('action',
                               choices=['create', 'list', 'restore', 'verify', 'clean', 'delete'],
                               help='Action to perform')
    backup_parser.add_argument('backup_file', nargs='?',
                               help='Backup file (required for restore/verify/delete)')
    backup_parser.add_argument('--reason', default='manual',
                               help='Reason recorded in the backup name (for create)')
    backup_parser.add_argument('--keep', type=int, default=None,
                               help='Number of backups to keep (for clean)')
    backup_parser.add_argument('--limit', type=int, default=20,
                               help='Limit number of backups shown (for list)')
    backup_parser.add_argument('--force', '-f', action='store_true',
                               help='Restore without confirmation')
    backup_parser.set_defaults(func=cmd_backup)

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user")
        return 130
    except Exception as e:
        logger.debug("Command failed", exc_info=True)
        print(f"\n❌ Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

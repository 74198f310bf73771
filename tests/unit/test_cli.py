"""
Unit tests for the forgedb command-line interface.
"""

import pytest

from forgedb.cli import build_parser, main
from forgedb.config import load_config
from forgedb.migration import BackupManager, MigrationRegistry
from forgedb.database import open_database


@pytest.fixture
def migrated(temp_config_file):
    """Config file whose database has been migrated through the CLI."""
    assert main(["--config", temp_config_file, "migrate"]) == 0
    return temp_config_file


def backup_manager_for(config_file):
    config = load_config(config_file)
    return BackupManager(db_path=config.database_path, backup_dir=config.backup_dir)


@pytest.mark.unit
@pytest.mark.cli
class TestParser:
    """Tests for argument parsing."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_backup_actions(self):
        args = build_parser().parse_args(["backup", "clean", "--keep", "3"])
        assert args.action == "clean"
        assert args.keep == 3

    def test_unknown_backup_action_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["backup", "explode"])


@pytest.mark.unit
@pytest.mark.cli
class TestMigrateAndStatus:
    """Tests for the migrate and status commands."""

    def test_migrate_fresh_database(self, temp_config_file, capsys):
        assert main(["--config", temp_config_file, "migrate"]) == 0
        assert "Applied 5 migration(s)" in capsys.readouterr().out

        config = load_config(temp_config_file)
        conn = open_database(config.database_path, config.journal_mode)
        try:
            assert MigrationRegistry(conn).current_version() == 5
        finally:
            conn.close()

    def test_migrate_up_to_date(self, migrated, capsys):
        capsys.readouterr()
        assert main(["--config", migrated, "migrate"]) == 0
        assert "up to date" in capsys.readouterr().out

    def test_status(self, migrated, capsys):
        capsys.readouterr()
        assert main(["--config", migrated, "status"]) == 0
        out = capsys.readouterr().out
        assert "Current version: 5" in out
        assert "Pending:         0" in out

    def test_status_without_database(self, temp_config_file, capsys):
        assert main(["--config", temp_config_file, "status"]) == 1
        assert "Database not found" in capsys.readouterr().out

    def test_rollback_refused(self, migrated, capsys):
        capsys.readouterr()
        assert main(["--config", migrated, "rollback"]) == 1
        assert "does not support rollback" in capsys.readouterr().out


@pytest.mark.unit
@pytest.mark.cli
class TestBackupCommands:
    """Tests for the backup subcommands."""

    def test_create_and_list(self, migrated, capsys):
        assert main(["--config", migrated, "backup", "create", "--reason", "nightly"]) == 0
        assert main(["--config", migrated, "backup", "list"]) == 0

        out = capsys.readouterr().out
        assert "Backup created" in out
        assert "-nightly.db" in out

    def test_list_empty(self, temp_config_file, capsys):
        assert main(["--config", temp_config_file, "backup", "list"]) == 0
        assert "No backups" in capsys.readouterr().out

    def test_verify(self, migrated, tmp_path):
        main(["--config", migrated, "backup", "create"])
        snapshot = backup_manager_for(migrated).get_latest_backup().path
        assert main(["--config", migrated, "backup", "verify", str(snapshot)]) == 0

        bogus = tmp_path / "bogus.db"
        bogus.write_text("nope")
        assert main(["--config", migrated, "backup", "verify", str(bogus)]) == 1

    def test_file_required(self, migrated, capsys):
        assert main(["--config", migrated, "backup", "verify"]) == 1
        assert "requires a backup file" in capsys.readouterr().out

    def test_clean_and_delete(self, migrated):
        for reason in ("one", "two", "three"):
            main(["--config", migrated, "backup", "create", "--reason", reason])
        manager = backup_manager_for(migrated)
        assert len(manager.list_backups()) == 3

        assert main(["--config", migrated, "backup", "clean", "--keep", "2"]) == 0
        remaining = manager.list_backups()
        assert len(remaining) == 2

        assert main(["--config", migrated, "backup", "delete", str(remaining[-1].path)]) == 0
        assert len(manager.list_backups()) == 1

    def test_restore(self, migrated):
        main(["--config", migrated, "backup", "create", "--reason", "known-good"])
        snapshot = backup_manager_for(migrated).get_latest_backup().path

        config = load_config(migrated)
        conn = open_database(config.database_path, config.journal_mode)
        conn.execute("INSERT INTO projects (id, title) VALUES ('p1', 'Lost')")
        conn.close()

        assert main(["--config", migrated, "backup", "restore", str(snapshot), "--force"]) == 0

        conn = open_database(config.database_path, config.journal_mode)
        try:
            assert conn.execute("SELECT COUNT(*) FROM projects").fetchone()[0] == 0
        finally:
            conn.close()

    def test_restore_cancelled(self, migrated, monkeypatch, capsys):
        main(["--config", migrated, "backup", "create"])
        snapshot = backup_manager_for(migrated).get_latest_backup().path
        monkeypatch.setattr("builtins.input", lambda prompt: "n")

        assert main(["--config", migrated, "backup", "restore", str(snapshot)]) == 1
        assert "cancelled" in capsys.readouterr().out

    def test_restore_missing_file_is_error(self, migrated, tmp_path, capsys):
        missing = tmp_path / "missing.db"
        assert main(["--config", migrated, "backup", "restore", str(missing), "--force"]) == 1
        assert "Error" in capsys.readouterr().out

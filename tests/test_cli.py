"""Tests for the command line interface."""

from click.testing import CliRunner

from stowage.cli import cli
from stowage.core.config_manager import ConfigManager

from conftest import write_settings


def _invoke(config, *args, input=None):
    runner = CliRunner()
    return runner.invoke(cli, ["--config-dir", str(config.config_dir), *args], input=input, obj={})


def test_list_without_backups_exits_1(config):
    result = _invoke(config, "list")
    assert result.exit_code == 1
    assert "No backups found" in result.output


def test_backup_then_list(config):
    created = _invoke(config, "backup", "-d", "nightly")
    assert created.exit_code == 0, created.output
    assert "Backup created" in created.output

    listed = _invoke(config, "list")
    assert listed.exit_code == 0
    assert "app-" in listed.output


def test_restore_with_interactive_default(config, project):
    assert _invoke(config, "backup").exit_code == 0
    (project / "src" / "main.py").unlink()

    result = _invoke(config, "restore", "--no-hooks", input="\n")

    assert result.exit_code == 0, result.output
    assert "Select backup" in result.output
    assert (project / "src" / "main.py").exists()


def test_restore_without_backups_exits_1(config):
    result = _invoke(config, "restore")
    assert result.exit_code == 1


def test_restore_unknown_backup_exits_1(config):
    result = _invoke(config, "restore", "app-missing", "--no-hooks")
    assert result.exit_code == 1
    assert "Restore failed" in result.output


def test_verify(config):
    assert _invoke(config, "backup").exit_code == 0
    backup_id = next((config.project_root / "backups").glob("app-*.tar.gz")).name[: -len(".tar.gz")]

    assert _invoke(config, "verify", backup_id).exit_code == 0
    assert _invoke(config, "verify", "app-missing").exit_code == 1


def test_sync_with_demo_config_is_simulated(config):
    result = _invoke(config, "sync")
    assert result.exit_code == 0
    assert "demo-mode" in result.output


def test_git_restore_declined_exits_1(config):
    result = _invoke(config, "git-restore", input="n\n")
    assert result.exit_code == 1
    assert "Cancelled" in result.output


def test_init_key(config):
    first = _invoke(config, "init-key")
    assert first.exit_code == 0
    assert "created" in first.output
    assert config.get_key_file().exists()

    second = _invoke(config, "init-key")
    assert second.exit_code == 0
    assert "present" in second.output


def test_foreign_encrypted_token_is_reported_not_raised(project):
    write_settings(
        project / "config",
        {"project": {"name": "app"}, "remote": {"owner": "acme", "repo": "site", "token": "enc:from-another-machine"}},
    )
    config = ConfigManager(project / "config")

    for command in ("sync", "push-backup"):
        result = _invoke(config, command)
        assert result.exit_code == 1
        assert result.exception is None or isinstance(result.exception, SystemExit)
        assert "cannot be decrypted" in result.output

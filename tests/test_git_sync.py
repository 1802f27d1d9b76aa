"""Tests for the git command-line backup path."""

import shutil
import subprocess
from unittest.mock import patch

import pytest

from stowage.core.config_manager import ConfigManager
from stowage.core.encryption import EncryptionService
from stowage.core.errors import CommandTimeoutError
from stowage.core.git_sync import CORRUPTED_MESSAGE, GitSync

from conftest import write_settings

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

REAL_REMOTE = {"owner": "acme", "repo": "site", "token": "ghp_supersecret"}


def _git(project, *args):
    subprocess.run(["git", *args], cwd=project, check=True, capture_output=True, text=True)


@pytest.fixture
def repo(project):
    _git(project, "init", "-q")
    _git(project, "config", "user.email", "dev@example.com")
    _git(project, "config", "user.name", "Dev")
    _git(project, "config", "commit.gpgsign", "false")
    return project


@pytest.fixture
def remote_config(project):
    write_settings(project / "config", {"project": {"name": "app"}, "remote": dict(REAL_REMOTE)})
    return ConfigManager(project / "config")


class FakeGit:
    """Stands in for subprocess.run; scripted results per git subcommand"""

    def __init__(self, script=None):
        self.script = {key: list(value) for key, value in (script or {}).items()}
        self.commands = []

    def __call__(self, cmd, **kwargs):
        assert kwargs["timeout"] > 0
        self.commands.append(cmd[1:])
        queue = self.script.get(cmd[1], [])
        outcome = queue.pop(0) if queue else (0, "", "")
        if isinstance(outcome, BaseException):
            raise outcome
        if cmd[1] == "log" and not queue and outcome == (0, "", ""):
            outcome = (0, "abc1234 backup\n", "")
        returncode, stdout, stderr = outcome
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def subcommands(self):
        return [cmd[0] for cmd in self.commands]


@requires_git
def test_quick_backup_commits_then_reports_no_changes(config, repo):
    sync = GitSync(config)

    first = sync.quick_backup("first snapshot")
    assert first.success, first.error
    assert first.commit_hash

    second = sync.quick_backup()
    assert second.success
    assert second.no_changes
    assert second.commit_hash is None


@requires_git
def test_history_lists_commits(config, repo):
    sync = GitSync(config)
    sync.quick_backup("first snapshot")
    (repo / "README.md").write_text("# Changed\n")
    sync.quick_backup("second snapshot")

    records = sync.history(limit=5)
    assert [r.message for r in records] == ["second snapshot", "first snapshot"]
    assert records[0].tree_sha


def test_history_outside_a_repository_is_empty(config):
    assert GitSync(config).history() == []


def test_placeholder_remote_simulates_push_variants(config):
    sync = GitSync(config)
    with patch("stowage.core.git_sync.subprocess.run") as run:
        push = sync.push_backup()
        auto = sync.auto_backup()
    run.assert_not_called()
    for result in (push, auto):
        assert result.success
        assert result.simulated
        assert result.commit_hash == "demo-mode"


def test_stale_commit_state_is_repaired_once(config, project):
    git_dir = project / ".git"
    git_dir.mkdir()
    (git_dir / "index.lock").write_text("")
    (git_dir / "COMMIT_EDITMSG").write_text("half written")

    fake = FakeGit({"commit": [(128, "", "fatal: Unable to create '.git/index.lock': File exists.")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(config).quick_backup("retry me")

    assert result.success, result.error
    assert result.commit_hash == "abc1234"
    assert fake.subcommands().count("commit") == 2
    assert "reset" in fake.subcommands()
    assert not (git_dir / "index.lock").exists()
    assert not (git_dir / "COMMIT_EDITMSG").exists()


def test_persistent_corruption_is_reported(config, project):
    failure = (1, "", "error: could not open .git/COMMIT_EDITMSG")
    fake = FakeGit({"commit": [failure, failure]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(config).quick_backup()

    assert not result.success
    assert result.message == CORRUPTED_MESSAGE
    assert fake.subcommands().count("commit") == 2


def test_nothing_to_commit_is_success(config):
    fake = FakeGit({"commit": [(1, "On branch main\nnothing to commit, working tree clean\n", "")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(config).quick_backup()
    assert result.success
    assert result.no_changes


def test_timeout_is_reported(config):
    fake = FakeGit({"add": [subprocess.TimeoutExpired(["git", "add"], 5)]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(config).quick_backup()
    assert not result.success
    assert "timed out" in result.message


def test_git_timeout_raises_timeout_error(config):
    fake = FakeGit({"status": [subprocess.TimeoutExpired(["git", "status"], 3)]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        with pytest.raises(TimeoutError):
            GitSync(config)._git(["status"], "log")
    assert issubclass(CommandTimeoutError, TimeoutError)


def test_push_failure_keeps_local_backup(remote_config):
    fake = FakeGit({"push": [(1, "", "fatal: could not read from https://ghp_supersecret@github.com/acme/site.git")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(remote_config).push_backup()

    assert result.success
    assert result.commit_hash == "abc1234"
    assert not result.pushed
    assert fake.commands[0] == ["reset"]


def test_push_backup_pushes_existing_history_when_clean(remote_config):
    fake = FakeGit({"commit": [(1, "nothing to commit, working tree clean", "")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(remote_config).push_backup()

    assert result.success
    assert result.no_changes
    assert result.pushed
    assert "push" in fake.subcommands()


def test_auto_backup_does_not_push_when_clean(remote_config):
    fake = FakeGit({"commit": [(1, "nothing to commit, working tree clean", "")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(remote_config).auto_backup()

    assert result.success
    assert result.no_changes
    assert "push" not in fake.subcommands()


def test_full_restore_requires_confirmation(remote_config):
    with patch("stowage.core.git_sync.subprocess.run") as run:
        result = GitSync(remote_config).full_restore()
    assert not result.success
    assert "cannot be undone" in result.message
    run.assert_not_called()


def test_full_restore_sequence_keeps_tooling_paths(remote_config):
    fake = FakeGit()
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(remote_config).full_restore(confirm=True)

    assert result.success, result.error
    assert fake.subcommands() == ["remote", "fetch", "reset", "clean", "log"]
    assert fake.commands[2] == ["reset", "--hard", "origin/main"]
    clean = fake.commands[3]
    assert "/.stowage" in clean
    assert "/config" in clean
    assert "/backups" in clean


def test_git_errors_redact_the_token(remote_config):
    fake = FakeGit({"pull": [(1, "", "fatal: https://ghp_supersecret@github.com/acme/site.git not found")]})
    with patch("stowage.core.git_sync.subprocess.run", side_effect=fake):
        result = GitSync(remote_config).pull_restore()
    assert not result.success
    assert "ghp_supersecret" not in result.error


@requires_git
def test_key_material_is_never_committed(config, encryption, repo):
    _ = encryption.key
    assert GitSync(config).quick_backup().success

    tracked = subprocess.run(
        ["git", "ls-files"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.splitlines()
    assert "src/main.py" in tracked
    assert "config/settings.yaml" in tracked
    assert not any(path.startswith(".stowage/") for path in tracked)
    assert "config/.config_key" not in tracked


def test_add_pathspec_excludes_configured_key_and_encrypted_files(project):
    write_settings(
        project / "config", {"project": {"name": "app"}, "encryption": {"key_file": "config/.backup_key"}}
    )
    pathspec = GitSync(ConfigManager(project / "config"))._add_pathspec()

    assert pathspec[:2] == ["--", "."]
    assert ":(exclude)config/.backup_key" in pathspec
    assert ":(exclude)config/.config_key" in pathspec
    assert ":(exclude)backups" in pathspec
    assert ":(exclude,glob)**/.env" in pathspec


@requires_git
def test_key_in_config_dir_and_env_are_never_committed(project, repo):
    write_settings(
        project / "config", {"project": {"name": "app"}, "encryption": {"key_file": "config/.backup_key"}}
    )
    config = ConfigManager(project / "config")
    _ = EncryptionService(config.get_key_file()).key
    (project / "src" / ".env").write_text("SECRET=nested\n")
    assert GitSync(config).quick_backup().success

    tracked = subprocess.run(
        ["git", "ls-files"], cwd=repo, check=True, capture_output=True, text=True
    ).stdout.splitlines()
    assert "config/settings.yaml" in tracked
    assert "config/.backup_key" not in tracked
    assert ".env" not in tracked
    assert "src/.env" not in tracked

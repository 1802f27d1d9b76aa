"""Basic smoke tests to verify imports work correctly."""


def test_core_imports():
    """Test that core modules can be imported."""
    from stowage.core.backup_engine import BackupEngine
    from stowage.core.config_manager import ConfigManager
    from stowage.core.git_sync import GitSync
    from stowage.core.remote_api import RemoteAPIClient
    from stowage.core.restore import RestoreOrchestrator

    assert BackupEngine is not None
    assert ConfigManager is not None
    assert GitSync is not None
    assert RemoteAPIClient is not None
    assert RestoreOrchestrator is not None


def test_utils_imports():
    """Test that utility modules can be imported."""
    from stowage.utils.hooks import PostRestoreHooks
    from stowage.utils.retry import retry
    from stowage.utils.scheduler import AutoBackupScheduler

    assert PostRestoreHooks is not None
    assert retry is not None
    assert AutoBackupScheduler is not None


def test_cli_import():
    """Test that the CLI entry point can be imported."""
    from stowage.cli import cli

    assert cli is not None

"""Tests for the automatic backup scheduler."""

import time
from unittest.mock import MagicMock

import pytest

from stowage.core.models import SyncResult
from stowage.utils.scheduler import AutoBackupScheduler


def _git_sync():
    git_sync = MagicMock()
    git_sync.auto_backup.return_value = SyncResult(success=True, message="No changes", no_changes=True)
    return git_sync


def test_run_once_records_result():
    git_sync = _git_sync()
    scheduler = AutoBackupScheduler(git_sync, interval_seconds=60)

    result = scheduler.run_once()

    assert result.success
    assert scheduler.last_result is result
    assert scheduler.runs == 1


def test_false_precondition_skips_tick():
    git_sync = _git_sync()
    scheduler = AutoBackupScheduler(git_sync, interval_seconds=60, precondition=lambda: False)

    assert scheduler.run_once() is None
    git_sync.auto_backup.assert_not_called()
    assert scheduler.last_result is None


def test_start_and_stop():
    git_sync = _git_sync()
    scheduler = AutoBackupScheduler(git_sync, interval_seconds=0.01)

    scheduler.start()
    deadline = time.monotonic() + 5
    while scheduler.runs < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    scheduler.stop(timeout=5)

    assert scheduler.runs >= 2
    assert not scheduler.running


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        AutoBackupScheduler(_git_sync(), interval_seconds=0)

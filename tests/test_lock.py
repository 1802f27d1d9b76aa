"""Tests for the per-project lock."""

import pytest

from stowage.core.errors import LockError
from stowage.utils.lock import ProjectLock


def test_second_holder_is_refused(tmp_path):
    lock_path = tmp_path / ".stowage" / "stowage.lock"
    with ProjectLock(lock_path):
        with pytest.raises(LockError):
            ProjectLock(lock_path).acquire()


def test_lock_is_reusable_after_release(tmp_path):
    lock_path = tmp_path / "stowage.lock"
    with ProjectLock(lock_path):
        pass
    with ProjectLock(lock_path):
        assert lock_path.exists()

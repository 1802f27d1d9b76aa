"""Advisory per-project lock so backup and restore runs cannot interleave"""

import fcntl
import logging
import os
from pathlib import Path

from stowage.core.errors import LockError


class ProjectLock:
    """Non-blocking exclusive flock on a lock file, usable as a context manager"""

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self.logger = logging.getLogger("ProjectLock")
        self._fd: int | None = None

    def acquire(self) -> None:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.lock_path), os.O_RDWR | os.O_CREAT, 0o600)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            raise LockError(f"Another backup or restore is running (lock held on {self.lock_path})") from e
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        self.logger.debug(f"Acquired lock {self.lock_path}")

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        self.logger.debug(f"Released lock {self.lock_path}")

    def __enter__(self) -> "ProjectLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

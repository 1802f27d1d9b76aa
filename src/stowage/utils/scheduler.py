"""Periodic automatic git backups on a background thread"""

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING

from stowage.core.models import SyncResult

if TYPE_CHECKING:
    from stowage.core.git_sync import GitSync

DEFAULT_INTERVAL_SECONDS = 300


class AutoBackupScheduler:
    """Runs GitSync.auto_backup every interval while a precondition holds

    A false precondition (e.g. a hardware key not plugged in) skips the tick
    without stopping the scheduler.
    """

    def __init__(
        self,
        git_sync: "GitSync",
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        precondition: Callable[[], bool] | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.git_sync = git_sync
        self.interval_seconds = interval_seconds
        self.precondition = precondition or (lambda: True)
        self.logger = logging.getLogger("AutoBackupScheduler")

        self.last_result: SyncResult | None = None
        self.runs = 0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SyncResult | None:
        """Run a single tick

        Returns:
            The backup result, or None when the precondition was not met
        """
        if not self.precondition():
            self.logger.info("Auto backup paused: precondition not met")
            return None

        result = self.git_sync.auto_backup()
        with self._lock:
            self.last_result = result
            self.runs += 1

        if result.success:
            self.logger.info(f"Auto backup: {result.message}")
        else:
            self.logger.warning(f"Auto backup failed: {result.error or result.message}")
        return result

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            self._stop_event.wait(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="stowage-auto-backup", daemon=True)
        self._thread.start()
        self.logger.info(f"Auto backup started (every {self.interval_seconds}s)")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        self.logger.info("Auto backup stopped")

    def wait(self) -> None:
        """Block until stop() is called"""
        while self.running:
            self._stop_event.wait(1)

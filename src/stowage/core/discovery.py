"""Backup discovery and selection"""

import logging
from datetime import datetime
from pathlib import Path

from .archive import ARCHIVE_SUFFIX
from .errors import NoBackupsAvailable, NotFoundError
from .models import BackupKind, BackupSummary


class BackupDiscovery:
    """Enumerates local backups and picks one to restore.

    Selection is by recency only: a corrupt newest backup is still selected.
    """

    def __init__(self, backup_dir: Path, ignore: list[Path] | None = None):
        self.backup_dir = Path(backup_dir)
        self.ignore = {p.resolve() for p in (ignore or [])}
        self.logger = logging.getLogger("BackupDiscovery")

    def _summarize(self, path: Path) -> BackupSummary:
        stat = path.stat()
        if path.is_dir():
            kind = BackupKind.DIRECTORY
            backup_id = path.name
        else:
            kind = BackupKind.ARCHIVE
            backup_id = path.name[: -len(ARCHIVE_SUFFIX)]
        return BackupSummary(
            id=backup_id,
            filename=path.name,
            path=path,
            kind=kind,
            size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime),
        )

    def list_backups(self) -> list[BackupSummary]:
        """All backups, newest first"""
        if not self.backup_dir.exists():
            return []

        backups = []
        for entry in self.backup_dir.iterdir():
            if entry.name.startswith(".") or entry.resolve() in self.ignore:
                continue
            if entry.is_symlink():
                continue
            if entry.is_dir() or (entry.is_file() and entry.name.endswith(ARCHIVE_SUFFIX)):
                backups.append(self._summarize(entry))

        return sorted(backups, key=lambda b: b.created_at, reverse=True)

    @staticmethod
    def select_best(backups: list[BackupSummary]) -> BackupSummary:
        """Most recent backup of an already sorted list"""
        if not backups:
            raise NoBackupsAvailable("No backups found")
        return backups[0]

    def select_explicit(self, backup_id: str) -> BackupSummary:
        """Resolve a backup id (archive first, then directory) or a path"""
        candidates = [
            self.backup_dir / f"{backup_id}{ARCHIVE_SUFFIX}",
            self.backup_dir / backup_id,
            Path(backup_id).expanduser(),
        ]
        for candidate in candidates:
            if candidate.is_dir() or (candidate.is_file() and candidate.name.endswith(ARCHIVE_SUFFIX)):
                return self._summarize(candidate)

        raise NotFoundError(f"Backup not found: {backup_id}", backup_id=backup_id)

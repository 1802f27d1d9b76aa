"""Core Backup Engine for Stowage"""

import json
import logging
import platform
import secrets
import shutil
from datetime import datetime
from pathlib import Path

from stowage.utils.lock import ProjectLock
from stowage.utils.notifications import NotificationManager

from .archive import ArchiveBuilder
from .config_manager import ConfigManager
from .discovery import BackupDiscovery
from .encryption import EncryptionService
from .errors import StowageError
from .file_filter import FileFilter, scrub_credentials
from .manifest import IntegrityValidator
from .models import ENCRYPTED_SUFFIX, METADATA_FILE, BackupMetadata, BackupResult, BackupSummary

STATE_DIR = ".stowage"
LOCK_FILE = f"{STATE_DIR}/stowage.lock"


def generate_backup_id(project_name: str) -> str:
    """<project>-<ISO timestamp with ':' and '.' replaced>-<8 hex>"""
    timestamp = datetime.now().isoformat(timespec="milliseconds").replace(":", "-").replace(".", "-")
    return f"{project_name}-{timestamp}-{secrets.token_hex(4)}"


class BackupEngine:
    """Creates local backups of one project tree"""

    def __init__(
        self,
        config_manager: ConfigManager,
        encryption: EncryptionService | None = None,
        notifier: NotificationManager | None = None,
    ):
        self.config = config_manager
        self.logger = logging.getLogger("BackupEngine")

        storage_paths = self.config.get_storage_paths()
        self.project_root = self.config.project_root
        self.backup_dir: Path = storage_paths["backups"]
        self.temp_dir: Path = storage_paths["temp"]

        self.encryption = encryption or EncryptionService(self.config.get_key_file())
        self.archiver = ArchiveBuilder(self.temp_dir, self.config.project_name)
        self.validator = IntegrityValidator(self.config.project_name)
        self.discovery = BackupDiscovery(self.backup_dir, ignore=[self.temp_dir])
        self.notifier = notifier

        self._init_storage()

    def _init_storage(self) -> None:
        """Initialize storage directories"""
        for path in (self.backup_dir, self.temp_dir):
            path.mkdir(parents=True, exist_ok=True)

    def _build_filter(self) -> FileFilter:
        return FileFilter(
            self.project_root,
            include=self.config.get_setting("backup.include", ["**/*"]),
            exclude=self.config.get_setting("backup.exclude", []),
            encrypt=self.config.get_setting("backup.encrypt", []),
            scrub=self.config.get_setting("backup.credential_scrub", []),
            skip_dirs=[
                self.backup_dir,
                self.temp_dir,
                self.config.get_key_file().parent,
                self.config.config_dir,
                self.project_root / STATE_DIR,
            ],
        )

    def _copy_files(self, files: list[Path], staging: Path, file_filter: FileFilter) -> int:
        """Copy regular files into the staging tree, scrubbing credentials where configured"""
        copied = 0
        for rel_path in files:
            source = self.project_root / rel_path
            target = staging / rel_path
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                if file_filter.needs_scrub(rel_path):
                    content = source.read_text(encoding="utf-8")
                    target.write_text(scrub_credentials(content), encoding="utf-8")
                    shutil.copystat(source, target)
                else:
                    shutil.copy2(source, target)
                copied += 1
            except (OSError, UnicodeDecodeError) as e:
                self.logger.warning(f"Could not copy {rel_path}: {e}")
        return copied

    def _encrypt_files(self, files: list[Path], staging: Path) -> int:
        """Write an encrypted sidecar in the staging tree for each sensitive file"""
        encrypted = 0
        for rel_path in files:
            sidecar = staging / rel_path.parent / (rel_path.name + ENCRYPTED_SUFFIX)
            try:
                self.encryption.encrypt_file(self.project_root / rel_path, sidecar)
                encrypted += 1
            except (OSError, StowageError) as e:
                self.logger.warning(f"Could not encrypt {rel_path}: {e}")
        return encrypted

    def _create_metadata(self, staging: Path, backup_id: str, description: str | None, stats: dict[str, int]) -> None:
        metadata = BackupMetadata(
            project_name=self.config.project_name,
            version=self.config.project_version,
            timestamp=datetime.now().isoformat(),
            regular=stats["regular"],
            encrypted=stats["encrypted"],
            backup_id=backup_id,
            description=description,
            extra={"python": platform.python_version(), "platform": platform.system().lower()},
        )
        with open(staging / METADATA_FILE, "w") as f:
            json.dump(metadata.to_dict(), f, indent=2)

    def create_backup(self, description: str | None = None) -> BackupResult:
        """Create a local backup of the project

        Stages plaintext copies and encrypted sidecars, records a manifest
        and metadata, then archives (or moves) the staging tree into the
        backup directory and applies retention.
        """
        backup_id = generate_backup_id(self.config.project_name)
        staging = self.temp_dir / backup_id
        self.logger.info(f"Starting backup '{backup_id}' of {self.project_root}")

        try:
            with ProjectLock(self.project_root / LOCK_FILE):
                staging.mkdir(parents=True)

                file_filter = self._build_filter()
                selection = file_filter.build_file_list()
                encrypted = self._encrypt_files(selection.encrypted, staging)
                regular = self._copy_files(selection.regular, staging, file_filter)

                payload_files = sorted(p.relative_to(staging) for p in staging.rglob("*") if p.is_file())
                manifest = self.validator.build_manifest(staging, payload_files)
                self.validator.write_manifest(staging, manifest)
                self._create_metadata(staging, backup_id, description, {"regular": regular, "encrypted": encrypted})

                compress = bool(self.config.get_setting("backup.compression", True))
                backup_path = self.archiver.build(staging, self.backup_dir, compress=compress)

            size_bytes = _path_size(backup_path)
            self.cleanup_old_backups()

            self.logger.info(f"Backup '{backup_id}' created: {regular} regular, {encrypted} encrypted files")
            if self.notifier:
                self.notifier.notify_success("backup", backup_id, f"Size: {size_bytes / (1024 * 1024):.2f} MB")

            return BackupResult(
                success=True, backup_id=backup_id, path=backup_path, manifest=manifest, size_bytes=size_bytes
            )

        except (OSError, StowageError) as e:
            self.logger.error(f"Failed to create backup '{backup_id}': {e}")
            if self.notifier:
                self.notifier.notify_failure("backup", backup_id, str(e))
            return BackupResult(success=False, backup_id=backup_id, error=str(e))

        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

    def list_backups(self) -> list[BackupSummary]:
        return self.discovery.list_backups()

    def cleanup_old_backups(self) -> list[str]:
        """Delete backups beyond storage.max_backups, oldest first

        Returns:
            Filenames of deleted backups
        """
        max_backups = int(self.config.get_setting("storage.max_backups", 10))
        backups = self.discovery.list_backups()
        deleted = []
        for backup in backups[max_backups:]:
            try:
                if backup.path.is_dir():
                    shutil.rmtree(backup.path)
                else:
                    backup.path.unlink()
                deleted.append(backup.filename)
                self.logger.info(f"Deleted old backup: {backup.filename}")
            except OSError as e:
                self.logger.warning(f"Could not delete old backup {backup.filename}: {e}")
        return deleted


def _path_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    return sum(f.stat().st_size for f in path.rglob("*") if f.is_file())

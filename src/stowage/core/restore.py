"""Local restore orchestration"""

import logging
import shutil
from pathlib import Path

from stowage.utils.hooks import PostRestoreHooks
from stowage.utils.lock import ProjectLock
from stowage.utils.notifications import NotificationManager
from stowage.utils.retry import retry

from .archive import ArchiveBuilder
from .backup_engine import LOCK_FILE, STATE_DIR
from .config_manager import ConfigManager
from .discovery import BackupDiscovery
from .encryption import EncryptionService, strip_suffix
from .errors import StowageError
from .manifest import IntegrityValidator
from .models import ENCRYPTED_SUFFIX, MANIFEST_FILE, METADATA_FILE, BackupSummary, Manifest, RestoreResult, RestoreState

# Top-level entries of a backup that belong to the tooling, never to the project
RESERVED_FILES = frozenset({MANIFEST_FILE, METADATA_FILE})
RESERVED_DIRS = frozenset({"backup-system", STATE_DIR})


class RestoreOrchestrator:
    """Restores a project from a local backup.

    Runs Idle -> BackupSelected -> Extracted -> Validated -> FilesRestored ->
    Decrypted -> Cleaned -> Done, or Failed from any step. Validation always
    completes before the first write to the project tree, and the temporary
    extraction directory is removed whatever happens.
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        encryption: EncryptionService | None = None,
        hooks: PostRestoreHooks | None = None,
        notifier: NotificationManager | None = None,
    ):
        self.config = config_manager
        self.logger = logging.getLogger("RestoreOrchestrator")

        storage_paths = self.config.get_storage_paths()
        self.project_root = self.config.project_root
        self.backup_dir = storage_paths["backups"]
        self.temp_dir = storage_paths["temp"]

        self.encryption = encryption or EncryptionService(self.config.get_key_file())
        self.archiver = ArchiveBuilder(self.temp_dir, self.config.project_name)
        self.validator = IntegrityValidator(self.config.project_name)
        self.discovery = BackupDiscovery(self.backup_dir, ignore=[self.temp_dir])
        self.hooks = hooks or PostRestoreHooks.from_config(self.config)
        self.notifier = notifier

    def _transition(self, result: RestoreResult, state: RestoreState) -> None:
        result.state = state
        result.states.append(state)
        self.logger.info(f"Restore {result.backup_id or '-'}: {state.value}")

    def select(self, backup_id: str | None = None) -> BackupSummary:
        """Pick an explicit backup, or the most recent one"""
        if backup_id:
            return self.discovery.select_explicit(backup_id)
        return self.discovery.select_best(self.discovery.list_backups())

    def restore(self, backup_id: str | None = None, run_hooks: bool = True) -> RestoreResult:
        """Restore the project from a backup

        Never raises: every failure is reported in the returned result.

        Args:
            backup_id: Backup id or path; None selects the most recent backup
            run_hooks: Run the configured post-restore hooks

        Returns:
            RestoreResult with the final state and counters
        """
        max_attempts = int(self.config.get_setting("retry.max_attempts", 1))
        initial_delay = float(self.config.get_setting("retry.initial_delay", 1.0))
        result = RestoreResult(success=False, backup_id=backup_id)

        def attempt() -> RestoreResult:
            nonlocal result
            result = RestoreResult(success=False, backup_id=backup_id)
            with ProjectLock(self.project_root / LOCK_FILE):
                self._run(result, backup_id, run_hooks)
            return result

        try:
            result = retry(attempt, max_attempts=max_attempts, initial_delay=initial_delay, retry_on=(OSError,))
        except (StowageError, OSError) as e:
            result.success = False
            result.error = str(e)
            self._transition(result, RestoreState.FAILED)
            self.logger.error(f"Restore failed: {e}")
            if self.notifier:
                self.notifier.notify_failure("restore", result.backup_id, str(e))
            return result

        if self.notifier:
            self.notifier.notify_success("restore", result.backup_id or "-", f"{result.files_restored} files restored")
        return result

    def _run(self, result: RestoreResult, backup_id: str | None, run_hooks: bool) -> None:
        self._transition(result, RestoreState.IDLE)
        backup = self.select(backup_id)
        result.backup_id = backup.id
        self._transition(result, RestoreState.BACKUP_SELECTED)

        extract_dir = self.archiver.new_extract_dir()
        try:
            workspace = self.archiver.extract(backup.path, extract_dir)
            self._transition(result, RestoreState.EXTRACTED)

            metadata = self.validator.read_metadata(workspace)
            self.logger.info(
                f"Restoring backup from {metadata.timestamp} (version {metadata.version}, "
                f"{metadata.regular} regular, {metadata.encrypted} encrypted files)"
            )
            self.validator.validate(workspace)
            self._transition(result, RestoreState.VALIDATED)

            result.files_restored = self.restore_files(workspace, self.project_root)
            self._transition(result, RestoreState.FILES_RESTORED)

            result.files_decrypted, result.decrypt_failures = self.decrypt_files(workspace, self.project_root)
            self._transition(result, RestoreState.DECRYPTED)

            if run_hooks:
                result.hook_warnings = self.hooks.run()
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

        self._transition(result, RestoreState.CLEANED)
        result.success = True
        self._transition(result, RestoreState.DONE)

    def verify(self, backup_id: str | None = None) -> Manifest:
        """Extract and validate a backup without touching the project

        Raises:
            StowageError: Selection, extraction or validation failure
        """
        backup = self.select(backup_id)
        extract_dir = self.archiver.new_extract_dir()
        try:
            workspace = self.archiver.extract(backup.path, extract_dir)
            return self.validator.validate(workspace)
        finally:
            shutil.rmtree(extract_dir, ignore_errors=True)

    def _restorable(self, extracted_root: Path) -> list[tuple[Path, Path]]:
        """(file, path relative to root) pairs outside the reserved names, in walk order"""
        pairs = []
        stack = [extracted_root]
        while stack:
            current = stack.pop()
            for entry in sorted(current.iterdir()):
                top_level = current == extracted_root
                if entry.is_dir() and not entry.is_symlink():
                    if top_level and entry.name in RESERVED_DIRS:
                        continue
                    stack.append(entry)
                elif entry.is_file():
                    if top_level and entry.name in RESERVED_FILES:
                        continue
                    pairs.append((entry, entry.relative_to(extracted_root)))
        return pairs

    def restore_files(self, extracted_root: Path, dest_root: Path) -> int:
        """Copy plaintext files into dest_root, skipping tooling files and sidecars

        Returns:
            Number of files copied
        """
        copied = 0
        for source, rel_path in self._restorable(extracted_root):
            if source.name.endswith(ENCRYPTED_SUFFIX):
                continue
            target = dest_root / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            copied += 1
        self.logger.info(f"Restored {copied} files to {dest_root}")
        return copied

    def decrypt_files(self, extracted_root: Path, dest_root: Path) -> tuple[int, list[str]]:
        """Decrypt every sidecar into dest_root with the suffix stripped

        A file that fails to decrypt is logged and skipped.

        Returns:
            Tuple of (files decrypted, relative paths that failed)
        """
        decrypted = 0
        failures = []
        for sidecar, rel_path in self._restorable(extracted_root):
            if not sidecar.name.endswith(ENCRYPTED_SUFFIX):
                continue
            target = strip_suffix(dest_root / rel_path)
            try:
                self.encryption.decrypt_file(sidecar, target)
                decrypted += 1
            except (StowageError, OSError) as e:
                self.logger.warning(f"Could not decrypt {rel_path}: {e}")
                failures.append(rel_path.as_posix())
        return decrypted, failures

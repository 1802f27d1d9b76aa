"""Manifest creation and integrity validation"""

import hashlib
import json
import logging
from datetime import datetime
from pathlib import Path

from .errors import ValidationError
from .models import MANIFEST_FILE, METADATA_FILE, BackupMetadata, Manifest, ManifestEntry

CHECKSUM_ALGORITHM = "sha256"
CHUNK_SIZE = 8192


def aggregate_checksum(root: Path, relative_paths: list[str]) -> str:
    """Hash every file's path and content in ascending path order

    Returns:
        'sha256:<hex>'
    """
    hash_obj = hashlib.new(CHECKSUM_ALGORITHM)
    for rel_path in sorted(relative_paths):
        hash_obj.update(rel_path.encode("utf-8") + b"\0")
        with open(root / rel_path, "rb") as f:
            for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                hash_obj.update(chunk)
        hash_obj.update(b"\0")
    return f"{CHECKSUM_ALGORITHM}:{hash_obj.hexdigest()}"


class IntegrityValidator:
    """Builds manifests at backup time and checks them at restore time"""

    def __init__(self, project_name: str | None = None):
        self.project_name = project_name
        self.logger = logging.getLogger("IntegrityValidator")

    def build_manifest(self, root: Path, files: list[Path], with_checksum: bool = True) -> Manifest:
        """Inventory files (absolute, or relative to root) with sizes, mtimes and totals"""
        root = Path(root)
        entries = []
        total_size = 0
        for file_path in files:
            absolute = file_path if file_path.is_absolute() else root / file_path
            stat = absolute.stat()
            entries.append(
                ManifestEntry(
                    path=absolute.relative_to(root).as_posix(),
                    size=stat.st_size,
                    mtime=datetime.fromtimestamp(stat.st_mtime).isoformat(),
                )
            )
            total_size += stat.st_size

        entries.sort(key=lambda e: e.path)
        checksum = aggregate_checksum(root, [e.path for e in entries]) if with_checksum else None
        return Manifest(
            timestamp=datetime.now().isoformat(),
            file_count=len(entries),
            total_size=total_size,
            files=entries,
            checksum=checksum,
        )

    def write_manifest(self, root: Path, manifest: Manifest) -> Path:
        path = Path(root) / MANIFEST_FILE
        with open(path, "w") as f:
            json.dump(manifest.to_dict(), f, indent=2)
        return path

    def read_manifest(self, backup_root: Path) -> Manifest | None:
        path = Path(backup_root) / MANIFEST_FILE
        if not path.exists():
            return None
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            raise ValidationError(f"Manifest is unreadable: {e}") from e

        files = data.get("files", []) if isinstance(data, dict) else None
        if not isinstance(files, list) or not all(isinstance(entry, dict) for entry in files):
            raise ValidationError("Manifest is unreadable: expected an object with a list of file entries")
        try:
            return Manifest.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Manifest is unreadable: {e}") from e

    def read_metadata(self, backup_root: Path) -> BackupMetadata:
        path = Path(backup_root) / METADATA_FILE
        if not path.exists():
            raise ValidationError("Invalid backup: metadata not found")
        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            raise ValidationError(f"Failed to read backup metadata: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("stats") or {}, dict):
            raise ValidationError("Failed to read backup metadata: expected an object with a stats object")
        try:
            return BackupMetadata.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise ValidationError(f"Failed to read backup metadata: {e}") from e

    def validate_metadata(self, metadata: BackupMetadata) -> None:
        """Reject a backup that belongs to another project"""
        if self.project_name and metadata.project_name != self.project_name:
            raise ValidationError(
                f"Backup project mismatch: expected {self.project_name}, got {metadata.project_name}",
                backup_id=metadata.backup_id,
            )

    def validate(self, backup_root: Path) -> Manifest:
        """Check a backup tree against its manifest

        Every listed path must exist with its recorded size, and a recorded
        checksum must match. Nothing outside backup_root is touched.

        Raises:
            ValidationError: On any mismatch
        """
        backup_root = Path(backup_root)
        metadata = self.read_metadata(backup_root)
        self.validate_metadata(metadata)

        manifest = self.read_manifest(backup_root)
        if manifest is None:
            self.logger.warning(f"No manifest in {backup_root.name}; only metadata was validated")
            return Manifest(timestamp=metadata.timestamp, file_count=0, total_size=0)

        missing = []
        for entry in manifest.files:
            file_path = backup_root / entry.path
            if not file_path.is_file():
                missing.append(entry.path)
            elif file_path.stat().st_size != entry.size:
                raise ValidationError(
                    f"Size mismatch for {entry.path}: expected {entry.size}, found {file_path.stat().st_size}",
                    backup_id=metadata.backup_id,
                )
        if missing:
            preview = ", ".join(missing[:5])
            raise ValidationError(f"{len(missing)} file(s) listed in manifest are missing: {preview}", metadata.backup_id)

        if manifest.checksum:
            actual = aggregate_checksum(backup_root, [e.path for e in manifest.files])
            if actual != manifest.checksum:
                self.logger.error(f"Checksum mismatch for {backup_root.name}")
                raise ValidationError(
                    f"Backup corrupted! Checksum mismatch. Expected: {manifest.checksum} Actual: {actual}",
                    backup_id=metadata.backup_id,
                )

        self.logger.info(f"Validated {manifest.file_count} files in {backup_root.name}")
        return manifest

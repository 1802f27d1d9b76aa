"""Archive Builder/Extractor for Stowage"""

import logging
import os
import shutil
import sys
import tarfile
import time
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import ExtractionError, NotFoundError

ARCHIVE_SUFFIX = ".tar.gz"


class ArchiveBuilder:
    """Packages a staged backup tree and unpacks it again for restore"""

    def __init__(self, temp_dir: Path, project_name: str):
        self.temp_dir = Path(temp_dir)
        self.project_name = project_name
        self.logger = logging.getLogger("ArchiveBuilder")

    def build(self, source_tree: Path, destination_dir: Path, compress: bool = True) -> Path:
        """Package source_tree as <destination_dir>/<name>.tar.gz, or as a directory copy

        The tree's own directory name becomes the single top-level member so
        the extractor can find it again.

        Args:
            source_tree: Directory to package
            destination_dir: Where the archive (or copy) is written
            compress: False selects the directory-copy mode

        Returns:
            Path of the archive file or copied directory
        """
        source_tree = Path(source_tree)
        if not source_tree.is_dir():
            raise NotFoundError(f"Source tree not found: {source_tree}")
        destination_dir.mkdir(parents=True, exist_ok=True)

        if not compress:
            target = destination_dir / source_tree.name
            if target.exists():
                shutil.rmtree(target)
            copy_tree(source_tree, target)
            self.logger.info(f"Copied backup tree to {target}")
            return target

        archive_path = destination_dir / f"{source_tree.name}{ARCHIVE_SUFFIX}"

        def filter_func(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo | None:
            if ".git" in tarinfo.name.split("/"):
                return None
            return tarinfo

        try:
            with tarfile.open(archive_path, "w:gz") as tar:
                tar.add(source_tree, arcname=source_tree.name, filter=filter_func)
        except Exception:
            if archive_path.exists():
                archive_path.unlink()
            raise

        os.chmod(archive_path, 0o600)
        self.logger.info(f"Created archive {archive_path.name} ({archive_path.stat().st_size / 1024:.1f} KB)")
        return archive_path

    def new_extract_dir(self) -> Path:
        """Fresh extraction directory named from a nanosecond timestamp"""
        extract_dir = self.temp_dir / f"restore-{time.time_ns()}"
        if extract_dir.exists():
            shutil.rmtree(extract_dir)
        extract_dir.mkdir(parents=True)
        return extract_dir

    def extract(self, backup_path: Path, dest_dir: Path) -> Path:
        """Unpack a backup into dest_dir and return its workspace root

        Archives are extracted; directory backups are copied in under their
        own name.

        Raises:
            ExtractionError: Corrupt archive, or zero/several candidate roots
        """
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise NotFoundError(f"Backup not found: {backup_path}")

        if backup_path.is_dir():
            copy_tree(backup_path, dest_dir / backup_path.name)
        else:
            try:
                with tarfile.open(backup_path, "r:gz") as tar:
                    self._safe_extractall(tar, str(dest_dir))
            except (tarfile.TarError, EOFError, OSError, ValueError) as e:
                raise ExtractionError(f"Failed to extract backup archive: {e}", backup_id=backup_path.name) from e

        return self.locate_root(dest_dir, backup_id=backup_path.name)

    def locate_root(self, dest_dir: Path, backup_id: str | None = None) -> Path:
        """Find the single top-level directory named after the project"""
        candidates = [
            entry for entry in dest_dir.iterdir() if entry.is_dir() and entry.name.startswith(self.project_name)
        ]
        if not candidates:
            raise ExtractionError("Backup extraction failed - no workspace directory found", backup_id=backup_id)
        if len(candidates) > 1:
            names = ", ".join(sorted(c.name for c in candidates))
            raise ExtractionError(f"Ambiguous backup contents - multiple workspace directories: {names}", backup_id)
        return candidates[0]

    def list_contents(self, backup_path: Path) -> list[dict[str, Any]]:
        """List files in an archive without extracting"""
        items = []
        try:
            with tarfile.open(backup_path, "r:gz") as tar:
                for member in tar.getmembers():
                    items.append(
                        {
                            "name": member.name,
                            "type": "dir" if member.isdir() else "file",
                            "size": member.size,
                            "mtime": datetime.fromtimestamp(member.mtime).isoformat(),
                        }
                    )
        except (tarfile.TarError, OSError) as e:
            raise ExtractionError(f"Cannot read archive: {e}", backup_id=Path(backup_path).name) from e
        return items

    @staticmethod
    def _safe_extractall(tar: tarfile.TarFile, path: str):
        """Safely extract all members from a tar archive, preventing path traversal.

        Rejects members with absolute paths or '..' components that could write
        files outside the target directory.
        """
        target = Path(path).resolve()
        safe_members = []
        for member in tar.getmembers():
            if os.path.isabs(member.name) or ".." in Path(member.name).parts:
                raise ValueError(f"Tar member '{member.name}' would extract outside target directory")
            member_path = (target / member.name).resolve()
            if not str(member_path).startswith(str(target) + os.sep) and member_path != target:
                raise ValueError(f"Tar member '{member.name}' would extract outside target directory")
            safe_members.append(member)

        if sys.version_info >= (3, 12):
            tar.extractall(path, members=safe_members, filter="data")  # nosec B202
        else:
            tar.extractall(path, members=safe_members)  # noqa: S202  # nosec B202


def copy_tree(source: Path, destination: Path) -> int:
    """Copy a directory tree file by file with an explicit stack

    Returns:
        Number of files copied
    """
    copied = 0
    stack = [(Path(source), Path(destination))]
    while stack:
        src_dir, dest_dir = stack.pop()
        dest_dir.mkdir(parents=True, exist_ok=True)
        for entry in sorted(src_dir.iterdir()):
            target = dest_dir / entry.name
            if entry.is_dir() and not entry.is_symlink():
                stack.append((entry, target))
            else:
                shutil.copy2(entry, target)
                copied += 1
    return copied


def walk_files(root: Path) -> list[Path]:
    """All regular files under root, sorted, using an explicit stack"""
    files = []
    stack = [Path(root)]
    while stack:
        current = stack.pop()
        for entry in current.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                stack.append(entry)
            elif entry.is_file():
                files.append(entry)
    return sorted(files)

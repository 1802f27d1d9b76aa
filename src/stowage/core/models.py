"""Data model shared by the backup, restore and sync components"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

ENCRYPTED_SUFFIX = ".encrypted"
MANIFEST_FILE = "manifest.json"
METADATA_FILE = "backup-metadata.json"

# Values shipped in example configs; never used against a real remote
PLACEHOLDER_TOKENS = ("demo-token",)
PLACEHOLDER_OWNERS = ("demo-user",)
PLACEHOLDER_REPOS = ("demo-repo",)
PLACEHOLDER_FRAGMENTS = ("your-personal-access-token", "your-username", "your-repo-name")


class BackupKind(Enum):
    """Where a backup lives"""

    ARCHIVE = "archive"
    DIRECTORY = "directory"
    REMOTE_COMMIT = "remote_commit"


class RestoreState(Enum):
    """Restore state machine"""

    IDLE = "idle"
    BACKUP_SELECTED = "backup_selected"
    EXTRACTED = "extracted"
    VALIDATED = "validated"
    FILES_RESTORED = "files_restored"
    DECRYPTED = "decrypted"
    CLEANED = "cleaned"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class EncryptedPayload:
    """Authenticated ciphertext as persisted in a sidecar file"""

    ciphertext: str  # hex
    iv: str  # hex, 16 bytes
    tag: str  # hex, 16 bytes

    def to_dict(self) -> dict[str, str]:
        return {"encrypted": self.ciphertext, "iv": self.iv, "tag": self.tag}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedPayload":
        return cls(ciphertext=data["encrypted"], iv=data["iv"], tag=data["tag"])


@dataclass(frozen=True)
class ManifestEntry:
    path: str
    size: int
    mtime: str


@dataclass
class Manifest:
    """Inventory of the files in a backup"""

    timestamp: str
    file_count: int
    total_size: int
    files: list[ManifestEntry] = field(default_factory=list)
    checksum: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": self.timestamp,
            "fileCount": self.file_count,
            "totalSize": self.total_size,
            "files": [asdict(entry) for entry in self.files],
        }
        if self.checksum:
            data["checksum"] = self.checksum
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        files = [
            ManifestEntry(path=f["path"], size=int(f.get("size", 0)), mtime=f.get("mtime", ""))
            for f in data.get("files", [])
        ]
        return cls(
            timestamp=data.get("timestamp", ""),
            file_count=int(data.get("fileCount", len(files))),
            total_size=int(data.get("totalSize", 0)),
            files=files,
            checksum=data.get("checksum"),
        )


@dataclass
class BackupMetadata:
    """Contents of backup-metadata.json"""

    project_name: str
    version: str
    timestamp: str
    regular: int = 0
    encrypted: int = 0
    backup_id: str | None = None
    description: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.backup_id,
            "projectName": self.project_name,
            "version": self.version,
            "timestamp": self.timestamp,
            "description": self.description,
            "stats": {"regular": self.regular, "encrypted": self.encrypted},
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BackupMetadata":
        stats = data.get("stats") or {}
        known = {"id", "projectName", "version", "timestamp", "description", "stats"}
        return cls(
            project_name=data.get("projectName", ""),
            version=data.get("version", "unknown"),
            timestamp=data.get("timestamp", ""),
            regular=int(stats.get("regular", 0)),
            encrypted=int(stats.get("encrypted", 0)),
            backup_id=data.get("id"),
            description=data.get("description"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class BackupSummary:
    """A discovered backup candidate"""

    id: str
    filename: str
    path: Path
    kind: BackupKind
    size: int
    created_at: datetime


@dataclass(frozen=True)
class RemoteConfig:
    """Remote repository credentials. Treat as secret."""

    owner: str
    repo: str
    token: str
    branch: str = "main"

    def is_placeholder(self) -> bool:
        """Check for demo or unset values that must never reach the remote"""
        if not self.token or not self.owner or not self.repo:
            return True
        if self.token in PLACEHOLDER_TOKENS or self.owner in PLACEHOLDER_OWNERS or self.repo in PLACEHOLDER_REPOS:
            return True
        values = (self.token, self.owner, self.repo)
        return any(fragment in value for fragment in PLACEHOLDER_FRAGMENTS for value in values)

    def authenticated_url(self, host: str = "github.com") -> str:
        return f"https://{self.token}@{host}/{self.owner}/{self.repo}.git"

    def __repr__(self) -> str:
        return f"RemoteConfig(owner={self.owner!r}, repo={self.repo!r}, token='***', branch={self.branch!r})"


@dataclass(frozen=True)
class CommitRecord:
    """Read-only view of a snapshot commit"""

    sha: str
    message: str
    author: str
    date: str
    tree_sha: str


@dataclass
class BackupResult:
    """Result of a local backup"""

    success: bool
    backup_id: str | None = None
    path: Path | None = None
    manifest: Manifest | None = None
    size_bytes: int = 0
    error: str | None = None


@dataclass
class RestoreResult:
    """Result of a restore run"""

    success: bool
    backup_id: str | None = None
    state: RestoreState = RestoreState.IDLE
    states: list[RestoreState] = field(default_factory=list)
    files_restored: int = 0
    files_decrypted: int = 0
    decrypt_failures: list[str] = field(default_factory=list)
    hook_warnings: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass
class SyncResult:
    """Result of a remote sync (object API or git command line)"""

    success: bool
    message: str
    commit_hash: str | None = None
    timestamp: str | None = None
    files_count: int = 0
    pushed: bool = False
    no_changes: bool = False
    simulated: bool = False
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

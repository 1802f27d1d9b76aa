"""Remote snapshots through the GitHub git-data API"""

import base64
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from stowage.utils.retry import retry

from .errors import ConfigurationError, NetworkError, NonFastForwardError, NotFoundError, StowageError
from .file_filter import matches
from .models import CommitRecord, RemoteConfig, SyncResult

# Matched against every path component
REMOTE_EXCLUDE = [
    "node_modules",
    ".next",
    ".git",
    "dist",
    "build",
    ".env*",
    "*.log",
    ".DS_Store",
    "Thumbs.db",
    ".stowage",
    ".config_key",
]

STATUS_CONTEXT = "stowage-backup"
BLOB_MODE = "100644"


class RemoteAPIClient:
    """Builds snapshot commits from blobs, trees and refs.

    Mutating calls never fire with placeholder credentials: snapshot()
    returns a simulated success instead.
    """

    def __init__(
        self,
        remote: RemoteConfig,
        api_url: str = "https://api.github.com",
        timeout: int = 30,
        max_workers: int = 8,
        allow_force_update: bool = False,
        read_attempts: int = 3,
        local_only: list[str] | None = None,
        session: requests.Session | None = None,
    ):
        self.remote = remote
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.max_workers = max_workers
        self.allow_force_update = allow_force_update
        self.read_attempts = read_attempts
        self.local_only = list(local_only or [])
        self._session = session
        self.logger = logging.getLogger("RemoteAPIClient")

    @classmethod
    def from_config(cls, config, session: requests.Session | None = None) -> "RemoteAPIClient":
        return cls(
            config.get_remote_config(),
            api_url=config.get_setting("remote.api_url", "https://api.github.com"),
            timeout=int(config.get_setting("remote.request_timeout", 30)),
            max_workers=int(config.get_setting("remote.max_workers", 8)),
            allow_force_update=bool(config.get_setting("remote.allow_force_update", False)),
            local_only=config.get_local_only_paths(),
            session=session,
        )

    def _auth_header(self) -> str:
        scheme = "token" if self.remote.token.startswith("ghp_") else "Bearer"
        return f"{scheme} {self.remote.token}"

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        self._session.headers.update(
            {
                "Authorization": self._auth_header(),
                "Accept": "application/vnd.github.v3+json",
                "X-GitHub-Api-Version": "2022-11-28",
            }
        )
        return self._session

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.remote.owner}/{self.remote.repo}"

    def _request(self, method: str, endpoint: str, payload: dict[str, Any] | None = None) -> Any:
        """Make an API request

        Raises:
            NotFoundError: 404 response
            NonFastForwardError: 422 rejecting a ref update
            NetworkError: Any other HTTP or connection failure
        """
        if self.remote.is_placeholder():
            raise ConfigurationError("Remote repository is not configured")

        session = self._get_session()
        url = f"{self.api_url}{endpoint}"
        try:
            response = session.request(method, url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkError(f"Request to {endpoint} timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"Failed to reach {self.api_url}: {e}") from e

        self.logger.debug(f"{method} {endpoint} -> {response.status_code}")

        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            if response.status_code == 404:
                raise NotFoundError(f"{endpoint} not found: {message}")
            if response.status_code == 422 and "not a fast forward" in message.lower():
                raise NonFastForwardError(message, status_code=422)
            raise NetworkError(f"{method} {endpoint} failed ({response.status_code}): {message}", response.status_code)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _read(self, endpoint: str) -> Any:
        return retry(
            lambda: self._request("GET", endpoint),
            max_attempts=self.read_attempts,
            initial_delay=0.5,
            retry_on=(NetworkError,),
        )

    def get_branch_head(self) -> tuple[str, str]:
        """Returns (commit sha, tree sha) of the configured branch"""
        ref = self._read(f"{self._repo_path}/git/ref/heads/{self.remote.branch}")
        commit_sha = ref["object"]["sha"]
        commit = self._read(f"{self._repo_path}/git/commits/{commit_sha}")
        return commit_sha, commit["tree"]["sha"]

    def create_blob(self, content: bytes) -> str:
        data = self._request(
            "POST",
            f"{self._repo_path}/git/blobs",
            {"content": base64.b64encode(content).decode("ascii"), "encoding": "base64"},
        )
        return data["sha"]

    def create_tree(self, base_tree: str, entries: list[dict[str, str]]) -> str:
        data = self._request("POST", f"{self._repo_path}/git/trees", {"base_tree": base_tree, "tree": entries})
        return data["sha"]

    def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        data = self._request(
            "POST", f"{self._repo_path}/git/commits", {"message": message, "tree": tree_sha, "parents": [parent_sha]}
        )
        return data["sha"]

    def update_ref(self, commit_sha: str, force: bool = False) -> None:
        self._request(
            "PATCH", f"{self._repo_path}/git/refs/heads/{self.remote.branch}", {"sha": commit_sha, "force": force}
        )

    def get_commit(self, sha: str) -> CommitRecord:
        data = self._read(f"{self._repo_path}/git/commits/{sha}")
        author = data.get("author") or {}
        return CommitRecord(
            sha=data["sha"],
            message=data.get("message", ""),
            author=author.get("name", ""),
            date=author.get("date", ""),
            tree_sha=data.get("tree", {}).get("sha", ""),
        )

    def verify_repository(self) -> dict[str, Any]:
        """Fetch repository metadata, confirming the credentials can see it"""
        data = self._read(self._repo_path)
        return {
            "full_name": data.get("full_name"),
            "private": data.get("private"),
            "default_branch": data.get("default_branch"),
            "can_push": bool((data.get("permissions") or {}).get("push")),
        }

    def post_status(self, sha: str, description: str) -> bool:
        """Attach a commit status; failures are only logged"""
        try:
            self._request(
                "POST",
                f"{self._repo_path}/statuses/{sha}",
                {"state": "success", "description": description[:140], "context": STATUS_CONTEXT},
            )
            return True
        except StowageError as e:
            self.logger.warning(f"Could not post commit status for {sha[:7]}: {e}")
            return False

    def _is_local_only(self, rel_path: str) -> bool:
        return any(rel_path == p or rel_path.startswith(p + "/") for p in self.local_only)

    def collect_files(self, root: Path) -> list[Path]:
        """Project files to upload, relative to root

        Skips REMOTE_EXCLUDE names and the local-only paths (backup
        archives, temp files, keys).
        """
        root = Path(root)
        files = []
        stack = [root]
        while stack:
            current = stack.pop()
            for entry in current.iterdir():
                if entry.is_symlink() or any(matches(entry.name, p) for p in REMOTE_EXCLUDE):
                    continue
                rel_path = entry.relative_to(root)
                if self._is_local_only(rel_path.as_posix()):
                    continue
                if entry.is_dir():
                    stack.append(entry)
                elif entry.is_file():
                    files.append(rel_path)
        return sorted(files)

    def _upload(self, root: Path, rel_path: Path) -> dict[str, str]:
        sha = self.create_blob((root / rel_path).read_bytes())
        return {"path": rel_path.as_posix(), "mode": BLOB_MODE, "type": "blob", "sha": sha}

    def _upload_all(self, root: Path, files: list[Path]) -> tuple[list[dict[str, str]], list[str]]:
        entries: list[dict[str, str]] = []
        skipped: list[str] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(self._upload, root, rel_path): rel_path for rel_path in files}
            for future in as_completed(futures):
                rel_path = futures[future]
                try:
                    entries.append(future.result())
                except (StowageError, OSError) as e:
                    self.logger.warning(f"Skipping {rel_path}: {e}")
                    skipped.append(rel_path.as_posix())
        return entries, skipped

    def snapshot(self, project_root: Path, force: bool | None = None) -> SyncResult:
        """Commit the whole project tree on top of the remote branch head

        Args:
            project_root: Tree to upload
            force: Overwrite a diverged remote branch. None defers to the
                remote.allow_force_update setting.

        Returns:
            SyncResult describing the new commit
        """
        timestamp = datetime.now().isoformat()
        if self.remote.is_placeholder():
            self.logger.info("Remote uses placeholder credentials, simulating snapshot")
            return SyncResult(
                success=True,
                message="Backup simulated (demo configuration, nothing was sent)",
                commit_hash="demo-mode",
                timestamp=timestamp,
                simulated=True,
            )

        allow_force = self.allow_force_update if force is None else force
        project_root = Path(project_root)

        try:
            parent_sha, base_tree = self.get_branch_head()
            files = self.collect_files(project_root)
            entries, skipped = self._upload_all(project_root, files)
            if not entries:
                return SyncResult(
                    success=False, message="No files could be uploaded", timestamp=timestamp, error="no files uploaded"
                )

            total_size = sum((project_root / e["path"]).stat().st_size for e in entries)
            message = (
                f"Stowage Backup: {timestamp}\n\n"
                f"Files: {len(entries)}\nSize: {total_size / (1024 * 1024):.2f} MB"
            )
            tree_sha = self.create_tree(base_tree, entries)
            commit_sha = self.create_commit(message, tree_sha, parent_sha)

            forced = False
            try:
                self.update_ref(commit_sha)
            except NonFastForwardError as e:
                if not allow_force:
                    self.logger.warning(f"Remote branch '{self.remote.branch}' rejected the update: {e}")
                    return SyncResult(
                        success=False,
                        message=(
                            f"Remote branch '{self.remote.branch}' has commits not in this snapshot; "
                            "force the update to overwrite them"
                        ),
                        commit_hash=commit_sha,
                        timestamp=timestamp,
                        files_count=len(entries),
                        error=str(e),
                    )
                self.logger.warning(f"Forcing update of '{self.remote.branch}' to {commit_sha[:7]}")
                self.update_ref(commit_sha, force=True)
                forced = True

            self.post_status(commit_sha, f"Backup of {len(entries)} files")
            self.logger.info(f"Remote snapshot {commit_sha[:7]} created with {len(entries)} files")
            return SyncResult(
                success=True,
                message=f"Backed up {len(entries)} files to {self.remote.owner}/{self.remote.repo}",
                commit_hash=commit_sha,
                timestamp=timestamp,
                files_count=len(entries),
                pushed=True,
                details={"forced": forced, "skipped": skipped, "size_bytes": total_size},
            )

        except (StowageError, OSError) as e:
            self.logger.error(f"Remote snapshot failed: {e}")
            return SyncResult(success=False, message="Remote snapshot failed", timestamp=timestamp, error=str(e))

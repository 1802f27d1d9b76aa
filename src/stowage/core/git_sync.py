"""Backups through the git command line"""

import logging
import subprocess
from collections.abc import Callable
from datetime import datetime

from git import InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import GitCommandError

from .config_manager import ConfigManager
from .errors import CommandTimeoutError, GitOperationError, StowageError
from .models import CommitRecord, SyncResult

# Leftovers of an interrupted commit that make every later commit fail
STALE_GIT_FILES = ("COMMIT_EDITMSG", "index.lock")
CORRUPTED_MESSAGE = "Git state was corrupted and could not be auto-fixed"


class GitSync:
    """Stage, commit, push and restore a project with the git CLI.

    Every command runs with an explicit timeout. The remote URL carries the
    token and is never logged.
    """

    def __init__(self, config_manager: ConfigManager):
        self.config = config_manager
        self.project_root = self.config.project_root
        self.remote = self.config.get_remote_config()
        self.logger = logging.getLogger("GitSync")

    def _redact(self, text: str) -> str:
        if self.remote.token:
            text = text.replace(self.remote.token, "***")
        return text

    def _git(self, args: list[str], timeout_name: str) -> subprocess.CompletedProcess:
        """Run a git command in the project root

        Raises:
            CommandTimeoutError: The command exceeded its timeout
            GitOperationError: The command exited non-zero
        """
        timeout = self.config.get_timeout(timeout_name)
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.project_root,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(f"git {args[0]} timed out after {timeout}s") from e
        except FileNotFoundError as e:
            raise GitOperationError("git executable not found") from e

        if result.returncode != 0:
            raise GitOperationError(
                f"git {args[0]} failed with exit code {result.returncode}",
                stdout=self._redact(result.stdout),
                stderr=self._redact(result.stderr),
            )
        return result

    def _precautionary_reset(self) -> None:
        """Unstage anything left behind by an earlier run"""
        try:
            self._git(["reset"], "reset")
        except StowageError as e:
            self.logger.debug(f"Precautionary reset failed: {e}")

    def _commit(self, message: str) -> str | None:
        """Stage everything and commit

        Returns:
            Short hash of the new commit, or None when there was nothing to commit
        """
        self._git(["add", "-A", *self._add_pathspec()], "add")
        try:
            self._git(["commit", "-m", message], "commit")
        except GitOperationError as e:
            if "nothing to commit" in e.output:
                return None
            raise
        log = self._git(["log", "--oneline", "-1"], "log")
        return log.stdout.split(" ", 1)[0].strip() or None

    def _configure_remote(self) -> None:
        url = self.remote.authenticated_url()
        try:
            self._git(["remote", "set-url", "origin", url], "remote")
        except GitOperationError:
            self._git(["remote", "add", "origin", url], "remote")

    def _push(self) -> bool:
        """Push the branch; failures leave the backup local-only"""
        try:
            self._configure_remote()
            self._git(["push", "-u", "origin", self.remote.branch], "push")
            return True
        except StowageError as e:
            self.logger.warning(f"Push to origin/{self.remote.branch} failed, backup kept locally: {e}")
            return False

    def _repair(self) -> None:
        self.logger.warning("Repairing git state left by an interrupted commit")
        try:
            self._git(["reset"], "reset")
        except StowageError as e:
            self.logger.debug(f"Reset during repair failed: {e}")
        git_dir = self.project_root / ".git"
        for name in STALE_GIT_FILES:
            (git_dir / name).unlink(missing_ok=True)

    @staticmethod
    def _is_stale_state(error: GitOperationError) -> bool:
        return any(name in error.output for name in STALE_GIT_FILES)

    def _with_repair(self, operation: Callable[[], SyncResult], label: str) -> SyncResult:
        """Run operation, repairing stale git state and retrying once"""
        try:
            return operation()
        except GitOperationError as e:
            if not self._is_stale_state(e):
                self.logger.error(f"{label} failed: {e.output.strip()}")
                return SyncResult(success=False, message=f"{label} failed", error=str(e))
            self._repair()
        except CommandTimeoutError as e:
            self.logger.error(f"{label} failed: {e}")
            return SyncResult(success=False, message=f"{label} timed out", error=str(e))

        try:
            return operation()
        except StowageError as e:
            self.logger.error(f"{label} failed after repair: {e}")
            return SyncResult(success=False, message=CORRUPTED_MESSAGE, error=str(e))

    def _simulated(self, label: str) -> SyncResult:
        self.logger.info(f"{label}: remote uses placeholder credentials, simulating")
        return SyncResult(
            success=True,
            message=f"{label} simulated (demo configuration, nothing was pushed)",
            commit_hash="demo-mode",
            timestamp=datetime.now().isoformat(),
            simulated=True,
        )

    def is_repo(self) -> bool:
        try:
            Repo(self.project_root)
            return True
        except (InvalidGitRepositoryError, NoSuchPathError):
            return False

    def quick_backup(self, message: str | None = None) -> SyncResult:
        """Commit all changes locally without pushing"""
        timestamp = datetime.now().isoformat()
        message = message or f"Quick backup - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"

        def operation() -> SyncResult:
            commit_hash = self._commit(message)
            if commit_hash is None:
                return SyncResult(success=True, message="No changes to back up", timestamp=timestamp, no_changes=True)
            self.logger.info(f"Quick backup committed: {commit_hash}")
            return SyncResult(
                success=True, message=f"Backup committed: {commit_hash}", commit_hash=commit_hash, timestamp=timestamp
            )

        return self._with_repair(operation, "Quick backup")

    def push_backup(self, message: str | None = None) -> SyncResult:
        """Commit all changes and push; with nothing new, push existing history"""
        if self.remote.is_placeholder():
            return self._simulated("Push backup")

        timestamp = datetime.now().isoformat()
        message = message or f"Stowage Backup: {timestamp}"
        self._precautionary_reset()

        def operation() -> SyncResult:
            commit_hash = self._commit(message)
            pushed = self._push()
            if commit_hash is None:
                text = "No new changes; existing history pushed" if pushed else "No new changes and push failed"
                return SyncResult(success=True, message=text, timestamp=timestamp, pushed=pushed, no_changes=True)
            text = f"Backup {commit_hash} pushed" if pushed else f"Backup {commit_hash} committed locally only"
            return SyncResult(success=True, message=text, commit_hash=commit_hash, timestamp=timestamp, pushed=pushed)

        return self._with_repair(operation, "Push backup")

    def auto_backup(self) -> SyncResult:
        """Scheduled backup: commit and push, or do nothing when the tree is clean"""
        if self.remote.is_placeholder():
            return self._simulated("Auto backup")

        timestamp = datetime.now().isoformat()
        self._precautionary_reset()

        def operation() -> SyncResult:
            commit_hash = self._commit(f"Auto backup: {timestamp}")
            if commit_hash is None:
                return SyncResult(success=True, message="No changes since last backup", timestamp=timestamp, no_changes=True)
            pushed = self._push()
            return SyncResult(
                success=True,
                message=f"Auto backup {commit_hash} {'pushed' if pushed else 'committed locally only'}",
                commit_hash=commit_hash,
                timestamp=timestamp,
                pushed=pushed,
            )

        return self._with_repair(operation, "Auto backup")

    def pull_restore(self) -> SyncResult:
        """Merge the remote branch into the working tree"""
        if self.remote.is_placeholder():
            return SyncResult(success=False, message="Remote repository is not configured", error="placeholder remote")

        timestamp = datetime.now().isoformat()
        try:
            self._configure_remote()
            result = self._git(["pull", "origin", self.remote.branch], "pull")
        except StowageError as e:
            self.logger.error(f"Pull restore failed: {e}")
            return SyncResult(success=False, message="Pull failed", timestamp=timestamp, error=str(e))

        self.logger.info(f"Pulled origin/{self.remote.branch}")
        return SyncResult(
            success=True,
            message=f"Restored from origin/{self.remote.branch}",
            timestamp=timestamp,
            details={"output": result.stdout.strip()},
        )

    def _tooling_paths(self) -> list[str]:
        """Project-relative paths kept by a full restore (state, keys, archives, config)"""
        paths = self.config.get_local_only_paths()
        try:
            rel = self.config.config_dir.resolve().relative_to(self.project_root.resolve()).as_posix()
        except ValueError:
            return paths
        if rel != "." and rel not in paths:
            paths.append(rel)
        return paths

    def _add_pathspec(self) -> list[str]:
        """Everything except local state, archives, key material and files the backup encrypts"""
        excluded = [f":(exclude){p}" for p in self.config.get_local_only_paths()]
        for pattern in self.config.get_setting("backup.encrypt", []):
            glob = pattern if "/" in pattern else f"**/{pattern}"
            excluded.append(f":(exclude,glob){glob}")
        return ["--", ".", *excluded]

    def full_restore(self, confirm: bool = False) -> SyncResult:
        """Replace the working tree with the remote branch.

        Irreversible: uncommitted changes and untracked files are discarded.
        Refuses to run unless confirm is True.
        """
        if not confirm:
            return SyncResult(
                success=False,
                message="Full restore discards all local changes and cannot be undone; confirmation required",
                error="not confirmed",
            )
        if self.remote.is_placeholder():
            return SyncResult(success=False, message="Remote repository is not configured", error="placeholder remote")

        timestamp = datetime.now().isoformat()
        branch = self.remote.branch
        try:
            self._configure_remote()
            self._git(["fetch", "origin", branch], "fetch")
            self._git(["reset", "--hard", f"origin/{branch}"], "hard_reset")
            excludes = [arg for p in self._tooling_paths() for arg in ("-e", f"/{p}")]
            self._git(["clean", "-fd", *excludes], "clean")
            head = self._git(["log", "--oneline", "-1"], "log").stdout.split(" ", 1)[0].strip()
        except StowageError as e:
            self.logger.error(f"Full restore failed: {e}")
            return SyncResult(success=False, message="Full restore failed", timestamp=timestamp, error=str(e))

        self.logger.warning(f"Working tree reset to origin/{branch} ({head})")
        return SyncResult(
            success=True, message=f"Working tree replaced with origin/{branch}", commit_hash=head, timestamp=timestamp
        )

    def history(self, limit: int = 20) -> list[CommitRecord]:
        """Recent commits, newest first"""
        if not self.is_repo():
            return []

        try:
            repo = Repo(self.project_root)
            return [
                CommitRecord(
                    sha=commit.hexsha,
                    message=commit.message.strip(),
                    author=str(commit.author),
                    date=datetime.fromtimestamp(commit.committed_date).isoformat(),
                    tree_sha=commit.tree.hexsha,
                )
                for commit in repo.iter_commits(max_count=limit)
            ]
        except (GitCommandError, ValueError) as e:
            self.logger.error(f"Failed to read commit history: {e}")
            return []

"""Exception hierarchy for backup, restore and sync operations"""


class StowageError(Exception):
    """Base exception for all Stowage errors.

    Carries the backup (or restore) identifier when one is known so failures
    can be traced back to the artifact involved.
    """

    def __init__(self, message: str, backup_id: str | None = None):
        self.message = message
        self.backup_id = backup_id
        super().__init__(f"[{backup_id}] {message}" if backup_id else message)


class NotFoundError(StowageError):
    """A backup, file or commit does not exist."""


class NoBackupsAvailable(NotFoundError):
    """Backup discovery found no candidates."""


class ValidationError(StowageError):
    """Manifest, checksum or metadata mismatch. Raised before any restore mutation."""


class DecryptionError(StowageError):
    """Authentication tag did not verify or the payload is malformed."""


class ExtractionError(StowageError):
    """Archive could not be extracted or its workspace root could not be located."""


class GitOperationError(StowageError):
    """A git command failed."""

    def __init__(self, message: str, stdout: str = "", stderr: str = "", backup_id: str | None = None):
        super().__init__(message, backup_id)
        self.stdout = stdout
        self.stderr = stderr

    @property
    def output(self) -> str:
        return f"{self.message}\n{self.stdout}\n{self.stderr}"


class CommandTimeoutError(StowageError, TimeoutError):
    """A shell command exceeded its timeout."""


class NetworkError(StowageError):
    """Remote API request failed. Generally retryable."""

    def __init__(self, message: str, status_code: int | None = None, backup_id: str | None = None):
        super().__init__(message, backup_id)
        self.status_code = status_code


class NonFastForwardError(NetworkError):
    """The remote rejected a reference update that would drop history."""


class ConfigurationError(StowageError):
    """Invalid or placeholder configuration."""


class LockError(StowageError):
    """Another backup or restore holds the project lock."""

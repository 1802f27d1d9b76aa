"""Best-effort post-restore hooks: dependency install, schema push, project start"""

import logging
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol

DEFAULT_HOOK_TIMEOUT = 600


class DataStore(Protocol):
    """Narrow capability the restore needs from the relational data layer"""

    def push_schema(self) -> None: ...


class CommandDataStore:
    """DataStore that pushes the schema by running migration commands"""

    def __init__(self, project_root: Path, commands: Sequence[Sequence[str]], timeout: int = DEFAULT_HOOK_TIMEOUT):
        self.project_root = Path(project_root)
        self.commands = [list(cmd) for cmd in commands]
        self.timeout = timeout

    def push_schema(self) -> None:
        for cmd in self.commands:
            subprocess.run(cmd, cwd=self.project_root, check=True, capture_output=True, text=True, timeout=self.timeout)


class PostRestoreHooks:
    """Runs the optional steps after files are restored.

    Every hook is gated by its flag and a failure only produces a warning.
    """

    def __init__(
        self,
        project_root: Path,
        auto_install: bool = False,
        auto_migrate: bool = False,
        auto_start: bool = False,
        install_command: Sequence[str] | Callable[[], None] | None = None,
        start_command: Sequence[str] | Callable[[], None] | None = None,
        data_store: DataStore | None = None,
        timeout: int = DEFAULT_HOOK_TIMEOUT,
    ):
        self.project_root = Path(project_root)
        self.auto_install = auto_install
        self.auto_migrate = auto_migrate
        self.auto_start = auto_start
        self.install_command = install_command if callable(install_command) else list(install_command or [])
        self.start_command = start_command if callable(start_command) else list(start_command or [])
        self.data_store = data_store
        self.timeout = timeout
        self.logger = logging.getLogger("PostRestoreHooks")

    @classmethod
    def from_config(cls, config, data_store: DataStore | None = None) -> "PostRestoreHooks":
        """Build hooks from the 'restore' settings section"""
        root = config.project_root
        timeout = int(config.get_setting("restore.hook_timeout", DEFAULT_HOOK_TIMEOUT))
        if data_store is None:
            data_store = CommandDataStore(root, config.get_setting("restore.migrate_commands", []), timeout)
        return cls(
            root,
            auto_install=bool(config.get_setting("restore.auto_install", False)),
            auto_migrate=bool(config.get_setting("restore.auto_migrate", False)),
            auto_start=bool(config.get_setting("restore.auto_start", False)),
            install_command=config.get_setting("restore.install_command", []),
            start_command=config.get_setting("restore.start_command", []),
            data_store=data_store,
            timeout=timeout,
        )

    def _attempt(self, name: str, action: Callable[[], None], warnings: list[str]) -> None:
        try:
            action()
            self.logger.info(f"Post-restore hook '{name}' completed")
        except Exception as e:
            message = f"Post-restore hook '{name}' failed: {e}"
            self.logger.warning(message)
            warnings.append(message)

    def _install(self) -> None:
        if callable(self.install_command):
            self.install_command()
            return
        subprocess.run(
            self.install_command, cwd=self.project_root, check=True, capture_output=True, text=True, timeout=self.timeout
        )

    def _start(self) -> None:
        if callable(self.start_command):
            self.start_command()
            return
        subprocess.Popen(
            self.start_command,
            cwd=self.project_root,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def run(self) -> list[str]:
        """Run enabled hooks in order

        Returns:
            Warning messages for hooks that failed
        """
        warnings: list[str] = []
        if self.auto_install and self.install_command:
            self._attempt("install", self._install, warnings)
        if self.auto_migrate and self.data_store is not None:
            self._attempt("schema", self.data_store.push_schema, warnings)
        if self.auto_start and self.start_command:
            self._attempt("start", self._start, warnings)
        return warnings

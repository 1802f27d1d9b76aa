"""Configuration Manager for Stowage"""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from cryptography.fernet import Fernet, InvalidToken

from .errors import ConfigurationError
from .models import RemoteConfig

DEFAULT_SETTINGS: dict[str, Any] = {
    "project": {
        "name": "workspace",
        "version": "1.0.0",
        "root": ".",
    },
    "storage": {
        "backup_dir": "backups",
        "temp_dir": ".stowage/temp",
        "max_backups": 10,
    },
    "backup": {
        "include": ["**/*"],
        "exclude": ["node_modules/**", ".next/**", ".git/**", "backups/**", ".stowage/**", "*.log"],
        "encrypt": [".env", ".env.local", ".env.production"],
        "credential_scrub": [],
        "compression": True,
    },
    "restore": {
        "auto_install": False,
        "auto_migrate": False,
        "auto_start": False,
        "install_command": ["npm", "install"],
        "migrate_commands": [["npx", "prisma", "generate"], ["npm", "run", "db:push"]],
        "start_command": ["npm", "run", "dev"],
        "hook_timeout": 600,
    },
    "remote": {
        "owner": "",
        "repo": "",
        "token": "",
        "branch": "main",
        "api_url": "https://api.github.com",
        "allow_force_update": False,
        "request_timeout": 30,
        "max_workers": 8,
    },
    "timeouts": {
        "reset": 3,
        "add": 5,
        "commit": 10,
        "log": 3,
        "remote": 3,
        "push": 15,
        "pull": 30,
        "fetch": 30,
        "hard_reset": 15,
        "clean": 10,
    },
    "retry": {
        "max_attempts": 1,
        "initial_delay": 1.0,
    },
    "encryption": {
        "key_file": ".stowage/backup.key",
    },
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """Loads settings.yaml and hands out typed views of it.

    Constructed once by the caller and passed into each component; nothing
    reads configuration from module-level state.
    """

    def __init__(self, config_dir: str | Path | None = None):
        self.config_dir = Path(config_dir or Path.cwd() / "config")
        self.settings_file = self.config_dir / "settings.yaml"
        self.logger = logging.getLogger("ConfigManager")

        self.config_dir.mkdir(parents=True, exist_ok=True)

        # Initialize encryption key for stored credentials
        self._init_encryption()

        self._raw = self._load_yaml(self.settings_file)
        self.settings = _merge(DEFAULT_SETTINGS, self._raw)

        # Encrypt a plaintext remote token on first run
        self._encrypt_token()

    def _init_encryption(self) -> None:
        """Initialize encryption for credentials stored in settings.yaml"""
        key_file = self.config_dir / ".config_key"

        if key_file.exists():
            current_mode = os.stat(key_file).st_mode & 0o777
            if current_mode != 0o600:
                os.chmod(key_file, 0o600)
            with open(key_file, "rb") as f:
                self.cipher = Fernet(f.read())
        else:
            key = Fernet.generate_key()
            fd = os.open(str(key_file), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            try:
                os.write(fd, key)
            finally:
                os.close(fd)
            self.cipher = Fernet(key)

    def _load_yaml(self, file_path: Path) -> dict[str, Any]:
        """Load YAML configuration file"""
        if not file_path.exists():
            self.logger.debug(f"No settings file at {file_path}, using defaults")
            return {}

        with open(file_path) as f:
            return yaml.safe_load(f) or {}

    def _save_yaml(self, data: dict[str, Any], file_path: Path) -> None:
        """Save configuration to YAML file"""
        with open(file_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)

    def _encrypt_token(self) -> None:
        """Encrypt the remote token in the settings file if stored in plaintext"""
        token = self._raw.get("remote", {}).get("token", "")
        if token and not token.startswith("enc:"):
            self._raw["remote"]["token"] = f"enc:{self.encrypt_value(token)}"
            self.settings["remote"]["token"] = self._raw["remote"]["token"]
            self._save_yaml(self._raw, self.settings_file)
            self.logger.info("Encrypted remote token in settings file")

    def encrypt_value(self, value: str) -> str:
        """Encrypt a string value"""
        return self.cipher.encrypt(value.encode()).decode()

    def decrypt_value(self, encrypted: str) -> str:
        """Decrypt an encrypted value"""
        if encrypted.startswith("enc:"):
            encrypted = encrypted[4:]
        try:
            return self.cipher.decrypt(encrypted.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError("Stored credential cannot be decrypted with this installation's key") from e

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value with optional default

        Args:
            key: Setting key (supports nested keys with dot notation, e.g., 'storage.backup_dir')
            default: Default value if setting not found

        Returns:
            Setting value or default
        """
        keys = key.split(".")
        value: Any = self.settings

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value if value is not None else default

    def set_setting(self, key: str, value: Any) -> None:
        """Set a dotted-key setting in memory and in the settings file"""
        *parents, leaf = key.split(".")
        for target in (self.settings, self._raw):
            node = target
            for k in parents:
                node = node.setdefault(k, {})
            node[leaf] = value
        self._save_yaml(self._raw, self.settings_file)

    def save(self) -> None:
        self._save_yaml(self._raw, self.settings_file)

    @property
    def project_name(self) -> str:
        return str(self.get_setting("project.name"))

    @property
    def project_version(self) -> str:
        return str(self.get_setting("project.version"))

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.project_root / path
        return path

    @property
    def project_root(self) -> Path:
        root = Path(self.get_setting("project.root", ".")).expanduser()
        if not root.is_absolute():
            root = (self.config_dir.parent / root).resolve()
        return root

    def get_storage_paths(self) -> dict[str, Path]:
        """Get storage paths from settings

        Returns:
            Dict with 'backups' and 'temp' directories (relative paths resolve against the project root)
        """
        return {
            "backups": self._resolve(self.get_setting("storage.backup_dir")),
            "temp": self._resolve(self.get_setting("storage.temp_dir")),
        }

    def get_key_file(self) -> Path:
        return self._resolve(self.get_setting("encryption.key_file"))

    def get_local_only_paths(self) -> list[str]:
        """Project-relative POSIX paths that must never be sent to a remote

        Covers tool state, backup archives, the temp dir and both keys.
        Paths outside the project root are left out.
        """
        storage = self.get_storage_paths()
        candidates = [
            self.project_root / ".stowage",
            storage["backups"],
            storage["temp"],
            self.get_key_file(),
            self.config_dir / ".config_key",
        ]
        root = self.project_root.resolve()
        paths: list[str] = []
        for path in candidates:
            try:
                rel = Path(path).resolve().relative_to(root).as_posix()
            except ValueError:
                continue
            if rel != "." and rel not in paths:
                paths.append(rel)
        return paths

    def get_timeout(self, name: str, default: int = 30) -> int:
        """Get a per-command timeout (seconds)"""
        return int(self.get_setting(f"timeouts.{name}", default))

    def get_remote_config(self) -> RemoteConfig:
        """Get remote credentials with the token decrypted"""
        remote = self.settings.get("remote", {})
        token = remote.get("token", "") or ""
        if token.startswith("enc:"):
            token = self.decrypt_value(token)
        return RemoteConfig(
            owner=remote.get("owner", "") or "",
            repo=remote.get("repo", "") or "",
            token=token,
            branch=remote.get("branch", "main") or "main",
        )

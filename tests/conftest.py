"""Shared fixtures: a small project tree with its own config directory."""

import pytest
import yaml

from stowage.core.config_manager import ConfigManager
from stowage.core.encryption import EncryptionService


def write_settings(config_dir, settings):
    config_dir.mkdir(parents=True, exist_ok=True)
    with open(config_dir / "settings.yaml", "w") as f:
        yaml.dump(settings, f)


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "app"
    (root / "src").mkdir(parents=True)
    (root / "src" / "main.py").write_text("print('hello')\n")
    (root / "README.md").write_text("# App\n")
    (root / ".env").write_text("API_KEY=abc123\n")
    return root


@pytest.fixture
def config(project):
    write_settings(project / "config", {"project": {"name": "app", "version": "2.0.0"}})
    return ConfigManager(project / "config")


@pytest.fixture
def encryption(config):
    return EncryptionService(config.get_key_file())

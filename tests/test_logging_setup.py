"""Tests for logging configuration."""

import logging

import pytest

from stowage.utils.logging_setup import setup_logging


@pytest.fixture
def root_logger():
    logger = logging.getLogger()
    saved_handlers = logger.handlers[:]
    saved_level = logger.level
    logger.handlers = [h for h in saved_handlers if not getattr(h, "_stowage", False)]
    yield logger
    for handler in logger.handlers:
        if handler not in saved_handlers:
            handler.close()
    logger.handlers = saved_handlers
    logger.setLevel(saved_level)


def test_file_handler_writes_to_log_dir(tmp_path, root_logger):
    setup_logging(tmp_path / "logs")
    logging.getLogger("BackupEngine").info("backup created")
    for handler in root_logger.handlers:
        handler.flush()

    content = (tmp_path / "logs" / "backup.log").read_text(encoding="utf-8")
    assert "BackupEngine - INFO - backup created" in content


def test_setup_is_idempotent(tmp_path, root_logger):
    setup_logging(tmp_path)
    count = len(root_logger.handlers)
    setup_logging(tmp_path / "other")
    assert len(root_logger.handlers) == count
    assert not (tmp_path / "other").exists()

"""Logging configuration with automatic rotation"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_MAX_BYTES = 10 * 1024 * 1024  # 10 MB max per log file
LOG_BACKUP_COUNT = 5  # Number of rotated log files to keep
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(log_dir: Path, console_level: int = logging.WARNING) -> logging.Logger:
    """Attach a rotating file handler and a console handler to the root logger

    Safe to call more than once; handlers are only added the first time.
    """
    logger = logging.getLogger()
    logger.setLevel(logging.INFO)

    if any(getattr(h, "_stowage", False) for h in logger.handlers):
        return logger

    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    fh = RotatingFileHandler(
        log_dir / "backup.log",
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    fh.setLevel(logging.INFO)

    ch = logging.StreamHandler()
    ch.setLevel(console_level)

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in (fh, ch):
        handler.setFormatter(formatter)
        handler._stowage = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger

# src/habitstack/logger.py
import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _has_file_handler(logger: logging.Logger, log_file: str) -> bool:
    target = os.path.abspath(log_file)
    return any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == target
        for handler in logger.handlers
    )


def setup_logger(log_file: str = "logs/habitstack.log", level: str = "INFO",
                 max_bytes: int = 10_000_000, backup_count: int = 5):
    """Configure the root logger. Calling it again for the same file only updates the level."""
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _has_file_handler(logger, log_file):
        return logger

    Path(log_file).parent.mkdir(exist_ok=True, parents=True)
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger

"""Logging configuration helpers for maplister."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

ROOT_LOGGER = "maplister"
LOG_DIR = os.getenv("MAPLISTER_LOG_DIR", "logs")
LOG_FILE = os.path.join(LOG_DIR, "maplister.log")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str | None = None, *, log_file: str | None = LOG_FILE) -> logging.Logger:
    """Attach console and rotating file handlers to the package logger.

    Safe to call repeatedly; handlers are only added the first time, later
    calls just adjust the level.
    """

    resolved = (level or DEFAULT_LEVEL).upper()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    logger.propagate = False

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        if log_file:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=1_000_000,
                backupCount=3,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    for handler in logger.handlers:
        handler.setLevel(resolved)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the package logger for module *name*."""

    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")

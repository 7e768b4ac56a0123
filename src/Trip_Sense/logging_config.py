"""Logging configuration for Trip Sense."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_LEVEL_ENV = "TRIP_SENSE_LOG_LEVEL"
ROOT_LOGGER_NAME = "Trip_Sense"


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Install console (and optionally rotating file) handlers on the package
    logger. Safe to call more than once; existing handlers are replaced.

    Level resolution: explicit argument, then TRIP_SENSE_LOG_LEVEL, then the
    configured log_level.
    """
    from Trip_Sense.config_store import load_config

    cfg = load_config()
    resolved = (level or os.getenv(LOG_LEVEL_ENV) or cfg.log_level or "INFO").upper()
    target_file = log_file if log_file is not None else (cfg.log_file or None)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(resolved)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(resolved)
    logger.addHandler(console_handler)

    if target_file:
        Path(target_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            target_file,
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(resolved)
        logger.addHandler(file_handler)

    return logger

"""Session log setup for the command line shell."""
from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import LoggingConfig


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
PACKAGE_LOGGER = "account_lifecycle"


def log_file_path(config: LoggingConfig, prefix: str, today: Optional[datetime] = None) -> Path:
    stamp = (today or datetime.now()).strftime("%Y%m%d")
    return Path(config.directory) / f"{prefix}_{stamp}.log"


def configure_logging(
    config: LoggingConfig,
    prefix: str = "lifecycle",
    console: bool = True,
) -> Path:
    """Attach an append-only file handler (and optionally stderr) to the package logger.

    Returns the log file path. Calling it again replaces the handlers it
    installed earlier instead of stacking duplicates.
    """

    level = logging.getLevelName(config.level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    path = log_file_path(config, prefix)
    path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, "_lifecycle_handler", False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    handlers: List[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)

    for handler in handlers:
        handler._lifecycle_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(level)
    return path


__all__ = ["configure_logging", "log_file_path"]

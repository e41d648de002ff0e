"""Logging configuration for console and rotating file logs."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

from marketlink.config import LoggingConfig


def setup_logger(settings: LoggingConfig | None = None):
    settings = settings or LoggingConfig()
    path = Path(settings.log_dir)
    path.mkdir(parents=True, exist_ok=True)

    # stdout is reserved for command output
    logger.remove()
    logger.add(sys.stderr, level=settings.level, enqueue=True)
    logger.add(
        path / "marketlink.log",
        level=settings.level,
        rotation="5 MB",
        retention=5,
        enqueue=True,
        encoding="utf-8",
    )
    return logger

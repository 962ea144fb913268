"""Loguru sink configuration."""

import os
import sys
from pathlib import Path

from loguru import logger

from ..config.defaults import ENV_LOG_LEVEL

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - {message}"
)


def configure_logging(level: str | None = None, log_file: Path | None = None) -> None:
    """Replace loguru's default sink with the application's sinks.

    A tray application usually has no console attached, so callers pass a
    ``log_file`` to get a rotating file sink alongside stderr.

    Args:
        level: Minimum level (defaults to $SCREENSHOT_SEARCH_LOG_LEVEL, else INFO)
        log_file: Optional path of a rotating log file
    """
    level = (level or os.environ.get(ENV_LOG_LEVEL) or "INFO").upper()

    logger.remove()
    if sys.stderr is not None:
        logger.add(sys.stderr, level=level, format=LOG_FORMAT)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level,
            format=LOG_FORMAT,
            rotation="5 MB",
            retention=3,
            enqueue=True,
        )

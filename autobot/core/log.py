"""Loguru sink setup, done once at process start."""

from __future__ import annotations

import sys

from loguru import logger

from autobot.core.config.schema import Config


def setup_logging(config: Config) -> None:
    """Replace the default sink with the configured level (and file, if any)."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=config.logging.level,
        format="<green>{time:MM-DD HH:mm:ss}</green> | <level>{level: <7}</level> | {message}",
    )
    if config.logging.file:
        logger.add(
            config.logging.file,
            level=config.logging.level,
            rotation="10 MB",
            retention=5,
        )

"""
Logging configuration using Loguru.
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from flowpilot.config import Config, get_config


def setup_logger(config: Optional[Config] = None, debug: bool = False):
    """Configure the logger with file and console output."""
    # Remove default handler
    logger.remove()

    config = config or get_config()
    log_config = config.logging
    level = "DEBUG" if debug or config.app.debug else config.app.log_level

    log_dir = Path(log_config.directory)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console handler with colors
    logger.add(
        sys.stdout,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{message}</cyan>",
        level=level,
        colorize=True
    )

    # File handler with rotation
    log_file = log_dir / log_config.file_name.replace("{date}", "{time:YYYY-MM-DD}")
    logger.add(
        str(log_file),
        format=log_config.format,
        level="DEBUG",
        rotation=log_config.rotation,
        retention=log_config.retention,
        compression="zip"
    )

    logger.info(f"Logger initialized ({level})")
    return logger

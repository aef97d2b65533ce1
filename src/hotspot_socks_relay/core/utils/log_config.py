"""Logging configuration for the relay.

This module provides centralized logging configuration using Loguru. The
engine never calls it: components log through the logger they are given and
the CLI installs the handlers once at startup. It sets up logging to both
console and file with proper formatting and log rotation.
"""

import sys
from pathlib import Path

from loguru import logger

# Logs live in the user's home directory
LOG_DIR = Path.home() / ".hotspot-socks-relay" / "logs"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {extra} - {message}"


def configure_logging(*, debug: bool = False, console: bool = True, log_dir: Path = LOG_DIR) -> Path:
    """Install console and rotating file handlers.

    Args:
        debug: Log DEBUG to the console instead of INFO
        console: Log to stderr at all (off while the live UI is drawn)
        log_dir: Directory for the rotating log file

    Returns:
        Path: Path of the log file
    """
    logger.remove()  # Remove default handler

    if console:
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level="DEBUG" if debug else "INFO",
            backtrace=True,
            diagnose=debug,
        )

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "relay.log"
    logger.add(
        log_file,
        rotation="10 MB",
        retention="1 week",
        compression="zip",
        format=FILE_FORMAT,
        level="DEBUG",
        backtrace=True,
        diagnose=False,
        enqueue=True,
    )
    return log_file


__all__ = ["configure_logging", "logger", "LOG_DIR"]

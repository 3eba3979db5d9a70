"""Logging configuration for the Copperx transfer bot."""

import os
import re
import sys
from typing import Optional
from loguru import logger
from .config import settings

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[component]}:{function}:{line} - {message}"

# Bearer tokens and OTP codes must never reach a log sink
SECRET_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+|(\"otp\":\s*\")\d+")


def _redact(record):
    record["message"] = SECRET_PATTERN.sub(lambda m: (m.group(1) or m.group(2)) + "***", record["message"])


def setup_logger():
    """Setup application logging with loguru."""

    logger.remove()
    logger.configure(extra={"component": "app"}, patcher=_redact)

    logger.add(sys.stdout, level=settings.log_level, format=CONSOLE_FORMAT, colorize=True)

    log_dir = os.path.dirname(settings.log_file) or "."
    try:
        logger.add(
            settings.log_file,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
            compression="zip",
            diagnose=False,
        )
        logger.add(
            os.path.join(log_dir, "error.log"),
            level="ERROR",
            format=FILE_FORMAT,
            rotation="1 day",
            retention="7 days",
            compression="zip",
            diagnose=False,
        )
    except OSError as e:
        # Read-only filesystem: console only
        logger.warning(f"File logging not available: {e}")

    return logger


app_logger = setup_logger()


def get_logger(name: Optional[str] = None):
    """Get a logger tagged with the component that uses it."""
    if name:
        return logger.bind(component=name)
    return logger

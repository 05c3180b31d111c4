"""Loguru sink configuration shared by the API and the command line jobs."""

from __future__ import annotations

import sys

from loguru import logger

from .config import Settings

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: Settings) -> None:
    """Replace the default loguru sink with one honouring the runtime settings."""

    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format=_FORMAT,
        serialize=settings.log_json,
        backtrace=settings.debug,
        diagnose=settings.debug,
    )

"""Loguru configuration."""

import sys

from loguru import logger

from taskhero.core.config import Settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(settings: Settings) -> None:
    """Configure loguru sinks based on settings.

    Logs go to stderr so that stdout stays clean for ``--json`` output.

    Args:
        settings: Settings providing level, debug flag and file options.
    """
    logger.remove()  # Remove default handler

    level = "DEBUG" if settings.debug else settings.log_level

    logger.add(
        sys.stderr,
        level=level,
        format=LOG_FORMAT,
        colorize=True,
    )

    if settings.log_to_file:
        log_dir = settings.resolve(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_dir / "taskhero_{time:YYYY-MM-DD}.log"),
            rotation="1 day",
            retention="7 days",
            level=settings.log_level,
            format=LOG_FORMAT,
        )

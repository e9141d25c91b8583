"""
Logging setup built on loguru.

Modules obtain a logger with ``get_logger(__name__)``; the process entry point
calls ``configure_logging`` once with the configured ``LogLevel``.
"""

import sys

from loguru import logger

from flannelregistrar.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan> - <level>{message}</level>"
)

_LOGURU_LEVELS = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

logger.configure(extra={"module": "flannelregistrar"})


def configure_logging(level: LogLevel = LogLevel.INFO, colorize: bool | None = None) -> int:
    """
    Replace loguru's default sink with one at the requested level.

    Returns:
        The handler id of the new sink.
    """
    logger.remove()
    full = level == LogLevel.FULL
    return logger.add(
        sys.stderr,
        level=_LOGURU_LEVELS[level],
        format=LOG_FORMAT,
        colorize=colorize,
        backtrace=full,
        diagnose=full,
    )


def get_logger(name: str):
    """Get a logger bound to a module name."""
    return logger.bind(module=name)

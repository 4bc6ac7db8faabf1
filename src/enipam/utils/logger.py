"""
Logging setup for enipam.

All modules log through a single loguru logger. Each module binds its own
name so the sink format can show where a record came from.

Usage:
    from enipam.utils.logger import get_logger

    logger = get_logger(__name__)
    logger.info("something happened")
"""

import sys
import traceback

from loguru import logger as _logger

from enipam.models.enums import LogLevel

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

# Map our levels onto loguru level names
_LEVEL_MAP = {
    LogLevel.FULL: "TRACE",
    LogLevel.DEBUG: "DEBUG",
    LogLevel.INFO: "INFO",
    LogLevel.WARNING: "WARNING",
}

_logger.configure(extra={"name": "enipam"})


def get_logger(name: str):
    """Return the shared loguru logger bound to a module name."""
    return _logger.bind(name=name)


def configure_logging(
    level: LogLevel | str = LogLevel.WARNING,
    log_file: str | None = None,
) -> None:
    """
    Install the stderr sink (and optional file sink) at the given level.

    Safe to call more than once; previous sinks are removed first.

    Args:
        level: Verbosity level.
        log_file: Optional path for a rotating log file.
    """
    level = LogLevel(level)
    loguru_level = _LEVEL_MAP[level]
    verbose = level == LogLevel.FULL

    _logger.remove()
    _logger.add(
        sys.stderr,
        level=loguru_level,
        format=LOG_FORMAT,
        backtrace=verbose,
        diagnose=verbose,
    )

    if log_file:
        _logger.add(
            log_file,
            level=loguru_level,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=3,
            backtrace=verbose,
            diagnose=verbose,
        )


def format_traceback(exc: BaseException) -> str:
    """Render an exception and its traceback as a string."""
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))

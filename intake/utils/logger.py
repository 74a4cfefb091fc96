"""Logging for the intake service.

Every component logs through the one ``intake`` logger. Components may grab it
with ``get_app_logger()`` at import or construction time, before settings are
loaded; ``init_app_logger`` later reconfigures that same logger object in place,
so early holders pick up the configured level and file output.
"""

import logging
from pathlib import Path
from typing import List, Optional


APP_LOGGER_NAME = "intake"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_level(log_level: str) -> int:
    level = logging.getLevelName(log_level.upper())
    return level if isinstance(level, int) else logging.INFO


def _build_handlers(level: int, log_file: Optional[str]) -> List[logging.Handler]:
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def setup_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    replace: bool = False
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Args:
        name: Logger name
        log_level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file; its directory is created
        replace: Drop handlers installed by an earlier call instead of keeping them

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    level = _parse_level(log_level)
    logger.setLevel(level)

    if logger.handlers and not replace:
        return logger

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(level, log_file):
        logger.addHandler(handler)

    return logger


# Set by init_app_logger
app_logger: Optional[logging.Logger] = None


def init_app_logger(settings) -> logging.Logger:
    """
    Configure the application logger from settings.

    Replaces whatever handlers the logger already has, so calling it again
    (or after an early ``get_app_logger()``) applies the new level and file.

    Args:
        settings: Application settings instance

    Returns:
        Configured application logger
    """
    global app_logger

    app_logger = setup_logger(
        APP_LOGGER_NAME,
        log_level=settings.log_level,
        log_file=settings.log_file,
        replace=True
    )
    return app_logger


def get_app_logger() -> logging.Logger:
    """Get the application logger, with console defaults until it is initialized."""
    if app_logger is None:
        return setup_logger(APP_LOGGER_NAME)
    return app_logger

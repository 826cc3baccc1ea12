"""
Logging system for Yield Router.

Every module logs through ``get_logger(__name__)``. Handlers live on the
``yield_router`` package logger only; module loggers such as
``yield_router.engine.router`` propagate to it, so one call to
``setup_logger`` (or ``configure_logging`` with the configured level) sets up
the whole engine.

Records carry the engine operation active in the current context, e.g.
``[allocate_to_strategies]``, so plain log lines line up with the JSON
accounting records of the same operation.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .structured_logging import correlation_id_var, operation_var

ROOT_LOGGER = "yield_router"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(operation)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    GRAY = "\033[90m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BOLD = "\033[1m"


LEVEL_COLORS = {
    logging.DEBUG: Colors.GRAY,
    logging.INFO: Colors.GREEN,
    logging.WARNING: Colors.YELLOW,
    logging.ERROR: Colors.RED,
    logging.CRITICAL: Colors.RED + Colors.BOLD,
}


class OperationFilter(logging.Filter):
    """Attach the active engine operation and correlation id to records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.operation = operation_var.get() or "-"
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to terminal output."""

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelno, Colors.RESET)
        message = super().format(record)
        return f"{color}{message}{Colors.RESET}"


def _parse_level(level: int | str | None) -> int:
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def setup_logger(
    name: str = ROOT_LOGGER,
    level: int | str | None = None,
    log_file: str | Path | None = None,
) -> logging.Logger:
    """
    Attach console and optional file handlers to ``name``.

    Args:
        name: Logger to configure; the package logger by default
        level: Log level. Defaults to the LOG_LEVEL env var or INFO
        log_file: Rotating log file. Defaults to the LOG_FILE env var; no file
            output if unset

    Example:
        >>> setup_logger(level="DEBUG", log_file="logs/router.log")
        >>> get_logger("yield_router.engine.batch").info("Deposit accepted")
    """
    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    level = _parse_level(level)
    logger.setLevel(level)
    operation_filter = OperationFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.addFilter(operation_filter)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file is None:
        log_file = os.getenv("LOG_FILE")
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.addFilter(operation_filter)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def configure_logging(level: int | str) -> logging.Logger:
    """Apply ``level`` to the package logger and its handlers."""
    logger = setup_logger(ROOT_LOGGER, level)
    level = _parse_level(level)
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)
    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    Loggers inside the ``yield_router`` package share the package handlers,
    which are created on first use. Any other name gets its own handlers.
    """
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        setup_logger(ROOT_LOGGER)
        return logging.getLogger(name)

    logger = logging.getLogger(name)
    if not logger.handlers:
        return setup_logger(name)
    return logger

"""
Logging Configuration
=====================
Package-wide logging for the learning loop.

Every module logs through logging.getLogger(__name__), so all component
loggers are children of "learning_loop". Configuring that one logger from
the `logging` section of config.yaml covers the whole package:

    config = Config.load("config.yaml")
    setup_from_config(config.logging)

Entry points (scripts) get their logger with get_logger("scripts.<name>")
so their messages land in the same handlers.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

PACKAGE_LOGGER = "learning_loop"

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Loggers that already carry handlers from setup_logger
_configured: Dict[str, logging.Logger] = {}


def _resolve_level(level: str) -> int:
    numeric = logging.getLevelName(str(level).upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    return numeric


def _drop_handlers(logger: logging.Logger):
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logger(
    name: str = PACKAGE_LOGGER,
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size_mb: int = 10,
    backup_count: int = 3,
    console: bool = True,
    reconfigure: bool = False,
) -> logging.Logger:
    """
    Attach console and rotating-file handlers to a logger.

    A logger is configured once; later calls return it unchanged unless
    reconfigure=True, which replaces its handlers.

    Args:
        name: Logger name (the package logger by default)
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file; parent directories are created
        max_size_mb: Max log file size before rotation
        backup_count: Number of rotated files to keep
        console: Also log to stdout
        reconfigure: Replace existing handlers

    Raises:
        ValueError: Unknown level name
    """
    if name in _configured and not reconfigure:
        return _configured[name]

    numeric_level = _resolve_level(level)

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    _drop_handlers(logger)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Handlers live here; the root logger stays untouched
    logger.propagate = False

    _configured[name] = logger
    return logger


def setup_from_config(logging_config, name: str = PACKAGE_LOGGER, console: bool = True) -> logging.Logger:
    """
    Apply a LoggingConfig section to the package logger.

    Always reconfigures, so a reloaded config takes effect.
    """
    logger = setup_logger(
        name=name,
        level=logging_config.level,
        log_file=logging_config.file,
        max_size_mb=logging_config.max_size_mb,
        backup_count=logging_config.backup_count,
        console=console,
        reconfigure=True,
    )
    logger.debug(
        f"Logging configured: level={logging_config.level.upper()}, "
        f"file={logging_config.file or '-'}"
    )
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Logger inside the package namespace.

    get_logger() is the package logger; get_logger("scripts.report") is
    "learning_loop.scripts.report". Names already under the package are
    used as given.
    """
    if not name or name == PACKAGE_LOGGER:
        return logging.getLogger(PACKAGE_LOGGER)
    if name.startswith(PACKAGE_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")

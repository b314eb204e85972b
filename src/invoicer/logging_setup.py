"""Logging for the invoicer command line tool.

Messages go to stderr so they never mix with the per-invoice summary lines
printed on stdout. With ``[logging] output = "file"`` or ``"both"`` they are
also written to ``[logging] file``, which may use the same ``${CONFIG_DIR}``
style variables as the ``[directories]`` table.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Config, LoggingConfig

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = "%(levelname)-7s [%(name)s] %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

_initialized = False


def _level(log_config: LoggingConfig, verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    return getattr(logging, log_config.level.upper(), logging.INFO)


def _console_handler(verbose: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else CONSOLE_FORMAT))
    return handler


def _file_handler(log_config: LoggingConfig, path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    if log_config.rotate:
        handler = RotatingFileHandler(
            path,
            maxBytes=log_config.max_size_mb * 1024 * 1024,
            backupCount=log_config.backup_count,
            encoding="utf-8",
        )
    else:
        handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Attach handlers to the ``invoicer`` logger; later calls are ignored."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    log_config = config.logging
    logger = logging.getLogger("invoicer")
    logger.setLevel(_level(log_config, verbose))
    logger.handlers.clear()

    if log_config.output in ("console", "both"):
        logger.addHandler(_console_handler(verbose))

    if log_config.output in ("file", "both") and log_config.file:
        path = config.directories.resolve(log_config.file)
        logger.addHandler(_file_handler(log_config, path))


def reset_logging() -> None:
    """Drop handlers and level so the next setup_logging call applies (tests)."""
    global _initialized
    _initialized = False
    logger = logging.getLogger("invoicer")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)

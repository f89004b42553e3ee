"""Logging configuration for sheet-sync."""

import logging
from pathlib import Path

LOG_FILENAME = "sheet-sync.log"

FILE_FORMAT = "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(name)s - %(levelname)s - %(message)s"

# HTTP client libraries log each request URL, which includes spreadsheet ids
QUIET_LOGGERS = ("httpx", "httpcore")


class _SheetSyncHandler:
    """Marks handlers installed by setup_logging so a later call can replace them."""


class _FileHandler(_SheetSyncHandler, logging.FileHandler):
    pass


class _ConsoleHandler(_SheetSyncHandler, logging.StreamHandler):
    pass


def _file_handler(log_file: Path, log_level: int) -> logging.Handler:
    handler = _FileHandler(log_file, encoding="utf-8")
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(log_level: int) -> logging.Handler:
    handler = _ConsoleHandler()
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return handler


def setup_logging(log_level: int = logging.INFO, config_dir: Path | None = None) -> Path:
    """Configure logging for the application.

    Every CLI command calls this. Handlers from an earlier call are closed
    and replaced; handlers installed by anything else are left alone.

    Args:
        log_level: Logging level (e.g., logging.INFO, logging.DEBUG).
        config_dir: Directory to store log files. Defaults to ~/.sheet-sync/

    Returns:
        Path of the log file.
    """
    if config_dir is None:
        config_dir = Path.home() / ".sheet-sync"

    config_dir.mkdir(parents=True, exist_ok=True)
    log_file = config_dir / LOG_FILENAME

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        if isinstance(handler, _SheetSyncHandler):
            root_logger.removeHandler(handler)
            handler.close()

    root_logger.addHandler(_file_handler(log_file, log_level))
    root_logger.addHandler(_console_handler(log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    root_logger.debug(f"Logging to {log_file}")
    return log_file


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Logger instance.
    """
    return logging.getLogger(name)

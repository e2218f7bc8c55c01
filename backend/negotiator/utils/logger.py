"""
Logging utilities.

WHAT: Centralized logging configuration
WHY: One log format for the API, the negotiation loop and the browser surface
HOW: Python logging with file and console handlers, levels from settings
"""

import logging
import sys
from pathlib import Path

# Third-party loggers that are chatty at INFO (request lines, driver traffic)
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio", "sse_starlette")


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """
    Configure application logging.

    WHAT: Set up root logger with console and (optionally) file handlers
    WHY: Phase transitions and capability failures need to be visible while a
         negotiation runs, and kept on disk for review afterwards
    HOW: Replace root handlers, console at the configured level, file at DEBUG
    """
    from ..core.config import settings

    level_name = (level or settings.LOG_LEVEL).upper()
    log_path = log_file if log_file is not None else settings.LOG_FILE

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level_name, logging.INFO))
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(console_handler)

    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(pathname)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized (level={level_name}, file={log_path or 'none'})")


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a module.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)

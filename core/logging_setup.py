"""Logging configuration for the command line"""

import logging
from pathlib import Path
from typing import Optional, Union

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Chatty third-party loggers kept at WARNING unless debugging
QUIET_LOGGERS = ("httpx", "httpcore", "PIL")


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    console: Optional[Console] = None,
) -> None:
    """
    Install a rich console handler and, optionally, a file handler.

    Called once by the CLI; library modules only call logging.getLogger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    handlers = [RichHandler(console=console, show_time=False, show_path=False)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level == logging.DEBUG else logging.WARNING)

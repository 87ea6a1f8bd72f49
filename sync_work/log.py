"""
Logging setup for sync-work processes.
"""
import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings


LOGGER_NAME = "sync_work"
FILE_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(settings: Optional[Settings] = None, console: Optional[Console] = None) -> logging.Logger:
    """
    Configure the package logger.

    Installs a rich console handler and, when ``settings.log_file`` is set,
    a plain file handler. Calling it again replaces the previous handlers.
    """
    settings = settings or Settings()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.log_level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    rich_handler.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    logger.addHandler(rich_handler)

    if settings.log_file:
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger

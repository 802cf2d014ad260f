"""Logging setup for the tracker daemon and CLI."""
import logging
from typing import Optional

from .config import DEBUG_MODE, DEBUG_LOG_PATH

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(debug: Optional[bool] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger once.

    Console output at INFO; with debug enabled everything at DEBUG is also
    written to the debug log file.
    """
    if debug is None:
        debug = DEBUG_MODE

    logger = logging.getLogger("appstats")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    if not logger.handlers:
        formatter = logging.Formatter(LOG_FORMAT)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if debug:
            file_handler = logging.FileHandler(log_file or DEBUG_LOG_PATH)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger

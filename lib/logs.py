"""Functions for working with logs."""

import logging
import os
from pathlib import Path

from lib.filesystem import path_or_none

default_log_file_name = Path.home()/"linkbackup.log"


def setup_initial_null_logger(logger: logging.Logger) -> None:
    """Reset a logger that outputs to null so that no logs are printed during testing."""
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    logger.addHandler(logging.FileHandler(os.devnull))
    logger.setLevel(logging.INFO)


def primary_log_path(log_file_name: str | None) -> Path | None:
    """Determine which file to use for logging, or None if logging to a file is turned off."""
    if log_file_name == os.devnull:
        return None
    return path_or_none(log_file_name) or default_log_file_name


def setup_log_file(
        logger: logging.Logger,
        log_file_name: str | None,
        error_log_file_name: str | None) -> None:
    """Set up logging to write to a file."""
    log_format = "%(asctime)s %(levelname)s    %(message)s"
    log_file_path = primary_log_path(log_file_name)
    if log_file_path:
        log_file = logging.FileHandler(log_file_path, encoding="utf8")
        log_file.setFormatter(logging.Formatter(fmt=log_format))
        logger.addHandler(log_file)

    error_log_file_path = path_or_none(error_log_file_name)
    if error_log_file_path:
        error_log = logging.FileHandler(error_log_file_path, encoding="utf8", delay=True)
        error_log.setLevel(logging.WARNING)
        error_log.setFormatter(logging.Formatter(fmt=log_format))
        logger.addHandler(error_log)

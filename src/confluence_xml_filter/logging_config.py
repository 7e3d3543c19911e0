"""Logging of a filter run.

Messages go to stderr, under the progress bar, and to the log file of the
settings when one is set. Per-page messages are logged at INFO when the
filter runs verbose.
"""

import logging
import sys
from pathlib import Path

from confluence_xml_filter.config import Settings

PACKAGE_LOGGER = "confluence_xml_filter"

# Loggers of the libraries called once per page
PAGE_LIBRARY_LOGGERS = ("confluence_content_parser",)


def run_level(settings: Settings, verbose: bool = False) -> int:
    """Level of the package logger for a run.

    ``verbose`` forces DEBUG. A verbose filter needs at least INFO, or the
    per-page messages it asks for would be dropped.
    """
    if verbose:
        return logging.DEBUG
    level = logging.getLevelName(settings.logging.level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    if settings.filter.verbose:
        level = min(level, logging.INFO)
    return level


def setup_logging(settings: Settings, verbose: bool = False) -> logging.Logger:
    """Configure the package logger for a run.

    Args:
        settings: Application settings containing logging config.
        verbose: If True, override level to DEBUG.

    Returns:
        The package logger.
    """
    log_settings = settings.logging
    level = run_level(settings, verbose)
    formatter = logging.Formatter(log_settings.format)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_settings.file:
        log_path = Path(log_settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Page titles and space names are not ASCII
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in PAGE_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)

    return logger

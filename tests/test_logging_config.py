"""Tests for the logging configuration."""

import logging
from pathlib import Path

import pytest

from confluence_xml_filter.config import Settings
from confluence_xml_filter.logging_config import PACKAGE_LOGGER, run_level, setup_logging


@pytest.fixture
def package_logger():
    """Package logger, put back as it was after the test."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    level, handlers = logger.level, list(logger.handlers)
    library = logging.getLogger("confluence_content_parser")
    library_level = library.level
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
    library.setLevel(library_level)


class TestRunLevel:
    """Tests for run_level function."""

    def test_configured_level(self) -> None:
        """The configured level is used as is."""
        settings = Settings.default()
        settings.logging.level = "warning"

        assert run_level(settings) == logging.WARNING

    def test_unknown_level(self) -> None:
        """Unknown level names fall back to INFO."""
        settings = Settings.default()
        settings.logging.level = "LOUD"

        assert run_level(settings) == logging.INFO

    def test_verbose_filter_needs_info(self) -> None:
        """A verbose filter lowers the level to INFO."""
        settings = Settings.default()
        settings.logging.level = "ERROR"
        settings.filter.verbose = True

        assert run_level(settings) == logging.INFO

    def test_verbose_flag(self) -> None:
        """The verbose flag forces DEBUG."""
        assert run_level(Settings.default(), verbose=True) == logging.DEBUG


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_console_only(self, package_logger: logging.Logger) -> None:
        """Without a log file only the console handler is set."""
        settings = Settings.default()
        settings.logging.file = None

        logger = setup_logging(settings)

        assert logger is package_logger
        assert len(logger.handlers) == 1
        assert logger.level == logging.INFO
        assert logging.getLogger("confluence_content_parser").level == logging.WARNING

    def test_log_file(self, package_logger: logging.Logger, tmp_path: Path) -> None:
        """Messages are written to the log file in UTF-8."""
        settings = Settings.default()
        settings.logging.file = str(tmp_path / "logs" / "run.log")
        settings.logging.format = "%(message)s"

        logger = setup_logging(settings)
        logging.getLogger(f"{PACKAGE_LOGGER}.traversal").info("Sending page [Accueil général]")
        for handler in logger.handlers:
            handler.flush()

        content = (tmp_path / "logs" / "run.log").read_text(encoding="utf-8")
        assert "Sending page [Accueil général]" in content

"""Tests for the configuration module."""

import tempfile
from pathlib import Path

import pytest

from confluence_xml_filter.config import (
    ConversionSettings,
    FilterSettings,
    LoggingSettings,
    Settings,
)


class TestSettings:
    """Tests for Settings class."""

    def test_default_settings(self) -> None:
        """Default settings have expected values."""
        settings = Settings.default()

        assert settings.filter.max_page_count == -1
        assert settings.filter.cleanup == "SYNC"
        assert settings.filter.object_id_ranges is None
        assert settings.filter.blog_space_name == "Blog"
        assert settings.filter.excluded_pages == []

    def test_load_nonexistent_file(self) -> None:
        """Loading nonexistent file raises error."""
        with pytest.raises(FileNotFoundError):
            Settings.load("/nonexistent/path/settings.yaml")

    def test_load_valid_yaml(self) -> None:
        """Valid YAML file loads correctly."""
        with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
            f.write(
                """
filter:
  max_page_count: 10
  object_id_ranges: "[100,200]"
  cleanup: ASYNC
  users_wiki: xwiki
  excluded_pages:
    - 42
logging:
  level: DEBUG
conversion:
  unknown_macro_handling: strip
"""
            )
            f.flush()

            settings = Settings.load(f.name)

        assert settings.filter.max_page_count == 10
        assert settings.filter.object_id_ranges == "[100,200]"
        assert settings.filter.cleanup == "ASYNC"
        assert settings.filter.users_wiki == "xwiki"
        assert settings.filter.excluded_pages == [42]
        assert settings.logging.level == "DEBUG"
        assert settings.conversion.unknown_macro_handling == "strip"

        Path(f.name).unlink()

    def test_load_empty_yaml(self, tmp_path: Path) -> None:
        """Empty file gives default settings."""
        path = tmp_path / "settings.yaml"
        path.write_text("")

        settings = Settings.load(path)

        assert settings.filter == FilterSettings()

    def test_unknown_filter_option(self) -> None:
        """Unknown filter options are rejected."""
        with pytest.raises(ValueError, match="max_pages"):
            Settings._from_dict({"filter": {"max_pages": 3}})

    def test_invalid_cleanup_mode(self) -> None:
        """Cleanup mode must be one of NO, SYNC and ASYNC."""
        with pytest.raises(ValueError, match="cleanup"):
            Settings._from_dict({"filter": {"cleanup": "LATER"}})

    def test_invalid_object_id_ranges(self) -> None:
        """Malformed range expressions fail when loading."""
        with pytest.raises(ValueError):
            Settings._from_dict({"filter": {"object_id_ranges": "[1,2"}})


class TestFilterSettings:
    """Tests for FilterSettings class."""

    def test_root_space_names(self) -> None:
        """Root space is split on dots."""
        assert FilterSettings(root_space="Imports.Confluence").root_space_names == [
            "Imports",
            "Confluence",
        ]
        assert FilterSettings().root_space_names == []

    def test_is_included_defaults(self) -> None:
        """Every page is included by default."""
        assert FilterSettings().is_included(1)

    def test_is_included_lists(self) -> None:
        """Exclusions win over inclusions."""
        settings = FilterSettings(included_pages=[1, 2], excluded_pages=[2])

        assert settings.is_included(1)
        assert not settings.is_included(2)
        assert not settings.is_included(3)

    def test_id_ranges(self) -> None:
        """A fresh range list is built for each call."""
        settings = FilterSettings(object_id_ranges="[1,2]")

        first = settings.id_ranges()
        first.push_id(1)

        assert settings.id_ranges() is not first
        assert FilterSettings().id_ranges() is None


class TestLoggingSettings:
    """Tests for LoggingSettings class."""

    def test_defaults(self) -> None:
        """Default logging settings."""
        settings = LoggingSettings()

        assert settings.level == "INFO"
        assert settings.file == "./logs/confluence-xml-filter.log"


class TestConversionSettings:
    """Tests for ConversionSettings class."""

    def test_defaults(self) -> None:
        """Default conversion settings."""
        settings = ConversionSettings()

        assert settings.unknown_macro_handling == "comment"
        assert settings.max_heading_level == 6

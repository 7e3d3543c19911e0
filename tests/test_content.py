"""Tests for the storage format converter."""

import pytest

from confluence_xml_filter.config import ConversionSettings
from confluence_xml_filter.content import (
    BODY_TYPE_WIKI,
    BODY_TYPE_XHTML,
    MARKDOWN_SYNTAX,
    ConversionError,
    ConversionResult,
    StorageFormatConverter,
)


@pytest.fixture
def converter() -> StorageFormatConverter:
    """Converter with default settings."""
    return StorageFormatConverter(ConversionSettings())


class TestStorageFormatConverter:
    """Tests for StorageFormatConverter class."""

    def test_can_convert(self, converter: StorageFormatConverter) -> None:
        """Only storage format bodies are converted."""
        assert converter.can_convert(BODY_TYPE_XHTML)
        assert not converter.can_convert(BODY_TYPE_WIKI)
        assert not converter.can_convert(1)

    def test_unsupported_body_type(self, converter: StorageFormatConverter) -> None:
        """Wiki markup bodies are refused."""
        with pytest.raises(ConversionError):
            converter.convert("h1. Title", BODY_TYPE_WIKI)

    def test_empty_body(self, converter: StorageFormatConverter) -> None:
        """Empty body gives empty Markdown."""
        result = converter.convert("   ", BODY_TYPE_XHTML)

        assert isinstance(result, ConversionResult)
        assert result.content == ""
        assert result.syntax == MARKDOWN_SYNTAX
        assert not result.macros

    def test_simple_paragraph(self, converter: StorageFormatConverter) -> None:
        """Simple paragraph converts correctly."""
        result = converter.convert("<p>Hello World</p>", BODY_TYPE_XHTML)

        assert "Hello World" in result.content
        assert result.syntax == MARKDOWN_SYNTAX

    def test_heading(self, converter: StorageFormatConverter) -> None:
        """Headings keep their text."""
        result = converter.convert("<h2>Install</h2><p>Run it</p>", BODY_TYPE_XHTML)

        assert "Install" in result.content
        assert "Run it" in result.content

"""Tests for the command line interface."""

from pathlib import Path

from click.testing import CliRunner
from lxml import etree

from conftest import ExportBuilder
from confluence_xml_filter.cli import cli


def write_settings(path: Path, extra: str = "") -> Path:
    path.write_text(
        f"""
logging:
  file: null
filter:
  convert_to_xwiki: false
{extra}"""
    )
    return path


class TestCli:
    """Tests for the cli command."""

    def test_run(self, simple_export: ExportBuilder, tmp_path: Path) -> None:
        """A run writes the event log and prints a summary."""
        source = simple_export.write()
        settings = write_settings(tmp_path / "settings.yaml")
        output = tmp_path / "events.xml"

        result = CliRunner().invoke(cli, [str(source), "-s", str(settings), "-o", str(output)])

        assert result.exit_code == 0, result.output
        assert "Status: completed" in result.output
        assert "Pages: 2" in result.output
        root = etree.parse(str(output)).getroot()
        assert root.find("wikiSpace").get("name") == "S"

    def test_max_pages(self, simple_export: ExportBuilder, tmp_path: Path) -> None:
        """The page limit option overrides the settings."""
        source = simple_export.write()
        settings = write_settings(tmp_path / "settings.yaml")

        result = CliRunner().invoke(
            cli,
            [str(source), "-s", str(settings), "-o", str(tmp_path / "e.xml"), "--max-pages", "1"],
        )

        assert result.exit_code == 0, result.output
        assert "Status: max_page_count" in result.output

    def test_invalid_ranges(self, simple_export: ExportBuilder, tmp_path: Path) -> None:
        """Malformed ranges are rejected before the run."""
        result = CliRunner().invoke(
            cli, [str(simple_export.write()), "--object-id-ranges", "[1,"]
        )

        assert result.exit_code == 2
        assert "object-id-ranges" in result.output

    def test_invalid_settings(self, simple_export: ExportBuilder, tmp_path: Path) -> None:
        """Unknown settings are reported."""
        settings = write_settings(tmp_path / "settings.yaml", "  max_pages: 3\n")

        result = CliRunner().invoke(cli, [str(simple_export.write()), "-s", str(settings)])

        assert result.exit_code == 1
        assert "Invalid settings" in result.output

    def test_missing_export_path(self, tmp_path: Path) -> None:
        """An export path is needed without a working directory."""
        settings = write_settings(tmp_path / "settings.yaml")

        result = CliRunner().invoke(cli, ["-s", str(settings)])

        assert result.exit_code == 2
        assert "EXPORT_PATH" in result.output

    def test_unreadable_export(self, tmp_path: Path) -> None:
        """Read failures end the command with an error."""
        source = tmp_path / "empty"
        source.mkdir()
        settings = write_settings(tmp_path / "settings.yaml")

        result = CliRunner().invoke(
            cli, [str(source), "-s", str(settings), "-o", str(tmp_path / "e.xml")]
        )

        assert result.exit_code == 1
        assert "Failed to read package" in result.output

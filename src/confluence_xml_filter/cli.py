"""Click CLI entry point for the filter."""

from __future__ import annotations

import signal
from pathlib import Path

import click
import yaml

from confluence_xml_filter.config import CLEANUP_MODES, Settings
from confluence_xml_filter.errors import FilterError
from confluence_xml_filter.idrange import IdRangeList
from confluence_xml_filter.logging_config import setup_logging
from confluence_xml_filter.pipeline import MigrationPipeline
from confluence_xml_filter.progress import CancellationToken
from confluence_xml_filter.sink import XmlEventSink

# Resolution of the progress bar
PROGRESS_STEPS = 1000


def _validate_ranges(ctx: click.Context, param: click.Parameter, value: str | None) -> str | None:
    if value is None:
        return None
    try:
        IdRangeList.parse(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e
    return value


@click.command()
@click.argument("export_path", required=False, type=click.Path(exists=True, path_type=Path))
@click.option(
    "--settings",
    "-s",
    "settings_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML settings file",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("events.xml"),
    show_default=True,
    help="Where to write the event log",
)
@click.option("--max-pages", type=int, help="Stop after this many pages")
@click.option(
    "--object-id-ranges",
    callback=_validate_ranges,
    help="Only send these objects, e.g. '[100,200],(300,]'",
)
@click.option(
    "--working-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Extract the export here, or reuse a previous extraction",
)
@click.option("--cleanup", type=click.Choice(CLEANUP_MODES), help="What to do with the extracted files")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(
    export_path: Path | None,
    settings_path: Path | None,
    output: Path,
    max_pages: int | None,
    object_id_ranges: str | None,
    working_dir: Path | None,
    cleanup: str | None,
    verbose: bool,
) -> None:
    """Migrate a Confluence XML export to wiki events.

    EXPORT_PATH: Confluence XML export ZIP or extracted directory
    """
    try:
        settings = Settings.load(settings_path) if settings_path else Settings.default()
    except (ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Invalid settings: {e}") from e

    options = settings.filter
    if max_pages is not None:
        options.max_page_count = max_pages
    if object_id_ranges is not None:
        options.object_id_ranges = object_id_ranges
    if working_dir is not None:
        options.working_directory = str(working_dir)
    if cleanup is not None:
        options.cleanup = cleanup
    if verbose:
        options.verbose = True

    if export_path is None and not options.working_directory:
        raise click.UsageError("EXPORT_PATH is required unless a working directory is set")

    setup_logging(settings, verbose)

    token = CancellationToken()
    previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: token.cancel())
    sink = XmlEventSink(output)
    try:
        with click.progressbar(length=PROGRESS_STEPS, label="Migrating") as bar:

            def update(fraction: float) -> None:
                steps = int(fraction * PROGRESS_STEPS) - bar.pos
                if steps > 0:
                    bar.update(steps)

            pipeline = MigrationPipeline(
                settings, sink, cancellation=token, progress_listeners=[update]
            )
            result = pipeline.run(export_path)
    except FilterError as e:
        raise click.ClickException(str(e)) from e
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    sink.close()

    click.echo()
    click.echo(f"Status: {result.status}")
    click.echo(
        f"  Spaces: {result.spaces_sent}, Pages: {result.pages_sent}, "
        f"Users: {result.users_sent}, Groups: {result.groups_sent}"
    )
    click.echo(f"  Events written to {output} in {result.total_time_ms}ms")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()

"""Run a whole migration: read the package, plan the work, send everything."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal

from confluence_xml_filter.config import Settings
from confluence_xml_filter.content import StorageFormatConverter
from confluence_xml_filter.errors import FilterError, MaxPageCountReached, TraversalCanceled
from confluence_xml_filter.export_package import KEY_SPACE_PERMISSIONS, ExportPackage
from confluence_xml_filter.identities import IdentitySender
from confluence_xml_filter.idrange import ObjectIdFilter
from confluence_xml_filter.progress import CancellationToken, ProgressListener, ProgressTracker
from confluence_xml_filter.references import ReferenceConverter
from confluence_xml_filter.sink import FilterSink
from confluence_xml_filter.traversal import PageTraversal, SpaceNode

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "max_page_count", "canceled", "vetoed"]


@dataclass
class FilteringEvent:
    """Sent to listeners before the traversal; they may veto the run or disable spaces."""

    package: ExportPackage
    canceled: bool = False
    disabled_spaces: set[int] = field(default_factory=set)

    def cancel(self) -> None:
        self.canceled = True

    def disable_space(self, space_id: int) -> None:
        self.disabled_spaces.add(space_id)


FilteringListener = Callable[[FilteringEvent], None]
FilteredListener = Callable[[ExportPackage], None]


@dataclass
class RunResult:
    """Result of a migration run."""

    pages_sent: int = 0
    spaces_sent: int = 0
    users_sent: int = 0
    groups_sent: int = 0
    status: RunStatus = "completed"
    total_time_ms: int = 0


class MigrationPipeline:
    """Drives a run from the export package to the sink."""

    def __init__(
        self,
        settings: Settings,
        sink: FilterSink,
        package: ExportPackage | None = None,
        cancellation: CancellationToken | None = None,
        progress_listeners: list[ProgressListener] | None = None,
        filtering_listeners: list[FilteringListener] | None = None,
        filtered_listeners: list[FilteredListener] | None = None,
    ):
        self.settings = settings
        self.sink = sink
        self.package = package or ExportPackage()
        self.cancellation = cancellation
        self.progress = ProgressTracker(progress_listeners)
        self.filtering_listeners = list(filtering_listeners or [])
        self.filtered_listeners = list(filtered_listeners or [])
        self.references = ReferenceConverter(settings.filter)

    def run(self, source: str | Path | None) -> RunResult:
        """Migrate an export.

        Args:
            source: Export ZIP or extracted directory. May be None when the
                working directory holds a previously extracted package.

        Returns:
            RunResult with counters and the final status.

        Raises:
            FilterError: If the package can't be read or cleaned up.
        """
        start_time = time.time()
        options = self.settings.filter
        result = RunResult()

        self.read_package(source)

        event = FilteringEvent(self.package)
        for listener in self.filtering_listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Filtering listener failed: {e}", exc_info=True)
        if event.canceled:
            logger.info("The run was canceled by a listener before it started")
            self.close_package()
            result.status = "vetoed"
            result.total_time_ms = int((time.time() - start_time) * 1000)
            return result

        self.prune_archived_spaces()

        id_filter = ObjectIdFilter(options.id_ranges(), self.package.get_ancestors)
        id_filter.prepare()

        spaces = self.plan(event.disabled_spaces)
        send_pages = options.contents_enabled or options.rights_enabled
        pages_count = self.count_pages(spaces) if send_pages else 0
        users = self.package.get_internal_users() if options.users_enabled else []
        groups = self.package.get_groups() if options.groups_enabled else []
        logger.info(
            f"Planned {len(spaces)} spaces, {pages_count} pages, {len(users)} users "
            f"and {len(groups)} groups"
        )

        converter = (
            StorageFormatConverter(self.settings.conversion) if options.convert_to_xwiki else None
        )
        traversal = PageTraversal(
            self.package,
            options,
            self.sink,
            references=self.references,
            id_filter=id_filter,
            progress=self.progress,
            converter=converter,
            cancellation=self.cancellation,
        )
        identities = IdentitySender(
            self.package,
            options,
            self.sink,
            self.references,
            id_filter,
            self.progress,
            cancellation=self.cancellation,
        )

        self.progress.push_level(pages_count + len(users) + len(groups))
        try:
            identities.send(users, groups)
            if send_pages:
                traversal.send_spaces(spaces)
        except MaxPageCountReached:
            logger.info("The maximum of pages to read has been reached.")
            result.status = "max_page_count"
        except TraversalCanceled:
            logger.warning("The run was canceled.")
            result.status = "canceled"
        finally:
            self.progress.pop_level()
            for listener in self.filtered_listeners:
                try:
                    listener(self.package)
                except Exception as e:
                    logger.error(f"Filtered listener failed: {e}", exc_info=True)
            self.close_package()

        result.pages_sent = traversal.pages_sent
        result.spaces_sent = traversal.spaces_sent
        result.users_sent = identities.users_sent
        result.groups_sent = identities.groups_sent
        result.total_time_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"Run {result.status}: {result.spaces_sent} spaces, {result.pages_sent} pages, "
            f"{result.users_sent} users, {result.groups_sent} groups, {result.total_time_ms}ms"
        )
        return result

    def read_package(self, source: str | Path | None) -> None:
        """Restore the package from the working directory or read the source.

        Raises:
            FilterError: If the package can't be read.
        """
        working_directory = self.settings.filter.working_directory
        try:
            restored = bool(working_directory) and self.package.restore_state(working_directory)
            if restored:
                logger.info(f"Restored the package from {working_directory}")
                return
            if source is None:
                raise ValueError("No export to read and nothing to restore")
            self.package.read(source, working_directory)
        except Exception as e:
            logger.error(f"Failed to read package: {e}")
            self.close_package()
            raise FilterError(f"Failed to read package: {e}") from e

    def prune_archived_spaces(self) -> None:
        """Remove archived spaces from the package indexes."""
        if self.settings.filter.archived_spaces_enabled:
            return

        pages = self.package.get_pages()
        blog_pages = self.package.get_blog_pages()
        for space_id in list(dict.fromkeys([*pages, *blog_pages])):
            if self.package.is_space_archived(space_id):
                logger.debug(f"Skipping archived space [{space_id}]")
                pages.pop(space_id, None)
                blog_pages.pop(space_id, None)

    def plan(self, disabled_spaces: set[int] | None = None) -> list[SpaceNode]:
        """Build the list of spaces to send, in package order."""
        disabled_spaces = disabled_spaces or set()
        pages = self.package.get_pages()
        blog_pages = self.package.get_blog_pages()

        spaces = []
        for space_id in dict.fromkeys([*pages, *blog_pages]):
            if space_id is None:
                logger.error("A null space has been found. Skipping.")
                continue
            if space_id in disabled_spaces:
                continue
            properties = self.package.get_space_properties(space_id)
            spaces.append(
                SpaceNode(
                    id=space_id,
                    key=self.package.get_space_key(space_id) or "",
                    pages=list(pages.get(space_id, [])),
                    blog_pages=list(blog_pages.get(space_id, [])),
                    archived=self.package.is_space_archived(space_id),
                    permissions=(
                        properties.get_long_list(KEY_SPACE_PERMISSIONS) if properties else []
                    ),
                )
            )
        return spaces

    def count_pages(self, spaces: list[SpaceNode]) -> int:
        options = self.settings.filter
        count = sum(space.page_count(options) for space in spaces)
        if options.max_page_count != -1:
            count = min(count, options.max_page_count)
        return count

    def close_package(self) -> None:
        """Release the package according to the cleanup mode.

        Raises:
            FilterError: If a synchronous cleanup fails.
        """
        cleanup = self.settings.filter.cleanup
        if cleanup == "NO":
            return
        try:
            self.package.close(asynchronous=cleanup == "ASYNC")
        except OSError as e:
            raise FilterError(f"Failed to close package: {e}") from e

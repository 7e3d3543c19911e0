"""Walk the spaces and pages of an export and send them to a sink.

The traversal order is fixed: for each space, the home page and its children
(recursively), then the orphan pages, then the blog posts and finally the space
rights. Every non-home page opens a space named after itself so that its
children are nested under it.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from confluence_xml_filter.config import FilterSettings
from confluence_xml_filter.content import ConversionError, StorageFormatConverter
from confluence_xml_filter.errors import MaxPageCountReached, TraversalInterrupted
from confluence_xml_filter.export_package import (
    KEY_ATTACHMENT_CONTENT_FILESIZE,
    KEY_ATTACHMENT_CONTENT_MEDIA_TYPE,
    KEY_ATTACHMENT_CONTENT_SIZE,
    KEY_ATTACHMENT_CONTENTPROPERTIES,
    KEY_ATTACHMENT_CONTENTSTATUS,
    KEY_ATTACHMENT_CONTENTTYPE,
    KEY_ATTACHMENT_CREATION_AUTHOR,
    KEY_ATTACHMENT_CREATION_DATE,
    KEY_ATTACHMENT_REVISION_AUTHOR,
    KEY_ATTACHMENT_REVISION_COMMENT,
    KEY_ATTACHMENT_REVISION_DATE,
    KEY_CONTENT_PERMISSIONS,
    KEY_PAGE_BODY,
    KEY_PAGE_BODY_TYPE,
    KEY_PAGE_CONTENT_PERMISSION_SETS,
    KEY_PAGE_CONTENT_STATUS,
    KEY_PAGE_CREATION_AUTHOR,
    KEY_PAGE_CREATION_AUTHOR_KEY,
    KEY_PAGE_CREATION_DATE,
    KEY_PAGE_HOMEPAGE,
    KEY_PAGE_LABELLINGS,
    KEY_PAGE_REVISION,
    KEY_PAGE_REVISION_AUTHOR,
    KEY_PAGE_REVISION_AUTHOR_KEY,
    KEY_PAGE_REVISION_COMMENT,
    KEY_PAGE_REVISION_DATE,
    KEY_PAGE_REVISIONS,
    KEY_PAGE_TITLE,
    KEY_SPACE_NAME,
    ExportObject,
    ExportPackage,
)
from confluence_xml_filter.idrange import ObjectIdFilter
from confluence_xml_filter.progress import CancellationToken, ProgressTracker
from confluence_xml_filter.references import ReferenceConverter
from confluence_xml_filter.rights import (
    Permission,
    PermissionMapper,
    Right,
    RightKind,
    RightsPass,
    send_right,
)
from confluence_xml_filter.sink import EMPTY, FilterSink

logger = logging.getLogger(__name__)

WEB_HOME = "WebHome"
WEB_PREFERENCES = "WebPreferences"

PREFERENCES_CLASSNAME = "XWiki.XWikiPreferences"
TAGS_CLASSNAME = "XWiki.TagClass"
COMMENTS_CLASSNAME = "XWiki.XWikiComments"
BLOG_CLASSNAME = "Blog.BlogClass"
BLOG_POST_CLASSNAME = "Blog.BlogPostClass"
CONFLUENCE_PAGE_CLASSNAME = "Confluence.Code.ConfluencePageClass"

SYNTAX_BY_BODY_TYPE = {
    0: "confluence/1.0",
    2: "confluence+xhtml/1.0",
}
# Body types dropped without a warning
SILENT_BODY_TYPES = frozenset({1})

SKIPPED_PAGE_STATUSES = frozenset({"deleted", "draft"})


@dataclass
class SpaceNode:
    """A space selected for the run with the ids it holds."""

    id: int
    key: str
    pages: list[int] = field(default_factory=list)
    blog_pages: list[int] = field(default_factory=list)
    archived: bool = False
    permissions: list[int] = field(default_factory=list)

    def page_count(self, settings: FilterSettings) -> int:
        """Number of pages the settings let through, ignoring the page limit."""
        count = 0
        if settings.non_blog_content_enabled:
            count += len(self.pages)
        if settings.blogs_enabled:
            count += len(self.blog_pages)
        return count


@dataclass
class SpaceContext:
    """State of the space being sent."""

    space_id: int
    space_key: str
    properties: ExportObject
    rights: RightsPass
    inherited_rights: list[Permission] | None = None
    home_page_properties: ExportObject | None = None


@dataclass
class PageContext:
    """State of the page being sent, shared by all its revisions."""

    space: SpaceContext
    properties: ExportObject
    blog: bool = False
    home_page: bool = False
    macros: Counter = field(default_factory=Counter)

    @property
    def id(self) -> int | None:
        return self.properties.id

    @property
    def label(self) -> str:
        title = self.properties.get_string(KEY_PAGE_TITLE, "")
        return f"{self.space.space_key}/{title} (id={self.id})"


class PageTraversal:
    """Sends spaces, pages and their content as sink events.

    Control signals (page limit, cancellation) propagate out of every method;
    any other failure is logged and limited to the object it happened on.
    """

    def __init__(
        self,
        package: ExportPackage,
        settings: FilterSettings,
        sink: FilterSink,
        references: ReferenceConverter | None = None,
        id_filter: ObjectIdFilter | None = None,
        progress: ProgressTracker | None = None,
        converter: StorageFormatConverter | None = None,
        cancellation: CancellationToken | None = None,
    ):
        self.package = package
        self.settings = settings
        self.sink = sink
        self.references = references or ReferenceConverter(settings)
        if id_filter is None:
            id_filter = ObjectIdFilter(settings.id_ranges(), package.get_ancestors)
            id_filter.prepare()
        self.id_filter = id_filter
        self.progress = progress or ProgressTracker()
        if converter is None and settings.convert_to_xwiki:
            converter = StorageFormatConverter()
        self.converter = converter
        self.cancellation = cancellation
        self.permissions = PermissionMapper(package, self.references)

        self.remaining_pages = settings.max_page_count
        self.pages_sent = 0
        self.spaces_sent = 0

    def should_send(self, object_id: int | None) -> bool:
        return self.id_filter.should_admit(object_id)

    def check_canceled(self) -> None:
        if self.cancellation is not None:
            self.cancellation.check()

    # Spaces

    def send_spaces(self, spaces: list[SpaceNode]) -> None:
        """Send all the spaces, inside the root space when one is configured."""
        opened: list[str] = []
        try:
            for name in self.settings.root_space_names:
                self.sink.begin_wiki_space(name, EMPTY)
                opened.append(name)

            # Space weights add up to the total the pipeline counted
            budget = self.settings.max_page_count
            for space in spaces:
                count = space.page_count(self.settings)
                weight = count if budget == -1 else min(count, budget)
                if budget != -1:
                    budget -= weight
                with self.progress.level(count, weight=weight):
                    if not self.should_send(space.id):
                        continue
                    if not space.pages and not space.blog_pages:
                        continue
                    if self.remaining_pages == 0:
                        raise MaxPageCountReached()
                    self.send_space(space)
        finally:
            for name in reversed(opened):
                self.sink.end_wiki_space(name, EMPTY)

    def send_space(self, space: SpaceNode) -> None:
        properties = self.package.get_space_properties(space.id)
        if properties is None:
            logger.error(f"Could not get the properties of space id=[{space.id}]. Skipping.")
            return

        space_key = self.references.to_entity_name(space.key or self.package.get_space_key(space.id))
        if not space_key:
            logger.error(f"Could not determine the key of space id=[{space.id}]. Skipping.")
            return

        context = SpaceContext(
            space_id=space.id,
            space_key=space_key,
            properties=properties,
            rights=self.permissions.new_pass(),
        )

        if self.settings.verbose:
            logger.info(f"Sending Confluence space [{space_key}], id=[{space.id}]")

        self.sink.begin_wiki_space(space_key, EMPTY)
        self.spaces_sent += 1
        try:
            try:
                if self.settings.contents_enabled or self.settings.rights_enabled:
                    if self.settings.non_blog_content_enabled:
                        home_page_id = self.package.get_home_page(space.id)
                        if home_page_id is not None:
                            self.send_page(home_page_id, context)
                        self.send_pages(self.package.get_orphans(space.id), context)
                    self.send_blogs(space.blog_pages, context)
            except MaxPageCountReached:
                # The rights of the space are still sent when the limit is reached
                if self.settings.rights_enabled:
                    self.send_space_rights(context, space)
                raise

            if self.settings.rights_enabled:
                self.send_space_rights(context, space)
        finally:
            self.sink.end_wiki_space(space_key, EMPTY)
            if self.settings.verbose:
                logger.info(f"Finished sending Confluence space [{space_key}], id=[{space.id}]")

    def send_blogs(self, blog_pages: list[int], space: SpaceContext) -> None:
        if not self.settings.blogs_enabled or not blog_pages:
            return

        blog_space = self.references.to_entity_name(self.settings.blog_space_name)
        self.sink.begin_wiki_space(blog_space, EMPTY)
        try:
            self._send_blog_descriptor()
            self.send_pages(blog_pages, space, blog=True)
        finally:
            self.sink.end_wiki_space(blog_space, EMPTY)

    def _send_blog_descriptor(self) -> None:
        name = self.references.to_entity_name(WEB_HOME)
        self.sink.begin_wiki_document(name, EMPTY)
        try:
            params = {"class_reference": BLOG_CLASSNAME}
            self.sink.begin_wiki_object(BLOG_CLASSNAME, params)
            try:
                self.sink.on_wiki_object_property("title", self.settings.blog_space_name)
                self.sink.on_wiki_object_property("postsLayout", "image")
                self.sink.on_wiki_object_property("displayType", "paginated")
            finally:
                self.sink.end_wiki_object(BLOG_CLASSNAME, params)
        finally:
            self.sink.end_wiki_document(name, EMPTY)

    # Pages

    def send_pages(self, page_ids: list[int], space: SpaceContext, blog: bool = False) -> None:
        for page_id in page_ids:
            self.send_page(page_id, space, blog)

    def send_page(self, page_id: int, space: SpaceContext, blog: bool = False) -> None:
        if self.remaining_pages == 0:
            raise MaxPageCountReached()

        self.check_canceled()

        if not self.settings.is_included(page_id):
            self.progress.empty_step()
            return

        try:
            self.read_page(page_id, space, blog)
        except TraversalInterrupted:
            raise
        except Exception as e:
            logger.error(
                f"Failed to filter the page with id [{page_id}] in space [{space.space_key}]: {e}",
                exc_info=True,
            )

    def read_page(self, page_id: int, space: SpaceContext, blog: bool) -> None:
        if not self.should_send(page_id):
            self.progress.empty_step()
            return

        properties = self.package.get_page_properties(page_id)
        if properties is None:
            logger.error(f"Can't find page with id [{page_id}] in space [{space.space_key}]")
            self.progress.empty_step()
            return

        title = properties.get_string(KEY_PAGE_TITLE)
        home_page = KEY_PAGE_HOMEPAGE in properties and not blog
        document_name = WEB_HOME if home_page else title
        if not document_name:
            logger.warning(f"Found a page without a name or title (id={page_id}). Skipping it.")
            self.progress.empty_step()
            return

        status = properties.get_string(KEY_PAGE_CONTENT_STATUS)
        if status in SKIPPED_PAGE_STATUSES or (
            status == "archived" and not self.settings.archived_documents_enabled
        ):
            logger.debug(f"Skipping page with id [{page_id}] and status [{status}]")
            self.progress.empty_step()
            return

        document_params: dict[str, Any] = {}
        if self.settings.default_locale:
            document_params["locale"] = self.settings.default_locale

        page = PageContext(space=space, properties=properties, blog=blog, home_page=home_page)
        if self.settings.verbose:
            logger.info(f"Sending page [{page.label}]")

        if blog:
            self.send_terminal_doc(page, self.references.to_entity_name(document_name), document_params)
            return

        container = None
        if not home_page:
            container = self.references.to_entity_name(title)
            if not container:
                logger.warning(f"The title of page [{page.label}] is not a valid name. Skipping it.")
                self.progress.empty_step()
                return
            self.sink.begin_wiki_space(container, EMPTY)

        try:
            self.send_terminal_doc(page, WEB_HOME, document_params)
            self.send_pages(self.package.get_page_children(page_id), space)
        finally:
            if container is not None:
                self.sink.end_wiki_space(container, EMPTY)

    def send_terminal_doc(self, page: PageContext, name: str, params: dict[str, Any]) -> None:
        """Send the document of a page with all its revisions."""
        self.progress.start_step()
        self.sink.begin_wiki_document(name, params)

        inherited_rights: list[Permission] = []
        try:
            if self.settings.contents_enabled or self.settings.rights_enabled:
                inherited_rights = self.send_revisions(page)
        finally:
            self.sink.end_wiki_document(name, params)

            if page.macros:
                if self.settings.verbose:
                    macros = ", ".join(sorted(page.macros))
                    logger.info(f"The following macros [{macros}] were found on page [{page.label}].")
                page.macros.clear()

            if self.remaining_pages > 0:
                self.remaining_pages -= 1
            self.pages_sent += 1
            self.progress.end_step()

        if page.home_page:
            # Home page view rights go to the space preferences
            page.space.inherited_rights = inherited_rights
            page.space.home_page_properties = page.properties
        elif inherited_rights:
            self._send_preferences(
                [Right(RightKind.VIEW, p.group, p.users) for p in inherited_rights]
            )

    def send_revisions(self, page: PageContext) -> list[Permission]:
        """Send the history then the current version of a page.

        Returns:
            The view rights of the current version, to be set on the space or
            page preferences.
        """
        properties = page.properties
        locale_params: dict[str, Any] = {}

        author = self._user_reference(
            properties, KEY_PAGE_CREATION_AUTHOR, KEY_PAGE_CREATION_AUTHOR_KEY
        )
        if author:
            locale_params["creation_author"] = author
        creation_date = self._date(properties, KEY_PAGE_CREATION_DATE, page)
        if creation_date is not None:
            locale_params["creation_date"] = creation_date
        if KEY_PAGE_REVISION in properties:
            locale_params["last_revision"] = properties.get_string(KEY_PAGE_REVISION)

        locale = ""
        self.sink.begin_wiki_document_locale(locale, locale_params)
        try:
            if self.settings.history_enabled and KEY_PAGE_REVISIONS in properties:
                for revision_id in sorted(properties.get_long_list(KEY_PAGE_REVISIONS)):
                    if not self.should_send(revision_id):
                        continue
                    revision = self.package.get_page_properties(revision_id)
                    if revision is None:
                        logger.warning(f"Can't find page revision with id [{revision_id}]")
                        continue
                    try:
                        self.read_revision(page, revision)
                    except TraversalInterrupted:
                        raise
                    except Exception as e:
                        logger.error(
                            f"Failed to filter the page revision with id [{revision_id}] of page "
                            f"[{page.label}]: {e}",
                            exc_info=True,
                        )
                    self.check_canceled()

            # The current version was admitted with the page
            return self.read_revision(page, properties)
        finally:
            self.sink.end_wiki_document_locale(locale, locale_params)

    def read_revision(self, page: PageContext, properties: ExportObject) -> list[Permission]:
        revision_id = properties.id
        if revision_id is None:
            raise ValueError(f"Found a revision without id in space [{page.space.space_key}]")

        # The id stands in for a missing version number
        revision = properties.get_string(KEY_PAGE_REVISION) or str(revision_id)
        params = self._revision_metadata(page, properties)
        content = self._prepare_body(page, properties, params)

        inherited_rights: list[Permission] = []
        self.sink.begin_wiki_document_revision(revision, params)
        try:
            if page.blog:
                self._send_blog_post(page, properties, content)
            if self.settings.rights_enabled:
                inherited_rights = self.send_page_rights(page, properties)
            self.send_attachments(page, properties)
            self.send_tags(page, properties)
            self.send_comments(page, properties)
            self.send_confluence_details(page, properties)
        finally:
            self.sink.end_wiki_document_revision(revision, params)
        return inherited_rights

    def _revision_metadata(self, page: PageContext, properties: ExportObject) -> dict[str, Any]:
        params: dict[str, Any] = {}

        author = self._user_reference(
            properties, KEY_PAGE_REVISION_AUTHOR, KEY_PAGE_REVISION_AUTHOR_KEY
        )
        if author:
            params["revision_author"] = author
        date = self._date(properties, KEY_PAGE_REVISION_DATE, page)
        if date is not None:
            params["revision_date"] = date
        if KEY_PAGE_REVISION_COMMENT in properties:
            params["revision_comment"] = properties.get_string(KEY_PAGE_REVISION_COMMENT)

        if page.home_page and not self.settings.space_title_from_home_page:
            title = page.space.properties.get_string(KEY_SPACE_NAME)
        else:
            title = properties.get_string(KEY_PAGE_TITLE)
        if title is not None:
            params["title"] = title
        return params

    def _prepare_body(
        self, page: PageContext, properties: ExportObject, params: dict[str, Any]
    ) -> str | None:
        """Put the body and its syntax in the revision parameters."""
        body = properties.get_string(KEY_PAGE_BODY)
        if body is None or not self.settings.contents_enabled:
            return body

        # Old exports have no body type
        body_type = properties.get_int(KEY_PAGE_BODY_TYPE, 0)
        syntax = self._body_syntax(page, body_type)

        content = body
        if self.settings.convert_to_xwiki and self.converter is not None:
            if self.converter.can_convert(body_type):
                try:
                    result = self.converter.convert(body, body_type)
                    content = result.content
                    syntax = result.syntax
                    page.macros.update(result.macros)
                except ConversionError as e:
                    logger.error(f"Failed to convert content of the page [{page.label}]: {e}")
            else:
                logger.debug(f"No converter for body type [{body_type}] of page [{page.label}]")

        if not page.blog:
            params["content"] = content
        if syntax is not None:
            params["syntax"] = syntax
        return content

    def _body_syntax(self, page: PageContext, body_type: int) -> str | None:
        syntax = SYNTAX_BY_BODY_TYPE.get(body_type)
        if syntax is None and body_type not in SILENT_BODY_TYPES:
            logger.warning(
                f"Unknown body type [{body_type}] for the content of the document [{page.label}]."
            )
        return syntax

    def _send_blog_post(self, page: PageContext, properties: ExportObject, content: str | None) -> None:
        publish_date = self._date(properties, KEY_PAGE_REVISION_DATE, page)
        params = {"class_reference": BLOG_POST_CLASSNAME}
        self.sink.begin_wiki_object(BLOG_POST_CLASSNAME, params)
        try:
            self.sink.on_wiki_object_property("title", properties.get_string(KEY_PAGE_TITLE))
            self.sink.on_wiki_object_property("content", content)
            self.sink.on_wiki_object_property("publishDate", publish_date)
            self.sink.on_wiki_object_property("published", "1")
            self.sink.on_wiki_object_property("hidden", "0")
        finally:
            self.sink.end_wiki_object(BLOG_POST_CLASSNAME, params)

    # Rights

    def send_page_rights(self, page: PageContext, properties: ExportObject) -> list[Permission]:
        """Send the edit rights of a page and return its view rights."""
        inherited_rights: list[Permission] = []
        for set_id in properties.get_long_list(KEY_PAGE_CONTENT_PERMISSION_SETS):
            if not self.should_send(set_id):
                continue
            permission_set = self.package.get_content_permission_set_properties(set_id)
            if permission_set is None:
                logger.error(f"Could not find permission set [{set_id}] for page [{page.label}].")
                continue

            for permission_id in permission_set.get_long_list(KEY_CONTENT_PERMISSIONS):
                if not self.should_send(permission_id):
                    continue
                permission_properties = self.package.get_content_permission_properties(
                    set_id, permission_id
                )
                if permission_properties is None:
                    logger.error(f"Could not find permission [{permission_id}] for page [{page.label}].")
                    continue

                permission = self.permissions.read_permission(permission_properties)
                kind = self.permissions.content_right(permission.type, page.label, permission_id)
                if kind is None or permission.empty:
                    continue
                if kind is RightKind.VIEW:
                    inherited_rights.append(permission)
                else:
                    send_right(
                        self.sink,
                        Right(kind, permission.group, permission.users, global_right=False),
                    )
        return inherited_rights

    def send_space_rights(self, space: SpaceContext, node: SpaceNode) -> None:
        """Send the space permissions and the home page view rights as preferences."""
        preferences_params = None
        try:
            for permission_id in node.permissions:
                if not self.should_send(permission_id):
                    continue
                try:
                    right = self._space_right(space, permission_id)
                except Exception as e:
                    logger.error(
                        f"Failed to read space permission [{permission_id}] for the space "
                        f"[{space.space_key}]: {e}",
                        exc_info=True,
                    )
                    continue
                if right is None:
                    continue
                if preferences_params is None:
                    preferences_params = self._begin_preferences()
                send_right(self.sink, right)

            for permission in space.inherited_rights or []:
                right = space.rights.resolve(permission, RightKind.VIEW)
                if right is None:
                    continue
                if preferences_params is None:
                    preferences_params = self._begin_preferences()
                send_right(self.sink, right)
        finally:
            if preferences_params is not None:
                self.sink.end_wiki_document(WEB_PREFERENCES, preferences_params)

    def _space_right(self, space: SpaceContext, permission_id: int) -> Right | None:
        properties = self.package.get_space_permission_properties(space.space_id, permission_id)
        if properties is None:
            logger.error(
                f"Could not find space permission [{permission_id}] for the space [{space.space_key}]"
            )
            return None

        permission = self.permissions.read_permission(properties)
        kind = self.permissions.space_right(permission.type, space.space_key, permission_id)
        if kind is None:
            return None
        return space.rights.resolve(permission, kind)

    def _begin_preferences(self) -> dict[str, Any]:
        params = {"hidden": True}
        self.sink.begin_wiki_document(WEB_PREFERENCES, params)
        try:
            object_params = {"class_reference": PREFERENCES_CLASSNAME}
            self.sink.begin_wiki_object(PREFERENCES_CLASSNAME, object_params)
            self.sink.end_wiki_object(PREFERENCES_CLASSNAME, object_params)
        except Exception:
            self.sink.end_wiki_document(WEB_PREFERENCES, params)
            raise
        return params

    def _send_preferences(self, rights: list[Right]) -> None:
        params = self._begin_preferences()
        try:
            for right in rights:
                send_right(self.sink, right)
        finally:
            self.sink.end_wiki_document(WEB_PREFERENCES, params)

    # Attachments, tags, comments

    def send_attachments(self, page: PageContext, properties: ExportObject) -> None:
        if not self.settings.attachments_enabled:
            return

        page_id = properties.id
        latest: dict[str, ExportObject] = {}
        for attachment_id in self.package.get_attachments(page_id):
            if not self.should_send(attachment_id):
                continue
            attachment = self.package.get_attachment_properties(page_id, attachment_id)
            if attachment is None:
                logger.warning(f"Can't find attachment [{attachment_id}] of page [{page.label}]")
                continue
            name = self.package.get_attachment_name(attachment)
            if not name:
                logger.warning(f"Attachment [{attachment_id}] of page [{page.label}] has no name")
                continue

            current = latest.get(name)
            if current is None:
                latest[name] = attachment
                continue
            try:
                date = self.package.get_date(attachment, KEY_ATTACHMENT_REVISION_DATE)
                current_date = self.package.get_date(current, KEY_ATTACHMENT_REVISION_DATE)
            except ValueError as e:
                logger.error(
                    f"Failed to parse the date of attachment [{attachment_id}] from the page "
                    f"[{page.label}], skipping it: {e}"
                )
                continue
            if date is not None and (current_date is None or date > current_date):
                latest[name] = attachment

        for attachment in latest.values():
            try:
                self.send_attachment(page, page_id, attachment)
            except TraversalInterrupted:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to read attachment [{attachment.id}] for the page [{page.label}]: {e}",
                    exc_info=True,
                )

    def send_attachment(self, page: PageContext, page_id: int, attachment: ExportObject) -> None:
        if attachment.get_string(KEY_ATTACHMENT_CONTENTSTATUS) == "deleted":
            # Deleted attachments have no file in the package
            return

        name = self.package.get_attachment_name(attachment)
        if KEY_ATTACHMENT_CONTENTPROPERTIES in attachment:
            content_properties = self.package.get_content_properties(
                attachment, KEY_ATTACHMENT_CONTENTPROPERTIES
            )
            size = content_properties.get_long(KEY_ATTACHMENT_CONTENT_FILESIZE, -1)
            media_type = content_properties.get_string(
                KEY_ATTACHMENT_CONTENT_MEDIA_TYPE
            ) or attachment.get_string(KEY_ATTACHMENT_CONTENTTYPE)
        else:
            size = attachment.get_long(KEY_ATTACHMENT_CONTENT_SIZE, -1)
            media_type = attachment.get_string(KEY_ATTACHMENT_CONTENTTYPE)

        version = self.package.get_attachment_version(attachment)
        original_id = self.package.get_attachment_original_version_id(attachment, attachment.id)
        try:
            path = self.package.get_attachment_file(page_id, original_id, version)
        except FileNotFoundError:
            logger.warning(
                f"Failed to find file corresponding to version [{version}] attachment [{name}] "
                f"in page [{page.label}]"
            )
            return

        params: dict[str, Any] = {"revision": str(version)}
        if media_type:
            params["content_type"] = media_type
        if KEY_ATTACHMENT_CREATION_AUTHOR in attachment:
            params["creation_author"] = attachment.get_string(KEY_ATTACHMENT_CREATION_AUTHOR)
        creation_date = self._date(attachment, KEY_ATTACHMENT_CREATION_DATE, page)
        if creation_date is not None:
            params["creation_date"] = creation_date
        if KEY_ATTACHMENT_REVISION_AUTHOR in attachment:
            params["revision_author"] = attachment.get_string(KEY_ATTACHMENT_REVISION_AUTHOR)
        revision_date = self._date(attachment, KEY_ATTACHMENT_REVISION_DATE, page)
        if revision_date is not None:
            params["revision_date"] = revision_date
        if KEY_ATTACHMENT_REVISION_COMMENT in attachment:
            params["revision_comment"] = attachment.get_string(KEY_ATTACHMENT_REVISION_COMMENT)

        if size == -1:
            size = path.stat().st_size
        with open(path, "rb") as stream:
            self.sink.on_wiki_attachment(name, stream, size, params)

    def send_tags(self, page: PageContext, properties: ExportObject) -> None:
        if not self.settings.tags_enabled:
            return

        tags: dict[str, ExportObject] = {}
        for labelling_id in properties.get_long_list(KEY_PAGE_LABELLINGS):
            if not self.should_send(labelling_id):
                continue
            labelling = self.package.get_object_properties(labelling_id)
            if labelling is None:
                logger.error(f"Failed to get tag properties [{labelling_id}] for the page [{page.label}].")
                continue
            name = self.package.get_tag_name(labelling)
            if name is None:
                logger.warning(
                    f"Failed to get the name of tag id [{labelling_id}] for the page [{page.label}]."
                )
                continue
            tags[name] = labelling

        if not tags:
            return

        params = {"class_reference": TAGS_CLASSNAME}
        self.sink.begin_wiki_object(TAGS_CLASSNAME, params)
        try:
            self.sink.on_wiki_object_property("tags", "|".join(tags))
        finally:
            self.sink.end_wiki_object(TAGS_CLASSNAME, params)

    def send_comments(self, page: PageContext, properties: ExportObject) -> None:
        comments: dict[int, ExportObject] = {}
        indices: dict[int, int] = {}
        for comment_id in self.package.get_page_comments(properties):
            if not self.should_send(comment_id):
                continue
            comment = self.package.get_object_properties(comment_id)
            if comment is None:
                logger.error(f"Failed to get the comment [{comment_id}] for the page [{page.label}]")
                continue
            # Replies point to the position of their parent, not to its id
            indices[comment_id] = len(comments)
            comments[comment_id] = comment

        for comment_id, comment in comments.items():
            try:
                self.send_comment(page, comment, indices)
            except TraversalInterrupted:
                raise
            except Exception as e:
                logger.error(
                    f"Failed to send the comment [{comment_id}] of page [{page.label}]: {e}",
                    exc_info=True,
                )

    def send_comment(self, page: PageContext, comment: ExportObject, indices: dict[int, int]) -> None:
        if "creatorName" in comment:
            creator = comment.get_string("creatorName")
        else:
            creator_key = comment.get_string("creator")
            creator = self.package.resolve_user_name(creator_key, creator_key)
        author = self.references.to_user_reference(creator)

        text = self.package.get_comment_text(comment)
        body_type = self.package.get_comment_body_type(comment)
        if (
            text is not None
            and self.settings.convert_to_xwiki
            and self.converter is not None
            and self.converter.can_convert(body_type)
        ):
            try:
                result = self.converter.convert(text, body_type)
                text = result.content
                page.macros.update(result.macros)
            except ConversionError as e:
                logger.error(
                    f"Failed to convert content of the comment with id [{comment.id}] for page "
                    f"[{page.label}]: {e}"
                )

        date = self._date(comment, "creationDate", page)
        reply_to = None
        if "parent" in comment:
            reply_to = indices.get(comment.get_long("parent"))

        params = {"class_reference": COMMENTS_CLASSNAME}
        self.sink.begin_wiki_object(COMMENTS_CLASSNAME, params)
        try:
            self.sink.on_wiki_object_property("author", author)
            self.sink.on_wiki_object_property("comment", text)
            self.sink.on_wiki_object_property("date", date)
            self.sink.on_wiki_object_property("replyto", reply_to)
        finally:
            self.sink.end_wiki_object(COMMENTS_CLASSNAME, params)

    def send_confluence_details(self, page: PageContext, properties: ExportObject) -> None:
        """Keep the Confluence id and URL of the page in an object."""
        if not self.settings.store_confluence_details_enabled:
            return

        space_key = page.space.space_key
        url = ""
        if self.settings.base_urls:
            url = f"{self.settings.base_urls[0].rstrip('/')}/wiki/spaces/{space_key}"
            if not page.home_page:
                url += f"/pages/{properties.id}/{properties.get_string(KEY_PAGE_TITLE, '')}"

        params = {"class_reference": CONFLUENCE_PAGE_CLASSNAME}
        self.sink.begin_wiki_object(CONFLUENCE_PAGE_CLASSNAME, params)
        try:
            self.sink.on_wiki_object_property("id", properties.id)
            self.sink.on_wiki_object_property("url", url)
            self.sink.on_wiki_object_property("space", space_key)
        finally:
            self.sink.end_wiki_object(CONFLUENCE_PAGE_CLASSNAME, params)

    # Helpers

    def _user_reference(self, properties: ExportObject, name_key: str, user_key_key: str) -> str:
        if name_key in properties:
            return self.references.to_user_reference(properties.get_string(name_key))
        if user_key_key in properties:
            user_key = properties.get_string(user_key_key)
            return self.references.to_user_reference(self.package.resolve_user_name(user_key, user_key))
        return ""

    def _date(self, properties: ExportObject, key: str, page: PageContext):
        try:
            return self.package.get_date(properties, key)
        except ValueError as e:
            logger.error(f"Failed to parse [{key}] of object [{properties.id}] in page [{page.label}]: {e}")
            return None

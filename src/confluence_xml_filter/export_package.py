"""Read access to a Confluence XML export package.

The package is an ``entities.xml`` file holding every object of the export
(spaces, pages, blog posts, attachments, comments, permissions, users...) plus an
``attachments/`` tree with the binary content. Objects are indexed once when the
package is read; the traversal only keeps ids and asks for properties when it
needs them.
"""

from __future__ import annotations

import logging
import shutil
import sys
import tempfile
import threading
import zipfile
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from lxml import etree

logger = logging.getLogger(__name__)

# Page properties
KEY_PAGE_TITLE = "title"
KEY_PAGE_SPACE = "space"
KEY_PAGE_PARENT = "parent"
KEY_PAGE_HOMEPAGE = "homepage"
KEY_PAGE_BODY = "bodyContent"
KEY_PAGE_BODY_TYPE = "bodyType"
KEY_PAGE_CONTENT_STATUS = "contentStatus"
KEY_PAGE_REVISION = "version"
KEY_PAGE_REVISIONS = "historicalVersions"
KEY_PAGE_ORIGINAL_VERSION = "originalVersion"
KEY_PAGE_REVISION_DATE = "lastModificationDate"
KEY_PAGE_REVISION_AUTHOR = "lastModifierName"
KEY_PAGE_REVISION_AUTHOR_KEY = "lastModifier"
KEY_PAGE_REVISION_COMMENT = "versionComment"
KEY_PAGE_CREATION_DATE = "creationDate"
KEY_PAGE_CREATION_AUTHOR = "creatorName"
KEY_PAGE_CREATION_AUTHOR_KEY = "creator"
KEY_PAGE_LABELLINGS = "labellings"
KEY_PAGE_COMMENTS = "comments"
KEY_PAGE_POSITION = "position"
KEY_PAGE_CONTENT_PERMISSION_SETS = "contentPermissionSets"

# Space properties
KEY_SPACE_KEY = "key"
KEY_SPACE_NAME = "name"
KEY_SPACE_HOMEPAGE = "homePage"
KEY_SPACE_STATUS = "spaceStatus"
KEY_SPACE_PERMISSIONS = "permissions"

# Permission properties
KEY_PERMISSION_TYPE = "type"
KEY_SPACEPERMISSION_GROUP = "group"
KEY_SPACEPERMISSION_USERNAME = "userName"
KEY_CONTENTPERMISSION_GROUP = "groupName"
KEY_PERMISSION_USERSUBJECT = "userSubject"
KEY_PERMISSION_ALLUSERSSUBJECT = "allUsersSubject"
KEY_CONTENT_PERMISSIONS = "contentPermissions"

# Attachment properties
KEY_ATTACHMENT_TITLE = "title"
KEY_ATTACHMENT_FILENAME = "fileName"
KEY_ATTACHMENT_VERSION = "version"
KEY_ATTACHMENT_CONTENTSTATUS = "contentStatus"
KEY_ATTACHMENT_CONTENTPROPERTIES = "contentProperties"
KEY_ATTACHMENT_CONTENT_FILESIZE = "FILESIZE"
KEY_ATTACHMENT_CONTENT_MEDIA_TYPE = "MEDIA_TYPE"
KEY_ATTACHMENT_CONTENT_SIZE = "fileSize"
KEY_ATTACHMENT_CONTENTTYPE = "contentType"
KEY_ATTACHMENT_CREATION_AUTHOR = "creatorName"
KEY_ATTACHMENT_CREATION_DATE = "creationDate"
KEY_ATTACHMENT_REVISION_AUTHOR = "lastModifierName"
KEY_ATTACHMENT_REVISION_DATE = "lastModificationDate"
KEY_ATTACHMENT_REVISION_COMMENT = "comment"

# User and group properties
KEY_USER_NAME = "name"
KEY_USER_FIRSTNAME = "firstName"
KEY_USER_LASTNAME = "lastName"
KEY_USER_EMAIL = "email"
KEY_USER_ACTIVE = "active"
KEY_USER_CREATION_DATE = "createdDate"
KEY_USER_REVISION_DATE = "updatedDate"
KEY_GROUP_NAME = "name"
KEY_GROUP_CREATION_DATE = "createdDate"
KEY_GROUP_REVISION_DATE = "updatedDate"
KEY_GROUP_MEMBERUSERS = "memberusers"
KEY_GROUP_MEMBERGROUPS = "membergroups"

PAGE_CLASSES = ("Page", "BlogPost")
ARCHIVED_SPACE_STATUS = "ARCHIVED"
DATE_FORMATS = ("%Y-%m-%d %H:%M:%S.%f", "%Y-%m-%d %H:%M:%S")

# Properties pointing to the object owning another one, by priority
_OWNER_KEYS = ("containerContent", "content", "owningContent", "owningSet", "space")


@dataclass
class ExportObject:
    """One record of the export with its raw properties.

    References to other objects are stored as their id text and collections as
    lists of id texts.
    """

    id: int | None
    class_name: str = ""
    properties: dict[str, Any] = field(default_factory=dict)

    def __contains__(self, key: str) -> bool:
        return key in self.properties

    def get_string(self, key: str, default: str | None = None) -> str | None:
        value = self.properties.get(key)
        if value is None:
            return default
        return str(value)

    def get_long(self, key: str, default: int | None = None) -> int | None:
        """Get an integer property.

        Raises:
            ValueError: If the value is not a number.
        """
        value = self.properties.get(key)
        if value is None or value == "":
            return default
        return int(value)

    get_int = get_long

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.properties.get(key)
        if value is None or value == "":
            return default
        return str(value).strip().lower() == "true"

    def get_list(self, key: str) -> list:
        value = self.properties.get(key)
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        return [value]

    def get_long_list(self, key: str) -> list[int]:
        return [int(value) for value in self.get_list(key)]


class ExportPackage:
    """Indexed, read-only view of an export package."""

    def __init__(self) -> None:
        self.root: Path | None = None
        self._owned = False
        self.cleanup_thread: threading.Thread | None = None
        self._reset()

    def _reset(self) -> None:
        self._objects: dict[int, ExportObject] = {}
        self._user_impls: dict[str, ExportObject] = {}
        self._spaces: dict[int, ExportObject] = {}
        self._pages: dict[int, list[int]] = {}
        self._blog_pages: dict[int, list[int]] = {}
        self._children: dict[int, list[int]] = defaultdict(list)
        self._orphans: dict[int, list[int]] = defaultdict(list)
        self._attachments: dict[int, list[int]] = defaultdict(list)
        self._comments: dict[int, list[int]] = defaultdict(list)
        self._internal_users: list[int] = []
        self._groups: list[int] = []

    # Loading

    def read(self, source: str | Path, working_directory: str | Path | None = None) -> None:
        """Read an export ZIP or extracted directory.

        Args:
            source: Path to the export ZIP file or extracted directory.
            working_directory: Where to extract a ZIP export. A temporary
                directory is used when not set.

        Raises:
            FileNotFoundError: If the source doesn't exist.
            ValueError: If the export format is invalid.
        """
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError(f"Export not found: {source}")

        if source.is_dir():
            self._load(source, owned=False)
        elif source.is_file() and source.suffix == ".zip":
            target = (
                Path(working_directory)
                if working_directory
                else Path(tempfile.mkdtemp(prefix="confluence-export-"))
            )
            target.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(source, "r") as zf:
                zf.extractall(target)
            self._load(target, owned=True)
        else:
            raise ValueError(f"Invalid export path: {source} (expected ZIP file or directory)")

    def restore_state(self, working_directory: str | Path) -> bool:
        """Reuse a package previously extracted into the working directory."""
        working_directory = Path(working_directory)
        if not (working_directory / "entities.xml").is_file():
            return False
        self._load(working_directory, owned=True)
        return True

    def close(self, asynchronous: bool = False) -> None:
        """Forget the indexes and delete the extracted files this package owns."""
        root, owned = self.root, self._owned
        self._reset()
        self.root = None
        self._owned = False
        if root is None or not owned:
            return

        if asynchronous:
            # Not a daemon: the interpreter waits for the removal at exit.
            self.cleanup_thread = threading.Thread(
                target=shutil.rmtree,
                args=(root,),
                kwargs={"ignore_errors": True},
                name="confluence-package-cleanup",
                daemon=False,
            )
            self.cleanup_thread.start()
        else:
            shutil.rmtree(root)

    def _load(self, directory: Path, owned: bool) -> None:
        entities_path = directory / "entities.xml"
        if not entities_path.exists():
            raise ValueError(f"entities.xml not found in export: {directory}")

        self._reset()
        self.root = directory
        self._owned = owned

        by_class: dict[str, list[ExportObject]] = defaultdict(list)
        for _, elem in etree.iterparse(str(entities_path), events=("end",), tag="object"):
            obj, key = self._parse_object(elem)
            elem.clear()
            if obj is None:
                continue
            by_class[obj.class_name].append(obj)
            if obj.id is not None:
                self._objects[obj.id] = obj
            elif obj.class_name == "ConfluenceUserImpl" and key:
                self._user_impls[key] = obj

        self._index(by_class)
        logger.info(
            f"Indexed {len(self._objects)} objects from {entities_path} "
            f"({len(self._spaces)} spaces)"
        )

    def _parse_object(self, elem: etree._Element) -> tuple[ExportObject | None, str | None]:
        """Parse one ``object`` element into an ExportObject."""
        class_name = elem.get("class", "")
        id_elem = elem.find("id")
        if id_elem is None or not id_elem.text:
            return None, None

        raw_id = id_elem.text.strip()
        properties: dict[str, Any] = {}
        for child in elem:
            name = child.get("name")
            if not name:
                continue
            if child.tag == "property":
                ref = child.find("id")
                if ref is not None:
                    properties[name] = (ref.text or "").strip()
                else:
                    properties[name] = (child.text or "").strip()
            elif child.tag == "collection":
                properties[name] = [
                    (element.findtext("id") or "").strip() for element in child.findall("element")
                ]

        object_id = int(raw_id) if raw_id.isdigit() else None
        if object_id is not None:
            properties["id"] = raw_id
        else:
            properties["key"] = raw_id
        return ExportObject(id=object_id, class_name=class_name, properties=properties), raw_id

    def _index(self, by_class: dict[str, list[ExportObject]]) -> None:
        for space in by_class["Space"]:
            self._spaces[space.id] = space

        bodies: dict[int, ExportObject] = {}
        for body in by_class["BodyContent"]:
            content_id = body.get_long("content")
            if content_id is not None and content_id not in bodies:
                bodies[content_id] = body

        revisions: dict[int, list[int]] = defaultdict(list)
        current: dict[int, ExportObject] = {}
        for class_name, target in (("Page", self._pages), ("BlogPost", self._blog_pages)):
            for page in by_class[class_name]:
                self._attach_body(page, bodies)
                original = page.get_long(KEY_PAGE_ORIGINAL_VERSION)
                if original is not None:
                    revisions[original].append(page.id)
                    continue
                space_id = page.get_long(KEY_PAGE_SPACE)
                if space_id is None:
                    continue
                target.setdefault(space_id, []).append(page.id)
                current[page.id] = page

        for page_id, page in current.items():
            if KEY_PAGE_REVISIONS not in page and page_id in revisions:
                page.properties[KEY_PAGE_REVISIONS] = [str(i) for i in revisions[page_id]]

        home_pages = set()
        for space in self._spaces.values():
            home_id = space.get_long(KEY_SPACE_HOMEPAGE)
            if home_id in current:
                current[home_id].properties[KEY_PAGE_HOMEPAGE] = "true"
                home_pages.add(home_id)

        for space_id, page_ids in self._pages.items():
            for page_id in self._sorted_by_position(page_ids, current):
                if page_id in home_pages:
                    continue
                parent_id = current[page_id].get_long(KEY_PAGE_PARENT)
                if parent_id is not None and parent_id in current:
                    self._children[parent_id].append(page_id)
                else:
                    self._orphans[space_id].append(page_id)

        for attachment in by_class["Attachment"]:
            container = self._owner_id(attachment)
            if container is not None:
                self._attachments[container].append(attachment.id)

        for comment in by_class["Comment"]:
            self._attach_body(comment, bodies)
            container = self._owner_id(comment)
            if container is not None:
                self._comments[container].append(comment.id)

        self._index_permissions(by_class)
        self._index_memberships(by_class)
        self._internal_users = [user.id for user in by_class["InternalUser"]]
        self._groups = [group.id for group in by_class["InternalGroup"]]

    def _index_permissions(self, by_class: dict[str, list[ExportObject]]) -> None:
        sets_by_content: dict[int, list[str]] = defaultdict(list)
        for permission_set in by_class["ContentPermissionSet"]:
            owner = permission_set.get_long("owningContent")
            if owner is not None:
                sets_by_content[owner].append(str(permission_set.id))

        permissions_by_set: dict[int, list[str]] = defaultdict(list)
        for permission in by_class["ContentPermission"]:
            owner = permission.get_long("owningSet")
            if owner is not None:
                permissions_by_set[owner].append(str(permission.id))

        for content_id, set_ids in sets_by_content.items():
            content = self._objects.get(content_id)
            if content is not None and KEY_PAGE_CONTENT_PERMISSION_SETS not in content:
                content.properties[KEY_PAGE_CONTENT_PERMISSION_SETS] = set_ids

        for set_id, permission_ids in permissions_by_set.items():
            permission_set = self._objects.get(set_id)
            if permission_set is not None and KEY_CONTENT_PERMISSIONS not in permission_set:
                permission_set.properties[KEY_CONTENT_PERMISSIONS] = permission_ids

        permissions_by_space: dict[int, list[str]] = defaultdict(list)
        for permission in by_class["SpacePermission"]:
            space_id = permission.get_long("space")
            if space_id is not None:
                permissions_by_space[space_id].append(str(permission.id))
        for space_id, permission_ids in permissions_by_space.items():
            space = self._spaces.get(space_id)
            if space is not None and KEY_SPACE_PERMISSIONS not in space:
                space.properties[KEY_SPACE_PERMISSIONS] = permission_ids

    def _index_memberships(self, by_class: dict[str, list[ExportObject]]) -> None:
        for membership in by_class["HibernateMembership"]:
            group = self._objects.get(membership.get_long("parentGroup") or -1)
            if group is None:
                continue
            for member_key, group_key in (
                ("userMember", KEY_GROUP_MEMBERUSERS),
                ("groupMember", KEY_GROUP_MEMBERGROUPS),
            ):
                member = membership.get_string(member_key)
                if member:
                    group.properties.setdefault(group_key, []).append(member)

    def _attach_body(self, content: ExportObject, bodies: dict[int, ExportObject]) -> None:
        """Copy the body of a page or comment onto its own properties."""
        if KEY_PAGE_BODY in content:
            return
        body = None
        for body_id in content.get_list("bodyContents"):
            body = self._objects.get(int(body_id)) if body_id.isdigit() else None
            if body is not None:
                break
        if body is None:
            body = bodies.get(content.id)
        if body is None:
            return
        content.properties[KEY_PAGE_BODY] = body.get_string("body", "")
        if "bodyType" in body:
            content.properties[KEY_PAGE_BODY_TYPE] = body.get_string("bodyType")

    def _sorted_by_position(self, page_ids: list[int], pages: dict[int, ExportObject]) -> list[int]:
        def position(page_id: int) -> int:
            try:
                value = pages[page_id].get_long(KEY_PAGE_POSITION)
            except ValueError:
                value = None
            return sys.maxsize if value is None else value

        return sorted(page_ids, key=position)

    def _owner_id(self, obj: ExportObject) -> int | None:
        """Id of the object owning this one (container page, parent page, space)."""
        if obj.class_name in PAGE_CLASSES:
            for key in (KEY_PAGE_ORIGINAL_VERSION, KEY_PAGE_PARENT):
                owner = obj.get_long(key)
                if owner is not None and owner in self._objects:
                    return owner
            return obj.get_long(KEY_PAGE_SPACE)

        if obj.class_name == "Space":
            return None

        for key in _OWNER_KEYS:
            owner = obj.get_long(key)
            if owner is not None and (owner in self._objects or owner in self._spaces):
                return owner
        return None

    # Spaces and pages

    def get_pages(self) -> dict[int, list[int]]:
        """Regular page ids by space id. The returned mapping is the live index."""
        return self._pages

    def get_blog_pages(self) -> dict[int, list[int]]:
        """Blog post ids by space id. The returned mapping is the live index."""
        return self._blog_pages

    def get_space_properties(self, space_id: int) -> ExportObject | None:
        return self._spaces.get(space_id)

    def get_space_key(self, space_id: int) -> str | None:
        space = self._spaces.get(space_id)
        return space.get_string(KEY_SPACE_KEY) if space is not None else None

    def is_space_archived(self, space_id: int) -> bool:
        space = self._spaces.get(space_id)
        return space is not None and space.get_string(KEY_SPACE_STATUS) == ARCHIVED_SPACE_STATUS

    def get_home_page(self, space_id: int) -> int | None:
        space = self._spaces.get(space_id)
        if space is None:
            return None
        home_id = space.get_long(KEY_SPACE_HOMEPAGE)
        return home_id if home_id in self._objects else None

    def get_orphans(self, space_id: int) -> list[int]:
        return list(self._orphans.get(space_id, []))

    def get_page_children(self, page_id: int) -> list[int]:
        return list(self._children.get(page_id, []))

    def get_page_properties(self, page_id: int) -> ExportObject | None:
        page = self._objects.get(page_id)
        if page is None or page.class_name not in PAGE_CLASSES:
            return None
        return page

    def get_object_properties(self, object_id: int) -> ExportObject | None:
        return self._objects.get(object_id)

    def get_ancestors(self, object_id: int) -> list[int]:
        """Ids of the objects above this one, outermost (space) first."""
        ancestors: list[int] = []
        seen = {object_id}
        obj = self._objects.get(object_id)
        while obj is not None:
            owner = self._owner_id(obj)
            if owner is None or owner in seen:
                break
            ancestors.append(owner)
            seen.add(owner)
            obj = self._objects.get(owner) or self._spaces.get(owner)
        ancestors.reverse()
        return ancestors

    def get_date(self, obj: ExportObject, key: str) -> datetime | None:
        """Parse a date property.

        Raises:
            ValueError: If the date is malformed.
        """
        value = obj.get_string(key)
        if not value:
            return None
        for date_format in DATE_FORMATS:
            try:
                return datetime.strptime(value, date_format)
            except ValueError:
                continue
        raise ValueError(f"Invalid date [{value}] for property [{key}]")

    # Attachments, comments and tags

    def get_attachments(self, page_id: int) -> list[int]:
        return list(self._attachments.get(page_id, []))

    def get_attachment_properties(self, page_id: int, attachment_id: int) -> ExportObject | None:
        return self._objects.get(attachment_id)

    def get_attachment_name(self, attachment: ExportObject) -> str | None:
        return attachment.get_string(KEY_ATTACHMENT_TITLE) or attachment.get_string(
            KEY_ATTACHMENT_FILENAME
        )

    def get_attachment_version(self, attachment: ExportObject) -> int:
        version = attachment.get_long(KEY_ATTACHMENT_VERSION)
        if version is None:
            version = attachment.get_long("attachmentVersion", 1)
        return version

    def get_attachment_original_version_id(self, attachment: ExportObject, default: int) -> int:
        return attachment.get_long(KEY_PAGE_ORIGINAL_VERSION, default)

    def get_content_properties(self, obj: ExportObject, key: str) -> ExportObject:
        """Collect the ContentProperty objects listed under a key as name -> value."""
        values: dict[str, Any] = {}
        for property_id in obj.get_long_list(key):
            content_property = self._objects.get(property_id)
            if content_property is None:
                continue
            name = content_property.get_string("name")
            if not name:
                continue
            value = content_property.get_string("longValue")
            if value is None:
                value = content_property.get_string("stringValue")
            values[name] = value
        return ExportObject(id=obj.id, class_name="ContentProperties", properties=values)

    def get_attachment_file(self, page_id: int, revision_id: int, version: int) -> Path:
        """Locate the binary content of an attachment version.

        Raises:
            FileNotFoundError: If the package has no file for that version.
        """
        if self.root is None:
            raise FileNotFoundError("The package is not read")
        path = self.root / "attachments" / str(page_id) / str(revision_id) / str(version)
        if not path.is_file():
            raise FileNotFoundError(f"Attachment file not found: {path}")
        return path

    def get_page_comments(self, page: ExportObject) -> list[int]:
        if KEY_PAGE_COMMENTS in page:
            return page.get_long_list(KEY_PAGE_COMMENTS)
        return list(self._comments.get(page.id, []))

    def get_comment_text(self, comment: ExportObject) -> str | None:
        return comment.get_string(KEY_PAGE_BODY)

    def get_comment_body_type(self, comment: ExportObject) -> int:
        return comment.get_int(KEY_PAGE_BODY_TYPE, 0)

    def get_tag_name(self, labelling: ExportObject) -> str | None:
        label_id = labelling.get_long("label")
        label = self._objects.get(label_id) if label_id is not None else None
        if label is None:
            return None
        return label.get_string("name") or None

    # Permissions

    def get_space_permission_properties(self, space_id: int, permission_id: int) -> ExportObject | None:
        return self._objects.get(permission_id)

    def get_content_permission_set_properties(self, set_id: int) -> ExportObject | None:
        return self._objects.get(set_id)

    def get_content_permission_properties(self, set_id: int, permission_id: int) -> ExportObject | None:
        return self._objects.get(permission_id)

    # Users and groups

    def get_user_impl_properties(self, user_key: str) -> ExportObject | None:
        return self._user_impls.get(user_key)

    def resolve_user_name(self, user_key: str | None, default: str | None) -> str | None:
        """Name of the user behind a user key, or the default when unknown."""
        if not user_key:
            return default
        user = self._user_impls.get(user_key)
        if user is None:
            return default
        return user.get_string(KEY_USER_NAME, default)

    def get_internal_users(self) -> list[int]:
        return list(self._internal_users)

    def get_internal_user_properties(self, user_id: int) -> ExportObject | None:
        return self._objects.get(user_id)

    def get_groups(self) -> list[int]:
        return list(self._groups)

    def get_group_properties(self, group_id: int) -> ExportObject | None:
        return self._objects.get(group_id)

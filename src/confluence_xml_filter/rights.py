"""Map Confluence permissions to target wiki rights."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from confluence_xml_filter.export_package import (
    KEY_CONTENTPERMISSION_GROUP,
    KEY_PERMISSION_ALLUSERSSUBJECT,
    KEY_PERMISSION_TYPE,
    KEY_PERMISSION_USERSUBJECT,
    KEY_SPACEPERMISSION_GROUP,
    KEY_SPACEPERMISSION_USERNAME,
    KEY_USER_NAME,
    ExportObject,
    ExportPackage,
)
from confluence_xml_filter.references import GUEST_USER, ReferenceConverter
from confluence_xml_filter.sink import FilterSink

logger = logging.getLogger(__name__)

RIGHTS_CLASSNAME = "XWiki.XWikiRights"
GLOBAL_RIGHTS_CLASSNAME = "XWiki.XWikiGlobalRights"


class RightKind(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    ADMIN = "admin"
    COMMENT = "comment"


# Space permission types. None means the permission has no equivalent.
SPACE_PERMISSION_RIGHTS: dict[str, RightKind | None] = {
    "ADMINISTRATECONFLUENCE": RightKind.ADMIN,
    "SYSTEMADMINISTRATOR": RightKind.ADMIN,
    "SETPAGEPERMISSIONS": RightKind.ADMIN,
    "SETSPACEPERMISSIONS": RightKind.ADMIN,
    "VIEWSPACE": RightKind.VIEW,
    "EDITSPACE": RightKind.EDIT,
    "EDITBLOG": RightKind.EDIT,
    "REMOVEPAGE": RightKind.DELETE,
    "REMOVEBLOG": RightKind.DELETE,
    "COMMENT": RightKind.COMMENT,
    "EXPORTSPACE": None,
    "EXPORTPAGE": None,
    "REMOVEMAIL": None,
    "REMOVEOWNCONTENT": None,
    "CREATEATTACHMENT": None,
    "REMOVEATTACHMENT": None,
    "REMOVECOMMENT": None,
    "PROFILEATTACHMENTS": None,
    "UPDATEUSERSTATUS": None,
    "ARCHIVEPAGE": None,
    "USECONFLUENCE": None,
    "CREATESPACE": None,
    "PERSONALSPACE": None,
}

CONTENT_PERMISSION_RIGHTS: dict[str, RightKind | None] = {
    "VIEW": RightKind.VIEW,
    "EDIT": RightKind.EDIT,
    "SHARE": None,
}


@dataclass(frozen=True)
class Permission:
    """A permission record as found in the export, with resolved references."""

    type: str
    group: str
    users: str

    @property
    def empty(self) -> bool:
        return not self.group and not self.users


@dataclass(frozen=True)
class Right:
    kind: RightKind
    group: str
    users: str
    global_right: bool = True

    @property
    def class_name(self) -> str:
        return GLOBAL_RIGHTS_CLASSNAME if self.global_right else RIGHTS_CLASSNAME


class RightsPass:
    """Deduplicates the rights sent within one space's preferences."""

    def __init__(self) -> None:
        self._added: set[str] = set()

    def resolve(self, permission: Permission, kind: RightKind, global_right: bool = True) -> Right | None:
        """Build the right, dropping the group or users already granted the same right.

        Returns None when nothing is left to grant.
        """
        group = self._claim("g", permission.group, kind)
        users = self._claim("u", permission.users, kind)
        if not group and not users:
            return None
        return Right(kind=kind, group=group, users=users, global_right=global_right)

    def _claim(self, scope: str, value: str, kind: RightKind) -> str:
        if not value:
            return ""
        key = f"{scope}:{value}:{kind.value}"
        if key in self._added:
            return ""
        self._added.add(key)
        return value


class PermissionMapper:
    """Reads permission records and maps their types."""

    def __init__(self, package: ExportPackage, references: ReferenceConverter):
        self.package = package
        self.references = references

    def read_permission(self, properties: ExportObject) -> Permission:
        permission_type = properties.get_string(KEY_PERMISSION_TYPE, "")
        group_name = properties.get_string(KEY_SPACEPERMISSION_GROUP) or properties.get_string(
            KEY_CONTENTPERMISSION_GROUP
        )
        group = self.references.to_group_reference(group_name) if group_name else ""

        users = []
        if properties.get_string(KEY_PERMISSION_ALLUSERSSUBJECT) == "anonymous-users":
            users.append(GUEST_USER)

        user_name = properties.get_string(KEY_SPACEPERMISSION_USERNAME)
        if not user_name:
            user_key = properties.get_string(KEY_PERMISSION_USERSUBJECT)
            if user_key:
                user = self.package.get_user_impl_properties(user_key)
                if user is not None:
                    user_name = user.get_string(KEY_USER_NAME, user_key)
        if user_name:
            users.append(self.references.to_user_reference(user_name))

        return Permission(type=permission_type, group=group, users=",".join(users))

    def space_right(self, permission_type: str, space_key: str, permission_id: int) -> RightKind | None:
        if permission_type not in SPACE_PERMISSION_RIGHTS:
            logger.warning(
                f"Failed to understand space permission type [{permission_type}] for the space "
                f"[{space_key}], permission id [{permission_id}]."
            )
            return None
        return SPACE_PERMISSION_RIGHTS[permission_type]

    def content_right(self, permission_type: str, page: str, permission_id: int | None) -> RightKind | None:
        key = (permission_type or "").upper()
        if key not in CONTENT_PERMISSION_RIGHTS:
            logger.warning(
                f"Failed to understand content permission type [{permission_type}] for page "
                f"[{page}], permission id [{permission_id}]."
            )
            return None
        return CONTENT_PERMISSION_RIGHTS[key]

    @staticmethod
    def new_pass() -> RightsPass:
        return RightsPass()


def send_right(sink: FilterSink, right: Right) -> None:
    """Emit a right as a rights object of the current document."""
    params = {"class_reference": right.class_name}
    sink.begin_wiki_object(right.class_name, params)
    try:
        sink.on_wiki_object_property("allow", "1")
        sink.on_wiki_object_property("groups", right.group)
        sink.on_wiki_object_property("levels", right.kind.value)
        sink.on_wiki_object_property("users", right.users)
    finally:
        sink.end_wiki_object(right.class_name, params)

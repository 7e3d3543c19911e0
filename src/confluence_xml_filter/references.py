"""Turn Confluence names into target wiki names and references."""

from __future__ import annotations

import re

from confluence_xml_filter.config import FilterSettings

USERS_SPACE = "XWiki"
GUEST_USER = "XWiki.XWikiGuest"
ALL_GROUP = "XWikiAllGroup"
ADMIN_GROUP = "XWikiAdminGroup"

DEFAULT_GROUP_MAPPING = {
    "confluence-administrators": ADMIN_GROUP,
    "administrators": ADMIN_GROUP,
    "site-admins": ADMIN_GROUP,
    "system-administrators": ADMIN_GROUP,
    "confluence-users": ALL_GROUP,
    "users": ALL_GROUP,
}

# Characters with a meaning in entity references
_FORBIDDEN = re.compile(r"[.:/\\]")


class ReferenceConverter:
    """Maps Confluence space, page, user and group names."""

    def __init__(self, settings: FilterSettings):
        self.settings = settings
        self.group_mapping = {**DEFAULT_GROUP_MAPPING, **settings.group_mapping}

    def to_entity_name(self, name: str | None) -> str:
        """Make a name usable as a space or document name."""
        if not name:
            return ""
        name = _FORBIDDEN.sub("", name)
        return re.sub(r"\s+", " ", name).strip()

    def to_user_reference_name(self, user_name: str | None) -> str:
        if not user_name:
            return ""
        mapped = self.settings.user_mapping.get(user_name)
        if mapped:
            return mapped
        return self.to_entity_name(user_name)

    def to_user_reference(self, user_name: str | None) -> str:
        name = self.to_user_reference_name(user_name)
        if not name:
            return ""
        return self._qualify(name)

    def to_group_reference_name(self, group_name: str | None) -> str:
        if not group_name:
            return ""
        mapped = self.group_mapping.get(group_name)
        if mapped:
            return mapped
        return self.to_entity_name(group_name)

    def to_group_reference(self, group_name: str | None) -> str:
        name = self.to_group_reference_name(group_name)
        if not name:
            return ""
        return self._qualify(name)

    def _qualify(self, name: str) -> str:
        reference = f"{USERS_SPACE}.{name}"
        if self.settings.users_wiki:
            return f"{self.settings.users_wiki}:{reference}"
        return reference

"""Tests for permission mapping and rights deduplication."""

import pytest

from confluence_xml_filter.config import FilterSettings
from confluence_xml_filter.export_package import ExportObject, ExportPackage
from confluence_xml_filter.references import ReferenceConverter
from confluence_xml_filter.rights import (
    GLOBAL_RIGHTS_CLASSNAME,
    RIGHTS_CLASSNAME,
    Permission,
    PermissionMapper,
    Right,
    RightKind,
    RightsPass,
    send_right,
)
from confluence_xml_filter.sink import RecordingSink


@pytest.fixture
def mapper() -> PermissionMapper:
    """Mapper over an empty package."""
    return PermissionMapper(ExportPackage(), ReferenceConverter(FilterSettings()))


class TestRightsPass:
    """Tests for RightsPass class."""

    def test_first_grant_is_kept(self) -> None:
        """A new group and user pair is granted as is."""
        rights = RightsPass()

        right = rights.resolve(Permission("VIEWSPACE", "XWiki.devs", "XWiki.alice"), RightKind.VIEW)

        assert right == Right(RightKind.VIEW, "XWiki.devs", "XWiki.alice")

    def test_duplicate_is_dropped(self) -> None:
        """The same group and right is granted once per pass."""
        rights = RightsPass()
        permission = Permission("EDITSPACE", "XWiki.devs", "")

        assert rights.resolve(permission, RightKind.EDIT) is not None
        assert rights.resolve(Permission("EDITBLOG", "XWiki.devs", ""), RightKind.EDIT) is None

    def test_partial_duplicate(self) -> None:
        """Only the part already granted is dropped."""
        rights = RightsPass()
        rights.resolve(Permission("VIEWSPACE", "XWiki.devs", ""), RightKind.VIEW)

        right = rights.resolve(Permission("VIEWSPACE", "XWiki.devs", "XWiki.bob"), RightKind.VIEW)

        assert right.group == ""
        assert right.users == "XWiki.bob"

    def test_other_kind_is_kept(self) -> None:
        """Deduplication is per right kind."""
        rights = RightsPass()
        rights.resolve(Permission("VIEWSPACE", "XWiki.devs", ""), RightKind.VIEW)

        assert rights.resolve(Permission("EDITSPACE", "XWiki.devs", ""), RightKind.EDIT) is not None

    def test_passes_are_independent(self) -> None:
        """Each space starts with a new pass."""
        permission = Permission("VIEWSPACE", "XWiki.devs", "")
        PermissionMapper.new_pass().resolve(permission, RightKind.VIEW)

        assert PermissionMapper.new_pass().resolve(permission, RightKind.VIEW) is not None


class TestPermissionMapper:
    """Tests for PermissionMapper class."""

    def test_read_space_permission(self, mapper: PermissionMapper) -> None:
        """Group and user names become references."""
        properties = ExportObject(
            1, "SpacePermission", {"type": "VIEWSPACE", "group": "devs", "userName": "alice"}
        )

        permission = mapper.read_permission(properties)

        assert permission == Permission("VIEWSPACE", "XWiki.devs", "XWiki.alice")

    def test_read_content_permission(self, mapper: PermissionMapper) -> None:
        """Content permissions name their group with groupName."""
        properties = ExportObject(1, "ContentPermission", {"type": "Edit", "groupName": "devs"})

        assert mapper.read_permission(properties).group == "XWiki.devs"

    def test_read_mapped_group(self, mapper: PermissionMapper) -> None:
        """Confluence built-in groups map to wiki groups."""
        properties = ExportObject(1, "SpacePermission", {"type": "VIEWSPACE", "group": "confluence-users"})

        assert mapper.read_permission(properties).group == "XWiki.XWikiAllGroup"

    def test_anonymous_users(self, mapper: PermissionMapper) -> None:
        """Anonymous access is granted to the guest user."""
        properties = ExportObject(
            1, "SpacePermission", {"type": "VIEWSPACE", "allUsersSubject": "anonymous-users"}
        )

        permission = mapper.read_permission(properties)

        assert permission.users == "XWiki.XWikiGuest"
        assert not permission.empty

    def test_user_subject_key(self) -> None:
        """User keys are resolved through the user records."""
        package = ExportPackage()
        package._user_impls["key-1"] = ExportObject(None, "ConfluenceUserImpl", {"name": "alice"})
        mapper = PermissionMapper(package, ReferenceConverter(FilterSettings()))

        permission = mapper.read_permission(
            ExportObject(1, "SpacePermission", {"type": "VIEWSPACE", "userSubject": "key-1"})
        )

        assert permission.users == "XWiki.alice"

    def test_empty_permission(self, mapper: PermissionMapper) -> None:
        """A permission without group or user is empty."""
        permission = mapper.read_permission(ExportObject(1, "SpacePermission", {"type": "VIEWSPACE"}))

        assert permission.empty

    @pytest.mark.parametrize(
        "permission_type,kind",
        [
            ("VIEWSPACE", RightKind.VIEW),
            ("EDITBLOG", RightKind.EDIT),
            ("REMOVEPAGE", RightKind.DELETE),
            ("SETSPACEPERMISSIONS", RightKind.ADMIN),
            ("COMMENT", RightKind.COMMENT),
            ("EXPORTSPACE", None),
            ("SOMETHINGNEW", None),
        ],
    )
    def test_space_right(
        self, mapper: PermissionMapper, permission_type: str, kind: RightKind | None
    ) -> None:
        """Space permission types map to right kinds."""
        assert mapper.space_right(permission_type, "S", 1) is kind

    def test_content_right_ignores_case(self, mapper: PermissionMapper) -> None:
        """Content permission types are matched case-insensitively."""
        assert mapper.content_right("View", "S/Page", 1) is RightKind.VIEW
        assert mapper.content_right("edit", "S/Page", 1) is RightKind.EDIT
        assert mapper.content_right("Share", "S/Page", 1) is None
        assert mapper.content_right(None, "S/Page", 1) is None


class TestSendRight:
    """Tests for send_right function."""

    def test_global_right(self) -> None:
        """Space rights use the global rights class."""
        sink = RecordingSink()

        send_right(sink, Right(RightKind.EDIT, "XWiki.devs", "XWiki.alice"))

        assert sink.objects_of(GLOBAL_RIGHTS_CLASSNAME) == [
            {"allow": "1", "groups": "XWiki.devs", "levels": "edit", "users": "XWiki.alice"}
        ]

    def test_page_right(self) -> None:
        """Page rights use the page rights class."""
        sink = RecordingSink()

        send_right(sink, Right(RightKind.EDIT, "", "XWiki.alice", global_right=False))

        assert [obj.class_name for obj in sink.objects] == [RIGHTS_CLASSNAME]


class TestReferenceConverter:
    """Tests for ReferenceConverter class."""

    def test_entity_name(self) -> None:
        """Reference separators are removed and spaces collapsed."""
        references = ReferenceConverter(FilterSettings())

        assert references.to_entity_name("a.b/c:d\\e   f ") == "abcde f"
        assert references.to_entity_name(None) == ""

    def test_user_mapping(self) -> None:
        """Mapped user names are used as is."""
        references = ReferenceConverter(FilterSettings(user_mapping={"jdoe": "JohnDoe"}))

        assert references.to_user_reference("jdoe") == "XWiki.JohnDoe"
        assert references.to_user_reference("") == ""

    def test_group_mapping_overrides_defaults(self) -> None:
        """Configured group mappings win over the built-in ones."""
        references = ReferenceConverter(FilterSettings(group_mapping={"users": "Staff"}))

        assert references.to_group_reference_name("users") == "Staff"
        assert references.to_group_reference_name("confluence-administrators") == "XWikiAdminGroup"

    def test_users_wiki(self) -> None:
        """References point to the users wiki when one is set."""
        references = ReferenceConverter(FilterSettings(users_wiki="xwiki"))

        assert references.to_user_reference("alice") == "xwiki:XWiki.alice"
        assert references.to_group_reference("devs") == "xwiki:XWiki.devs"

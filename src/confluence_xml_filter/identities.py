"""Send the users and groups of an export."""

from __future__ import annotations

import logging
from typing import Any

from confluence_xml_filter.config import FilterSettings
from confluence_xml_filter.errors import TraversalInterrupted
from confluence_xml_filter.export_package import (
    KEY_GROUP_CREATION_DATE,
    KEY_GROUP_MEMBERGROUPS,
    KEY_GROUP_MEMBERUSERS,
    KEY_GROUP_NAME,
    KEY_GROUP_REVISION_DATE,
    KEY_USER_ACTIVE,
    KEY_USER_CREATION_DATE,
    KEY_USER_EMAIL,
    KEY_USER_FIRSTNAME,
    KEY_USER_LASTNAME,
    KEY_USER_NAME,
    KEY_USER_REVISION_DATE,
    ExportObject,
    ExportPackage,
)
from confluence_xml_filter.idrange import ObjectIdFilter
from confluence_xml_filter.progress import CancellationToken, ProgressTracker
from confluence_xml_filter.references import ALL_GROUP, ReferenceConverter
from confluence_xml_filter.sink import EMPTY, FilterSink

logger = logging.getLogger(__name__)


class IdentitySender:
    """Sends users, then groups with their members."""

    def __init__(
        self,
        package: ExportPackage,
        settings: FilterSettings,
        sink: FilterSink,
        references: ReferenceConverter,
        id_filter: ObjectIdFilter,
        progress: ProgressTracker,
        cancellation: CancellationToken | None = None,
    ):
        self.package = package
        self.settings = settings
        self.sink = sink
        self.references = references
        self.id_filter = id_filter
        self.progress = progress
        self.cancellation = cancellation
        self.users_sent = 0
        self.groups_sent = 0

    def check_canceled(self) -> None:
        if self.cancellation is not None:
            self.cancellation.check()

    def send(self, users: list[int], groups: list[int]) -> None:
        """Send users and groups, inside the users wiki when one is configured."""
        if not users and not groups:
            return

        users_wiki = self.settings.users_wiki
        if users_wiki:
            self.sink.begin_wiki(users_wiki, EMPTY)
        try:
            if users:
                with self.progress.level(len(users), weight=len(users)):
                    self.send_users(users)
            if groups:
                self.send_groups(groups)
        finally:
            if users_wiki:
                self.sink.end_wiki(users_wiki, EMPTY)

    def send_users(self, user_ids: list[int]) -> None:
        for user_id in user_ids:
            self.check_canceled()
            self.progress.start_step()
            try:
                if self.id_filter.should_admit(user_id):
                    self.send_user(user_id)
            finally:
                self.progress.end_step()

    def send_user(self, user_id: int) -> None:
        properties = self.package.get_internal_user_properties(user_id)
        if properties is None:
            logger.error(f"Can't find user with id [{user_id}]")
            return

        user_name = self.references.to_user_reference_name(
            properties.get_string(KEY_USER_NAME, str(user_id))
        )
        if self.settings.verbose:
            logger.info(f"Sending user [{user_name}] (id = [{user_id}])")

        params: dict[str, Any] = {
            "first_name": properties.get_string(KEY_USER_FIRSTNAME, "").strip(),
            "last_name": properties.get_string(KEY_USER_LASTNAME, "").strip(),
            "email": properties.get_string(KEY_USER_EMAIL, "").strip(),
            "active": properties.get_bool(KEY_USER_ACTIVE, True),
        }
        self._put_dates(params, properties, KEY_USER_REVISION_DATE, KEY_USER_CREATION_DATE)

        self.sink.begin_user(user_name, params)
        self.sink.end_user(user_name, params)
        self.users_sent += 1

    def group_by_target_name(self, group_ids: list[int]) -> dict[str, list[ExportObject]]:
        """Several source groups can map to the same target group."""
        groups: dict[str, list[ExportObject]] = {}
        for i, group_id in enumerate(group_ids, 1):
            if self.settings.verbose:
                logger.info(f"Reading group [{group_id}] ({i}/{len(group_ids)})")
            properties = self.package.get_group_properties(group_id)
            if properties is None:
                logger.error(f"Can't find group with id [{group_id}]")
                continue
            name = self.references.to_group_reference_name(
                properties.get_string(KEY_GROUP_NAME, str(group_id))
            )
            if name:
                groups.setdefault(name, []).append(properties)
        return groups

    def send_groups(self, group_ids: list[int]) -> None:
        groups = self.group_by_target_name(group_ids)
        with self.progress.level(len(groups), weight=len(group_ids)):
            for name, sources in groups.items():
                self.check_canceled()
                self.progress.start_step()
                try:
                    if name != ALL_GROUP:
                        self.send_group(name, sources)
                except TraversalInterrupted:
                    raise
                except Exception as e:
                    logger.error(f"Failed to send the group [{name}]: {e}", exc_info=True)
                finally:
                    self.progress.end_step()

    def send_group(self, name: str, sources: list[ExportObject]) -> None:
        params: dict[str, Any] = {}
        # Dates come from the first source group
        self._put_dates(params, sources[0], KEY_GROUP_REVISION_DATE, KEY_GROUP_CREATION_DATE)

        if self.settings.verbose:
            logger.info(f"Sending group [{name}]")

        self.sink.begin_group_container(name, params)
        try:
            added: set[str] = set()
            for properties in sources:
                self._send_user_members(properties, added)
                self._send_group_members(properties, added)
        finally:
            self.sink.end_group_container(name, params)
        self.groups_sent += 1

    def _send_user_members(self, group: ExportObject, added: set[str]) -> None:
        for member_id in group.get_long_list(KEY_GROUP_MEMBERUSERS):
            self.check_canceled()
            user = self.package.get_internal_user_properties(member_id)
            if user is None:
                logger.error(f"Failed to get user properties [{member_id}]")
                continue
            member = self.references.to_user_reference_name(
                user.get_string(KEY_USER_NAME, str(member_id))
            )
            self._send_member(member, added)

    def _send_group_members(self, group: ExportObject, added: set[str]) -> None:
        for member_id in group.get_long_list(KEY_GROUP_MEMBERGROUPS):
            self.check_canceled()
            member_group = self.package.get_group_properties(member_id)
            if member_group is None:
                logger.error(f"Failed to get group properties [{member_id}]")
                continue
            member = self.references.to_group_reference(
                member_group.get_string(KEY_GROUP_NAME, str(member_id))
            )
            self._send_member(member, added)

    def _send_member(self, member: str, added: set[str]) -> None:
        if not member or member in added:
            return
        self.sink.on_group_member_group(member, EMPTY)
        added.add(member)

    def _put_dates(
        self, params: dict[str, Any], properties: ExportObject, revision_key: str, creation_key: str
    ) -> None:
        try:
            params["revision_date"] = self.package.get_date(properties, revision_key)
            params["creation_date"] = self.package.get_date(properties, creation_key)
        except ValueError as e:
            if self.settings.verbose:
                logger.error(f"Failed to parse the date of [{properties.id}]: {e}")

"""Shared fixtures: small Confluence exports written to a temporary directory."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import pytest
from lxml import etree

from confluence_xml_filter.config import Settings
from confluence_xml_filter.pipeline import MigrationPipeline, RunResult
from confluence_xml_filter.sink import RecordingSink

# Bodies get their own ids, away from the ids used by the tests
BODY_ID_OFFSET = 100000

DEFAULT_DATE = "2024-01-01 10:00:00.000"


@dataclass(frozen=True)
class Ref:
    """Reference to another object of the export."""

    id: int | str
    class_name: str = "Object"


class ExportBuilder:
    """Writes an ``entities.xml`` export with the objects added to it."""

    def __init__(self, root: Path):
        self.root = root
        self.document = etree.Element("hibernate-generic", datetime="2024-01-01 10:00:00")

    def add(self, class_name: str, object_id: int | str, **properties: Any) -> None:
        obj = etree.SubElement(
            self.document, "object", {"class": class_name, "package": "com.atlassian.confluence"}
        )
        etree.SubElement(obj, "id", name="id" if isinstance(object_id, int) else "key").text = str(
            object_id
        )
        for name, value in properties.items():
            if value is None:
                continue
            if isinstance(value, list):
                collection = etree.SubElement(
                    obj, "collection", name=name, **{"class": "java.util.Collection"}
                )
                for item in value:
                    ref = item if isinstance(item, Ref) else Ref(item)
                    element = etree.SubElement(collection, "element", **{"class": ref.class_name})
                    etree.SubElement(element, "id", name="id").text = str(ref.id)
            elif isinstance(value, Ref):
                prop = etree.SubElement(obj, "property", name=name, **{"class": value.class_name})
                etree.SubElement(prop, "id", name="id").text = str(value.id)
            else:
                etree.SubElement(obj, "property", name=name).text = etree.CDATA(str(value))

    def space(
        self,
        space_id: int,
        key: str,
        name: str | None = None,
        home: int | None = None,
        status: str | None = None,
    ) -> None:
        self.add(
            "Space",
            space_id,
            key=key,
            name=name or key,
            homePage=Ref(home, "Page") if home is not None else None,
            spaceStatus=status,
        )

    def page(
        self,
        page_id: int,
        space: int,
        title: str,
        parent: int | None = None,
        body: str | None = None,
        body_type: int | None = None,
        class_name: str = "Page",
        **properties: Any,
    ) -> None:
        properties.setdefault("contentStatus", "current")
        properties.setdefault("version", 1)
        properties.setdefault("lastModificationDate", DEFAULT_DATE)
        self.add(
            class_name,
            page_id,
            title=title,
            space=Ref(space, "Space"),
            parent=Ref(parent, "Page") if parent is not None else None,
            **properties,
        )
        if body is not None:
            self.add(
                "BodyContent",
                page_id + BODY_ID_OFFSET,
                body=body,
                bodyType=body_type,
                content=Ref(page_id, class_name),
            )

    def blog_post(self, page_id: int, space: int, title: str, **properties: Any) -> None:
        self.page(page_id, space, title, class_name="BlogPost", **properties)

    def revision(self, revision_id: int, page_id: int, space: int, title: str, version: int) -> None:
        self.page(revision_id, space, title, version=version, originalVersion=Ref(page_id, "Page"))

    def attachment(
        self,
        attachment_id: int,
        page_id: int,
        title: str,
        content: bytes = b"data",
        version: int = 1,
        date: str = DEFAULT_DATE,
        **properties: Any,
    ) -> None:
        self.add(
            "Attachment",
            attachment_id,
            title=title,
            version=version,
            lastModificationDate=date,
            containerContent=Ref(page_id, "Page"),
            **properties,
        )
        path = self.root / "attachments" / str(page_id) / str(attachment_id) / str(version)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def comment(
        self,
        comment_id: int,
        page_id: int,
        text: str,
        author: str = "jdoe",
        parent: int | None = None,
    ) -> None:
        self.add(
            "Comment",
            comment_id,
            creatorName=author,
            creationDate=DEFAULT_DATE,
            containerContent=Ref(page_id, "Page"),
            parent=Ref(parent, "Comment") if parent is not None else None,
        )
        self.add(
            "BodyContent",
            comment_id + BODY_ID_OFFSET,
            body=text,
            bodyType=0,
            content=Ref(comment_id, "Comment"),
        )

    def label(self, labelling_id: int, label_id: int, name: str) -> None:
        self.add("Label", label_id, name=name)
        self.add("Labelling", labelling_id, label=Ref(label_id, "Label"))

    def space_permission(
        self, permission_id: int, space_id: int, permission_type: str, **properties: Any
    ) -> None:
        self.add(
            "SpacePermission",
            permission_id,
            space=Ref(space_id, "Space"),
            type=permission_type,
            **properties,
        )

    def content_permission(
        self, set_id: int, permission_id: int, page_id: int, permission_type: str, **properties: Any
    ) -> None:
        self.add("ContentPermissionSet", set_id, owningContent=Ref(page_id, "Page"))
        self.add(
            "ContentPermission",
            permission_id,
            owningSet=Ref(set_id, "ContentPermissionSet"),
            type=permission_type,
            **properties,
        )

    def user(self, user_id: int, name: str, **properties: Any) -> None:
        self.add("InternalUser", user_id, name=name, **properties)

    def group(self, group_id: int, name: str, users: list[int] = (), groups: list[int] = ()) -> None:
        self.add("InternalGroup", group_id, name=name)
        for member in users:
            self.add(
                "HibernateMembership",
                group_id * 1000 + member,
                parentGroup=Ref(group_id, "InternalGroup"),
                userMember=Ref(member, "InternalUser"),
            )
        for member in groups:
            self.add(
                "HibernateMembership",
                group_id * 1000 + member,
                parentGroup=Ref(group_id, "InternalGroup"),
                groupMember=Ref(member, "InternalGroup"),
            )

    def write(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        etree.ElementTree(self.document).write(
            str(self.root / "entities.xml"), xml_declaration=True, encoding="UTF-8"
        )
        return self.root


@pytest.fixture
def export(tmp_path: Path) -> ExportBuilder:
    """Builder for an export in a temporary directory."""
    return ExportBuilder(tmp_path / "export")


@pytest.fixture
def simple_export(export: ExportBuilder) -> ExportBuilder:
    """Space S with a home page and one child page."""
    export.space(10, "S", name="Space S", home=1)
    export.page(1, 10, "Home", body="home body", body_type=0)
    export.page(2, 10, "Child", parent=1, body="child body", body_type=0)
    return export


@pytest.fixture
def run() -> Callable[..., tuple[RecordingSink, RunResult]]:
    """Run the pipeline on an export directory with some filter options."""

    def run_export(source: Path, **options: Any) -> tuple[RecordingSink, RunResult]:
        settings = Settings.default()
        settings.filter.convert_to_xwiki = False
        for name, value in options.items():
            setattr(settings.filter, name, value)
        sink = RecordingSink()
        result = MigrationPipeline(settings, sink).run(source)
        return sink, result

    return run_export

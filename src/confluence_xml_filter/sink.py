"""Destinations for the events produced by the traversal."""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, BinaryIO

from lxml import etree

EMPTY: dict[str, Any] = {}

# Control characters lxml refuses in text and attributes
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


class FilterSink:
    """Receives the event stream of a run.

    Every ``begin_*`` call is followed by the matching ``end_*`` call, also when
    the run is interrupted. The default implementation ignores everything.
    """

    def begin_wiki(self, name: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki(self, name: str, params: dict[str, Any]) -> None:
        pass

    def begin_wiki_space(self, name: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki_space(self, name: str, params: dict[str, Any]) -> None:
        pass

    def begin_wiki_document(self, name: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki_document(self, name: str, params: dict[str, Any]) -> None:
        pass

    def begin_wiki_document_locale(self, locale: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki_document_locale(self, locale: str, params: dict[str, Any]) -> None:
        pass

    def begin_wiki_document_revision(self, revision: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki_document_revision(self, revision: str, params: dict[str, Any]) -> None:
        pass

    def begin_wiki_object(self, class_name: str, params: dict[str, Any]) -> None:
        pass

    def end_wiki_object(self, class_name: str, params: dict[str, Any]) -> None:
        pass

    def on_wiki_object_property(self, name: str, value: Any) -> None:
        pass

    def on_wiki_attachment(
        self, name: str, stream: BinaryIO, size: int, params: dict[str, Any]
    ) -> None:
        pass

    def begin_user(self, name: str, params: dict[str, Any]) -> None:
        pass

    def end_user(self, name: str, params: dict[str, Any]) -> None:
        pass

    def begin_group_container(self, name: str, params: dict[str, Any]) -> None:
        pass

    def end_group_container(self, name: str, params: dict[str, Any]) -> None:
        pass

    def on_group_member_group(self, name: str, params: dict[str, Any]) -> None:
        pass


@dataclass
class RecordedObject:
    """An object event with the properties sent inside it."""

    class_name: str
    properties: dict[str, Any] = field(default_factory=dict)


class RecordingSink(FilterSink):
    """Keeps every event in memory, mostly for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any, dict[str, Any]]] = []
        self.objects: list[RecordedObject] = []
        self.attachments: dict[str, bytes] = {}
        self._open_objects: list[RecordedObject] = []

    def _record(self, event: str, name: Any, params: dict[str, Any] | None = None) -> None:
        self.events.append((event, name, dict(params or {})))

    def names(self, event: str) -> list[Any]:
        """Names of all the events of one type, in order."""
        return [name for recorded, name, _ in self.events if recorded == event]

    def objects_of(self, class_name: str) -> list[dict[str, Any]]:
        return [obj.properties for obj in self.objects if obj.class_name == class_name]

    def structure(self) -> list[str]:
        """Space and document begin/end events as compact strings."""
        labels = {
            "begin_wiki_space": "+space",
            "end_wiki_space": "-space",
            "begin_wiki_document": "+doc",
            "end_wiki_document": "-doc",
        }
        return [f"{labels[event]}:{name}" for event, name, _ in self.events if event in labels]

    def begin_wiki(self, name, params):
        self._record("begin_wiki", name, params)

    def end_wiki(self, name, params):
        self._record("end_wiki", name, params)

    def begin_wiki_space(self, name, params):
        self._record("begin_wiki_space", name, params)

    def end_wiki_space(self, name, params):
        self._record("end_wiki_space", name, params)

    def begin_wiki_document(self, name, params):
        self._record("begin_wiki_document", name, params)

    def end_wiki_document(self, name, params):
        self._record("end_wiki_document", name, params)

    def begin_wiki_document_locale(self, locale, params):
        self._record("begin_wiki_document_locale", locale, params)

    def end_wiki_document_locale(self, locale, params):
        self._record("end_wiki_document_locale", locale, params)

    def begin_wiki_document_revision(self, revision, params):
        self._record("begin_wiki_document_revision", revision, params)

    def end_wiki_document_revision(self, revision, params):
        self._record("end_wiki_document_revision", revision, params)

    def begin_wiki_object(self, class_name, params):
        self._record("begin_wiki_object", class_name, params)
        self._open_objects.append(RecordedObject(class_name))

    def end_wiki_object(self, class_name, params):
        self._record("end_wiki_object", class_name, params)
        self.objects.append(self._open_objects.pop())

    def on_wiki_object_property(self, name, value):
        self._record("on_wiki_object_property", name, {"value": value})
        if self._open_objects:
            self._open_objects[-1].properties[name] = value

    def on_wiki_attachment(self, name, stream, size, params):
        self._record("on_wiki_attachment", name, {**params, "size": size})
        self.attachments[name] = stream.read()

    def begin_user(self, name, params):
        self._record("begin_user", name, params)

    def end_user(self, name, params):
        self._record("end_user", name, params)

    def begin_group_container(self, name, params):
        self._record("begin_group_container", name, params)

    def end_group_container(self, name, params):
        self._record("end_group_container", name, params)

    def on_group_member_group(self, name, params):
        self._record("on_group_member_group", name, params)


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    return _INVALID_XML_CHARS.sub("", str(value))


class XmlEventSink(FilterSink):
    """Writes the event stream as a nested XML document."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.root = etree.Element("confluence-filter")
        self._stack: list[etree._Element] = [self.root]

    def _begin(self, tag: str, name: Any, params: dict[str, Any]) -> None:
        elem = etree.SubElement(self._stack[-1], tag, name=_to_text(name))
        for key, value in params.items():
            parameter = etree.SubElement(elem, "parameter", name=key)
            parameter.text = _to_text(value)
        self._stack.append(elem)

    def _end(self) -> None:
        self._stack.pop()

    def close(self) -> None:
        """Write the document to the output path."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        etree.ElementTree(self.root).write(
            str(self.path), pretty_print=True, xml_declaration=True, encoding="UTF-8"
        )

    def begin_wiki(self, name, params):
        self._begin("wiki", name, params)

    def end_wiki(self, name, params):
        self._end()

    def begin_wiki_space(self, name, params):
        self._begin("wikiSpace", name, params)

    def end_wiki_space(self, name, params):
        self._end()

    def begin_wiki_document(self, name, params):
        self._begin("wikiDocument", name, params)

    def end_wiki_document(self, name, params):
        self._end()

    def begin_wiki_document_locale(self, locale, params):
        self._begin("wikiDocumentLocale", locale, params)

    def end_wiki_document_locale(self, locale, params):
        self._end()

    def begin_wiki_document_revision(self, revision, params):
        self._begin("wikiDocumentRevision", revision, params)

    def end_wiki_document_revision(self, revision, params):
        self._end()

    def begin_wiki_object(self, class_name, params):
        self._begin("wikiObject", class_name, params)

    def end_wiki_object(self, class_name, params):
        self._end()

    def on_wiki_object_property(self, name, value):
        prop = etree.SubElement(self._stack[-1], "property", name=_to_text(name))
        prop.text = _to_text(value)

    def on_wiki_attachment(self, name, stream, size, params):
        self._begin("wikiAttachment", name, {**params, "size": size})
        content = etree.SubElement(self._stack[-1], "content", encoding="base64")
        content.text = base64.b64encode(stream.read()).decode("ascii")
        self._end()

    def begin_user(self, name, params):
        self._begin("user", name, params)

    def end_user(self, name, params):
        self._end()

    def begin_group_container(self, name, params):
        self._begin("group", name, params)

    def end_group_container(self, name, params):
        self._end()

    def on_group_member_group(self, name, params):
        etree.SubElement(self._stack[-1], "member", name=_to_text(name))

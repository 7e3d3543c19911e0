"""Render Confluence storage format bodies as Markdown."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from confluence_content_parser import ConfluenceParser
from confluence_content_parser.nodes import (
    CodeMacro,
    ExpandMacro,
    Fragment,
    HeadingElement,
    HeadingType,
    Image,
    LinkElement,
    ListElement,
    ListItem,
    ListType,
    PanelMacro,
    Table,
    TableCell,
    TableRow,
    Text,
    TextBreakElement,
    TextEffectElement,
    TextEffectType,
)

from confluence_xml_filter.config import ConversionSettings

BODY_TYPE_WIKI = 0
BODY_TYPE_XHTML = 2

MARKDOWN_SYNTAX = "markdown/1.2"

_HEADING_LEVELS = {
    HeadingType.H1: 1,
    HeadingType.H2: 2,
    HeadingType.H3: 3,
    HeadingType.H4: 4,
    HeadingType.H5: 5,
    HeadingType.H6: 6,
}

_EFFECT_MARKERS = {
    TextEffectType.STRONG: ("**", "**"),
    TextEffectType.EMPHASIS: ("*", "*"),
    TextEffectType.MONOSPACE: ("`", "`"),
    TextEffectType.STRIKETHROUGH: ("~~", "~~"),
    TextEffectType.UNDERLINE: ("<u>", "</u>"),
    TextEffectType.SUBSCRIPT: ("<sub>", "</sub>"),
    TextEffectType.SUPERSCRIPT: ("<sup>", "</sup>"),
}


class ConversionError(Exception):
    """A body could not be converted."""


@dataclass
class ConversionResult:
    """Converted body of one revision."""

    content: str
    syntax: str = MARKDOWN_SYNTAX
    macros: Counter = field(default_factory=Counter)


class StorageFormatConverter:
    """Converts storage format (body type 2) to Markdown."""

    def __init__(self, settings: ConversionSettings | None = None):
        self.settings = settings or ConversionSettings()
        self.parser = ConfluenceParser()

    def can_convert(self, body_type: int) -> bool:
        return body_type == BODY_TYPE_XHTML

    def convert(self, body: str, body_type: int) -> ConversionResult:
        """Convert a page or comment body.

        Raises:
            ConversionError: If the body type is not supported or the body
                cannot be parsed.
        """
        if not self.can_convert(body_type):
            raise ConversionError(f"Unsupported body type [{body_type}]")

        macros: Counter = Counter()
        if not body.strip():
            return ConversionResult(content="", macros=macros)

        try:
            document = self.parser.parse(body)
        except Exception as e:
            raise ConversionError(f"Failed to parse body: {e}") from e

        root = document.root
        if not hasattr(root, "children"):
            return ConversionResult(content=(document.text or "").strip(), macros=macros)

        parts = [self._convert_node(node, macros) for node in root.children]
        content = "\n\n".join(part for part in parts if part)
        return ConversionResult(content=content.strip(), macros=macros)

    def _text(self, node: Any) -> str:
        if isinstance(node, Text):
            return node.text or ""
        if not hasattr(node, "children"):
            return ""
        return "".join(self._text(child) for child in node.children)

    def _convert_node(self, node: Any, macros: Counter) -> str:
        if isinstance(node, HeadingElement):
            level = min(_HEADING_LEVELS.get(node.type, 1), self.settings.max_heading_level)
            return f"{'#' * level} {self._text(node)}"
        if isinstance(node, Text):
            return node.text or ""
        if isinstance(node, TextBreakElement):
            return "".join(self._convert_inline(child, macros) for child in node.children)
        if isinstance(node, (TextEffectElement, LinkElement, Image)):
            return self._convert_inline(node, macros)
        if isinstance(node, ListElement):
            return self._convert_list(node)
        if isinstance(node, Table):
            return self._convert_table(node)
        if isinstance(node, CodeMacro):
            macros["code"] += 1
            language = getattr(node, "language", "") or ""
            return f"```{language}\n{self._text(node)}\n```"
        if isinstance(node, PanelMacro):
            panel_type = (getattr(node, "panel_type", "info") or "info").lower()
            macros[panel_type] += 1
            lines = self._text(node).split("\n")
            quoted = "\n".join(f"> {line}" for line in lines[1:])
            header = f"> **{panel_type.title()}:** {lines[0]}"
            return f"{header}\n{quoted}" if quoted else header
        if isinstance(node, ExpandMacro):
            macros["expand"] += 1
            title = getattr(node, "title", "Details") or "Details"
            return f"<details>\n<summary>{title}</summary>\n\n{self._text(node)}\n\n</details>"
        if isinstance(node, Fragment):
            parts = [self._convert_node(child, macros) for child in node.children]
            return "\n\n".join(part for part in parts if part)

        node_type = type(node).__name__
        if "Macro" in node_type:
            name = getattr(node, "name", None) or node_type
            macros[name] += 1
            return self._unknown_macro(node, name)
        return self._text(node)

    def _convert_inline(self, node: Any, macros: Counter) -> str:
        if isinstance(node, Text):
            return node.text or ""
        if isinstance(node, TextEffectElement):
            text = self._text(node)
            if node.type == TextEffectType.BLOCKQUOTE:
                return "\n".join(f"> {line}" for line in text.split("\n"))
            opening, closing = _EFFECT_MARKERS.get(node.type, ("", ""))
            return f"{opening}{text}{closing}"
        if isinstance(node, LinkElement):
            text = self._text(node)
            href = getattr(node, "url", "") or getattr(node, "href", "") or ""
            if href:
                return f"[{text}]({href})"
            # Links to other pages keep their title
            title = getattr(node, "page_title", None) or text
            return f"[{title}]" if title else ""
        if isinstance(node, Image):
            alt = getattr(node, "alt", "") or ""
            src = (
                getattr(node, "url", "")
                or getattr(node, "src", "")
                or getattr(node, "filename", "")
                or ""
            )
            return f"![{alt}]({src})"
        return self._convert_node(node, macros)

    def _convert_list(self, node: ListElement) -> str:
        ordered = node.type == ListType.ORDERED
        lines = []
        items = [item for item in node.children if isinstance(item, ListItem)]
        for i, item in enumerate(items, 1):
            marker = f"{i}." if ordered else "-"
            lines.append(f"{marker} {self._text(item)}")
        return "\n".join(lines)

    def _convert_table(self, node: Table) -> str:
        lines = []
        rows = [row for row in node.children if isinstance(row, TableRow)]
        for i, row in enumerate(rows):
            cells = [self._text(cell) for cell in row.children if isinstance(cell, TableCell)]
            lines.append("| " + " | ".join(cells) + " |")
            if i == 0:
                lines.append("| " + " | ".join(["---"] * len(cells)) + " |")
        return "\n".join(lines)

    def _unknown_macro(self, node: Any, name: str) -> str:
        handling = self.settings.unknown_macro_handling
        if handling == "strip":
            return ""
        text = self._text(node)
        if handling == "comment":
            return f"<!-- Unknown macro: {name} -->\n{text}"
        return text

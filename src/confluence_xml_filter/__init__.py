"""Confluence XML export filter.

A Python library and CLI tool that walks a Confluence XML export and sends its
spaces, pages, history, attachments, rights, users and groups as a stream of
wiki events, with page limits and object id range selection.
"""

from confluence_xml_filter.config import FilterSettings, Settings
from confluence_xml_filter.errors import (
    FilterError,
    MaxPageCountReached,
    TraversalCanceled,
    TraversalInterrupted,
)
from confluence_xml_filter.export_package import ExportObject, ExportPackage
from confluence_xml_filter.idrange import IdRangeList, ObjectIdFilter
from confluence_xml_filter.pipeline import FilteringEvent, MigrationPipeline, RunResult
from confluence_xml_filter.progress import CancellationToken, ProgressTracker
from confluence_xml_filter.sink import FilterSink, RecordingSink, XmlEventSink
from confluence_xml_filter.traversal import PageTraversal, SpaceNode

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "FilterSettings",
    "FilterError",
    "TraversalInterrupted",
    "MaxPageCountReached",
    "TraversalCanceled",
    "ExportPackage",
    "ExportObject",
    "IdRangeList",
    "ObjectIdFilter",
    "MigrationPipeline",
    "FilteringEvent",
    "RunResult",
    "CancellationToken",
    "ProgressTracker",
    "FilterSink",
    "RecordingSink",
    "XmlEventSink",
    "PageTraversal",
    "SpaceNode",
]

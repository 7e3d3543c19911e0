"""Settings and configuration loading for the filter."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Literal

import yaml

from confluence_xml_filter.idrange import IdRangeList

CLEANUP_MODES = ("NO", "SYNC", "ASYNC")


@dataclass
class LoggingSettings:
    """Logging configuration."""

    level: str = "INFO"
    file: str | None = "./logs/confluence-xml-filter.log"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ConversionSettings:
    """Options of the storage format to Markdown renderer."""

    unknown_macro_handling: Literal["comment", "strip", "preserve_text"] = "comment"
    max_heading_level: int = 6


@dataclass
class FilterSettings:
    """What the traversal sends and how."""

    contents_enabled: bool = True
    rights_enabled: bool = True
    attachments_enabled: bool = True
    tags_enabled: bool = True
    history_enabled: bool = True
    users_enabled: bool = True
    groups_enabled: bool = True
    blogs_enabled: bool = True
    non_blog_content_enabled: bool = True
    archived_documents_enabled: bool = False
    archived_spaces_enabled: bool = False
    convert_to_xwiki: bool = True
    store_confluence_details_enabled: bool = False
    space_title_from_home_page: bool = False
    max_page_count: int = -1
    object_id_ranges: str | None = None
    cleanup: Literal["NO", "SYNC", "ASYNC"] = "SYNC"
    working_directory: str | None = None
    root_space: str | None = None
    users_wiki: str | None = None
    default_locale: str | None = None
    blog_space_name: str = "Blog"
    base_urls: list[str] = field(default_factory=list)
    included_pages: list[int] | None = None
    excluded_pages: list[int] = field(default_factory=list)
    user_mapping: dict[str, str] = field(default_factory=dict)
    group_mapping: dict[str, str] = field(default_factory=dict)
    verbose: bool = False

    def is_included(self, page_id: int) -> bool:
        """Check the page against the include and exclude lists."""
        if page_id in self.excluded_pages:
            return False
        return self.included_pages is None or page_id in self.included_pages

    def id_ranges(self) -> IdRangeList | None:
        """Build a fresh range list for a run, or None when no ranges are set."""
        if not self.object_id_ranges:
            return None
        return IdRangeList.parse(self.object_id_ranges)

    @property
    def root_space_names(self) -> list[str]:
        """Root space prefix split into its nested space names."""
        if not self.root_space:
            return []
        return [part for part in self.root_space.split(".") if part]


@dataclass
class Settings:
    """Main settings container."""

    logging: LoggingSettings = field(default_factory=LoggingSettings)
    filter: FilterSettings = field(default_factory=FilterSettings)
    conversion: ConversionSettings = field(default_factory=ConversionSettings)

    @classmethod
    def load(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file.

        Args:
            path: Path to the settings YAML file.

        Returns:
            Settings instance populated from the file.

        Raises:
            FileNotFoundError: If the settings file doesn't exist.
            ValueError: If a filter option is unknown or invalid.
            yaml.YAMLError: If the file contains invalid YAML.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "Settings":
        """Create Settings from a dictionary."""
        logging_data = data.get("logging", {})
        logging_settings = LoggingSettings(
            level=logging_data.get("level", "INFO"),
            file=logging_data.get("file"),
            format=logging_data.get(
                "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            ),
        )

        conversion_data = data.get("conversion", {})
        conversion_settings = ConversionSettings(
            unknown_macro_handling=conversion_data.get("unknown_macro_handling", "comment"),
            max_heading_level=conversion_data.get("max_heading_level", 6),
        )

        return cls(
            logging=logging_settings,
            filter=cls._filter_from_dict(data.get("filter", {})),
            conversion=conversion_settings,
        )

    @classmethod
    def _filter_from_dict(cls, data: dict) -> FilterSettings:
        """Create FilterSettings, rejecting unknown or invalid options."""
        known = {f.name for f in fields(FilterSettings)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown filter options: {', '.join(unknown)}")

        settings = FilterSettings(**data)
        if settings.cleanup not in CLEANUP_MODES:
            raise ValueError(
                f"Invalid cleanup mode: {settings.cleanup} (expected one of {', '.join(CLEANUP_MODES)})"
            )
        # Fail early on a malformed range expression
        settings.id_ranges()
        return settings

    @classmethod
    def default(cls) -> "Settings":
        """Create Settings with default values."""
        return cls()

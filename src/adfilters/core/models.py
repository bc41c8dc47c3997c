"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to SQLite rows, backend JSON payloads or parser internals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple

# Group that holds every custom filter. Created on the first custom import.
CUSTOM_GROUP_ID = 101

# The user-rules filter (rules typed in by the user rather than downloaded).
# Never created here: the bundled default catalog ships it when the product
# offers user rules.
USER_FILTER_ID = 0

# Custom filter ids are allocated from here upwards.
CUSTOM_FILTER_START_ID = 10000


class FilterKind(str, Enum):
    """Where a filter comes from."""

    DEFAULT = "default"
    SUBSCRIBED = "subscribed"
    CUSTOM = "custom"


@dataclass(frozen=True)
class FilterGroup:
    """User-facing category of filters."""

    group_id: int
    name: str
    display_number: int = 0
    enabled: bool = False


@dataclass(frozen=True)
class FilterMetadata:
    """Persisted description of a single filter list.

    ``version`` is None while the rule body has not been obtained yet, which
    makes the next sync retry the download.
    """

    filter_id: int
    group_id: int
    name: str
    kind: FilterKind = FilterKind.SUBSCRIBED
    description: str = ""
    version: Optional[str] = None
    updated: Optional[datetime] = None
    display_number: int = 0
    subscription_url: Optional[str] = None
    homepage: Optional[str] = None
    langs: Tuple[str, ...] = ()
    enabled: bool = False

    @property
    def editable(self) -> bool:
        return self.kind is FilterKind.CUSTOM

    def with_changes(self, **changes) -> "FilterMetadata":
        return replace(self, **changes)


@dataclass(frozen=True)
class FilterRule:
    """One rule line of a filter. ``text`` is opaque to this package."""

    filter_id: int
    rule_id: int
    text: str
    enabled: bool = True


@dataclass(frozen=True)
class GroupsI18n:
    """Localized group names keyed by (group_id, lang)."""

    names: Mapping[Tuple[int, str], str] = field(default_factory=dict)

    def localized_name(self, group_id: int, lang: str) -> Optional[str]:
        return self.names.get((group_id, lang))

    def merged_with(self, fallback: "GroupsI18n") -> "GroupsI18n":
        """Return a table where missing rows are taken from ``fallback``."""

        merged: Dict[Tuple[int, str], str] = dict(fallback.names)
        merged.update(self.names)
        return GroupsI18n(names=merged)


@dataclass(frozen=True)
class FilterI18nEntry:
    name: str
    description: str = ""


@dataclass(frozen=True)
class FiltersI18n:
    """Localized filter names/descriptions keyed by (filter_id, lang)."""

    entries: Mapping[Tuple[int, str], FilterI18nEntry] = field(default_factory=dict)

    def localized(self, filter_id: int, lang: str) -> Optional[FilterI18nEntry]:
        return self.entries.get((filter_id, lang))

    def merged_with(self, fallback: "FiltersI18n") -> "FiltersI18n":
        """Return a table where missing rows are taken from ``fallback``."""

        merged: Dict[Tuple[int, str], FilterI18nEntry] = dict(fallback.entries)
        merged.update(self.entries)
        return FiltersI18n(entries=merged)


@dataclass(frozen=True)
class CustomFilterParseResult:
    """Parsed custom filter content, not yet persisted."""

    url: str
    name: str
    rules: List[str]
    description: str = ""
    version: Optional[str] = None
    homepage: Optional[str] = None
    updated: Optional[datetime] = None


@dataclass(frozen=True)
class RemoteCatalog:
    """Snapshot of the backend catalog of available filters."""

    version: str
    groups: List[FilterGroup]
    filters: List[FilterMetadata]
    groups_i18n: GroupsI18n = field(default_factory=GroupsI18n)
    filters_i18n: FiltersI18n = field(default_factory=FiltersI18n)


class UpdateState(str, Enum):
    """States of the sync engine."""

    IDLE = "idle"
    UPDATING = "updating"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class UpdateResult:
    """Terminal state of one update invocation."""

    state: UpdateState
    updated_filters: List[FilterMetadata] = field(default_factory=list)
    error: Optional[str] = None

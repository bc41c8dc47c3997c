"""In-memory snapshot of filter/group metadata and localization tables.

The cache is never authoritative: every entry is rebuilt from the store on
the next read after ``invalidate``.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from adfilters.core.models import FilterGroup, FilterMetadata, FiltersI18n, GroupsI18n

_FILTERS = "filters"
_GROUPS = "groups"
_FILTERS_I18N = "filters_i18n"
_GROUPS_I18N = "groups_i18n"


class MetadataCache:
    """Single global snapshot with lazy recomputation."""

    def __init__(
        self,
        load_filters: Callable[[], List[FilterMetadata]],
        load_groups: Callable[[], List[FilterGroup]],
        load_filters_i18n: Callable[[], FiltersI18n],
        load_groups_i18n: Callable[[], GroupsI18n],
    ) -> None:
        self._loaders: Dict[str, Callable[[], object]] = {
            _FILTERS: load_filters,
            _GROUPS: load_groups,
            _FILTERS_I18N: load_filters_i18n,
            _GROUPS_I18N: load_groups_i18n,
        }
        self._values: Dict[str, object] = {}
        self._lock = threading.RLock()
        self._last_update: Optional[datetime] = None

    @property
    def last_update(self) -> Optional[datetime]:
        """When the snapshot was last (re)built, or None if it is empty."""

        return self._last_update

    def _get(self, key: str):
        with self._lock:
            if key not in self._values:
                self._values[key] = self._loaders[key]()
                self._last_update = datetime.now(timezone.utc)
            return self._values[key]

    def filters(self) -> List[FilterMetadata]:
        return list(self._get(_FILTERS))

    def groups(self) -> List[FilterGroup]:
        return list(self._get(_GROUPS))

    def filters_i18n(self) -> FiltersI18n:
        return self._get(_FILTERS_I18N)

    def groups_i18n(self) -> GroupsI18n:
        return self._get(_GROUPS_I18N)

    def warm_up(self) -> None:
        """Populate every entry eagerly (used after start-up)."""

        for key in self._loaders:
            self._get(key)

    def invalidate(self) -> None:
        with self._lock:
            self._values.clear()
            self._last_update = None

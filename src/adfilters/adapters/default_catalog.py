"""Read-only adapter over the default database bundled with the application.

The bundle uses the same schema as the filter store. It is opened with
``mode=ro`` so nothing at runtime can write to it.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Set

from adfilters.adapters.sqlite_schema import (
    read_filters,
    read_filters_i18n,
    read_groups,
    read_groups_i18n,
    read_rules,
)
from adfilters.core.errors import DefaultCatalogUnavailableError
from adfilters.core.models import FilterGroup, FilterMetadata, FilterRule, FiltersI18n, GroupsI18n

LOGGER = logging.getLogger(__name__)


class DefaultCatalogReader:
    """Satisfies DefaultCatalogPort for a bundled SQLite file."""

    def __init__(self, db_path: str) -> None:
        path = Path(db_path)
        if not path.is_file():
            raise DefaultCatalogUnavailableError(f"Default database not found: {db_path}")
        self._uri = f"{path.resolve().as_uri()}?mode=ro"
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self._uri, uri=True, check_same_thread=False)
        except sqlite3.Error as exc:
            raise DefaultCatalogUnavailableError(f"Cannot open default database {db_path}: {exc}") from exc
        self._conn.row_factory = sqlite3.Row
        LOGGER.debug("Default catalog opened from %s", db_path)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def groups(self) -> List[FilterGroup]:
        with self._lock:
            return read_groups(self._conn)

    def filters(self) -> List[FilterMetadata]:
        with self._lock:
            return read_filters(self._conn)

    def filter_ids(self) -> Set[int]:
        with self._lock:
            rows = self._conn.execute("SELECT filter_id FROM filters").fetchall()
        return {int(row["filter_id"]) for row in rows}

    def has_filter(self, filter_id: int) -> bool:
        with self._lock:
            row = self._conn.execute("SELECT 1 FROM filters WHERE filter_id = ?", (filter_id,)).fetchone()
        return row is not None

    def rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        with self._lock:
            return read_rules(self._conn, filter_id)

    def groups_i18n(self) -> GroupsI18n:
        with self._lock:
            return read_groups_i18n(self._conn)

    def filters_i18n(self) -> FiltersI18n:
        with self._lock:
            return read_filters_i18n(self._conn)

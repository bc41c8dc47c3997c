"""SQLite filter store adapter.

Implements the core FilterStorePort on top of a single SQLite connection.

Concurrency model: one RLock arbitrates the connection. Reads take it for the
duration of a query, write transactions hold it from the outermost
``begin_transaction`` to the outermost commit/rollback, so a reader on another
thread never observes a half-applied write and only one writer exists at a
time. Transactions must not be held across an ``await``.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence

from adfilters.adapters.sqlite_schema import (
    FILTER_COLUMNS,
    RULE_COLUMNS,
    create_schema,
    filter_from_row,
    group_params,
    read_filters,
    read_filters_i18n,
    read_groups,
    read_groups_i18n,
    read_rules,
    rule_from_row,
    upsert_filters,
    write_i18n,
    write_rules,
)
from adfilters.core.errors import StoreNotReadyError
from adfilters.core.models import (
    CUSTOM_FILTER_START_ID,
    FilterGroup,
    FilterKind,
    FilterMetadata,
    FilterRule,
    FiltersI18n,
    GroupsI18n,
)

LOGGER = logging.getLogger(__name__)

_NEXT_CUSTOM_ID_KEY = "next_custom_filter_id"


class SQLiteFilterStore:
    """Transactional SQLite store that satisfies the FilterStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._owner: Optional[int] = None
        self._rollback_only = False
        self._commit_listeners: List[Callable[[], None]] = []

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None leaves BEGIN/COMMIT entirely to us.
        conn = sqlite3.connect(self._db_path, check_same_thread=False, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreNotReadyError(f"Filter store {self._db_path} is not open")
        return self._conn

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def init_db(self) -> None:
        """Open the connection and create tables if they do not exist."""

        with self._lock:
            if self._conn is None:
                self._conn = self._connect()
            create_schema(self._conn)

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def release(self) -> bool:
        """Close the handle so the database file is not kept locked.

        Refused while a transaction is open.
        """

        with self._lock:
            if self._depth:
                LOGGER.warning("Refusing to release filter store inside a transaction")
                return False
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                LOGGER.info("Filter store released")
            return True

    def reopen(self) -> None:
        with self._lock:
            if self._conn is None:
                self._conn = self._connect()
                LOGGER.info("Filter store reopened")

    def close(self) -> None:
        self.release()

    def add_commit_listener(self, listener: Callable[[], None]) -> None:
        """Call ``listener`` after every outermost commit or rollback."""

        self._commit_listeners.append(listener)

    def _notify_commit(self) -> None:
        for listener in list(self._commit_listeners):
            listener()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _owns_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    def begin_transaction(self) -> bool:
        """Open a write transaction, or join the one this thread already holds."""

        self._lock.acquire()
        try:
            conn = self._connection()
            if self._depth == 0:
                conn.execute("BEGIN IMMEDIATE")
                self._owner = threading.get_ident()
                self._rollback_only = False
        except BaseException:
            self._lock.release()
            raise
        self._depth += 1
        return True

    def _end_transaction(self, commit: bool) -> bool:
        conn = self._connection()
        outermost = self._depth == 1
        committed = False
        try:
            if outermost:
                if commit and not self._rollback_only:
                    try:
                        conn.execute("COMMIT")
                        committed = True
                    except sqlite3.Error:
                        conn.execute("ROLLBACK")
                        raise
                else:
                    conn.execute("ROLLBACK")
            elif not commit:
                # Inner rollback: the whole transaction is doomed.
                self._rollback_only = True
            else:
                committed = True
        finally:
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
                self._rollback_only = False
            self._lock.release()
        if outermost:
            self._notify_commit()
        return committed

    def commit_transaction(self) -> bool:
        """End the current level. Only the outermost level really commits.

        Returns False when nothing was committed (no transaction held by this
        thread, or an inner level asked for a rollback).
        """

        if not self._owns_transaction():
            return False
        return self._end_transaction(commit=True)

    def rollback_transaction(self) -> None:
        if not self._owns_transaction():
            return
        self._end_transaction(commit=False)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager around begin/commit, rolling back on any exception."""

        self.begin_transaction()
        try:
            yield self._connection()
        except BaseException:
            self.rollback_transaction()
            raise
        else:
            self.commit_transaction()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def groups(self) -> List[FilterGroup]:
        with self._lock:
            return read_groups(self._connection())

    def filters(self) -> List[FilterMetadata]:
        with self._lock:
            return read_filters(self._connection())

    def filter(self, filter_id: int) -> Optional[FilterMetadata]:
        with self._lock:
            row = self._connection().execute(
                f"SELECT {FILTER_COLUMNS} FROM filters WHERE filter_id = ?",
                (filter_id,),
            ).fetchone()
        return filter_from_row(row) if row else None

    def rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        with self._lock:
            return read_rules(self._connection(), filter_id)

    def active_rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        """Enabled rules of the filter, empty unless the filter and its group
        are both enabled."""

        with self._lock:
            rows = self._connection().execute(
                """
                SELECT r.filter_id, r.rule_id, r.text, r.enabled
                FROM filter_rules r
                JOIN filters f ON f.filter_id = r.filter_id
                JOIN filter_groups g ON g.group_id = f.group_id
                WHERE r.filter_id = ? AND r.enabled = 1 AND f.enabled = 1 AND g.enabled = 1
                ORDER BY r.rule_id
                """,
                (filter_id,),
            ).fetchall()
        return [rule_from_row(row) for row in rows]

    def rules_count_for_filter(self, filter_id: int) -> int:
        with self._lock:
            row = self._connection().execute(
                "SELECT COUNT(*) AS total FROM filter_rules WHERE filter_id = ?",
                (filter_id,),
            ).fetchone()
        return int(row["total"])

    def groups_i18n(self) -> GroupsI18n:
        with self._lock:
            return read_groups_i18n(self._connection())

    def filters_i18n(self) -> FiltersI18n:
        with self._lock:
            return read_filters_i18n(self._connection())

    def custom_filter_id_by_url(self, url: str) -> Optional[int]:
        """Exact (case- and scheme-sensitive) lookup by subscription URL."""

        with self._lock:
            row = self._connection().execute(
                "SELECT filter_id FROM filters WHERE kind = ? AND subscription_url = ? ORDER BY filter_id",
                (FilterKind.CUSTOM.value, url),
            ).fetchone()
        return int(row["filter_id"]) if row else None

    # ------------------------------------------------------------------
    # Flag mutations
    # ------------------------------------------------------------------

    def set_filter_enabled(self, filter_id: int, enabled: bool) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE filters SET enabled = ? WHERE filter_id = ?",
                (int(enabled), filter_id),
            )
        return cur.rowcount > 0

    def set_group_enabled(self, group_id: int, enabled: bool) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE filter_groups SET enabled = ? WHERE group_id = ?",
                (int(enabled), group_id),
            )
        return cur.rowcount > 0

    def set_rules_enabled(self, rule_ids: Iterable[int], filter_id: int, enabled: bool) -> bool:
        with self.transaction() as conn:
            if not self._filter_exists(conn, filter_id):
                return False
            conn.executemany(
                "UPDATE filter_rules SET enabled = ? WHERE filter_id = ? AND rule_id = ?",
                [(int(enabled), filter_id, rule_id) for rule_id in rule_ids],
            )
        return True

    # ------------------------------------------------------------------
    # Rule mutations (custom filters only)
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_exists(conn: sqlite3.Connection, filter_id: int) -> bool:
        row = conn.execute("SELECT 1 FROM filters WHERE filter_id = ?", (filter_id,)).fetchone()
        return row is not None

    @staticmethod
    def _is_editable(conn: sqlite3.Connection, filter_id: int) -> bool:
        row = conn.execute("SELECT kind FROM filters WHERE filter_id = ?", (filter_id,)).fetchone()
        return row is not None and row["kind"] == FilterKind.CUSTOM.value

    def add_rule(self, rule: FilterRule) -> bool:
        with self.transaction() as conn:
            if not self._is_editable(conn, rule.filter_id):
                LOGGER.warning("Refusing to add rule to non-editable filter %s", rule.filter_id)
                return False
            try:
                write_rules(conn, [rule])
            except sqlite3.IntegrityError:
                LOGGER.warning("Rule %s already exists in filter %s", rule.rule_id, rule.filter_id)
                return False
        return True

    def update_rule(self, rule: FilterRule) -> bool:
        with self.transaction() as conn:
            if not self._is_editable(conn, rule.filter_id):
                LOGGER.warning("Refusing to update rule of non-editable filter %s", rule.filter_id)
                return False
            cur = conn.execute(
                "UPDATE filter_rules SET text = ?, enabled = ? WHERE filter_id = ? AND rule_id = ?",
                (rule.text, int(rule.enabled), rule.filter_id, rule.rule_id),
            )
        return cur.rowcount > 0

    def import_rules(self, rules: Sequence[FilterRule], filter_id: int) -> bool:
        """Replace every rule of an editable filter with ``rules``."""

        with self.transaction() as conn:
            if not self._is_editable(conn, filter_id):
                LOGGER.warning("Refusing to import rules into non-editable filter %s", filter_id)
                return False
            conn.execute("DELETE FROM filter_rules WHERE filter_id = ?", (filter_id,))
            write_rules(conn, rules, filter_id=filter_id)
        return True

    def remove_rules_for_filter(self, filter_id: int) -> bool:
        with self.transaction() as conn:
            if not self._is_editable(conn, filter_id):
                LOGGER.warning("Refusing to remove rules of non-editable filter %s", filter_id)
                return False
            conn.execute("DELETE FROM filter_rules WHERE filter_id = ?", (filter_id,))
        return True

    # ------------------------------------------------------------------
    # Structural writes
    # ------------------------------------------------------------------

    def install(
        self,
        groups: Sequence[FilterGroup],
        filters: Sequence[FilterMetadata],
        rules: Dict[int, List[FilterRule]],
        groups_i18n: GroupsI18n,
        filters_i18n: FiltersI18n,
    ) -> None:
        """Seed groups, filters, rules and localizations on first run."""

        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO filter_groups (group_id, name, display_number, enabled) VALUES (?, ?, ?, ?)",
                [group_params(group) for group in groups],
            )
            upsert_filters(conn, filters)
            for filter_id, filter_rules in rules.items():
                conn.execute("DELETE FROM filter_rules WHERE filter_id = ?", (filter_id,))
                write_rules(conn, filter_rules, filter_id=filter_id)
            write_i18n(conn, groups_i18n, filters_i18n)

    def insert_group(self, group: FilterGroup) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO filter_groups (group_id, name, display_number, enabled) VALUES (?, ?, ?, ?)",
                group_params(group),
            )

    def insert_filters(self, filters: Sequence[FilterMetadata], rules: Dict[int, List[FilterRule]]) -> None:
        """Upsert filter rows; rules are replaced only for ids present in ``rules``."""

        with self.transaction() as conn:
            upsert_filters(conn, filters)
            for metadata in filters:
                if metadata.filter_id not in rules:
                    continue
                conn.execute("DELETE FROM filter_rules WHERE filter_id = ?", (metadata.filter_id,))
                write_rules(conn, rules[metadata.filter_id], filter_id=metadata.filter_id)

    def replace_filter(self, metadata: FilterMetadata, rules: Optional[Sequence[FilterRule]]) -> None:
        """Upsert one filter and, when ``rules`` is given, swap its whole rule set."""

        self.insert_filters([metadata], {} if rules is None else {metadata.filter_id: list(rules)})

    def save_i18n(self, groups_i18n: GroupsI18n, filters_i18n: FiltersI18n) -> None:
        with self.transaction() as conn:
            write_i18n(conn, groups_i18n, filters_i18n)

    def delete_filter(self, filter_id: int) -> bool:
        with self.transaction() as conn:
            conn.execute("DELETE FROM filter_rules WHERE filter_id = ?", (filter_id,))
            conn.execute("DELETE FROM filters_i18n WHERE filter_id = ?", (filter_id,))
            cur = conn.execute("DELETE FROM filters WHERE filter_id = ?", (filter_id,))
        return cur.rowcount > 0

    def rename_filter(self, filter_id: int, name: str) -> bool:
        """Rename a custom filter. Other kinds are left untouched."""

        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE filters SET name = ? WHERE filter_id = ? AND kind = ?",
                (name, filter_id, FilterKind.CUSTOM.value),
            )
        return cur.rowcount > 0

    def allocate_custom_filter_id(self) -> int:
        """Return a fresh id above every id ever issued or stored.

        The counter only grows, so ids of deleted filters are never reissued.
        """

        with self.transaction() as conn:
            row = conn.execute("SELECT value FROM meta WHERE key = ?", (_NEXT_CUSTOM_ID_KEY,)).fetchone()
            counter = int(row["value"]) if row else CUSTOM_FILTER_START_ID
            max_row = conn.execute("SELECT MAX(filter_id) AS max_id FROM filters").fetchone()
            max_id = max_row["max_id"]
            next_id = max(counter, CUSTOM_FILTER_START_ID)
            if max_id is not None:
                next_id = max(next_id, int(max_id) + 1)
            conn.execute(
                """
                INSERT INTO meta (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (_NEXT_CUSTOM_ID_KEY, str(next_id + 1)),
            )
        return next_id

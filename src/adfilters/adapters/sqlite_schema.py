"""SQLite schema and row mappers shared by the filter store and the bundled
default catalog (both use the same layout)."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from adfilters.core.models import (
    FilterGroup,
    FilterI18nEntry,
    FilterKind,
    FilterMetadata,
    FilterRule,
    FiltersI18n,
    GroupsI18n,
)

# Tables:
# - filter_groups: one row per group, enabled flag gates "active" queries
# - filters: filter metadata, group_id must reference an existing group
# - filter_rules: rules keyed by (filter_id, rule_id), removed with their filter
# - groups_i18n / filters_i18n: localized display strings per lang
# - meta: small key/value table (custom filter id counter)
SCHEMA_STATEMENTS: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS filter_groups (
        group_id INTEGER PRIMARY KEY,
        name TEXT NOT NULL,
        display_number INTEGER NOT NULL DEFAULT 0,
        enabled INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS filters (
        filter_id INTEGER PRIMARY KEY,
        group_id INTEGER NOT NULL REFERENCES filter_groups(group_id),
        kind TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        version TEXT,
        updated TIMESTAMP,
        display_number INTEGER NOT NULL DEFAULT 0,
        subscription_url TEXT,
        homepage TEXT,
        langs TEXT NOT NULL DEFAULT '',
        enabled INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS filter_rules (
        filter_id INTEGER NOT NULL REFERENCES filters(filter_id) ON DELETE CASCADE,
        rule_id INTEGER NOT NULL,
        text TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        PRIMARY KEY (filter_id, rule_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS groups_i18n (
        group_id INTEGER NOT NULL,
        lang TEXT NOT NULL,
        name TEXT NOT NULL,
        PRIMARY KEY (group_id, lang)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS filters_i18n (
        filter_id INTEGER NOT NULL,
        lang TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        PRIMARY KEY (filter_id, lang)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)

GROUP_COLUMNS = "group_id, name, display_number, enabled"
FILTER_COLUMNS = (
    "filter_id, group_id, kind, name, description, version, updated, "
    "display_number, subscription_url, homepage, langs, enabled"
)
RULE_COLUMNS = "filter_id, rule_id, text, enabled"


def create_schema(conn: sqlite3.Connection) -> None:
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    return datetime.fromisoformat(raw)


def group_from_row(row: sqlite3.Row) -> FilterGroup:
    return FilterGroup(
        group_id=int(row["group_id"]),
        name=row["name"],
        display_number=int(row["display_number"]),
        enabled=bool(row["enabled"]),
    )


def filter_from_row(row: sqlite3.Row) -> FilterMetadata:
    langs = tuple(lang for lang in (row["langs"] or "").split(",") if lang)
    return FilterMetadata(
        filter_id=int(row["filter_id"]),
        group_id=int(row["group_id"]),
        kind=FilterKind(row["kind"]),
        name=row["name"],
        description=row["description"] or "",
        version=row["version"],
        updated=_parse_timestamp(row["updated"]),
        display_number=int(row["display_number"]),
        subscription_url=row["subscription_url"],
        homepage=row["homepage"],
        langs=langs,
        enabled=bool(row["enabled"]),
    )


def rule_from_row(row: sqlite3.Row) -> FilterRule:
    return FilterRule(
        filter_id=int(row["filter_id"]),
        rule_id=int(row["rule_id"]),
        text=row["text"],
        enabled=bool(row["enabled"]),
    )


def group_params(group: FilterGroup) -> tuple:
    return (group.group_id, group.name, group.display_number, int(group.enabled))


def filter_params(metadata: FilterMetadata) -> tuple:
    return (
        metadata.filter_id,
        metadata.group_id,
        metadata.kind.value,
        metadata.name,
        metadata.description,
        metadata.version,
        metadata.updated.isoformat() if metadata.updated else None,
        metadata.display_number,
        metadata.subscription_url,
        metadata.homepage,
        ",".join(metadata.langs),
        int(metadata.enabled),
    )


def rule_params(rule: FilterRule, filter_id: Optional[int] = None) -> tuple:
    return (
        rule.filter_id if filter_id is None else filter_id,
        rule.rule_id,
        rule.text,
        int(rule.enabled),
    )


def read_groups(conn: sqlite3.Connection) -> List[FilterGroup]:
    rows = conn.execute(
        f"SELECT {GROUP_COLUMNS} FROM filter_groups ORDER BY display_number, group_id"
    ).fetchall()
    return [group_from_row(row) for row in rows]


def read_filters(conn: sqlite3.Connection) -> List[FilterMetadata]:
    rows = conn.execute(
        f"SELECT {FILTER_COLUMNS} FROM filters ORDER BY group_id, display_number, filter_id"
    ).fetchall()
    return [filter_from_row(row) for row in rows]


def read_rules(conn: sqlite3.Connection, filter_id: int) -> List[FilterRule]:
    rows = conn.execute(
        f"SELECT {RULE_COLUMNS} FROM filter_rules WHERE filter_id = ? ORDER BY rule_id",
        (filter_id,),
    ).fetchall()
    return [rule_from_row(row) for row in rows]


def read_groups_i18n(conn: sqlite3.Connection) -> GroupsI18n:
    rows = conn.execute("SELECT group_id, lang, name FROM groups_i18n").fetchall()
    return GroupsI18n(names={(int(row["group_id"]), row["lang"]): row["name"] for row in rows})


def read_filters_i18n(conn: sqlite3.Connection) -> FiltersI18n:
    rows = conn.execute("SELECT filter_id, lang, name, description FROM filters_i18n").fetchall()
    return FiltersI18n(
        entries={
            (int(row["filter_id"]), row["lang"]): FilterI18nEntry(row["name"], row["description"] or "")
            for row in rows
        }
    )


def write_i18n(conn: sqlite3.Connection, groups_i18n: GroupsI18n, filters_i18n: FiltersI18n) -> None:
    conn.executemany(
        "INSERT OR REPLACE INTO groups_i18n (group_id, lang, name) VALUES (?, ?, ?)",
        [(group_id, lang, name) for (group_id, lang), name in groups_i18n.names.items()],
    )
    conn.executemany(
        "INSERT OR REPLACE INTO filters_i18n (filter_id, lang, name, description) VALUES (?, ?, ?, ?)",
        [
            (filter_id, lang, entry.name, entry.description)
            for (filter_id, lang), entry in filters_i18n.entries.items()
        ],
    )


def write_rules(conn: sqlite3.Connection, rules: Iterable[FilterRule], filter_id: Optional[int] = None) -> None:
    conn.executemany(
        f"INSERT INTO filter_rules ({RULE_COLUMNS}) VALUES (?, ?, ?, ?)",
        [rule_params(rule, filter_id) for rule in rules],
    )


def upsert_filters(conn: sqlite3.Connection, filters: Sequence[FilterMetadata]) -> None:
    conn.executemany(
        f"""
        INSERT INTO filters ({FILTER_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(filter_id) DO UPDATE SET
            group_id = excluded.group_id,
            kind = excluded.kind,
            name = excluded.name,
            description = excluded.description,
            version = excluded.version,
            updated = excluded.updated,
            display_number = excluded.display_number,
            subscription_url = excluded.subscription_url,
            homepage = excluded.homepage,
            langs = excluded.langs,
            enabled = excluded.enabled
        """,
        [filter_params(metadata) for metadata in filters],
    )

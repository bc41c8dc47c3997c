from __future__ import annotations

import sqlite3

import pytest

from adfilters.adapters.default_catalog import DefaultCatalogReader
from adfilters.core.errors import DefaultCatalogUnavailableError
from fakes import make_default_catalog


def test_reader_exposes_bundled_content(tmp_path) -> None:
    catalog = make_default_catalog(tmp_path)

    assert [group.name for group in catalog.groups()] == ["Ad Blocking", "Privacy"]
    assert catalog.filter_ids() == {1, 2, 3}
    assert catalog.has_filter(3)
    assert not catalog.has_filter(10)
    assert [rule.text for rule in catalog.rules_for_filter(3)] == ["||tracker.example.com^", "||pixel.example.com^"]
    assert catalog.filters_i18n().localized(1, "de").name == "Basisfilter"


def test_reader_is_read_only(tmp_path) -> None:
    catalog = make_default_catalog(tmp_path)

    with pytest.raises(sqlite3.OperationalError):
        catalog._conn.execute("DELETE FROM filters")


def test_missing_bundle_is_reported(tmp_path) -> None:
    with pytest.raises(DefaultCatalogUnavailableError):
        DefaultCatalogReader(str(tmp_path / "missing.db"))

from __future__ import annotations

import asyncio

import pytest

from adfilters.core.custom_filters import CustomFilterImporter
from adfilters.core.errors import BackendUnavailableError
from adfilters.core.events import EventBus, EventKind
from adfilters.core.models import CUSTOM_GROUP_ID, CustomFilterParseResult, FilterKind
from fakes import EventRecorder, FakeBackend, FakeParser, make_store, seed_store

URL = "https://lists.example.com/my.txt"


def _importer(tmp_path, backend=None, parser=None):
    store = make_store(tmp_path / "filters.db")
    seed_store(store)
    bus = EventBus()
    recorder = EventRecorder()
    bus.subscribe(recorder)
    importer = CustomFilterImporter(store, backend or FakeBackend(), parser or FakeParser(), bus)
    return importer, store, recorder


def _result(url=URL, rules=None) -> CustomFilterParseResult:
    return CustomFilterParseResult(
        url=url,
        name="My list",
        rules=rules if rules is not None else ["||a.example^", "||b.example^", "||a.example^"],
        version="1.2",
    )


def _subscribe(importer, result):
    calls = []

    async def scenario():
        task = importer.subscribe_custom_filter_from_result(result, calls.append)
        return await task

    return asyncio.run(scenario()), calls


def test_subscribe_persists_filter_and_rules(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)

    ok, calls = _subscribe(importer, _result())

    assert ok is True
    assert calls == [True]
    filter_id = importer.custom_filter_id_by_url(URL)
    assert filter_id >= 10000
    metadata = store.filter(filter_id)
    assert metadata.kind is FilterKind.CUSTOM
    assert metadata.group_id == CUSTOM_GROUP_ID
    assert metadata.subscription_url == URL
    assert [rule.text for rule in store.rules_for_filter(filter_id)] == ["||a.example^", "||b.example^"]
    assert recorder.kinds == [EventKind.FILTER_RULES_UPDATED]
    assert any(group.group_id == CUSTOM_GROUP_ID and group.enabled for group in store.groups())


def test_subscribe_rejects_content_without_rules(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)
    before = store.filters()

    ok, calls = _subscribe(importer, _result(rules=["! only a comment", "   "]))

    assert ok is False
    assert calls == [False]
    assert store.filters() == before
    assert recorder.events == []


def test_subscribe_rejects_duplicate_url(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)
    _subscribe(importer, _result())

    ok, calls = _subscribe(importer, _result())

    assert ok is False
    assert calls == [False]
    assert len([m for m in store.filters() if m.kind is FilterKind.CUSTOM]) == 1


def test_completion_is_called_once_when_persistence_fails(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)
    store.release()

    ok, calls = _subscribe(importer, _result())

    assert ok is False
    assert calls == [False]


def test_subscribe_without_completion(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)

    async def scenario():
        return await importer.subscribe_custom_filter_from_result(_result())

    assert asyncio.run(scenario()) is True


def test_ids_are_distinct_and_never_reused(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)

    issued = [importer.next_custom_filter_id() for _ in range(4)]
    _subscribe(importer, _result())
    imported = importer.custom_filter_id_by_url(URL)
    store.delete_filter(imported)

    assert len(set(issued)) == 4
    assert imported not in issued
    assert importer.next_custom_filter_id() not in issued + [imported]


def test_lookup_by_url_is_exact(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)
    _subscribe(importer, _result())

    assert importer.custom_filter_id_by_url(URL.upper()) is None
    assert importer.custom_filter_id_by_url("https://lists.example.com/other.txt") is None


def test_rename_custom_filter(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)
    _subscribe(importer, _result())
    filter_id = importer.custom_filter_id_by_url(URL)

    importer.rename_custom_filter(filter_id, "Renamed")
    importer.rename_custom_filter(1, "Nope")

    assert store.filter(filter_id).name == "Renamed"
    assert store.filter(1).name == "Base filter"


def test_load_from_url_downloads_and_parses(tmp_path) -> None:
    backend = FakeBackend()
    backend.downloads[URL] = "||a.example^\n||b.example^"
    importer, store, recorder = _importer(tmp_path, backend=backend)

    result = asyncio.run(importer.load_from_url(URL))

    assert result.url == URL
    assert result.rules == ["||a.example^", "||b.example^"]
    assert importer.custom_filter_id_by_url(URL) is None


def test_load_from_url_propagates_backend_errors(tmp_path) -> None:
    importer, store, recorder = _importer(tmp_path)

    with pytest.raises(BackendUnavailableError):
        asyncio.run(importer.load_from_url(URL))

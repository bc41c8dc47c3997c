from __future__ import annotations

import asyncio

import pytest

from adfilters.adapters.default_catalog import DefaultCatalogReader
from adfilters.core.antibanner import Antibanner
from adfilters.core.errors import StoreNotReadyError
from adfilters.core.events import EventKind
from adfilters.core.models import (
    USER_FILTER_ID,
    FilterGroup,
    FilterKind,
    FilterMetadata,
    FilterRule,
    FiltersI18n,
    GroupsI18n,
    UpdateState,
)
from adfilters.core.rules_engine import build_rules
from fakes import (
    DEFAULT_FILTERS,
    DEFAULT_GROUPS,
    EventRecorder,
    FakeBackend,
    FakeParser,
    MemoryUpdateState,
    custom_filter,
    make_default_catalog,
    make_store,
)


def _antibanner(tmp_path, backend=None, with_catalog=True):
    antibanner = Antibanner(
        backend=backend or FakeBackend(),
        update_state=MemoryUpdateState(),
        parser=FakeParser(),
        default_catalog=make_default_catalog(tmp_path) if with_catalog else None,
    )
    antibanner.set_database(make_store(tmp_path / "filters.db"))
    return antibanner


def _started(tmp_path, backend=None):
    antibanner = _antibanner(tmp_path, backend)
    asyncio.run(antibanner.start(update=False))
    return antibanner


def test_start_seeds_empty_store_from_default_catalog(tmp_path) -> None:
    antibanner = _antibanner(tmp_path)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    result = asyncio.run(antibanner.start(update=False))

    assert result is None
    assert recorder.kinds == [EventKind.INSTALLED, EventKind.READY]
    assert len(antibanner.groups()) == 2
    assert len(antibanner.filters()) == 3
    # Filter 1 is enabled in enabled group 1, filter 3 sits in disabled group 2.
    assert antibanner.active_filter_ids() == [1]
    assert antibanner.enabled_filter_ids() == [1, 3]
    assert antibanner.active_group_ids() == [1]
    assert antibanner.rules_count_for_filter(1) == 3


def test_start_does_not_reseed_populated_store(tmp_path) -> None:
    antibanner = _started(tmp_path)
    antibanner.set_filter_enabled(2, True)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    asyncio.run(antibanner.start(update=False))

    assert recorder.kinds == [EventKind.READY]
    assert 2 in antibanner.enabled_filter_ids()


def test_start_without_catalog_reports_not_installed(tmp_path) -> None:
    antibanner = _antibanner(tmp_path, with_catalog=False)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    asyncio.run(antibanner.start(update=False))

    assert recorder.kinds == [EventKind.NOT_INSTALLED]
    assert recorder.events[0].reason


def test_default_db_queries_read_the_bundle(tmp_path) -> None:
    antibanner = _antibanner(tmp_path)

    assert [group.group_id for group in antibanner.default_db_groups()] == [1, 2]
    assert [metadata.filter_id for metadata in antibanner.default_db_filters()] == [1, 2, 3]
    assert antibanner.default_db_groups_i18n().localized_name(1, "de") == "Werbung"
    assert antibanner.default_db_filters_i18n().localized(1, "de").name == "Basisfilter"


def test_localizations_fall_back_to_default_catalog(tmp_path) -> None:
    antibanner = _started(tmp_path)

    assert antibanner.groups_i18n().localized_name(2, "de") == "Privatsphäre"
    assert antibanner.filters_i18n().localized(1, "de").description == "Grundregeln"


def test_filter_queries(tmp_path) -> None:
    antibanner = _started(tmp_path)
    antibanner.set_filters_group_enabled(2, True)

    assert [metadata.filter_id for metadata in antibanner.filters_for_group(1)] == [1, 2]
    assert antibanner.active_filter_ids_by_group_id(2) == [3]
    assert [metadata.filter_id for metadata in antibanner.active_filters()] == [1, 3]
    assert antibanner.check_if_filter_installed(3)
    assert not antibanner.check_if_filter_installed(77)


def test_set_filter_enabled_publishes_events(tmp_path) -> None:
    antibanner = _started(tmp_path)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    assert antibanner.set_filter_enabled(2, True, from_ui=True)

    assert recorder.kinds == [EventKind.FILTER_ENABLED_CHANGED, EventKind.FILTER_UPDATED_FROM_UI]
    assert recorder.events[0].filter_id == 2
    assert recorder.events[0].enabled is True
    assert 2 in antibanner.enabled_filter_ids()


def test_set_filter_enabled_on_unknown_filter(tmp_path) -> None:
    antibanner = _started(tmp_path)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    assert antibanner.set_filter_enabled(404, True) is False
    assert recorder.events == []


def test_rule_mutations_guard_non_editable_filters(tmp_path) -> None:
    antibanner = _started(tmp_path)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)
    before = antibanner.rules_for_filter(1)

    assert antibanner.add_rule(FilterRule(1, 99, "||new.example^")) is False
    assert antibanner.update_rule(FilterRule(1, 1, "||changed.example^")) is False
    assert antibanner.import_rules(build_rules(1, ["||x^"]), 1) is False
    assert antibanner.remove_rules_for_filter(1) is False

    assert antibanner.rules_for_filter(1) == before
    assert recorder.events == []


def test_rule_mutations_on_custom_filter_publish_rules_updated(tmp_path) -> None:
    antibanner = _started(tmp_path)
    asyncio.run(antibanner.subscribe_filters([custom_filter()]))
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder, kinds=[EventKind.FILTER_RULES_UPDATED])

    assert antibanner.import_rules(build_rules(10000, ["||one.example^", "||two.example^"]), 10000)
    assert antibanner.update_rule(FilterRule(10000, 2, "||three.example^"))

    assert [rule.text for rule in antibanner.rules_for_filter(10000)] == ["||one.example^", "||three.example^"]
    assert [event.filter_id for event in recorder.events] == [10000, 10000]


def test_subscribe_filters_with_failing_rule_fetch(tmp_path) -> None:
    antibanner = _started(tmp_path, backend=FakeBackend())
    before = antibanner.filters_last_update_time()

    ok = asyncio.run(antibanner.subscribe_filters([FilterMetadata(100, 1, "Remote list", version="1.0")]))

    assert ok is True
    assert 100 in [metadata.filter_id for metadata in antibanner.filters()]
    assert antibanner.rules_for_filter(100) == []
    # Missing version makes the next sync retry the download.
    assert next(m for m in antibanner.filters() if m.filter_id == 100).version is None
    assert antibanner.filters_last_update_time() == before


def test_subscribe_filters_fetches_rules(tmp_path) -> None:
    backend = FakeBackend()
    backend.rules[100] = ["||remote.example^"]
    antibanner = _started(tmp_path, backend=backend)

    assert asyncio.run(antibanner.subscribe_filters([FilterMetadata(100, 1, "Remote list", version="1.0")]))

    assert [rule.text for rule in antibanner.rules_for_filter(100)] == ["||remote.example^"]


def test_subscribe_filters_prefers_default_catalog_rules(tmp_path) -> None:
    backend = FakeBackend()
    antibanner = _started(tmp_path, backend=backend)
    antibanner.unsubscribe_filter(2)

    assert asyncio.run(antibanner.subscribe_filters([FilterMetadata(2, 1, "Mobile ads filter", version="1.4.0")]))

    assert backend.rules_calls == []
    assert [rule.text for rule in antibanner.rules_for_filter(2)] == ["||mobile-ads.example.net^"]


def test_subscribe_filters_fails_when_group_is_missing(tmp_path) -> None:
    antibanner = _started(tmp_path)

    assert asyncio.run(antibanner.subscribe_filters([FilterMetadata(200, 55, "Orphan")])) is False
    assert not antibanner.check_if_filter_installed(200)


def test_unsubscribe_filter_removes_rules(tmp_path) -> None:
    antibanner = _started(tmp_path)

    assert antibanner.unsubscribe_filter(1)

    assert not antibanner.check_if_filter_installed(1)
    assert antibanner.rules_for_filter(1) == []


def test_rename_custom_filter_ignores_other_kinds(tmp_path) -> None:
    antibanner = _started(tmp_path)
    asyncio.run(antibanner.subscribe_filters([custom_filter()]))

    antibanner.rename_custom_filter(10000, "Renamed list")
    antibanner.rename_custom_filter(1, "Should not stick")

    names = {metadata.filter_id: metadata.name for metadata in antibanner.filters()}
    assert names[10000] == "Renamed list"
    assert names[1] == "Base filter"


def test_enable_groups_with_enabled_filters(tmp_path) -> None:
    antibanner = _started(tmp_path)
    antibanner.set_filter_enabled(1, False)

    assert antibanner.enable_groups_with_enabled_filters()

    groups = {group.group_id: group.enabled for group in antibanner.groups()}
    # Group 1 lost its only enabled filter; group 2 holds enabled filter 3.
    assert groups == {1: False, 2: True}


def test_disable_user_rules(tmp_path) -> None:
    antibanner = _started(tmp_path)
    assert antibanner.disable_user_rules() is False

    user_filter = FilterMetadata(USER_FILTER_ID, 1, "User rules", kind=FilterKind.CUSTOM, enabled=True)
    asyncio.run(antibanner.subscribe_filters([user_filter]))
    antibanner.import_rules(build_rules(USER_FILTER_ID, ["||mine.example^", "@@||ok.example^"]), USER_FILTER_ID)

    assert antibanner.disable_user_rules()

    assert antibanner.rules_count_for_filter(USER_FILTER_ID) == 2
    assert antibanner.active_rules_for_filter(USER_FILTER_ID) == []


def test_queries_raise_and_mutations_fail_while_released(tmp_path) -> None:
    antibanner = _started(tmp_path)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    assert antibanner.application_did_enter_background()

    with pytest.raises(StoreNotReadyError):
        antibanner.filters()
    with pytest.raises(StoreNotReadyError):
        antibanner.rules_for_filter(1)
    assert antibanner.set_filter_enabled(2, True) is False
    assert antibanner.begin_transaction() is False
    assert recorder.events == []

    antibanner.application_will_enter_foreground()
    assert len(antibanner.filters()) == 3


def test_queries_before_set_database(tmp_path) -> None:
    antibanner = Antibanner(backend=FakeBackend(), update_state=MemoryUpdateState(), parser=FakeParser())

    with pytest.raises(StoreNotReadyError):
        antibanner.groups()
    assert antibanner.set_filters_group_enabled(1, True) is False
    assert antibanner.default_db_filters() == []


def test_set_database_switches_store(tmp_path) -> None:
    antibanner = _started(tmp_path)
    other = make_store(tmp_path / "other.db")
    other.insert_group(FilterGroup(7, "Other"))

    antibanner.set_database(other)

    assert [group.group_id for group in antibanner.groups()] == [7]
    assert antibanner.filters() == []


def test_transaction_primitives_compose_mutations(tmp_path) -> None:
    antibanner = _started(tmp_path)

    assert antibanner.begin_transaction()
    antibanner.set_filter_enabled(2, True)
    antibanner.set_filters_group_enabled(2, True)
    assert antibanner.in_transaction
    antibanner.rollback_transaction()

    assert not antibanner.in_transaction
    assert antibanner.active_filter_ids() == [1]


def test_cache_is_invalidated_by_commits(tmp_path) -> None:
    antibanner = _started(tmp_path)
    assert antibanner.cache.last_update is not None

    antibanner.set_filter_enabled(2, True)

    assert antibanner.cache.last_update is None
    assert 2 in antibanner.enabled_filter_ids()


def test_second_start_while_updating_is_skipped(tmp_path) -> None:
    backend = FakeBackend()
    antibanner = _antibanner(tmp_path, backend)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)

    async def scenario():
        backend.gate = asyncio.Event()
        first = asyncio.ensure_future(antibanner.start())
        while not antibanner.updates_right_now:
            await asyncio.sleep(0)
        snapshot = (antibanner.filters(), [antibanner.rules_for_filter(i) for i in (1, 2, 3)])
        second = await antibanner.start()
        after = (antibanner.filters(), [antibanner.rules_for_filter(i) for i in (1, 2, 3)])
        backend.gate.set()
        return await first, second, snapshot, after

    first, second, snapshot, after = asyncio.run(scenario())

    assert second.state is UpdateState.SKIPPED
    assert snapshot == after
    # The gated update then fails because the fake catalog is unreachable.
    assert first.state is UpdateState.FAILED
    assert EventKind.UPDATE_DID_NOT_START in recorder.kinds
    assert backend.catalog_calls == 1


def test_disable_user_rules_with_bundled_user_filter(tmp_path) -> None:
    user_filter = FilterMetadata(USER_FILTER_ID, 1, "User rules", kind=FilterKind.CUSTOM, enabled=True)
    bundle = make_store(tmp_path / "bundle.db")
    bundle.install(
        groups=DEFAULT_GROUPS,
        filters=DEFAULT_FILTERS + [user_filter],
        rules={USER_FILTER_ID: build_rules(USER_FILTER_ID, ["||mine.example^", "@@||ok.example^"])},
        groups_i18n=GroupsI18n(),
        filters_i18n=FiltersI18n(),
    )
    bundle.close()
    antibanner = Antibanner(
        backend=FakeBackend(),
        update_state=MemoryUpdateState(),
        parser=FakeParser(),
        default_catalog=DefaultCatalogReader(str(tmp_path / "bundle.db")),
    )
    antibanner.set_database(make_store(tmp_path / "filters.db"))
    asyncio.run(antibanner.start(update=False))

    assert antibanner.check_if_filter_installed(USER_FILTER_ID)
    assert antibanner.disable_user_rules()
    assert antibanner.rules_count_for_filter(USER_FILTER_ID) == 2
    assert antibanner.active_rules_for_filter(USER_FILTER_ID) == []


def test_update_while_released_does_not_start(tmp_path) -> None:
    backend = FakeBackend()
    antibanner = _started(tmp_path, backend)
    recorder = EventRecorder()
    antibanner.bus.subscribe(recorder)
    antibanner.application_did_enter_background()

    result = asyncio.run(antibanner.update_filters())

    assert result.state is UpdateState.SKIPPED
    assert recorder.kinds == [EventKind.UPDATE_DID_NOT_START]
    assert backend.catalog_calls == 0

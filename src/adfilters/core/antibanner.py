"""Antibanner facade.

Single entry point for the UI and the rule compiler. Queries go through the
metadata cache, writes go through the filter store, and every successful
write is announced on the event bus after it committed.

Error policy at this boundary: mutations never raise; they return False on a
guard rejection, a released store or a storage failure. Queries raise
StoreNotReadyError when no usable store is attached.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from adfilters.core.custom_filters import CustomFilterImporter, ImportCompletion
from adfilters.core.errors import StoreNotReadyError
from adfilters.core.events import Event, EventBus, EventKind
from adfilters.core.metadata_cache import MetadataCache
from adfilters.core.models import (
    USER_FILTER_ID,
    CustomFilterParseResult,
    FilterGroup,
    FilterMetadata,
    FilterRule,
    FiltersI18n,
    GroupsI18n,
    UpdateResult,
)
from adfilters.core.ports import (
    CustomFilterParserPort,
    DefaultCatalogPort,
    FilterBackendPort,
    FilterStorePort,
    UpdateStatePort,
)
from adfilters.core.sync import FilterSyncEngine

LOGGER = logging.getLogger(__name__)


class Antibanner:
    """Filter list management service: storage, sync, custom filters, events."""

    def __init__(
        self,
        backend: FilterBackendPort,
        update_state: UpdateStatePort,
        parser: CustomFilterParserPort,
        default_catalog: Optional[DefaultCatalogPort] = None,
        bus: Optional[EventBus] = None,
        locale: str = "en",
        concurrency: int = 4,
        network_available: Callable[[], bool] = lambda: True,
    ) -> None:
        self._store: Optional[FilterStorePort] = None
        self._default_catalog = default_catalog
        self._update_state = update_state
        self.bus = bus or EventBus()
        self._cache = MetadataCache(
            load_filters=lambda: self._require_store().filters(),
            load_groups=lambda: self._require_store().groups(),
            load_filters_i18n=self._load_filters_i18n,
            load_groups_i18n=self._load_groups_i18n,
        )
        self._engine = FilterSyncEngine(
            store=None,  # attached by set_database
            backend=backend,
            update_state=update_state,
            bus=self.bus,
            cache=self._cache,
            default_catalog=default_catalog,
            locale=locale,
            concurrency=concurrency,
            network_available=network_available,
        )
        self._importer = CustomFilterImporter(store=None, backend=backend, parser=parser, bus=self.bus)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _require_store(self) -> FilterStorePort:
        if self._store is None or not self._store.is_open:
            raise StoreNotReadyError("No open filter store")
        return self._store

    def _load_groups_i18n(self) -> GroupsI18n:
        local = self._require_store().groups_i18n()
        if self._default_catalog is None:
            return local
        return local.merged_with(self._default_catalog.groups_i18n())

    def _load_filters_i18n(self) -> FiltersI18n:
        local = self._require_store().filters_i18n()
        if self._default_catalog is None:
            return local
        return local.merged_with(self._default_catalog.filters_i18n())

    def _mutate(self, action: str, operation: Callable[[FilterStorePort], object]) -> bool:
        try:
            store = self._require_store()
        except StoreNotReadyError:
            LOGGER.warning("%s rejected: filter store is not ready", action)
            return False
        try:
            return bool(operation(store))
        except StoreNotReadyError:
            LOGGER.warning("%s rejected: filter store is not ready", action)
            return False
        except Exception:
            LOGGER.exception("%s failed", action)
            return False

    @property
    def cache(self) -> MetadataCache:
        return self._cache

    @property
    def engine(self) -> FilterSyncEngine:
        return self._engine

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_database(self, store: FilterStorePort) -> None:
        """Attach the production store to work with."""

        self._store = store
        store.add_commit_listener(self._cache.invalidate)
        self._engine.set_store(store)
        self._importer.set_store(store)
        self._cache.invalidate()

    def _install_defaults(self, store: FilterStorePort) -> None:
        catalog = self._default_catalog
        if catalog is None:
            raise StoreNotReadyError("Store is empty and no default catalog is bundled")
        filters = catalog.filters()
        store.install(
            groups=catalog.groups(),
            filters=filters,
            rules={metadata.filter_id: catalog.rules_for_filter(metadata.filter_id) for metadata in filters},
            groups_i18n=catalog.groups_i18n(),
            filters_i18n=catalog.filters_i18n(),
        )
        LOGGER.info("Installed %s default filters", len(filters))

    async def start(self, update: bool = True) -> Optional[UpdateResult]:
        """Seed an empty store, announce readiness and optionally sync."""

        self._engine.resume()
        try:
            store = self._require_store()
            if not store.groups():
                self._install_defaults(store)
                self.bus.publish(Event(EventKind.INSTALLED))
        except Exception as exc:
            LOGGER.exception("Antibanner could not be installed")
            self.bus.publish(Event(EventKind.NOT_INSTALLED, reason=str(exc)))
            return None

        self._cache.invalidate()
        self._cache.warm_up()
        self.bus.publish(Event(EventKind.READY))
        if not update:
            return None
        return await self._engine.update_filters()

    def stop(self) -> None:
        self._engine.stop()

    def application_did_enter_background(self) -> bool:
        """Release the store handle while the app is suspended."""

        if self._store is None:
            return False
        released = self._store.release()
        if released:
            self._cache.invalidate()
        return released

    def application_will_enter_foreground(self) -> None:
        if self._store is None:
            return
        self._store.reopen()
        self._cache.invalidate()

    # Transaction primitives, for callers composing several mutations.

    @property
    def in_transaction(self) -> bool:
        return self._store is not None and self._store.in_transaction

    def begin_transaction(self) -> bool:
        return self._mutate("begin transaction", lambda store: store.begin_transaction())

    def commit_transaction(self) -> bool:
        return self._mutate("commit transaction", lambda store: store.commit_transaction())

    def rollback_transaction(self) -> None:
        self._mutate("rollback transaction", lambda store: store.rollback_transaction() or True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def updates_right_now(self) -> bool:
        return self._engine.updates_right_now

    @property
    def metadata_outdated(self) -> bool:
        return self._engine.metadata_outdated

    def groups(self) -> List[FilterGroup]:
        return self._cache.groups()

    def default_db_groups(self) -> List[FilterGroup]:
        return self._default_catalog.groups() if self._default_catalog else []

    def filters(self) -> List[FilterMetadata]:
        return self._cache.filters()

    def default_db_filters(self) -> List[FilterMetadata]:
        return self._default_catalog.filters() if self._default_catalog else []

    def active_group_ids(self) -> List[int]:
        return [group.group_id for group in self.groups() if group.enabled]

    def active_filters(self) -> List[FilterMetadata]:
        """Enabled filters whose group is enabled too."""

        active_groups = set(self.active_group_ids())
        return [metadata for metadata in self.filters() if metadata.enabled and metadata.group_id in active_groups]

    def filters_for_group(self, group_id: int) -> List[FilterMetadata]:
        return [metadata for metadata in self.filters() if metadata.group_id == group_id]

    def enabled_filter_ids(self) -> List[int]:
        return [metadata.filter_id for metadata in self.filters() if metadata.enabled]

    def active_filter_ids(self) -> List[int]:
        return [metadata.filter_id for metadata in self.active_filters()]

    def active_filter_ids_by_group_id(self, group_id: int) -> List[int]:
        return [metadata.filter_id for metadata in self.active_filters() if metadata.group_id == group_id]

    def rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        return self._require_store().rules_for_filter(filter_id)

    def active_rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        return self._require_store().active_rules_for_filter(filter_id)

    def rules_count_for_filter(self, filter_id: int) -> int:
        return self._require_store().rules_count_for_filter(filter_id)

    def groups_i18n(self) -> GroupsI18n:
        return self._cache.groups_i18n()

    def default_db_groups_i18n(self) -> GroupsI18n:
        return self._default_catalog.groups_i18n() if self._default_catalog else GroupsI18n()

    def filters_i18n(self) -> FiltersI18n:
        return self._cache.filters_i18n()

    def default_db_filters_i18n(self) -> FiltersI18n:
        return self._default_catalog.filters_i18n() if self._default_catalog else FiltersI18n()

    def check_if_filter_installed(self, filter_id: int) -> bool:
        return any(metadata.filter_id == filter_id for metadata in self.filters())

    def filters_last_update_time(self) -> Optional[datetime]:
        return self._update_state.last_update_time()

    def custom_filter_id_by_url(self, url: str) -> Optional[int]:
        return self._importer.custom_filter_id_by_url(url)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def set_filter_enabled(self, filter_id: int, enabled: bool, from_ui: bool = False) -> bool:
        changed = self._mutate(
            f"enable filter {filter_id}",
            lambda store: store.set_filter_enabled(filter_id, enabled),
        )
        if changed:
            self.bus.publish(
                Event(EventKind.FILTER_ENABLED_CHANGED, filter_id=filter_id, enabled=enabled, from_ui=from_ui)
            )
            if from_ui:
                self.bus.publish(Event(EventKind.FILTER_UPDATED_FROM_UI, filter_id=filter_id, from_ui=True))
        return changed

    def set_filters_group_enabled(self, group_id: int, enabled: bool) -> bool:
        return self._mutate(
            f"enable group {group_id}",
            lambda store: store.set_group_enabled(group_id, enabled),
        )

    def _rules_updated(self, filter_id: int, ok: bool) -> bool:
        if ok:
            self.bus.publish(Event(EventKind.FILTER_RULES_UPDATED, filter_id=filter_id))
        return ok

    def set_rules_enabled(self, rule_ids: Iterable[int], filter_id: int, enabled: bool) -> bool:
        rule_ids = list(rule_ids)
        ok = self._mutate(
            f"toggle rules of filter {filter_id}",
            lambda store: store.set_rules_enabled(rule_ids, filter_id, enabled),
        )
        return self._rules_updated(filter_id, ok)

    def add_rule(self, rule: FilterRule) -> bool:
        ok = self._mutate(f"add rule to filter {rule.filter_id}", lambda store: store.add_rule(rule))
        return self._rules_updated(rule.filter_id, ok)

    def update_rule(self, rule: FilterRule) -> bool:
        ok = self._mutate(f"update rule of filter {rule.filter_id}", lambda store: store.update_rule(rule))
        return self._rules_updated(rule.filter_id, ok)

    def import_rules(self, rules: Sequence[FilterRule], filter_id: int) -> bool:
        ok = self._mutate(
            f"import rules into filter {filter_id}",
            lambda store: store.import_rules(rules, filter_id),
        )
        return self._rules_updated(filter_id, ok)

    def remove_rules_for_filter(self, filter_id: int) -> bool:
        ok = self._mutate(
            f"remove rules of filter {filter_id}",
            lambda store: store.remove_rules_for_filter(filter_id),
        )
        return self._rules_updated(filter_id, ok)

    async def subscribe_filters(self, filters: Sequence[FilterMetadata]) -> bool:
        """Insert filter metadata and populate rules.

        Rules come from the default catalog when it bundles the filter and
        from the backend otherwise. A filter whose rules cannot be obtained
        is still inserted, empty and without a version, so the next sync
        retries it. Returns False only when the metadata could not be stored.
        """

        if not filters:
            return True
        try:
            self._require_store()
        except StoreNotReadyError:
            LOGGER.warning("Subscribe rejected: filter store is not ready")
            return False

        filter_ids = [metadata.filter_id for metadata in filters]
        bodies = await self._engine.load_rules_many(filter_ids, prefer_default=filter_ids)
        rules = {filter_id: body for filter_id, body in bodies.items() if body is not None}
        rows = [
            metadata if metadata.filter_id in rules else metadata.with_changes(version=None)
            for metadata in filters
        ]
        ok = self._mutate(
            f"subscribe filters {filter_ids}",
            lambda store: store.insert_filters(rows, rules) or True,
        )
        if ok:
            for filter_id in rules:
                self.bus.publish(Event(EventKind.FILTER_RULES_UPDATED, filter_id=filter_id))
        return ok

    def unsubscribe_filter(self, filter_id: int) -> bool:
        ok = self._mutate(f"unsubscribe filter {filter_id}", lambda store: store.delete_filter(filter_id))
        return self._rules_updated(filter_id, ok)

    def rename_custom_filter(self, filter_id: int, new_name: str) -> None:
        self._mutate(
            f"rename filter {filter_id}",
            lambda store: self._importer.rename_custom_filter(filter_id, new_name) or True,
        )

    def enable_groups_with_enabled_filters(self) -> bool:
        """Make every group enabled exactly when it holds an enabled filter."""

        def reconcile(store: FilterStorePort) -> bool:
            with store.transaction():
                groups_with_enabled = {metadata.group_id for metadata in store.filters() if metadata.enabled}
                for group in store.groups():
                    wanted = group.group_id in groups_with_enabled
                    if group.enabled != wanted:
                        store.set_group_enabled(group.group_id, wanted)
            return True

        return self._mutate("reconcile group flags", reconcile)

    def disable_user_rules(self) -> bool:
        """Disable every rule of the user-rules filter.

        The filter is seeded from the default catalog like any other bundled
        filter. Returns False when the bundle did not ship it.
        """

        def disable(store: FilterStorePort) -> bool:
            with store.transaction():
                if store.filter(USER_FILTER_ID) is None:
                    LOGGER.info("No user-rules filter installed; nothing to disable")
                    return False
                rule_ids = [rule.rule_id for rule in store.rules_for_filter(USER_FILTER_ID)]
                return store.set_rules_enabled(rule_ids, USER_FILTER_ID, False)

        return self._rules_updated(USER_FILTER_ID, self._mutate("disable user rules", disable))

    # ------------------------------------------------------------------
    # Sync and custom filters
    # ------------------------------------------------------------------

    async def update_filters(self, force: bool = False) -> UpdateResult:
        return await self._engine.update_filters(force=force)

    def next_custom_filter_id(self) -> int:
        return self._importer.next_custom_filter_id()

    async def load_custom_filter(self, url: str) -> CustomFilterParseResult:
        return await self._importer.load_from_url(url)

    def subscribe_custom_filter_from_result(
        self, result: CustomFilterParseResult, completion: Optional[ImportCompletion] = None
    ) -> "asyncio.Task[bool]":
        return self._importer.subscribe_custom_filter_from_result(result, completion)

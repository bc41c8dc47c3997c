"""Subscription and sync engine.

This module is integration-agnostic. It only relies on ports for storage,
network and update markers, so it can be driven by any frontend.

One update runs through a strict order:
1) Guard: refuse (SKIPPED) when stopped, offline, the store is not open or
   an update is already running
2) Fetch the remote catalog without holding any transaction
3) Short-circuit (SKIPPED) when the catalog version matches the stored marker
   and every listed filter has its rules
4) Plan the merge and download every needed rule body, still outside the
   transaction
5) Apply the whole plan inside one transaction; any failure rolls it back
6) Record markers, invalidate the cache, publish progress and the result

The catalog marker is only recorded when every planned rule body was
obtained from the backend. Otherwise the next sync plans the same filters
again.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Collection, Dict, Iterable, List, Optional, Set, Tuple

from adfilters.core.auto_detect import AutoDetectDecision, auto_detect
from adfilters.core.dedup import compute_rules_fingerprint
from adfilters.core.errors import BackendUnavailableError, MalformedResponseError, StoreNotReadyError
from adfilters.core.events import Event, EventBus, EventKind
from adfilters.core.metadata_cache import MetadataCache
from adfilters.core.models import (
    FilterKind,
    FilterMetadata,
    FilterRule,
    RemoteCatalog,
    UpdateResult,
    UpdateState,
)
from adfilters.core.ports import DefaultCatalogPort, FilterBackendPort, FilterStorePort, UpdateStatePort
from adfilters.core.rules_engine import build_rules

LOGGER = logging.getLogger(__name__)


def _version_key(version: str) -> Tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def is_newer(remote: FilterMetadata, local: FilterMetadata) -> bool:
    """Return True when the remote entry should replace the local rule set.

    A local filter without a version never got its rules, so it is always
    refreshed. Dotted versions are compared numerically; otherwise any
    difference counts. Equal versions fall back to the update timestamps.
    """

    if local.version is None:
        return True
    if remote.version and remote.version != local.version:
        try:
            return _version_key(remote.version) > _version_key(local.version)
        except ValueError:
            return True
    if remote.updated and local.updated:
        return remote.updated > local.updated
    return False


@dataclass(frozen=True)
class PlannedChange:
    """One filter row to write. ``rules`` None keeps the stored rules."""

    metadata: FilterMetadata
    rules: Optional[List[FilterRule]]
    is_new: bool
    rules_changed: bool


class FilterSyncEngine:
    """Orchestrates catalog refresh, merge and lifecycle events."""

    def __init__(
        self,
        store: FilterStorePort,
        backend: FilterBackendPort,
        update_state: UpdateStatePort,
        bus: EventBus,
        cache: MetadataCache,
        default_catalog: Optional[DefaultCatalogPort] = None,
        locale: str = "en",
        concurrency: int = 4,
        network_available: Callable[[], bool] = lambda: True,
    ) -> None:
        self._store = store
        self._backend = backend
        self._update_state = update_state
        self._bus = bus
        self._cache = cache
        self._default_catalog = default_catalog
        self._locale = locale
        self._concurrency = max(1, concurrency)
        self._network_available = network_available
        self._state = UpdateState.IDLE
        self._state_lock = threading.Lock()
        self._stopped = False
        self._remote_version: Optional[str] = None
        self._remote_ids: Set[int] = set()

    def set_store(self, store: FilterStorePort) -> None:
        self._store = store

    @property
    def state(self) -> UpdateState:
        return self._state

    @property
    def updates_right_now(self) -> bool:
        return self._state is UpdateState.UPDATING

    @property
    def metadata_outdated(self) -> bool:
        """True unless the last seen remote catalog matches the stored marker.

        A listed filter that still waits for its rules keeps the metadata
        outdated even when the markers agree.
        """

        marker = self._update_state.catalog_version()
        if self._remote_version is None or marker is None:
            return True
        return self._remote_version != marker or self._has_pending_rules()

    def _store_ready(self) -> bool:
        return self._store is not None and self._store.is_open

    def _has_pending_rules(self) -> bool:
        if not self._store_ready():
            return False
        return any(
            metadata.version is None and metadata.kind is not FilterKind.CUSTOM and metadata.filter_id in self._remote_ids
            for metadata in self._store.filters()
        )

    def stop(self) -> None:
        self._stopped = True

    def resume(self) -> None:
        self._stopped = False

    # ------------------------------------------------------------------
    # Rule bodies
    # ------------------------------------------------------------------

    async def load_rules(self, filter_id: int, prefer_default: bool = True) -> Optional[List[FilterRule]]:
        """Obtain a filter's rules from the default catalog or the backend.

        Returns None when no source could provide them; callers keep the
        filter and retry on the next sync.
        """

        if prefer_default and self._default_catalog is not None and self._default_catalog.has_filter(filter_id):
            rules = self._default_catalog.rules_for_filter(filter_id)
            LOGGER.debug("Rules for filter %s taken from the default catalog", filter_id)
            return [FilterRule(filter_id, rule.rule_id, rule.text, rule.enabled) for rule in rules]
        try:
            texts = await self._backend.fetch_filter_rules(filter_id)
        except (BackendUnavailableError, MalformedResponseError) as exc:
            LOGGER.warning("Could not obtain rules for filter %s: %s", filter_id, exc)
            return None
        return build_rules(filter_id, texts)

    async def load_rules_many(
        self, filter_ids: Iterable[int], prefer_default: Collection[int] = ()
    ) -> Dict[int, Optional[List[FilterRule]]]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def load_with_semaphore(filter_id: int) -> Tuple[int, Optional[List[FilterRule]]]:
            async with semaphore:
                return filter_id, await self.load_rules(filter_id, prefer_default=filter_id in prefer_default)

        results = await asyncio.gather(*(load_with_semaphore(filter_id) for filter_id in filter_ids))
        return dict(results)

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _try_enter_updating(self) -> bool:
        with self._state_lock:
            if self._state is UpdateState.UPDATING:
                return False
            self._state = UpdateState.UPDATING
            return True

    def _did_not_start(self, reason: str) -> UpdateResult:
        LOGGER.info("Update did not start: %s", reason)
        self._bus.publish(Event(EventKind.UPDATE_DID_NOT_START, reason=reason))
        return UpdateResult(UpdateState.SKIPPED, error=reason)

    def _fail(self, reason: str) -> UpdateResult:
        LOGGER.warning("Filters update failed: %s", reason)
        self._bus.publish(Event(EventKind.UPDATE_FAILED, reason=reason))
        return UpdateResult(UpdateState.FAILED, error=reason)

    async def update_filters(self, force: bool = False) -> UpdateResult:
        """Run one sync. Never raises; the outcome is in the result and events."""

        if self._stopped:
            return self._did_not_start("engine stopped")
        if not self._network_available():
            return self._did_not_start("network unavailable")
        if not self._store_ready():
            return self._did_not_start("store not ready")
        if not self._try_enter_updating():
            # Coalesce: the running update already covers this request.
            return self._did_not_start("already updating")

        self._bus.publish(Event(EventKind.UPDATE_STARTED))
        result = UpdateResult(UpdateState.FAILED, error="update interrupted")
        try:
            result = await self._run_update(force)
        except Exception as exc:
            LOGGER.exception("Unexpected error during filters update")
            result = self._fail(str(exc) or exc.__class__.__name__)
        finally:
            self._cache.invalidate()
            with self._state_lock:
                self._state = result.state
        return result

    async def _run_update(self, force: bool) -> UpdateResult:
        try:
            catalog = await self._backend.fetch_catalog()
        except (BackendUnavailableError, MalformedResponseError) as exc:
            return self._fail(str(exc))

        self._remote_version = catalog.version
        self._remote_ids = {metadata.filter_id for metadata in catalog.filters}
        try:
            outdated = self.metadata_outdated
        except StoreNotReadyError as exc:
            return self._fail(str(exc))
        if not force and not outdated:
            LOGGER.info("Filters metadata is up to date (catalog %s)", catalog.version)
            self._bus.publish(Event(EventKind.UPDATE_FINISHED))
            return UpdateResult(UpdateState.SKIPPED)

        try:
            plan, complete = await self._plan(catalog)
        except StoreNotReadyError as exc:
            return self._fail(str(exc))

        try:
            with self._store.transaction():
                for change in plan:
                    self._store.replace_filter(change.metadata, change.rules)
                self._store.save_i18n(catalog.groups_i18n, catalog.filters_i18n)
        except Exception as exc:
            # The transaction context manager already rolled everything back.
            LOGGER.exception("Merge of catalog %s rolled back", catalog.version)
            return self._fail(str(exc) or exc.__class__.__name__)

        self._update_state.set_last_update_time(datetime.now(timezone.utc))
        if complete:
            self._update_state.set_catalog_version(catalog.version)
        else:
            LOGGER.info("Some rule bodies are missing; catalog %s stays pending", catalog.version)
        self._cache.invalidate()

        changed = [change.metadata for change in plan if change.rules_changed]
        for change in plan:
            self._bus.publish(
                Event(EventKind.UPDATE_PART_COMPLETED, filter_id=change.metadata.filter_id, filters=(change.metadata,))
            )
        self._bus.publish(Event(EventKind.UPDATE_FINISHED, filters=tuple(changed)))
        LOGGER.info(
            "Filters update complete: catalog=%s, merged=%s, changed=%s",
            catalog.version,
            len(plan),
            len(changed),
        )
        return UpdateResult(UpdateState.COMPLETED, updated_filters=changed)

    async def _plan(self, catalog: RemoteCatalog) -> Tuple[List[PlannedChange], bool]:
        """Decide what to write and download every needed rule body.

        The flag is False when some filter ends up without the remote rule
        body, either because the download failed or because the bundled
        copy is older than the catalog entry.
        """

        local = {metadata.filter_id: metadata for metadata in self._store.filters()}
        installed_groups = {group.group_id for group in self._store.groups()}
        default_versions: Dict[int, Optional[str]] = {}
        if self._default_catalog is not None:
            default_versions = {item.filter_id: item.version for item in self._default_catalog.filters()}

        updates: List[Tuple[FilterMetadata, FilterMetadata]] = []
        inserts: List[FilterMetadata] = []
        for remote in catalog.filters:
            current = local.get(remote.filter_id)
            if current is not None:
                # Custom filters are user-owned even if an id ever collided.
                if current.kind is not FilterKind.CUSTOM and is_newer(remote, current):
                    updates.append((remote, current))
                continue
            decision = auto_detect(remote, installed_groups, self._locale)
            if decision is AutoDetectDecision.SKIP:
                continue
            inserts.append(
                remote.with_changes(
                    kind=FilterKind.SUBSCRIBED,
                    enabled=decision is AutoDetectDecision.INSTALL_ENABLED,
                )
            )

        from_default = {item.filter_id for item in inserts if item.filter_id in default_versions}
        bodies = await self.load_rules_many(
            [remote.filter_id for remote, _ in updates] + [item.filter_id for item in inserts],
            prefer_default=from_default,
        )

        plan: List[PlannedChange] = []
        complete = True
        for remote, current in updates:
            rules = bodies.get(remote.filter_id)
            if rules is None:
                # Stale but intact; the next sync retries.
                complete = False
                continue
            merged = remote.with_changes(kind=current.kind, group_id=current.group_id, enabled=current.enabled)
            old_fingerprint = compute_rules_fingerprint(rule.text for rule in self._store.rules_for_filter(current.filter_id))
            rules_changed = remote.version != current.version or old_fingerprint != compute_rules_fingerprint(
                rule.text for rule in rules
            )
            plan.append(PlannedChange(merged, rules, is_new=False, rules_changed=rules_changed))

        for metadata in inserts:
            rules = bodies.get(metadata.filter_id)
            if rules is None:
                complete = False
                plan.append(PlannedChange(metadata.with_changes(version=None), None, is_new=True, rules_changed=False))
                continue
            if metadata.filter_id in from_default:
                # Bundled rules are as old as the bundle; the next sync catches up.
                bundled = default_versions[metadata.filter_id]
                if bundled != metadata.version:
                    complete = False
                metadata = metadata.with_changes(version=bundled)
            plan.append(PlannedChange(metadata, rules, is_new=True, rules_changed=True))
        return plan, complete

"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the storage, default catalog, network
and parsing collaborators so that the core can be reused with different
backends and tested with plain fakes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, ContextManager, Dict, Iterable, List, Optional, Protocol, Sequence

from adfilters.core.models import (
    CustomFilterParseResult,
    FilterGroup,
    FilterMetadata,
    FilterRule,
    FiltersI18n,
    GroupsI18n,
    RemoteCatalog,
)


class FilterStorePort(Protocol):
    """Transactional store of groups, filters and rules."""

    @property
    def in_transaction(self) -> bool:
        ...

    @property
    def is_open(self) -> bool:
        ...

    def begin_transaction(self) -> bool:
        ...

    def commit_transaction(self) -> bool:
        ...

    def rollback_transaction(self) -> None:
        ...

    def transaction(self) -> ContextManager[None]:
        ...

    def add_commit_listener(self, listener: Callable[[], None]) -> None:
        ...

    def release(self) -> bool:
        ...

    def reopen(self) -> None:
        ...

    def groups(self) -> List[FilterGroup]:
        ...

    def filters(self) -> List[FilterMetadata]:
        ...

    def filter(self, filter_id: int) -> Optional[FilterMetadata]:
        ...

    def rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        ...

    def active_rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        ...

    def rules_count_for_filter(self, filter_id: int) -> int:
        ...

    def groups_i18n(self) -> GroupsI18n:
        ...

    def filters_i18n(self) -> FiltersI18n:
        ...

    def custom_filter_id_by_url(self, url: str) -> Optional[int]:
        ...

    def set_filter_enabled(self, filter_id: int, enabled: bool) -> bool:
        ...

    def set_group_enabled(self, group_id: int, enabled: bool) -> bool:
        ...

    def set_rules_enabled(self, rule_ids: Iterable[int], filter_id: int, enabled: bool) -> bool:
        ...

    def add_rule(self, rule: FilterRule) -> bool:
        ...

    def update_rule(self, rule: FilterRule) -> bool:
        ...

    def import_rules(self, rules: Sequence[FilterRule], filter_id: int) -> bool:
        ...

    def remove_rules_for_filter(self, filter_id: int) -> bool:
        ...

    def install(
        self,
        groups: Sequence[FilterGroup],
        filters: Sequence[FilterMetadata],
        rules: Dict[int, List[FilterRule]],
        groups_i18n: GroupsI18n,
        filters_i18n: FiltersI18n,
    ) -> None:
        ...

    def insert_group(self, group: FilterGroup) -> None:
        ...

    def insert_filters(self, filters: Sequence[FilterMetadata], rules: Dict[int, List[FilterRule]]) -> None:
        ...

    def replace_filter(self, metadata: FilterMetadata, rules: Optional[Sequence[FilterRule]]) -> None:
        ...

    def save_i18n(self, groups_i18n: GroupsI18n, filters_i18n: FiltersI18n) -> None:
        ...

    def delete_filter(self, filter_id: int) -> bool:
        ...

    def rename_filter(self, filter_id: int, name: str) -> bool:
        ...

    def allocate_custom_filter_id(self) -> int:
        ...


class DefaultCatalogPort(Protocol):
    """Read-only view over the bundled default database."""

    def groups(self) -> List[FilterGroup]:
        ...

    def filters(self) -> List[FilterMetadata]:
        ...

    def has_filter(self, filter_id: int) -> bool:
        ...

    def rules_for_filter(self, filter_id: int) -> List[FilterRule]:
        ...

    def groups_i18n(self) -> GroupsI18n:
        ...

    def filters_i18n(self) -> FiltersI18n:
        ...


class FilterBackendPort(Protocol):
    """Network operations required by the sync engine and importer."""

    async def fetch_catalog(self) -> RemoteCatalog:
        ...

    async def fetch_filter_rules(self, filter_id: int) -> List[str]:
        ...

    async def download(self, url: str) -> str:
        ...


class CustomFilterParserPort(Protocol):
    """Turns raw downloaded content into an import result."""

    def parse(self, content: str, url: str) -> CustomFilterParseResult:
        ...


class UpdateStatePort(Protocol):
    """Persisted "last update" markers."""

    def last_update_time(self) -> Optional[datetime]:
        ...

    def set_last_update_time(self, value: datetime) -> None:
        ...

    def catalog_version(self) -> Optional[str]:
        ...

    def set_catalog_version(self, version: str) -> None:
        ...

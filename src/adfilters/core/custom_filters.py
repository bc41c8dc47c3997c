"""Custom filter importer.

Custom filters are user-supplied lists downloaded from arbitrary URLs. Content
is parsed and validated before any transaction is opened, so a malformed list
never produces a partially visible filter.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Set

from adfilters.core.dedup import dedupe_rule_texts
from adfilters.core.events import Event, EventBus, EventKind
from adfilters.core.models import (
    CUSTOM_GROUP_ID,
    CustomFilterParseResult,
    FilterGroup,
    FilterKind,
    FilterMetadata,
)
from adfilters.core.ports import CustomFilterParserPort, FilterBackendPort, FilterStorePort
from adfilters.core.rules_engine import build_rules, extract_rule_texts

LOGGER = logging.getLogger(__name__)

CUSTOM_GROUP_NAME = "Custom"

ImportCompletion = Callable[[bool], None]


class CustomFilterImporter:
    """Validates and persists custom filters."""

    def __init__(
        self,
        store: FilterStorePort,
        backend: FilterBackendPort,
        parser: CustomFilterParserPort,
        bus: EventBus,
    ) -> None:
        self._store = store
        self._backend = backend
        self._parser = parser
        self._bus = bus
        self._tasks: Set[asyncio.Task] = set()

    def set_store(self, store: FilterStorePort) -> None:
        self._store = store

    def next_custom_filter_id(self) -> int:
        return self._store.allocate_custom_filter_id()

    def custom_filter_id_by_url(self, url: str) -> Optional[int]:
        return self._store.custom_filter_id_by_url(url)

    def rename_custom_filter(self, filter_id: int, new_name: str) -> None:
        """Rename a custom filter; silently ignored for any other id."""

        if not self._store.rename_filter(filter_id, new_name):
            LOGGER.debug("Rename ignored, %s is not a custom filter", filter_id)

    async def load_from_url(self, url: str) -> CustomFilterParseResult:
        """Download and parse a custom filter without persisting it.

        Raises BackendUnavailableError or MalformedFilterError.
        """

        content = await self._backend.download(url)
        return self._parser.parse(content, url)

    async def import_result(self, result: CustomFilterParseResult) -> Optional[FilterMetadata]:
        """Persist a parsed custom filter. Returns None when it was rejected."""

        if not result.url:
            LOGGER.warning("Custom filter rejected: missing URL")
            return None
        texts = dedupe_rule_texts(extract_rule_texts(result.rules))
        if not texts:
            LOGGER.warning("Custom filter %s rejected: no valid rules", result.url)
            return None

        try:
            with self._store.transaction():
                if self._store.custom_filter_id_by_url(result.url) is not None:
                    LOGGER.info("Custom filter %s is already subscribed", result.url)
                    return None
                filter_id = self._store.allocate_custom_filter_id()
                self._store.insert_group(
                    FilterGroup(CUSTOM_GROUP_ID, CUSTOM_GROUP_NAME, display_number=CUSTOM_GROUP_ID, enabled=True)
                )
                metadata = FilterMetadata(
                    filter_id=filter_id,
                    group_id=CUSTOM_GROUP_ID,
                    name=result.name,
                    kind=FilterKind.CUSTOM,
                    description=result.description,
                    version=result.version,
                    updated=result.updated,
                    subscription_url=result.url,
                    homepage=result.homepage,
                    enabled=True,
                )
                self._store.insert_filters([metadata], {filter_id: build_rules(filter_id, texts)})
        except Exception:
            LOGGER.exception("Could not persist custom filter %s", result.url)
            return None

        LOGGER.info("Custom filter %s added as %s with %s rules", result.url, filter_id, len(texts))
        self._bus.publish(Event(EventKind.FILTER_RULES_UPDATED, filter_id=filter_id, filters=(metadata,)))
        return metadata

    async def _import_and_complete(
        self, result: CustomFilterParseResult, completion: Optional[ImportCompletion]
    ) -> bool:
        success = False
        try:
            success = await self.import_result(result) is not None
        finally:
            if completion is not None:
                completion(success)
        return success

    def subscribe_custom_filter_from_result(
        self, result: CustomFilterParseResult, completion: Optional[ImportCompletion] = None
    ) -> "asyncio.Task[bool]":
        """Schedule the import on the running loop and return immediately.

        ``completion`` is called exactly once with the success flag after
        persistence finished or was rejected.
        """

        task = asyncio.get_running_loop().create_task(self._import_and_complete(result, completion))
        # The loop only keeps weak references to tasks.
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

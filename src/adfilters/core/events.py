"""In-process lifecycle event bus.

Observers are called synchronously, in registration order, by the thread that
publishes. There is no queueing and no acknowledgement: an observer that
registers after an event was published never sees it.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from adfilters.core.models import FilterMetadata

LOGGER = logging.getLogger(__name__)


class EventKind(str, Enum):
    INSTALLED = "installed"
    NOT_INSTALLED = "not_installed"
    READY = "ready"
    UPDATE_STARTED = "update_started"
    UPDATE_DID_NOT_START = "update_did_not_start"
    UPDATE_PART_COMPLETED = "update_part_completed"
    UPDATE_FINISHED = "update_finished"
    UPDATE_FAILED = "update_failed"
    FILTER_RULES_UPDATED = "filter_rules_updated"
    FILTER_ENABLED_CHANGED = "filter_enabled_changed"
    FILTER_UPDATED_FROM_UI = "filter_updated_from_ui"


@dataclass(frozen=True)
class Event:
    """A published state transition.

    ``filters`` carries the changed filters for UPDATE_FINISHED and the merged
    filter for UPDATE_PART_COMPLETED.
    """

    kind: EventKind
    filter_id: Optional[int] = None
    enabled: Optional[bool] = None
    from_ui: bool = False
    filters: Tuple[FilterMetadata, ...] = ()
    reason: Optional[str] = None


Observer = Callable[[Event], None]


class EventBus:
    """Broadcast channel with explicit observer registration."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._observers: Dict[int, Tuple[Observer, Optional[FrozenSet[EventKind]]]] = {}
        self._tokens = itertools.count(1)

    def subscribe(self, observer: Observer, kinds: Optional[Iterable[EventKind]] = None) -> int:
        """Register an observer and return a token for ``unsubscribe``.

        When ``kinds`` is given only those event kinds are delivered.
        """

        token = next(self._tokens)
        kind_filter = frozenset(kinds) if kinds is not None else None
        with self._lock:
            self._observers[token] = (observer, kind_filter)
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._observers.pop(token, None)

    def publish(self, event: Event) -> None:
        """Deliver the event to every observer registered right now."""

        with self._lock:
            observers = list(self._observers.values())
        for observer, kinds in observers:
            if kinds is not None and event.kind not in kinds:
                continue
            try:
                observer(event)
            except Exception:
                # One broken observer must not hide the event from the rest.
                LOGGER.exception("Event observer failed for %s", event.kind.value)

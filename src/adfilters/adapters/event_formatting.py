"""Shared formatting helpers for lifecycle events and filter listings.

Keeping formatting here prevents drift between the log observer and the CLI
and keeps output consistent regardless of where it is shown.
"""

from __future__ import annotations

from typing import Optional

from adfilters.core.events import Event, EventKind
from adfilters.core.models import FilterGroup, FilterMetadata

_TITLES = {
    EventKind.INSTALLED: "Default filters installed",
    EventKind.NOT_INSTALLED: "Default filters could not be installed",
    EventKind.READY: "Antibanner ready",
    EventKind.UPDATE_STARTED: "Filters update started",
    EventKind.UPDATE_DID_NOT_START: "Filters update did not start",
    EventKind.UPDATE_PART_COMPLETED: "Filter merged",
    EventKind.UPDATE_FINISHED: "Filters update finished",
    EventKind.UPDATE_FAILED: "Filters update failed",
    EventKind.FILTER_ENABLED_CHANGED: "Filter toggled",
    EventKind.FILTER_RULES_UPDATED: "Filter rules changed",
    EventKind.FILTER_UPDATED_FROM_UI: "Filter changed from UI",
}


def format_filter_label(metadata: FilterMetadata) -> str:
    """Return "name (#id)", the label used everywhere a filter is shown."""

    return f"{metadata.name} (#{metadata.filter_id})"


def _details(event: Event) -> list[str]:
    details = []
    if event.filter_id is not None:
        details.append(f"filter={event.filter_id}")
    if event.enabled is not None:
        details.append("enabled" if event.enabled else "disabled")
    if event.from_ui:
        details.append("from UI")
    if event.kind is EventKind.UPDATE_FINISHED:
        labels = [format_filter_label(metadata) for metadata in event.filters]
        details.append(f"changed: {', '.join(labels)}" if labels else "nothing changed")
    if event.reason:
        details.append(f"reason: {event.reason}")
    return details


def format_event(event: Event) -> str:
    """Return the event as one log-friendly line."""

    title = _TITLES.get(event.kind, event.kind.value)
    details = _details(event)
    if not details:
        return title
    return f"{title} [{'; '.join(details)}]"


def format_filter_row(metadata: FilterMetadata, group: Optional[FilterGroup] = None) -> str:
    """One line of the filter listing: state, label, group, version."""

    state = "[x]" if metadata.enabled else "[ ]"
    group_label = group.name if group is not None else f"group {metadata.group_id}"
    version = metadata.version or "not loaded"
    return f"{state} {format_filter_label(metadata)} | {group_label} | {metadata.kind.value} | {version}"


def format_group_row(group: FilterGroup, filters_count: int) -> str:
    state = "[x]" if group.enabled else "[ ]"
    return f"{state} {group.name} (#{group.group_id}) | {filters_count} filters"

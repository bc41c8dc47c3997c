"""Domain exceptions raised by adapters and translated by the core."""

from __future__ import annotations


class AntibannerError(Exception):
    """Base class for every error raised by this package."""


class StoreNotReadyError(AntibannerError):
    """The filter store handle is released (or was never set)."""


class BackendUnavailableError(AntibannerError):
    """The filters backend could not be reached."""


class MalformedResponseError(AntibannerError):
    """The filters backend answered with something we cannot decode."""


class MalformedFilterError(AntibannerError):
    """Downloaded custom filter content is not a filter list."""


class DefaultCatalogUnavailableError(AntibannerError):
    """The bundled default database is missing or unreadable."""

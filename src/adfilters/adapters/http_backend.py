"""aiohttp adapter for the filters backend.

Fetches the catalog of available filters, rule bodies by filter id and raw
custom filter content by URL. Transient failures are retried with exponential
backoff; what is left after the last attempt is reported as
BackendUnavailableError so the sync engine can surface UPDATE_FAILED.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import aiohttp

from adfilters.core.errors import BackendUnavailableError, MalformedResponseError
from adfilters.core.models import (
    FilterGroup,
    FilterI18nEntry,
    FilterKind,
    FilterMetadata,
    FiltersI18n,
    GroupsI18n,
    RemoteCatalog,
)
from adfilters.core.rules_engine import extract_rule_texts

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_RETRIES = 3


def _parse_time(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, "%Y-%m-%dT%H:%M:%S%z")
    except ValueError:
        return datetime.fromisoformat(raw)


def _catalog_version(filters: List[FilterMetadata]) -> str:
    """Derive a version for catalogs that do not declare one."""

    payload = "\n".join(f"{item.filter_id}:{item.version or ''}" for item in sorted(filters, key=lambda f: f.filter_id))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]


def parse_catalog(payload: Dict[str, Any]) -> RemoteCatalog:
    """Turn the backend catalog JSON into a RemoteCatalog.

    Expected shape::

        {"version": "...",
         "groups": [{"groupId": 1, "groupName": "Ads", "displayNumber": 1}],
         "filters": [{"filterId": 2, "groupId": 1, "name": "...", "version": "2.0.1",
                      "timeUpdated": "2024-01-01T10:00:00+0000", "languages": ["de"], ...}],
         "i18n": {"groups": {"1": {"de": {"name": "..."}}},
                  "filters": {"2": {"de": {"name": "...", "description": "..."}}}}}
    """

    try:
        groups = [
            FilterGroup(
                group_id=int(item["groupId"]),
                name=str(item["groupName"]),
                display_number=int(item.get("displayNumber", 0)),
            )
            for item in payload.get("groups", [])
        ]
        filters = [
            FilterMetadata(
                filter_id=int(item["filterId"]),
                group_id=int(item["groupId"]),
                name=str(item["name"]),
                kind=FilterKind.SUBSCRIBED,
                description=str(item.get("description") or ""),
                version=item.get("version"),
                updated=_parse_time(item.get("timeUpdated")),
                display_number=int(item.get("displayNumber", 0)),
                subscription_url=item.get("subscriptionUrl"),
                homepage=item.get("homepage"),
                langs=tuple(item.get("languages") or ()),
            )
            for item in payload["filters"]
        ]
        i18n = payload.get("i18n") or {}
        groups_i18n = GroupsI18n(
            names={
                (int(group_id), lang): str(entry["name"])
                for group_id, langs in (i18n.get("groups") or {}).items()
                for lang, entry in langs.items()
            }
        )
        filters_i18n = FiltersI18n(
            entries={
                (int(filter_id), lang): FilterI18nEntry(str(entry["name"]), str(entry.get("description") or ""))
                for filter_id, langs in (i18n.get("filters") or {}).items()
                for lang, entry in langs.items()
            }
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise MalformedResponseError(f"Unexpected catalog payload: {exc}") from exc

    version = payload.get("version") or _catalog_version(filters)
    return RemoteCatalog(
        version=str(version),
        groups=groups,
        filters=filters,
        groups_i18n=groups_i18n,
        filters_i18n=filters_i18n,
    )


class AiohttpFilterBackend:
    """FilterBackendPort implementation backed by aiohttp."""

    def __init__(
        self,
        catalog_url: str,
        rules_url_template: str,
        timeout: int = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        api_key: Optional[str] = None,
    ) -> None:
        self._catalog_url = catalog_url
        self._rules_url_template = rules_url_template
        self._timeout = timeout
        self._retries = max(1, retries)
        self._api_key = api_key

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json, text/plain"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _get_text(self, url: str) -> str:
        last_error = "no attempt made"
        timeout = aiohttp.ClientTimeout(total=self._timeout)
        async with aiohttp.ClientSession(timeout=timeout, headers=self._headers()) as session:
            for attempt in range(self._retries):
                try:
                    async with session.get(url, allow_redirects=True) as response:
                        if response.status < 400:
                            return await response.text()
                        last_error = f"HTTP {response.status}"
                except asyncio.TimeoutError:
                    last_error = "Timeout"
                except aiohttp.ClientError as exc:
                    last_error = str(exc) or exc.__class__.__name__
                if attempt < self._retries - 1:
                    LOGGER.debug("Retrying %s after %s (attempt %s)", url, last_error, attempt + 1)
                    await asyncio.sleep(2 ** attempt)
        raise BackendUnavailableError(f"{url}: {last_error}")

    async def fetch_catalog(self) -> RemoteCatalog:
        body = await self._get_text(self._catalog_url)
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Catalog is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError("Catalog root must be an object")
        catalog = parse_catalog(payload)
        LOGGER.info("Fetched catalog %s with %s filters", catalog.version, len(catalog.filters))
        return catalog

    async def fetch_filter_rules(self, filter_id: int) -> List[str]:
        url = self._rules_url_template.format(filter_id=filter_id)
        body = await self._get_text(url)
        return extract_rule_texts(body.splitlines())

    async def download(self, url: str) -> str:
        return await self._get_text(url)

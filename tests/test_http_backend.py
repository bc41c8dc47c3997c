from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from adfilters.adapters.http_backend import AiohttpFilterBackend, parse_catalog
from adfilters.core.errors import BackendUnavailableError, MalformedResponseError
from adfilters.core.models import FilterKind

PAYLOAD = {
    "version": "2024.03.01",
    "groups": [
        {"groupId": 1, "groupName": "Ad Blocking", "displayNumber": 1},
        {"groupId": 7, "groupName": "Language-specific", "displayNumber": 7},
    ],
    "filters": [
        {
            "filterId": 2,
            "groupId": 1,
            "name": "Base filter",
            "description": "Removes ads",
            "version": "2.1.80",
            "timeUpdated": "2024-03-01T10:00:00+0000",
            "displayNumber": 1,
            "subscriptionUrl": "https://filters.example.com/2.txt",
            "homepage": "https://example.com",
        },
        {"filterId": 6, "groupId": 7, "name": "German filter", "version": "2.0.3", "languages": ["de"]},
    ],
    "i18n": {
        "groups": {"1": {"de": {"name": "Werbung"}}},
        "filters": {"2": {"de": {"name": "Basisfilter", "description": "Entfernt Werbung"}}},
    },
}


def test_parse_catalog_maps_payload() -> None:
    catalog = parse_catalog(PAYLOAD)

    assert catalog.version == "2024.03.01"
    assert [group.group_id for group in catalog.groups] == [1, 7]
    base, german = catalog.filters
    assert base.kind is FilterKind.SUBSCRIBED
    assert base.updated == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert base.subscription_url == "https://filters.example.com/2.txt"
    assert german.langs == ("de",)
    assert german.updated is None
    assert catalog.groups_i18n.localized_name(1, "de") == "Werbung"
    assert catalog.filters_i18n.localized(2, "de").description == "Entfernt Werbung"


def test_catalog_without_version_gets_a_stable_one() -> None:
    payload = dict(PAYLOAD)
    del payload["version"]

    first = parse_catalog(payload).version
    second = parse_catalog(payload).version

    assert first == second
    assert len(first) == 16


@pytest.mark.parametrize(
    "payload",
    [
        {"groups": []},
        {"filters": [{"groupId": 1, "name": "No id"}]},
        {"filters": [{"filterId": "x", "groupId": 1, "name": "Bad id"}]},
        {"filters": [], "i18n": {"groups": {"1": {"de": {}}}}},
    ],
)
def test_malformed_catalog_is_rejected(payload) -> None:
    with pytest.raises(MalformedResponseError):
        parse_catalog(payload)


def test_unreachable_backend_raises_after_retries() -> None:
    backend = AiohttpFilterBackend(
        catalog_url="http://127.0.0.1:9/filters.json",
        rules_url_template="http://127.0.0.1:9/filters/{filter_id}.txt",
        timeout=2,
        retries=1,
    )

    with pytest.raises(BackendUnavailableError):
        asyncio.run(backend.fetch_catalog())

from __future__ import annotations

import pytest

from adfilters.core.auto_detect import AutoDetectDecision, auto_detect, primary_language
from adfilters.core.models import FilterMetadata


def _filter(group_id: int = 1, langs=()) -> FilterMetadata:
    return FilterMetadata(50, group_id, "Candidate", langs=tuple(langs))


@pytest.mark.parametrize(
    "locale, expected",
    [("de-AT", "de"), ("pt_BR", "pt"), ("EN", "en"), ("zh-Hans-CN", "zh")],
)
def test_primary_language(locale, expected) -> None:
    assert primary_language(locale) == expected


def test_uninstalled_group_is_skipped() -> None:
    assert auto_detect(_filter(group_id=9), {1, 2}, "en") is AutoDetectDecision.SKIP


def test_language_neutral_filter_is_installed_disabled() -> None:
    assert auto_detect(_filter(), {1}, "en") is AutoDetectDecision.INSTALL_DISABLED


def test_matching_language_is_installed_enabled() -> None:
    assert auto_detect(_filter(langs=["fr", "de_CH"]), {1}, "de-AT") is AutoDetectDecision.INSTALL_ENABLED


def test_foreign_language_is_skipped() -> None:
    assert auto_detect(_filter(langs=["ja"]), {1}, "en-US") is AutoDetectDecision.SKIP

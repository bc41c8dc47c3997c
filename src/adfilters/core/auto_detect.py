"""Auto-detect policy for catalog filters that are not installed locally.

The decision is deterministic and depends only on the filter's group and
declared languages:

- the filter's group must already be installed, otherwise it is skipped;
- a filter without languages is installed disabled, for the user to opt in;
- a filter whose languages include the locale's primary subtag ("de" for
  "de-AT") is installed enabled;
- a language-specific filter for other languages is skipped.
"""

from __future__ import annotations

from enum import Enum
from typing import Collection

from adfilters.core.models import FilterMetadata


class AutoDetectDecision(str, Enum):
    SKIP = "skip"
    INSTALL_DISABLED = "install_disabled"
    INSTALL_ENABLED = "install_enabled"


def primary_language(locale: str) -> str:
    """Return the lower-cased primary subtag of a locale ("pt_BR" -> "pt")."""

    return locale.replace("_", "-").split("-", 1)[0].strip().lower()


def auto_detect(metadata: FilterMetadata, installed_group_ids: Collection[int], locale: str) -> AutoDetectDecision:
    if metadata.group_id not in installed_group_ids:
        return AutoDetectDecision.SKIP
    if not metadata.langs:
        return AutoDetectDecision.INSTALL_DISABLED
    wanted = primary_language(locale)
    if any(primary_language(lang) == wanted for lang in metadata.langs):
        return AutoDetectDecision.INSTALL_ENABLED
    return AutoDetectDecision.SKIP

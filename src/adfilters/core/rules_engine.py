"""Rule text validation and rule row building (core domain)."""

from __future__ import annotations

from typing import Iterable, List

from adfilters.core.models import FilterRule

# Markers of rule syntaxes the content blocker converter cannot handle.
_UNSUPPORTED_MARKERS = (
    "adg_start_style_inject",
    "$$",
    "$@$",
    "%%",
    "##^",
)

_COMMENT_PREFIXES = ("!", "[Adblock")


def is_comment(line: str) -> bool:
    """Return True for filter list comments and the ABP header line."""

    stripped = line.strip()
    if stripped.startswith("#") and not stripped.startswith(("##", "#@#", "#?#", "#$#")):
        return True
    return stripped.startswith(_COMMENT_PREFIXES)


def is_valid_rule(text: str) -> bool:
    """Check that a rule line can be stored as an active rule.

    Empty lines and syntaxes the converter does not support are rejected.
    """

    trimmed = text.strip()
    if not trimmed:
        return False
    return not any(marker in trimmed for marker in _UNSUPPORTED_MARKERS)


def extract_rule_texts(lines: Iterable[str]) -> List[str]:
    """Return trimmed rule lines with comments and invalid rules removed."""

    texts: List[str] = []
    for line in lines:
        if is_comment(line):
            continue
        if not is_valid_rule(line):
            continue
        texts.append(line.strip())
    return texts


def build_rules(filter_id: int, texts: Iterable[str], start_id: int = 1) -> List[FilterRule]:
    """Number rule texts sequentially for one filter.

    Rule ids are only unique inside their filter, so a full replacement can
    always restart numbering.
    """

    return [
        FilterRule(filter_id=filter_id, rule_id=rule_id, text=text, enabled=True)
        for rule_id, text in enumerate(texts, start=start_id)
    ]

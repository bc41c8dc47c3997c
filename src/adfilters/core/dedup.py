"""Deduplication and fingerprint helpers for rule sets (core domain)."""

from __future__ import annotations

import hashlib
import re
from typing import Iterable, List


def _collapse_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def normalize_rule_text(text: str) -> str:
    """Normalize a rule line for duplicate detection.

    Rule syntax is case-sensitive (regex rules, CSS selectors), so only
    whitespace is collapsed.
    """

    return _collapse_whitespace(text)


def dedupe_rule_texts(texts: Iterable[str]) -> List[str]:
    """Drop repeated rules while keeping the first occurrence order."""

    seen: set[str] = set()
    unique: List[str] = []
    for text in texts:
        normalized = normalize_rule_text(text)
        if normalized in seen:
            continue
        seen.add(normalized)
        unique.append(normalized)
    return unique


def compute_rules_fingerprint(texts: Iterable[str]) -> str:
    """Return a deterministic hash of an ordered rule set."""

    payload = "\n".join(normalize_rule_text(text) for text in texts)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()

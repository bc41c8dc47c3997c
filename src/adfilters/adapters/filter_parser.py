"""Custom filter content parser.

Reads the ``! Key: value`` header block used by AdGuard/ABP style lists and
collects the valid rule lines. Anything that does not look like a filter list
(empty body, an HTML page, no usable rules) is rejected before it can reach
the store.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Dict, Optional
from urllib.parse import urlparse

from adfilters.core.dedup import dedupe_rule_texts
from adfilters.core.errors import MalformedFilterError
from adfilters.core.models import CustomFilterParseResult
from adfilters.core.rules_engine import extract_rule_texts

_HEADER_RE = re.compile(r"^!\s*([A-Za-z][A-Za-z \-]*?)\s*:\s*(.*)$")
_HTML_RE = re.compile(r"^\s*<(!doctype\s+html|html|head|body)\b", re.IGNORECASE)


def _parse_headers(lines: list[str]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in lines:
        match = _HEADER_RE.match(line.strip())
        if not match:
            continue
        key = match.group(1).strip().lower()
        headers.setdefault(key, match.group(2).strip())
    return headers


def _parse_updated(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def _name_from_url(url: str) -> str:
    parsed = urlparse(url)
    tail = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    return tail or parsed.netloc or url


class TextFilterParser:
    """CustomFilterParserPort implementation for plain-text filter lists."""

    def parse(self, content: str, url: str) -> CustomFilterParseResult:
        if not content or not content.strip():
            raise MalformedFilterError(f"{url}: empty content")

        lines = content.lstrip("\ufeff").splitlines()
        first_line = next((line for line in lines if line.strip()), "")
        if _HTML_RE.match(first_line):
            raise MalformedFilterError(f"{url}: got an HTML page instead of a filter list")

        rules = dedupe_rule_texts(extract_rule_texts(lines))
        if not rules:
            raise MalformedFilterError(f"{url}: no valid rules found")

        headers = _parse_headers(lines)
        return CustomFilterParseResult(
            url=url,
            name=headers.get("title") or _name_from_url(url),
            rules=rules,
            description=headers.get("description", ""),
            version=headers.get("version"),
            homepage=headers.get("homepage"),
            updated=_parse_updated(headers.get("timeupdated") or headers.get("last modified")),
        )

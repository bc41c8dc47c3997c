"""JSON-file adapter for the persisted update markers.

Keeps two values: when filters were last updated successfully and which
backend catalog version that update was based on. The file is written
atomically through a temp file so a crash never leaves half a state behind.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER = logging.getLogger(__name__)

_LAST_UPDATE = "last_update"
_CATALOG_VERSION = "catalog_version"


class JsonUpdateStateStore:
    """UpdateStatePort implementation stored in a small JSON file."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as exc:
            LOGGER.warning("Could not load update state %s: %s", self._path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, state: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump(state, handle, indent=2)
        temp_path.replace(self._path)

    def last_update_time(self) -> Optional[datetime]:
        raw = self._load().get(_LAST_UPDATE)
        return datetime.fromisoformat(raw) if raw else None

    def set_last_update_time(self, value: datetime) -> None:
        state = self._load()
        state[_LAST_UPDATE] = value.isoformat()
        self._save(state)

    def catalog_version(self) -> Optional[str]:
        return self._load().get(_CATALOG_VERSION)

    def set_catalog_version(self, version: str) -> None:
        state = self._load()
        state[_CATALOG_VERSION] = version
        self._save(state)

"""Static configuration for adfilters.

All user-editable settings (paths, backend endpoints, update behaviour,
logging) live in a single JSON file for quick edits without touching Python.
"""

from __future__ import annotations

import json
import os

from adfilters.core.config import AntibannerConfig, BackendConfig, UpdateConfig

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))

# config.json sits next to the project so users can tweak it without code edits.
CONFIG_PATH = os.path.join(PROJECT_ROOT, "config.json")

DEFAULT_CATALOG_URL = "https://filters.adtidy.org/extension/safari/filters.json"
DEFAULT_RULES_URL_TEMPLATE = "https://filters.adtidy.org/extension/safari/filters/{filter_id}.txt"


def _load_json_config(path: str) -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve(path: str) -> str:
    # Relative paths are anchored at the project root, not the cwd.
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


def load_settings(path: str = CONFIG_PATH) -> AntibannerConfig:
    """Build the typed configuration from config.json."""

    raw = _load_json_config(path)

    storage = raw.get("storage", {})
    backend = raw.get("backend", {})
    update = raw.get("update", {})

    return AntibannerConfig(
        db_path=_resolve(storage.get("db_path", "data/adfilters.db")),
        default_db_path=_resolve(storage.get("default_db_path", "data/default.db")),
        state_path=_resolve(storage.get("state_path", "data/update_state.json")),
        backend=BackendConfig(
            catalog_url=backend.get("catalog_url", DEFAULT_CATALOG_URL),
            rules_url_template=backend.get("rules_url_template", DEFAULT_RULES_URL_TEMPLATE),
            timeout=int(backend.get("timeout", 30)),
            retries=int(backend.get("retries", 3)),
        ),
        update=UpdateConfig(
            update_on_start=bool(update.get("update_on_start", True)),
            locale=str(update.get("locale", "en")),
            concurrency=int(update.get("concurrency", 4)),
        ),
    )


def load_logging_config(path: str = CONFIG_PATH) -> dict:
    """Return the optional "logging" section, or an empty dict."""

    if not os.path.exists(path):
        return {}
    return _load_json_config(path).get("logging", {})

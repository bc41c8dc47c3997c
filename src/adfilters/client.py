"""Filters backend client factory for adfilters.

Endpoints come from config.json, but deployments can point the engine at a
mirror and pass credentials through the environment without editing it.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

from adfilters.adapters.http_backend import AiohttpFilterBackend
from adfilters.core.config import BackendConfig


def build_backend(config: BackendConfig) -> AiohttpFilterBackend:
    """Create the aiohttp backend from config plus environment overrides.

    We read FILTERS_BACKEND_URL/FILTERS_API_KEY via python-dotenv to keep
    secrets out of the repo. FILTERS_BACKEND_URL replaces the catalog URL.
    """

    load_dotenv()

    catalog_url = os.getenv("FILTERS_BACKEND_URL") or config.catalog_url
    api_key = os.getenv("FILTERS_API_KEY")

    # Fail fast on a template the backend could never format.
    if "{filter_id}" not in config.rules_url_template:
        raise RuntimeError("backend.rules_url_template must contain {filter_id}")

    logging.getLogger(__name__).info("Initializing filters backend at %s", catalog_url)

    return AiohttpFilterBackend(
        catalog_url=catalog_url,
        rules_url_template=config.rules_url_template,
        timeout=config.timeout,
        retries=config.retries,
        api_key=api_key,
    )

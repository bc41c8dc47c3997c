"""Application entry point for the adfilters command line."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional

from art import tprint

from adfilters import settings
from adfilters.adapters.default_catalog import DefaultCatalogReader
from adfilters.adapters.event_formatting import format_event, format_filter_row, format_group_row
from adfilters.adapters.filter_parser import TextFilterParser
from adfilters.adapters.sqlite_store import SQLiteFilterStore
from adfilters.adapters.update_state import JsonUpdateStateStore
from adfilters.client import build_backend
from adfilters.core.antibanner import Antibanner
from adfilters.core.config import AntibannerConfig
from adfilters.core.errors import AntibannerError, DefaultCatalogUnavailableError
from adfilters.core.events import Event, EventKind
from adfilters.core.models import UpdateState
from adfilters.logging_setup import configure_logging

NAME = "ADFILTERS"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


def _log_event(event: Event) -> None:
    level = logging.WARNING if event.kind in {EventKind.UPDATE_FAILED, EventKind.NOT_INSTALLED} else logging.INFO
    logging.getLogger(__name__).log(level, format_event(event))


def build_antibanner(config: AntibannerConfig) -> Antibanner:
    """Wire the production adapters into a ready-to-start Antibanner."""

    logger = logging.getLogger(__name__)
    for path in (config.db_path, config.state_path):
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

    try:
        default_catalog = DefaultCatalogReader(config.default_db_path)
    except DefaultCatalogUnavailableError:
        logger.warning("Default catalog %s is missing; starting without bundled filters", config.default_db_path)
        default_catalog = None

    antibanner = Antibanner(
        backend=build_backend(config.backend),
        update_state=JsonUpdateStateStore(config.state_path),
        parser=TextFilterParser(),
        default_catalog=default_catalog,
        locale=config.update.locale,
        concurrency=config.update.concurrency,
    )
    store = SQLiteFilterStore(config.db_path)
    store.init_db()
    antibanner.set_database(store)
    antibanner.bus.subscribe(_log_event)
    return antibanner


async def _update(antibanner: Antibanner, force: bool) -> int:
    await antibanner.start(update=False)
    result = await antibanner.update_filters(force=force)
    if result.state is UpdateState.FAILED:
        print(f"Update failed: {result.error}")
        return 1
    if result.state is UpdateState.SKIPPED:
        print("Filters are up to date." if result.error is None else f"Update skipped: {result.error}")
        return 0
    print(f"Updated {len(result.updated_filters)} filters.")
    for metadata in result.updated_filters:
        print(f"  {format_filter_row(metadata)}")
    return 0


def _list_filters(antibanner: Antibanner) -> int:
    groups = {group.group_id: group for group in antibanner.groups()}
    filters = antibanner.filters()
    if not filters:
        print("No filters installed.")
        return 0
    for metadata in filters:
        print(format_filter_row(metadata, groups.get(metadata.group_id)))
    return 0


def _list_groups(antibanner: Antibanner) -> int:
    for group in antibanner.groups():
        print(format_group_row(group, len(antibanner.filters_for_group(group.group_id))))
    return 0


async def _add_custom(antibanner: Antibanner, url: str) -> int:
    existing = antibanner.custom_filter_id_by_url(url)
    if existing is not None:
        print(f"{url} is already subscribed as #{existing}.")
        return 0
    try:
        result = await antibanner.load_custom_filter(url)
    except AntibannerError as exc:
        print(f"Could not load {url}: {exc}")
        return 1
    added = await antibanner.subscribe_custom_filter_from_result(result)
    if not added:
        print(f"Custom filter {url} was not added.")
        return 1
    print(f"Added custom filter '{result.name}' as #{antibanner.custom_filter_id_by_url(url)}.")
    return 0


def _set_enabled(antibanner: Antibanner, filter_id: int, enabled: bool) -> int:
    if not antibanner.check_if_filter_installed(filter_id):
        print(f"Filter #{filter_id} is not installed.")
        return 1
    if not antibanner.set_filter_enabled(filter_id, enabled, from_ui=True):
        print(f"Filter #{filter_id} could not be changed.")
        return 1
    antibanner.enable_groups_with_enabled_filters()
    print(f"Filter #{filter_id} {'enabled' if enabled else 'disabled'}.")
    return 0


async def _dispatch(antibanner: Antibanner, args: argparse.Namespace, config: AntibannerConfig) -> int:
    if args.command == "update":
        return await _update(antibanner, args.force)

    await antibanner.start(update=config.update.update_on_start and args.command is None)
    if args.command == "list":
        return _list_filters(antibanner)
    if args.command == "groups":
        return _list_groups(antibanner)
    if args.command == "add-custom":
        return await _add_custom(antibanner, args.url)
    if args.command == "enable":
        return _set_enabled(antibanner, args.filter_id, True)
    if args.command == "disable":
        return _set_enabled(antibanner, args.filter_id, False)
    return _list_filters(antibanner)


def _run(args: argparse.Namespace) -> int:
    _print_banner()
    config = settings.load_settings(args.config)
    configure_logging(settings.load_logging_config(args.config))
    logger = logging.getLogger(__name__)
    logger.info("Starting adfilters")

    antibanner = build_antibanner(config)
    try:
        return asyncio.run(_dispatch(antibanner, args, config))
    finally:
        antibanner.stop()
        antibanner.application_did_enter_background()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="adfilters")
    parser.add_argument("--config", default=settings.CONFIG_PATH, help="Path to config.json")
    subparsers = parser.add_subparsers(dest="command")

    update_parser = subparsers.add_parser("update", help="Sync filters with the backend")
    update_parser.add_argument("--force", action="store_true", help="Merge even if the catalog did not change")
    subparsers.add_parser("list", help="List installed filters")
    subparsers.add_parser("groups", help="List filter groups")
    custom_parser = subparsers.add_parser("add-custom", help="Subscribe to a custom filter list by URL")
    custom_parser.add_argument("url")
    enable_parser = subparsers.add_parser("enable", help="Enable a filter")
    enable_parser.add_argument("filter_id", type=int)
    disable_parser = subparsers.add_parser("disable", help="Disable a filter")
    disable_parser.add_argument("filter_id", type=int)

    args = parser.parse_args(argv)
    sys.exit(_run(args))


if __name__ == "__main__":
    main()

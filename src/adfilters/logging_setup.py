"""Logging configuration for the command line.

Driven by the ``logging`` section of config.json. Values of the environment
variables named under ``redact.patterns`` (API keys, backend tokens) are
masked in every emitted line, on the console and in the rotating log file.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional

from dotenv import load_dotenv

from adfilters import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_PATH = "logs/adfilters.log"
DEFAULT_MASK = "***"


class RedactingFormatter(logging.Formatter):
    """Formatter that replaces known secret values with a mask."""

    def __init__(self, secrets: Iterable[str], mask: str = DEFAULT_MASK) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        # Longest first, so a secret containing another is masked whole.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)
        self._mask = mask

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, self._mask)
        return message


def redaction_values(redact_config: Optional[dict]) -> List[str]:
    """Resolve the configured environment variable names to their values."""

    if not redact_config or not redact_config.get("enabled", False):
        return []
    return [value for value in (os.getenv(name) for name in redact_config.get("patterns", [])) if value]


def _file_handler(file_config: dict, project_root: str) -> RotatingFileHandler:
    path = file_config.get("path", DEFAULT_LOG_PATH)
    if not os.path.isabs(path):
        path = os.path.join(project_root, path)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_config.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_config.get("backup_count", 5)),
        encoding="utf-8",
    )


def build_handlers(config: dict, project_root: str = settings.PROJECT_ROOT) -> List[logging.Handler]:
    """Create the console and file handlers the config asks for."""

    if not config.get("enabled", False):
        return []
    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    redact_config = config.get("redact", {})
    formatter = RedactingFormatter(redaction_values(redact_config), redact_config.get("mask", DEFAULT_MASK))

    handlers: List[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_config = config.get("file", {})
    if file_config.get("enabled", False):
        handlers.append(_file_handler(file_config, project_root))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: dict) -> None:
    load_dotenv()
    handlers = build_handlers(config)
    if not handlers:
        return
    logging.basicConfig(level=handlers[0].level, handlers=handlers)

"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BackendConfig:
    """Where and how the filters backend is reached."""

    catalog_url: str
    rules_url_template: str
    timeout: int = 30
    retries: int = 3


@dataclass(frozen=True)
class UpdateConfig:
    """Sync engine behaviour."""

    update_on_start: bool = True
    # Primary language used by the auto-detect policy, e.g. "en" or "de-AT".
    locale: str = "en"
    # Max rule bodies downloaded at the same time during one sync.
    concurrency: int = 4


@dataclass(frozen=True)
class AntibannerConfig:
    """Everything needed to assemble a running Antibanner."""

    db_path: str
    default_db_path: str
    state_path: str
    backend: BackendConfig
    update: UpdateConfig = field(default_factory=UpdateConfig)

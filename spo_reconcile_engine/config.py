"""
Configuration module for the SharePoint Online Reconciliation Engine.
Defines all tunable parameters, API endpoints, and operational settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class ConfigurationError(Exception):
    """Raised when the engine configuration is invalid. Fatal for a run."""
    pass


# ─── Throttling ─────────────────────────────────────────────────────────────

THROTTLE_STATUS_CODES = frozenset({429, 503})   # SharePoint "slow down" signals
MAX_RETRIES = 7                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor
MIN_RETRY_AFTER_SECONDS = 1.0     # Floor applied to server wait hints


def backoff_schedule(
    initial: float = INITIAL_BACKOFF_SECONDS,
    multiplier: float = BACKOFF_MULTIPLIER,
    cap: float = MAX_BACKOFF_SECONDS,
    retries: int = MAX_RETRIES,
) -> tuple[float, ...]:
    """Geometric delay schedule, capped: 2, 4, 8, 16, 32, 64, 120."""
    delays = []
    delay = initial
    for _ in range(retries):
        delays.append(min(delay, cap))
        delay *= multiplier
    return tuple(delays)


@dataclass(frozen=True)
class ThrottlePolicy:
    """Retry schedule and throttled status class, injected into the executor."""
    delays: tuple[float, ...] = field(default_factory=backoff_schedule)
    status_codes: frozenset[int] = THROTTLE_STATUS_CODES
    min_retry_after: float = MIN_RETRY_AFTER_SECONDS

    @property
    def max_retries(self) -> int:
        return len(self.delays)


# ─── SharePoint API Settings ────────────────────────────────────────────────

ODATA_ACCEPT = "application/json;odata=nometadata"
HTTP_TIMEOUT_SECONDS = 60.0
CONNECT_TIMEOUT_SECONDS = 30.0
MAX_CONCURRENT_REQUESTS = 4       # Parallel requests per client

# Pagination
DEFAULT_PAGE_SIZE = 5000          # RowLimit for RenderListDataAsStream
MAX_PAGES_PER_LIST = 10000        # Safety cap on pagination loops

# CSOM ProcessQuery batching
CSOM_BATCH_SIZE = 200             # Items per ProcessQuery request
CSOM_MAX_BATCH_SIZE = 500         # Keeps action ids clear of the query id range
CSOM_QUERY_ID_BASE = 2000         # Query action ids are CSOM_QUERY_ID_BASE + index
CSOM_APPLICATION_NAME = "SPOReconcileEngine"

DOCUMENT_LIBRARY_TEMPLATE = 101
LIMITED_ACCESS_ROLE = "Limited Access"

# Reconciliation
DEFAULT_SIZE_ISSUE_THRESHOLD = 0.5    # Target smaller than half of source = size issue
NEWER_AT_SOURCE_HOURS = 24

DEFAULT_EXCLUDED_LIBRARIES = [
    "Style Library",
    "Form Templates",
    "Site Collection Documents",
    "Site Collection Images",
    "_catalogs/hubsite",
    "Preservation Hold Library",
    "appdata",
]

# List compare
THRESHOLD_TYPES = ("percentage", "count")
DEFAULT_LIST_THRESHOLD_PERCENT = 10

DEFAULT_EXCLUDED_LISTS = [
    "MicroFeed",
    "Style Library",
    "appdata",
    "TaxonomyHiddenList",
    "Composed Looks",
    "Master Page Gallery",
    "Solution Gallery",
    "Theme Gallery",
    "Web Part Gallery",
    "Workflow Tasks",
    "User Information List",
    "Converted Forms",
    "Customized Reports",
    "Form Templates",
    "Content type publishing error log",
    "Team Message History",
    "Channel Settings",
]
OPTIONAL_EXCLUDED_LISTS = ["Site Assets"]      # Excluded unless include_site_assets
NEVER_EXCLUDED_LISTS = ["Site Pages"]

# Cache
DEFAULT_CACHE_TTL_HOURS = 48


# ─── Task Settings ──────────────────────────────────────────────────────────

@dataclass
class CompareConfig:
    """Controls for the document compare task."""
    size_issue_threshold: float = DEFAULT_SIZE_ISSUE_THRESHOLD
    page_size: int = DEFAULT_PAGE_SIZE
    include_aspx_pages: bool = False
    include_hidden_libraries: bool = False
    excluded_libraries: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_LIBRARIES)
    )
    use_cache: bool = False
    cache_ttl_hours: int = DEFAULT_CACHE_TTL_HOURS


@dataclass
class PermissionScope:
    """Which objects the permission audit visits. Each toggle is independent."""
    include_site: bool = True
    include_lists: bool = True
    include_folders: bool = True
    include_items: bool = False           # Can be very slow for large libraries
    include_inherited: bool = False       # Only unique permissions by default
    include_hidden_lists: bool = False

    @property
    def wants_lists(self) -> bool:
        return self.include_lists or self.include_folders or self.include_items


@dataclass
class ListCompareConfig:
    """Item-count compare of every list across a site pair."""
    threshold_type: str = "percentage"    # "percentage" or "count"
    threshold_value: float = DEFAULT_LIST_THRESHOLD_PERCENT
    include_site_assets: bool = False
    include_hidden_lists: bool = False
    excluded_lists: list[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_LISTS)
    )

    def excluded_titles(self) -> set[str]:
        titles = {t.lower() for t in self.excluded_lists}
        if not self.include_site_assets:
            titles.update(t.lower() for t in OPTIONAL_EXCLUDED_LISTS)
        return titles - {t.lower() for t in NEVER_EXCLUDED_LISTS}


@dataclass
class NavigationConfig:
    """Navigation settings compare / apply."""
    apply: bool = False                   # Write source settings to target


@dataclass
class OutputConfig:
    """Output directory settings."""
    base_dir: str = ""
    task_name: str = "default"

    def __post_init__(self):
        if not self.base_dir:
            self.base_dir = os.path.join(os.getcwd(), "spo_reconcile_output")

    @property
    def results_dir(self) -> Path:
        return Path(self.base_dir) / "results"

    @property
    def cache_dir(self) -> Path:
        return Path(self.base_dir) / ".cache"


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for the entire engine."""
    compare: CompareConfig = field(default_factory=CompareConfig)
    permissions: PermissionScope = field(default_factory=PermissionScope)
    list_compare: ListCompareConfig = field(default_factory=ListCompareConfig)
    navigation: NavigationConfig = field(default_factory=NavigationConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    throttle: ThrottlePolicy = field(default_factory=ThrottlePolicy)
    csom_batch_size: int = CSOM_BATCH_SIZE
    site_pairs: list[tuple[str, Optional[str]]] = field(default_factory=list)
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read configuration {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration {path} must be a JSON object")

        config = cls()
        for section, target in (
            ("compare", config.compare),
            ("permissions", config.permissions),
            ("list_compare", config.list_compare),
            ("navigation", config.navigation),
            ("output", config.output),
        ):
            for k, v in (data.get(section) or {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)

        try:
            if "throttle" in data:
                t = data["throttle"]
                config.throttle = ThrottlePolicy(
                    delays=backoff_schedule(
                        initial=float(t.get("initial_backoff_seconds", INITIAL_BACKOFF_SECONDS)),
                        multiplier=float(t.get("backoff_multiplier", BACKOFF_MULTIPLIER)),
                        cap=float(t.get("max_backoff_seconds", MAX_BACKOFF_SECONDS)),
                        retries=int(t.get("max_retries", MAX_RETRIES)),
                    ),
                )

            for pair in data.get("site_pairs", []):
                if isinstance(pair, dict):
                    config.site_pairs.append((pair.get("source", ""), pair.get("target")))
                elif isinstance(pair, (list, tuple)) and pair:
                    config.site_pairs.append((pair[0], pair[1] if len(pair) > 1 else None))
                else:
                    config.site_pairs.append((str(pair), None))
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Invalid throttle or site_pairs in {path}: {e}") from e

        config.csom_batch_size = data.get("csom_batch_size", CSOM_BATCH_SIZE)
        config.verbose = data.get("verbose", False)
        return config

    def validate(self) -> None:
        """Raise ConfigurationError describing the first invalid setting."""
        ratio = self.compare.size_issue_threshold
        if not isinstance(ratio, (int, float)) or not 0 <= ratio <= 1:
            raise ConfigurationError(
                f"size_issue_threshold must be between 0 and 1, got {ratio!r}"
            )
        if not isinstance(self.compare.page_size, int) or self.compare.page_size <= 0:
            raise ConfigurationError(
                f"page_size must be a positive integer, got {self.compare.page_size!r}"
            )
        lists = self.list_compare
        if lists.threshold_type not in THRESHOLD_TYPES:
            raise ConfigurationError(
                f"threshold_type must be one of {THRESHOLD_TYPES}, got {lists.threshold_type!r}"
            )
        value = lists.threshold_value
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ConfigurationError(
                f"threshold_value must be a non-negative number, got {value!r}"
            )
        batch = self.csom_batch_size
        if isinstance(batch, bool) or not isinstance(batch, int) \
                or not 0 < batch <= CSOM_MAX_BATCH_SIZE:
            raise ConfigurationError(
                f"csom_batch_size must be in 1..{CSOM_MAX_BATCH_SIZE}, "
                f"got {self.csom_batch_size!r}"
            )
        if any(d < 0 for d in self.throttle.delays):
            raise ConfigurationError("Throttle delays must be non-negative")
        for source, target in self.site_pairs:
            for url in (source, target):
                if url is not None and not str(url).lower().startswith("https://"):
                    raise ConfigurationError(f"Site URL must be absolute https: {url!r}")


def utc_run_id() -> str:
    """Run identifier: the UTC start timestamp."""
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")

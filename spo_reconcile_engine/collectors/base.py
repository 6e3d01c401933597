"""
Base collector class — Shared plumbing for the per-site collectors.
Each collector records its own errors and warnings instead of raising, so a
failed list or item never aborts the rest of a site.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod

from ..sharepoint.client import SharePointClient

logger = logging.getLogger("spo_reconcile_engine.collectors")


class CollectorResult:
    """Errors, warnings and counters for one collector invocation."""

    def __init__(self, collector_name: str, site_url: str = ""):
        self.collector_name = collector_name
        self.site_url = site_url
        self.errors: list[str] = []
        self.warnings: list[str] = []
        self.counters: dict[str, int] = {}
        self.started_at = time.time()
        self.completed_at: float = 0.0

    def add_error(self, error: str):
        self.errors.append(error)
        logger.error(f"[{self.collector_name}] {error}")

    def add_warning(self, warning: str):
        self.warnings.append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")

    def count(self, key: str, n: int = 1):
        self.counters[key] = self.counters.get(key, 0) + n

    def finish(self):
        self.completed_at = time.time()
        logger.info(
            f"[{self.collector_name}] {self.site_url} completed in "
            f"{self.duration_seconds}s — {self.counters}"
        )

    @property
    def duration_seconds(self) -> float:
        end = self.completed_at or time.time()
        return round(end - self.started_at, 2)


class BaseCollector(ABC):
    """
    Abstract base class for the per-site collectors.

    Subclasses implement collect() for one site; the base class holds the
    client and the CollectorResult of the latest invocation.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, client: SharePointClient):
        self.client = client
        self.result = CollectorResult(self.name)

    def _begin(self, site_url: str) -> CollectorResult:
        self.result = CollectorResult(self.name, site_url)
        logger.info(f"[{self.name}] Starting collection for {site_url}...")
        return self.result

    @abstractmethod
    async def collect(self, site_url: str, *args, **kwargs):
        """Gather this collector's data for ``site_url``."""
        raise NotImplementedError

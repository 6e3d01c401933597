"""
Document Collector
Lists a site's document libraries and enumerates their files and folders,
optionally through the enumeration cache.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..cache.store import EnumerationCache
from ..config import CompareConfig
from ..models import ListInfo, RemoteItem
from ..sharepoint.client import SharePointClient
from ..sharepoint.paging import PagedListFetcher, is_aspx_page
from .base import BaseCollector

logger = logging.getLogger("spo_reconcile_engine.collectors.documents")


class DocumentCollector(BaseCollector):
    name = "documents"
    description = "Document library enumeration for compare"

    def __init__(
        self,
        client: SharePointClient,
        config: CompareConfig,
        cache: Optional[EnumerationCache] = None,
        run_id: str = "",
    ):
        super().__init__(client)
        self.config = config
        self.cache = cache
        self.run_id = run_id
        self.fetcher = PagedListFetcher(client)
        self._excluded = {t.lower() for t in config.excluded_libraries}

    def is_excluded(self, library: ListInfo) -> bool:
        if library.title.lower() in self._excluded:
            return True
        path = library.server_relative_url.lower()
        return any(path.endswith("/" + ex) for ex in self._excluded)

    async def collect(self, site_url: str) -> list[ListInfo]:
        """Document libraries on the site, minus hidden and excluded ones."""
        libraries = []
        for lst in await self.client.get_lists(site_url):
            if not lst.is_library:
                continue
            if lst.hidden and not self.config.include_hidden_libraries:
                continue
            if self.is_excluded(lst):
                logger.debug(f"Excluding library '{lst.title}' on {site_url}")
                continue
            libraries.append(lst)
        return libraries

    def _apply_filters(self, items: list[RemoteItem]) -> list[RemoteItem]:
        if self.config.include_aspx_pages:
            return items
        return [item for item in items if not is_aspx_page(item)]

    async def enumerate_library(self, site_url: str, library: ListInfo) -> list[RemoteItem]:
        """
        Every file and folder in ``library``. Served from the cache when a
        fresh snapshot exists and caching is enabled.

        Snapshots are stored unfiltered so one entry serves runs with and
        without ``include_aspx_pages``.
        """
        if self.cache and self.config.use_cache:
            cached = self.cache.get(site_url, library.title)
            if cached is not None:
                logger.info(f"[{self.name}] Using cached snapshot of '{library.title}' ({len(cached)} items)")
                self.result.count("libraries_from_cache")
                return self._apply_filters(cached)

        items = await self.fetcher.collect(
            site_url,
            library.title,
            page_size=self.config.page_size,
            include_aspx=self.cache is not None or self.config.include_aspx_pages,
        )
        if self.cache:
            self.cache.put(site_url, library.title, items, self.run_id)

        items = self._apply_filters(items)
        self.result.count("items_enumerated", len(items))
        return items

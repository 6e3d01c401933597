"""
List Inventory Collector
Every list on a site with its item count, minus system and excluded lists.
"""

from __future__ import annotations

import logging

from ..config import ListCompareConfig
from ..models import ListInfo
from ..sharepoint.client import SharePointClient
from .base import BaseCollector

logger = logging.getLogger("spo_reconcile_engine.collectors.lists")


class ListInventoryCollector(BaseCollector):
    name = "lists"
    description = "List inventory with item counts"

    def __init__(self, client: SharePointClient, config: ListCompareConfig):
        super().__init__(client)
        self.config = config
        self._excluded = config.excluded_titles()

    async def collect(self, site_url: str) -> list[ListInfo]:
        result = self._begin(site_url)
        lists = []
        for lst in await self.client.get_lists(site_url):
            if lst.title.lower() in self._excluded:
                result.count("excluded")
                continue
            if lst.hidden and not self.config.include_hidden_lists:
                result.count("hidden")
                continue
            lists.append(lst)
        result.count("lists", len(lists))
        logger.debug(f"[{self.name}] {site_url}: {len(lists)} lists kept")
        result.finish()
        return lists

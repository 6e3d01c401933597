"""
Pair works — What the orchestrator does for one site pair.

Each work fills in a SitePairRun and raises only for conditions the
orchestrator handles at pair level (authentication, cancellation, or an
unexpected failure). Partial results stay on the record either way.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..cache.store import EnumerationCache
from ..collectors import (
    DocumentCollector,
    ListInventoryCollector,
    NavigationSettingsCollector,
    PermissionAssignmentCollector,
)
from ..config import CSOM_BATCH_SIZE, DEFAULT_PAGE_SIZE, CompareConfig, ListCompareConfig, PermissionScope
from ..models import (
    ListCompareStatus,
    ListInfo,
    NavigationComparison,
    NavigationStatus,
    PairStatus,
    SitePair,
    SitePairRun,
    TaskRunResult,
)
from ..reconcile import CollectionRef, ReconciliationDiffer, aggregate, compare_list_counts
from ..sharepoint.client import SharePointAPIError, SharePointClient
from ..sharepoint.paging import EnumerationError
from ..sharepoint.urls import domain_of

logger = logging.getLogger("spo_reconcile_engine.orchestrator")


class PairWork(ABC):
    """Base class for the unit of work run once per site pair."""

    task_type = "base"
    requires_target = False

    def domains(self, pair: SitePair) -> list[str]:
        """Network domains the pair touches, source first."""
        domains = [domain_of(pair.source_url)]
        if pair.target_url and domain_of(pair.target_url) not in domains:
            domains.append(domain_of(pair.target_url))
        return domains

    @abstractmethod
    async def run(self, pair: SitePair, record: SitePairRun, provider, result: TaskRunResult) -> None:
        raise NotImplementedError


async def _site_title(client: SharePointClient, site_url: str) -> str:
    info = await client.get_site_info(site_url)
    if not info.ok:
        raise SharePointAPIError(0, f"Cannot read site: {info.error_message}", site_url)
    return info.data.title


def pair_libraries(
    source: list[ListInfo], target: list[ListInfo]
) -> tuple[list[tuple[ListInfo, ListInfo]], list[ListInfo], list[ListInfo]]:
    """
    Match lists or libraries by title (case-insensitive), then by root-folder
    URL name.

    Returns ``(pairs, source_only, target_only)``.
    """
    remaining = list(target)
    pairs = []
    unmatched = []

    for lib in source:
        match = next((t for t in remaining if t.title.lower() == lib.title.lower()), None)
        if match is None:
            unmatched.append(lib)
            continue
        remaining.remove(match)
        pairs.append((lib, match))

    source_only = []
    for lib in unmatched:
        match = next(
            (t for t in remaining if lib.url_name and t.url_name.lower() == lib.url_name.lower()),
            None,
        )
        if match is None:
            source_only.append(lib)
            continue
        remaining.remove(match)
        pairs.append((lib, match))

    return pairs, source_only, remaining


# ─── Document compare ───────────────────────────────────────────────────────

class DocumentCompareWork(PairWork):
    """Enumerate every library on both sites and reconcile them."""

    task_type = "compare"
    requires_target = True

    def __init__(
        self,
        config: Optional[CompareConfig] = None,
        cache: Optional[EnumerationCache] = None,
        run_id: str = "",
    ):
        self.config = config or CompareConfig()
        self.cache = cache
        self.run_id = run_id
        self.differ = ReconciliationDiffer(self.config.size_issue_threshold)

    async def run(self, pair: SitePair, record: SitePairRun, provider, result: TaskRunResult) -> None:
        source_client = await provider.client_for(domain_of(pair.source_url))
        target_client = await provider.client_for(domain_of(pair.target_url))

        record.source_title = await _site_title(source_client, pair.source_url)
        record.target_title = await _site_title(target_client, pair.target_url)

        source = DocumentCollector(source_client, self.config, self.cache, self.run_id)
        target = DocumentCollector(target_client, self.config, self.cache, self.run_id)

        matched, source_only, target_only = pair_libraries(
            await source.collect(pair.source_url),
            await target.collect(pair.target_url),
        )
        result.log(
            f"{pair.label}: {len(matched)} paired libraries, "
            f"{len(source_only)} source-only, {len(target_only)} target-only"
        )

        for src_lib, tgt_lib in matched:
            src_items = await self._enumerate(source, pair.source_url, src_lib, record)
            if src_items is None:
                continue
            tgt_items = await self._enumerate(target, pair.target_url, tgt_lib, record)
            if tgt_items is None:
                continue
            diff = self.differ.diff(
                src_items,
                tgt_items,
                CollectionRef(pair.source_url, src_lib.title),
                CollectionRef(pair.target_url, tgt_lib.title),
            )
            record.comparisons.extend(diff.records)
            record.libraries_processed.append(src_lib.title)
            result.log(
                f"  {src_lib.title}: {diff.aggregates.found} found, {diff.aggregates.size_issue} size issues, "
                f"{diff.aggregates.source_only} source-only, {diff.aggregates.target_only} target-only"
            )

        for lib in source_only:
            items = await self._enumerate(source, pair.source_url, lib, record)
            if items is not None:
                record.comparisons.extend(
                    self.differ.one_sided(items, CollectionRef(pair.source_url, lib.title), source_side=True)
                )
                record.libraries_processed.append(lib.title)
        for lib in target_only:
            items = await self._enumerate(target, pair.target_url, lib, record)
            if items is not None:
                record.comparisons.extend(
                    self.differ.one_sided(items, CollectionRef(pair.target_url, lib.title), source_side=False)
                )
                record.libraries_processed.append(lib.title)

        record.counts = aggregate(record.comparisons).to_dict()
        record.counts["libraries"] = len(record.libraries_processed)
        record.counts["libraries_from_cache"] = sum(
            c.result.counters.get("libraries_from_cache", 0) for c in (source, target)
        )
        if record.library_errors:
            record.status = PairStatus.FAILED
            record.error_message = f"{len(record.library_errors)} library enumeration(s) failed"
        else:
            record.status = PairStatus.SUCCEEDED

    @staticmethod
    async def _enumerate(collector: DocumentCollector, site_url: str, library: ListInfo, record: SitePairRun):
        try:
            return await collector.enumerate_library(site_url, library)
        except EnumerationError as e:
            message = f"{site_url} '{library.title}': {e}"
            record.library_errors.append(message)
            logger.error(f"Enumeration failed for {message}")
            return None


# ─── List compare ───────────────────────────────────────────────────────────

class ListCompareWork(PairWork):
    """Compare item counts of every list across a site pair."""

    task_type = "list-compare"
    requires_target = True

    def __init__(self, config: Optional[ListCompareConfig] = None):
        self.config = config or ListCompareConfig()

    async def run(self, pair: SitePair, record: SitePairRun, provider, result: TaskRunResult) -> None:
        source_client = await provider.client_for(domain_of(pair.source_url))
        target_client = await provider.client_for(domain_of(pair.target_url))

        record.source_title = await _site_title(source_client, pair.source_url)
        record.target_title = await _site_title(target_client, pair.target_url)

        source_lists = await ListInventoryCollector(source_client, self.config).collect(pair.source_url)
        target_lists = await ListInventoryCollector(target_client, self.config).collect(pair.target_url)
        result.log(f"{pair.label}: source {len(source_lists)} lists, target {len(target_lists)} lists")

        matched, source_only, target_only = pair_libraries(source_lists, target_lists)
        record.list_comparisons = compare_list_counts(
            matched, source_only, target_only, pair.source_url, pair.target_url, self.config
        )

        counts = {status.value: 0 for status in ListCompareStatus}
        for comparison in record.list_comparisons:
            counts[comparison.status.value] += 1
        record.counts = {
            "lists": len(record.list_comparisons),
            "match": counts[ListCompareStatus.MATCH.value],
            "mismatch": counts[ListCompareStatus.MISMATCH.value],
            "source_only": counts[ListCompareStatus.SOURCE_ONLY.value],
            "target_only": counts[ListCompareStatus.TARGET_ONLY.value],
        }
        result.log(
            f"  Matches: {record.counts['match']}, Mismatches: {record.counts['mismatch']}, "
            f"Source only: {record.counts['source_only']}, Target only: {record.counts['target_only']}"
        )
        record.status = PairStatus.SUCCEEDED


# ─── Permission audit ───────────────────────────────────────────────────────

class PermissionAuditWork(PairWork):
    """Collect unique permission assignments on the source site."""

    task_type = "permissions"

    def __init__(
        self,
        scope: Optional[PermissionScope] = None,
        csom_batch_size: int = CSOM_BATCH_SIZE,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.scope = scope or PermissionScope()
        self.csom_batch_size = csom_batch_size
        self.page_size = page_size

    def domains(self, pair: SitePair) -> list[str]:
        return [domain_of(pair.source_url)]

    async def run(self, pair: SitePair, record: SitePairRun, provider, result: TaskRunResult) -> None:
        client = await provider.client_for(domain_of(pair.source_url))
        collector = PermissionAssignmentCollector(
            client, batch_size=self.csom_batch_size, page_size=self.page_size
        )
        record.permissions = await collector.collect(pair.source_url, self.scope)
        record.source_title = collector.site_title

        record.counts = dict(collector.result.counters)
        record.counts.update({
            "assignments": len(record.permissions),
            "objects": len({p.object_url for p in record.permissions}),
            "principals": len({p.principal_login for p in record.permissions}),
            "warnings": len(collector.warnings),
            "errors": len(collector.errors),
        })
        for warning in collector.warnings:
            result.log(f"  ⚠ {warning}")
        if collector.errors:
            record.library_errors.extend(collector.errors)
            record.status = PairStatus.FAILED
            record.error_message = collector.errors[0]
        else:
            record.status = PairStatus.SUCCEEDED


# ─── Navigation settings ────────────────────────────────────────────────────

class NavigationSettingsWork(PairWork):
    """Compare navigation flags, and optionally copy source settings to the target."""

    task_type = "navigation"
    requires_target = True

    def __init__(self, apply: bool = False):
        self.apply = apply

    async def run(self, pair: SitePair, record: SitePairRun, provider, result: TaskRunResult) -> None:
        source = NavigationSettingsCollector(await provider.client_for(domain_of(pair.source_url)))
        target = NavigationSettingsCollector(await provider.client_for(domain_of(pair.target_url)))

        comparison = NavigationComparison()
        record.navigation = comparison

        src = await source.collect(pair.source_url)
        tgt = await target.collect(pair.target_url)
        comparison.source = src.data
        comparison.target = tgt.data
        if not src.ok or not tgt.ok:
            comparison.status = NavigationStatus.ERROR
            comparison.error_message = src.error_message or tgt.error_message
            record.status = PairStatus.FAILED
            record.error_message = comparison.error_message
            return

        if comparison.all_match:
            comparison.status = NavigationStatus.MATCH
        elif not self.apply:
            comparison.status = NavigationStatus.MISMATCH
        else:
            applied = await target.apply(pair.target_url, src.data)
            if applied.ok:
                comparison.status = NavigationStatus.APPLIED
                comparison.target = src.data
                result.log(f"  Applied source navigation settings to {pair.target_url}")
            else:
                comparison.status = NavigationStatus.FAILED
                comparison.error_message = applied.error_message

        record.counts = {comparison.status.value.lower(): 1}
        if comparison.status == NavigationStatus.FAILED:
            record.status = PairStatus.FAILED
            record.error_message = comparison.error_message
        else:
            record.status = PairStatus.SUCCEEDED

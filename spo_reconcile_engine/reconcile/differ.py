"""
Reconciliation differ — Joins two independently enumerated item sets on
their comparison keys and classifies every key into exactly one outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ..config import DEFAULT_SIZE_ISSUE_THRESHOLD
from ..models import (
    ComparisonRecord,
    DiffAggregates,
    DiffResult,
    ReconciliationOutcome,
    RemoteItem,
)
from ..sharepoint.urls import absolute_url
from .normalizer import normalize

logger = logging.getLogger("spo_reconcile_engine.reconcile")


@dataclass(frozen=True)
class CollectionRef:
    """Where a set of items came from: the anchor site and library title."""
    site_url: str
    title: str

    def key_for(self, item: RemoteItem) -> str:
        return normalize(item.server_relative_url, self.site_url, self.title)


def is_size_issue(source_size: int, target_size: int, threshold: float) -> bool:
    if target_size == 0 and source_size > 0:
        return True
    return target_size < source_size * threshold


class ReconciliationDiffer:
    """
    Classifies source and target items:

      - source key missing on target          → SourceOnly
      - target empty or below ratio of source → SizeIssue
      - otherwise present on both             → Found
      - target key missing on source          → TargetOnly
    """

    def __init__(self, size_issue_threshold: float = DEFAULT_SIZE_ISSUE_THRESHOLD):
        self.size_issue_threshold = size_issue_threshold

    def index(self, items: Iterable[RemoteItem], ref: CollectionRef) -> dict[str, RemoteItem]:
        """Key → item map. Items whose key is empty (library root) are dropped."""
        keyed: dict[str, RemoteItem] = {}
        for item in items:
            key = ref.key_for(item)
            if not key:
                continue
            if key in keyed:
                logger.debug(f"Duplicate key '{key}' in {ref.title}; keeping the later item")
            keyed[key] = item
        return keyed

    def diff(
        self,
        source_items: Iterable[RemoteItem],
        target_items: Iterable[RemoteItem],
        source_ref: CollectionRef,
        target_ref: Optional[CollectionRef] = None,
        size_issue_threshold: Optional[float] = None,
    ) -> DiffResult:
        threshold = self.size_issue_threshold if size_issue_threshold is None else size_issue_threshold
        target_ref = target_ref or source_ref
        source = self.index(source_items, source_ref)
        target = self.index(target_items, target_ref)

        result = DiffResult()
        for key, src in source.items():
            tgt = target.get(key)
            if tgt is None:
                outcome = ReconciliationOutcome.SOURCE_ONLY
            elif is_size_issue(src.size_bytes, tgt.size_bytes, threshold):
                outcome = ReconciliationOutcome.SIZE_ISSUE
            else:
                outcome = ReconciliationOutcome.FOUND
            result.records.append(self._record(key, outcome, source_ref, target_ref, src, tgt))

        for key, tgt in target.items():
            if key not in source:
                result.records.append(self._record(
                    key, ReconciliationOutcome.TARGET_ONLY, source_ref, target_ref, None, tgt
                ))

        result.aggregates = aggregate(result.records)
        return result

    @staticmethod
    def _record(
        key: str,
        outcome: ReconciliationOutcome,
        source_ref: CollectionRef,
        target_ref: CollectionRef,
        src: Optional[RemoteItem],
        tgt: Optional[RemoteItem],
    ) -> ComparisonRecord:
        return ComparisonRecord(
            key=key,
            outcome=outcome,
            library=source_ref.title if src else target_ref.title,
            source=src,
            target=tgt,
            source_url=absolute_url(source_ref.site_url, src.server_relative_url) if src else "",
            target_url=absolute_url(target_ref.site_url, tgt.server_relative_url) if tgt else "",
        )

    def one_sided(
        self, items: Iterable[RemoteItem], ref: CollectionRef, source_side: bool
    ) -> list[ComparisonRecord]:
        """Records for a library that exists on only one side."""
        outcome = ReconciliationOutcome.SOURCE_ONLY if source_side else ReconciliationOutcome.TARGET_ONLY
        return [
            self._record(
                key, outcome, ref, ref,
                item if source_side else None,
                None if source_side else item,
            )
            for key, item in self.index(items, ref).items()
        ]


def aggregate(records: Iterable[ComparisonRecord]) -> DiffAggregates:
    """Outcome counts plus the informational byte/version/freshness signals."""
    agg = DiffAggregates()
    source_versions = []
    target_versions = []
    for record in records:
        if record.outcome == ReconciliationOutcome.FOUND:
            agg.found += 1
        elif record.outcome == ReconciliationOutcome.SIZE_ISSUE:
            agg.size_issue += 1
        elif record.outcome == ReconciliationOutcome.SOURCE_ONLY:
            agg.source_only += 1
        else:
            agg.target_only += 1
        if record.is_newer_at_source:
            agg.newer_at_source += 1
        if record.source:
            agg.source_bytes += record.source.size_bytes
            source_versions.append(record.source.version_count)
        if record.target:
            agg.target_bytes += record.target.size_bytes
            target_versions.append(record.target.version_count)

    if source_versions:
        agg.avg_source_versions = sum(source_versions) / len(source_versions)
    if target_versions:
        agg.avg_target_versions = sum(target_versions) / len(target_versions)
    return agg

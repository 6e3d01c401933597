"""
List counts — Classifies paired lists by how far their item counts drift.

A paired list is a Match when the target count is within the threshold of
the source count, otherwise a Mismatch. Unpaired lists are SourceOnly or
TargetOnly regardless of their counts.
"""

from __future__ import annotations

from ..config import ListCompareConfig
from ..models import ListCompareStatus, ListCountComparison, ListInfo
from ..sharepoint.urls import absolute_url


def within_threshold(source_count: int, target_count: int, threshold_type: str, value: float) -> bool:
    if source_count == target_count:
        return True
    if threshold_type == "count":
        return abs(target_count - source_count) <= value
    if source_count == 0:
        return False
    return abs(target_count - source_count) / source_count * 100 <= value


def compare_list_counts(
    matched: list[tuple[ListInfo, ListInfo]],
    source_only: list[ListInfo],
    target_only: list[ListInfo],
    source_url: str,
    target_url: str,
    config: ListCompareConfig,
) -> list[ListCountComparison]:
    """Paired lists first, then source-only, then target-only."""
    records = []
    for src, tgt in matched:
        status = (
            ListCompareStatus.MATCH
            if within_threshold(src.item_count, tgt.item_count, config.threshold_type, config.threshold_value)
            else ListCompareStatus.MISMATCH
        )
        records.append(ListCountComparison(
            list_title=src.title,
            status=status,
            list_type=src.list_type,
            source_count=src.item_count,
            target_count=tgt.item_count,
            source_list_url=absolute_url(source_url, src.server_relative_url),
            target_list_url=absolute_url(target_url, tgt.server_relative_url),
        ))
    for lst in source_only:
        records.append(ListCountComparison(
            list_title=lst.title,
            status=ListCompareStatus.SOURCE_ONLY,
            list_type=lst.list_type,
            source_count=lst.item_count,
            source_list_url=absolute_url(source_url, lst.server_relative_url),
        ))
    for lst in target_only:
        records.append(ListCountComparison(
            list_title=lst.title,
            status=ListCompareStatus.TARGET_ONLY,
            list_type=lst.list_type,
            target_count=lst.item_count,
            target_list_url=absolute_url(target_url, lst.server_relative_url),
        ))
    return records

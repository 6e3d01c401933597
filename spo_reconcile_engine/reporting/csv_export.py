"""
CSV exporter — Flat CSV views of a finished run for spreadsheet review.
"""

from __future__ import annotations

import csv
from pathlib import Path

from ..models import TaskRunResult

COMPARISON_FIELDS = [
    "source_site", "target_site", "library", "name", "extension", "key",
    "item_type", "outcome", "source_id", "target_id", "source_size",
    "target_size", "size_difference_percent", "source_versions",
    "target_versions", "source_modified", "target_modified",
    "newer_at_source", "source_url", "target_url",
]

PERMISSION_FIELDS = [
    "site_url", "site_title", "object_type", "object_title", "object_url",
    "principal_name", "principal_login", "principal_type", "roles",
    "inherited", "inherited_from",
]

LIST_COMPARISON_FIELDS = [
    "source_site", "target_site", "list_title", "list_type", "source_count",
    "target_count", "difference", "percent_difference", "status",
    "source_list_url", "target_list_url",
]

PAIR_FIELDS = [
    "source_url", "target_url", "source_title", "target_title", "status",
    "error_message", "libraries", "library_errors",
]


def _iso(value) -> str:
    return value.isoformat() if value else ""


def export_csv(result: TaskRunResult, output_dir: Path) -> list[Path]:
    """
    Write CSV files for the run's pairs and, depending on the task type,
    its comparison records, list counts or permission assignments.

    Returns:
        List of created CSV file paths.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    created = []

    # --- Pairs CSV ---
    pairs_path = output_dir / f"pairs_{result.run_id}.csv"
    count_keys = sorted({k for run in result.pair_runs for k in run.counts})
    with open(pairs_path, "w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(fh, fieldnames=PAIR_FIELDS + count_keys)
        writer.writeheader()
        for run in result.pair_runs:
            row = {
                "source_url": run.source_url,
                "target_url": run.target_url or "",
                "source_title": run.source_title,
                "target_title": run.target_title,
                "status": run.status.value,
                "error_message": run.error_message,
                "libraries": "; ".join(run.libraries_processed),
                "library_errors": "; ".join(run.library_errors),
            }
            row.update({k: run.counts.get(k, "") for k in count_keys})
            writer.writerow(row)
    created.append(pairs_path)

    # --- Comparisons CSV ---
    if any(run.comparisons for run in result.pair_runs):
        path = output_dir / f"comparisons_{result.run_id}.csv"
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=COMPARISON_FIELDS)
            writer.writeheader()
            for run in result.pair_runs:
                for rec in run.comparisons:
                    src, tgt = rec.source, rec.target
                    item = src or tgt
                    writer.writerow({
                        "source_site": run.source_url,
                        "target_site": run.target_url or "",
                        "library": rec.library,
                        "name": rec.name,
                        "extension": rec.extension,
                        "key": rec.key,
                        "item_type": item.item_type.value if item else "",
                        "outcome": rec.outcome.value,
                        "source_id": src.id if src else "",
                        "target_id": tgt.id if tgt else "",
                        "source_size": src.size_bytes if src else "",
                        "target_size": tgt.size_bytes if tgt else "",
                        "size_difference_percent": round(rec.size_difference_percent, 1),
                        "source_versions": src.version_count if src else "",
                        "target_versions": tgt.version_count if tgt else "",
                        "source_modified": _iso(src.modified) if src else "",
                        "target_modified": _iso(tgt.modified) if tgt else "",
                        "newer_at_source": rec.is_newer_at_source,
                        "source_url": rec.source_url,
                        "target_url": rec.target_url,
                    })
        created.append(path)

    # --- List comparisons CSV ---
    if any(run.list_comparisons for run in result.pair_runs):
        path = output_dir / f"list_comparisons_{result.run_id}.csv"
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=LIST_COMPARISON_FIELDS)
            writer.writeheader()
            for run in result.pair_runs:
                for c in run.list_comparisons:
                    writer.writerow({
                        "source_site": run.source_url,
                        "target_site": run.target_url or "",
                        "list_title": c.list_title,
                        "list_type": c.list_type,
                        "source_count": c.source_count,
                        "target_count": c.target_count,
                        "difference": c.difference,
                        "percent_difference": round(c.percent_difference, 1),
                        "status": c.status.value,
                        "source_list_url": c.source_list_url,
                        "target_list_url": c.target_list_url,
                    })
        created.append(path)

    # --- Permissions CSV ---
    if any(run.permissions for run in result.pair_runs):
        path = output_dir / f"permissions_{result.run_id}.csv"
        with open(path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=PERMISSION_FIELDS)
            writer.writeheader()
            for run in result.pair_runs:
                for p in run.permissions:
                    writer.writerow({
                        "site_url": p.site_url,
                        "site_title": p.site_title,
                        "object_type": p.object_type.value,
                        "object_title": p.object_title,
                        "object_url": p.object_url,
                        "principal_name": p.principal_name,
                        "principal_login": p.principal_login,
                        "principal_type": p.principal_type,
                        "roles": p.permission_level,
                        "inherited": p.inherited,
                        "inherited_from": p.inherited_from,
                    })
        created.append(path)

    return created

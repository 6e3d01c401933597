"""
Result store — Persists TaskRunResult documents as JSON, one file per run:

    <base_dir>/<task_name>/<run_id>.json

Run ids are UTC timestamps, so lexical order is chronological order.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .. import __version__
from ..models import TaskRunResult

logger = logging.getLogger("spo_reconcile_engine.store")

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_name(name: str) -> str:
    """File-system safe task name."""
    return _UNSAFE.sub("_", name).strip("._") or "default"


class ResultStore:
    def __init__(self, base_dir: str | Path):
        self.base_dir = Path(base_dir)

    def task_dir(self, task_name: str) -> Path:
        return self.base_dir / safe_name(task_name)

    def path_for(self, task_name: str, run_id: str) -> Path:
        return self.task_dir(task_name) / f"{run_id}.json"

    def save(self, result: TaskRunResult) -> Path:
        """
        Write ``result`` to disk, replacing any earlier save of the same run.

        Returns:
            Path to the written JSON file.
        """
        path = self.path_for(result.task_name, result.run_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = result.to_dict()
        payload["metadata"] = {
            "engine": "SPO Reconcile Engine",
            "version": __version__,
            "saved_utc": datetime.now(timezone.utc).isoformat(),
        }

        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)
        tmp.replace(path)
        logger.debug(f"Saved run {result.run_id} to {path}")
        return path

    def load(self, path: str | Path) -> TaskRunResult:
        with open(path, "r", encoding="utf-8") as fh:
            return TaskRunResult.from_dict(json.load(fh))

    def run_files(self, task_name: str) -> list[Path]:
        directory = self.task_dir(task_name)
        if not directory.is_dir():
            return []
        return sorted(directory.glob("*.json"))

    def latest(self, task_name: str) -> Optional[TaskRunResult]:
        """
        Most recent readable run for ``task_name`` that recorded at least one
        pair, or None. Runs that stopped before their first pair (invalid
        configuration, early cancel) hold nothing to resume from.
        """
        for path in reversed(self.run_files(task_name)):
            try:
                result = self.load(path)
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable result file {path}: {e}")
                continue
            if not result.pair_runs:
                logger.debug(f"Skipping run {result.run_id}: no pair records")
                continue
            return result
        return None

    def history(self, task_name: str, limit: int = 10) -> list[dict]:
        """Summaries of recent runs, newest first."""
        entries = []
        for path in reversed(self.run_files(task_name)):
            if len(entries) >= limit:
                break
            try:
                with open(path, "r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as e:
                logger.warning(f"Skipping unreadable result file {path}: {e}")
                continue
            entries.append({
                "run_id": data.get("run_id"),
                "task_type": data.get("task_type"),
                "status": data.get("status"),
                "started_at": data.get("started_at"),
                "completed_at": data.get("completed_at"),
                "summary": data.get("summary", {}),
                "path": str(path),
            })
        return entries

"""
Task orchestrator — Runs one pair work over an ordered list of site pairs.

Pairs run sequentially in caller order. A failing pair is recorded and the
run moves on; an authentication failure skips the remaining pairs on that
domain; cancellation stops before the next pair and keeps what finished.
A previous result can be supplied to resume: pairs it recorded as
succeeded are copied forward instead of re-run.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..config import ConfigurationError, EngineConfig, utc_run_id
from ..models import PairStatus, RunStatus, SitePair, SitePairRun, TaskRunResult
from ..sharepoint.client import AuthenticationRequired
from ..sharepoint.throttle import CancellationToken, OperationCancelled
from .works import PairWork

logger = logging.getLogger("spo_reconcile_engine.orchestrator")

ProgressSink = Callable[[int, int, SitePairRun], None]


class TaskOrchestrator:
    """
    Drives ``work`` across site pairs with resume, per-domain auth skipping
    and cooperative cancellation.

    Args:
        work: The PairWork to run for each pair.
        provider: CredentialProvider (anything with ``client_for``,
            ``mark_failed``, ``is_failed`` and ``throttle_count``).
        config: Validated before any pair runs; invalid config fails the run.
        task_name: Groups runs of the same task for resume and history.
    """

    def __init__(
        self,
        work: PairWork,
        provider,
        config: Optional[EngineConfig] = None,
        task_name: str = "default",
    ):
        self.work = work
        self.provider = provider
        self.config = config
        self.task_name = task_name

    def validate(self, pairs: list[SitePair]) -> None:
        if self.config is not None:
            self.config.validate()
        if not pairs:
            raise ConfigurationError("No site pairs to process")
        for pair in pairs:
            for url in (pair.source_url, pair.target_url):
                if url is not None and not url.lower().startswith("https://"):
                    raise ConfigurationError(f"Site URL must be absolute https: {url!r}")
            if self.work.requires_target and not pair.target_url:
                raise ConfigurationError(f"Pair {pair.source_url} has no target site")

    async def run(
        self,
        pairs: list[SitePair],
        previous: Optional[TaskRunResult] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressSink] = None,
        run_id: Optional[str] = None,
    ) -> TaskRunResult:
        """
        Process ``pairs`` in order and return the run result. Never raises
        for pair-level failures; a cancelled run returns with status
        Cancelled and every pair record completed before the cancel.
        """
        result = TaskRunResult(
            run_id=run_id or utc_run_id(),
            task_type=self.work.task_type,
            task_name=self.task_name,
        )
        if previous is not None:
            result.resumed_from = previous.run_id

        try:
            self.validate(pairs)
        except ConfigurationError as e:
            result.status = RunStatus.FAILED
            result.error_message = str(e)
            result.log(f"❌ Configuration invalid: {e}")
            result.completed_at = datetime.now(timezone.utc)
            return result

        result.log(f"Starting {self.work.task_type} run {result.run_id} over {len(pairs)} pair(s)")
        if previous is not None:
            result.log(f"Resuming from run {previous.run_id}")

        total = len(pairs)
        for index, pair in enumerate(pairs, 1):
            if cancel is not None and cancel.is_cancelled:
                result.status = RunStatus.CANCELLED
                result.log(f"Cancelled before pair {index}/{total}")
                self._carry_remaining(previous, pairs[index - 1:], result)
                break

            prior = previous.find_pair(pair) if previous is not None else None
            if prior is not None and prior.status == PairStatus.SUCCEEDED:
                record = result.carry_forward(prior)
                result.log(f"[{index}/{total}] {pair.label}: succeeded in previous run, carried forward")
                self._report(progress, index, total, record)
                continue

            record = SitePairRun(source_url=pair.source_url, target_url=pair.target_url)
            result.pair_runs.append(record)

            blocked = next((d for d in self.work.domains(pair) if self.provider.is_failed(d)), None)
            if blocked:
                record.status = PairStatus.SKIPPED
                record.error_message = f"Skipped — authentication required for {blocked}"
                result.log(f"[{index}/{total}] {pair.label}: {record.error_message}")
                self._report(progress, index, total, record)
                continue

            record.status = PairStatus.RUNNING
            record.started_at = datetime.now(timezone.utc)
            result.log(f"[{index}/{total}] {pair.label}: running")
            cancelled = False
            try:
                await self.work.run(pair, record, self.provider, result)
            except OperationCancelled:
                record.status = PairStatus.FAILED
                record.error_message = "Cancelled"
                cancelled = True
            except AuthenticationRequired as e:
                self.provider.mark_failed(e.domain, e.message)
                record.status = PairStatus.FAILED
                record.error_message = f"Authentication required for {e.domain}: {e.message}"
                logger.error(f"{pair.label}: {record.error_message}")
            except Exception as e:
                record.status = PairStatus.FAILED
                record.error_message = str(e) or type(e).__name__
                logger.error(f"{pair.label}: {record.error_message}")
            record.completed_at = datetime.now(timezone.utc)

            if record.status == PairStatus.SUCCEEDED:
                result.log(f"[{index}/{total}] {pair.label}: ✅ succeeded")
            else:
                result.log(f"[{index}/{total}] {pair.label}: ❌ {record.error_message}")
            self._report(progress, index, total, record)

            if cancelled:
                result.status = RunStatus.CANCELLED
                result.log("Run cancelled; no further pairs will start")
                self._carry_remaining(previous, pairs[index:], result)
                break

        result.throttle_retry_count = self.provider.throttle_count
        result.completed_at = datetime.now(timezone.utc)
        if result.status != RunStatus.CANCELLED:
            if result.failed_pairs or result.skipped_pairs:
                result.status = RunStatus.PARTIALLY_FAILED
            else:
                result.status = RunStatus.COMPLETED
        result.log(
            f"Run {result.status.value}: {result.succeeded_pairs} succeeded, "
            f"{result.failed_pairs} failed, {result.skipped_pairs} skipped, "
            f"{result.pairs_carried_forward} carried forward, "
            f"{result.throttle_retry_count} throttle retries"
        )
        return result

    @staticmethod
    def _carry_remaining(
        previous: Optional[TaskRunResult], remaining: list[SitePair], result: TaskRunResult
    ) -> None:
        # Pairs not reached before a cancel keep their earlier success
        if previous is None:
            return
        for pair in remaining:
            prior = previous.find_pair(pair)
            if prior is not None and prior.status == PairStatus.SUCCEEDED:
                result.carry_forward(prior)
                result.log(f"{pair.label}: not reached, previous success carried forward")

    @staticmethod
    def _report(progress: Optional[ProgressSink], index: int, total: int, record: SitePairRun) -> None:
        if progress is not None:
            progress(index, total, record)

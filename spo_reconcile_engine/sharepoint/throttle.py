"""
Throttle-aware execution — Retries SharePoint calls that come back with a
"slow down" status, honoring Retry-After hints, with interruptible waits.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

import httpx

from ..config import ThrottlePolicy

logger = logging.getLogger("spo_reconcile_engine.sharepoint.throttle")


class OperationCancelled(Exception):
    """Raised when a cooperative cancellation request is observed."""
    pass


class CancellationToken:
    """
    Cooperative cancellation flag shared by an orchestrator run and every
    client it drives. Waits through :meth:`wait` end early on cancel.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")

    async def wait(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise OperationCancelled if cancelled meanwhile."""
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise OperationCancelled("Operation cancelled during backoff wait")


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Retry-After as delta seconds or an HTTP date. None when absent/unparseable."""
    if not value:
        return None
    value = value.strip()
    try:
        return float(value)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return (when - now).total_seconds()


Sleeper = Callable[[float, Optional[CancellationToken]], Awaitable[None]]


async def interruptible_sleep(seconds: float, cancel: Optional[CancellationToken] = None) -> None:
    if cancel is not None:
        await cancel.wait(seconds)
    elif seconds > 0:
        await asyncio.sleep(seconds)


class ThrottleAwareExecutor:
    """
    Executes a request factory, retrying while the response status is in the
    policy's throttled class.

    The delay for retry ``n`` is the server's Retry-After hint when present
    (floored at ``policy.min_retry_after``), otherwise ``policy.delays[n]``.
    Once the retry budget is spent the last throttled response is returned,
    not raised.
    """

    def __init__(
        self,
        policy: Optional[ThrottlePolicy] = None,
        sleeper: Sleeper = interruptible_sleep,
        on_throttle: Optional[Callable[[httpx.Response, int, float], None]] = None,
    ):
        self.policy = policy or ThrottlePolicy()
        self._sleep = sleeper
        self._on_throttle = on_throttle
        self.retry_count = 0

    def delay_for(self, response: httpx.Response, attempt: int) -> float:
        hint = parse_retry_after(response.headers.get("Retry-After"))
        if hint is not None:
            return max(hint, self.policy.min_retry_after)
        delays = self.policy.delays
        return delays[min(attempt, len(delays) - 1)] if delays else 0.0

    async def execute(
        self,
        call: Callable[[], Awaitable[httpx.Response]],
        cancel: Optional[CancellationToken] = None,
        description: str = "",
    ) -> httpx.Response:
        budget = self.policy.max_retries
        attempt = 0
        while True:
            if cancel is not None:
                cancel.raise_if_cancelled()

            response = await call()
            if response.status_code not in self.policy.status_codes:
                return response
            if attempt >= budget:
                logger.warning(
                    f"Still throttled ({response.status_code}) after {budget} retries: "
                    f"{description or 'request'}"
                )
                return response

            wait_time = self.delay_for(response, attempt)
            attempt += 1
            self.retry_count += 1
            logger.warning(
                f"Throttled ({response.status_code}) on {description or 'request'}. "
                f"Retry {attempt}/{budget} in {wait_time:.1f}s"
            )
            if self._on_throttle is not None:
                self._on_throttle(response, attempt, wait_time)
            await self._sleep(wait_time, cancel)

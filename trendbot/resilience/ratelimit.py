"""Per-source fixed-window rate limiter with a FIFO deferral queue.

Requests past the window budget are not failed: they are queued and a drain
task grants them, oldest first, once the window rolls over. A request that
has waited through more than ``max_deferrals`` windows fails with
RateLimitedError.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, NamedTuple, Optional

from trendbot.core.errors import RateLimitedError
from trendbot.core.logging import get_logger
from trendbot.core.time import Clock, Sleeper, monotonic, sleep

logger = get_logger(__name__)

DEFAULT_MAX_DEFERRALS = 5


class RateDecision(NamedTuple):
    granted: bool
    retry_after: float = 0.0


@dataclass
class QueuedRequest:
    """A request deferred past the window budget."""
    future: asyncio.Future
    arrived_at: float
    query: Any = None
    retry_count: int = 1


@dataclass
class RateBudget:
    limit: int
    window_seconds: float
    window_start: float = 0.0
    requests_in_window: int = 0
    pending: Deque[QueuedRequest] = field(default_factory=deque)


class RateLimiter:
    """Token budget for one source, serialized by its own lock."""

    def __init__(
        self,
        name: str,
        limit: int,
        window_seconds: float,
        clock: Clock = monotonic,
        sleep: Sleeper = sleep,
        max_deferrals: int = DEFAULT_MAX_DEFERRALS,
    ):
        self.name = name
        self.clock = clock
        self.sleep = sleep
        self.max_deferrals = max_deferrals
        self.budget = RateBudget(limit=limit, window_seconds=window_seconds, window_start=clock())
        self._lock = asyncio.Lock()
        self._drainer: Optional[asyncio.Task] = None

    def _roll_window(self, now: float) -> None:
        budget = self.budget
        if now - budget.window_start >= budget.window_seconds:
            budget.window_start = now
            budget.requests_in_window = 0

    def _retry_after(self, now: float) -> float:
        budget = self.budget
        return max(0.0, budget.window_start + budget.window_seconds - now)

    def _take(self, now: float) -> RateDecision:
        self._roll_window(now)
        budget = self.budget
        if budget.requests_in_window >= budget.limit:
            return RateDecision(False, self._retry_after(now))
        budget.requests_in_window += 1
        return RateDecision(True, 0.0)

    async def try_acquire(self) -> RateDecision:
        """Take one slot from the current window if any is left."""
        async with self._lock:
            return self._take(self.clock())

    async def acquire(self, query: Any = None) -> None:
        """
        Wait for a slot.

        Granted immediately when budget remains and nothing is queued ahead;
        otherwise the request joins the queue and is granted by the drain
        task in arrival order.
        """
        async with self._lock:
            now = self.clock()
            if not self.budget.pending:
                decision = self._take(now)
                if decision.granted:
                    return
                logger.info(
                    f"Rate limit reached for {self.name}, deferring request for {decision.retry_after:.1f}s",
                    extra={"source": self.name},
                )

            queued = QueuedRequest(
                future=asyncio.get_running_loop().create_future(),
                arrived_at=now,
                query=query,
            )
            self.budget.pending.append(queued)
            self._ensure_drainer()

        await queued.future

    def _ensure_drainer(self) -> None:
        if self._drainer is None or self._drainer.done():
            self._drainer = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while True:
            async with self._lock:
                self._discard_cancelled()
                if not self.budget.pending:
                    return
                wait = self._retry_after(self.clock())

            if wait > 0:
                await self.sleep(wait)

            async with self._lock:
                now = self.clock()
                self._roll_window(now)
                self._grant_pending(now)

    def _discard_cancelled(self) -> None:
        pending = self.budget.pending
        while pending and pending[0].future.done():
            pending.popleft()

    def _grant_pending(self, now: float) -> None:
        budget = self.budget
        pending = budget.pending

        while pending and budget.requests_in_window < budget.limit:
            queued = pending.popleft()
            if queued.future.done():
                continue
            budget.requests_in_window += 1
            queued.future.set_result(None)

        # Whatever is left waits another window
        survivors: Deque[QueuedRequest] = deque()
        for queued in pending:
            if queued.future.done():
                continue
            queued.retry_count += 1
            if queued.retry_count > self.max_deferrals:
                logger.warning(
                    f"Dropping request to {self.name} after {queued.retry_count - 1} deferrals",
                    extra={"source": self.name},
                )
                queued.future.set_exception(
                    RateLimitedError(
                        f"{self.name} rate limit exceeded after {self.max_deferrals} deferrals",
                        retry_after=self._retry_after(now),
                    )
                )
                continue
            survivors.append(queued)
        budget.pending = survivors

    async def close(self) -> None:
        if self._drainer is not None:
            self._drainer.cancel()
            await asyncio.gather(self._drainer, return_exceptions=True)
            self._drainer = None
        for queued in self.budget.pending:
            if not queued.future.done():
                queued.future.cancel()
        self.budget.pending.clear()

    def snapshot(self) -> Dict[str, Any]:
        budget = self.budget
        return {
            "name": self.name,
            "limit": budget.limit,
            "window_seconds": budget.window_seconds,
            "requests_in_window": budget.requests_in_window,
            "pending": len(budget.pending),
            "retry_after": self._retry_after(self.clock()) if budget.requests_in_window >= budget.limit else 0.0,
        }

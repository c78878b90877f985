"""Exponential backoff for transient upstream failures.

Only TransientUpstreamError is retried. Rate-limit deferral is handled by the
RateLimiter queue and is not a retry.
"""

from typing import Awaitable, Callable, List, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential

from trendbot.core.errors import TransientUpstreamError
from trendbot.core.logging import get_logger
from trendbot.core.time import Sleeper, sleep

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Bounded attempts with exponentially growing, capped delays."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        multiplier: float = 2.0,
        max_delay: float = 10.0,
        sleep: Sleeper = sleep,
    ):
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay after the given failed attempt (1-based)."""
        return min(self.initial_delay * self.multiplier ** (attempt - 1), self.max_delay)

    def delays(self) -> List[float]:
        """Waits between attempts, in order."""
        return [self.delay_for(n) for n in range(1, self.max_attempts)]

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Attempt {retry_state.attempt_number}/{self.max_attempts} failed: {error}; "
            f"retrying in {retry_state.next_action.sleep:.1f}s"
        )

    def retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=retry_if_exception_type(TransientUpstreamError),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn under the policy; the last error is re-raised."""
        async for attempt in self.retrying():
            with attempt:
                return await fn()

"""Per-source circuit breaker.

closed     requests pass; ``failure_threshold`` consecutive failures -> open
open       requests short-circuit; after ``recovery_timeout`` -> half_open
half_open  one probe at a time; ``success_threshold`` consecutive probe
           successes -> closed, any failure -> open (opened_at reset)

Credential failures are tracked for source health but never move the state
machine: retrying with a dead token says nothing about the source itself.
"""

import asyncio
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

from trendbot.core.logging import get_logger
from trendbot.core.time import Clock, monotonic

logger = get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RECOVERY_TIMEOUT = 60.0
DEFAULT_SUCCESS_THRESHOLD = 2


class CircuitStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    state: CircuitStatus = CircuitStatus.CLOSED
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    opened_at: Optional[float] = None
    probe_in_flight: bool = False

    # Health counters, not part of the state machine
    total_failures: int = 0
    credential_failures: int = 0
    last_error: Optional[str] = None


class CircuitBreaker:
    """Failure isolation for one source; all transitions go through one lock."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        clock: Clock = monotonic,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_timeout = recovery_timeout
        self.success_threshold = max(1, success_threshold)
        self.clock = clock
        self._state = CircuitState()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitStatus:
        return self._state.state

    async def allow(self) -> bool:
        """Whether the next request may reach the network."""
        async with self._lock:
            state = self._state

            if state.state == CircuitStatus.CLOSED:
                return True

            if state.state == CircuitStatus.OPEN:
                if self.clock() - state.opened_at < self.recovery_timeout:
                    return False
                self._transition(CircuitStatus.HALF_OPEN)
                state.consecutive_successes = 0

            # half_open: exactly one probe at a time
            if state.probe_in_flight:
                return False
            state.probe_in_flight = True
            return True

    async def record_success(self) -> None:
        async with self._lock:
            state = self._state
            state.consecutive_failures = 0

            if state.state == CircuitStatus.HALF_OPEN:
                state.probe_in_flight = False
                state.consecutive_successes += 1
                if state.consecutive_successes >= self.success_threshold:
                    self._transition(CircuitStatus.CLOSED)
                    state.consecutive_successes = 0
                    state.opened_at = None

    async def record_failure(self, error: Optional[BaseException] = None) -> bool:
        """Count a failure; returns True when this failure opened the circuit."""
        async with self._lock:
            state = self._state
            state.total_failures += 1
            state.consecutive_successes = 0
            if error is not None:
                state.last_error = str(error)

            if state.state == CircuitStatus.HALF_OPEN:
                state.probe_in_flight = False
                self._open()
                return True

            state.consecutive_failures += 1
            if state.state == CircuitStatus.CLOSED and state.consecutive_failures >= self.failure_threshold:
                self._open()
                return True
            return False

    async def record_credential_failure(self, error: Optional[BaseException] = None) -> None:
        async with self._lock:
            state = self._state
            state.credential_failures += 1
            if error is not None:
                state.last_error = str(error)
            # A probe that hit a credential wall frees the slot without a verdict
            if state.state == CircuitStatus.HALF_OPEN:
                state.probe_in_flight = False

    def release_probe(self) -> None:
        """
        Free the half-open probe slot when a probe ended without an outcome.

        Synchronous so it can run from cancellation handlers; a single
        attribute write needs no lock on the event loop thread.
        """
        self._state.probe_in_flight = False

    def _open(self) -> None:
        self._transition(CircuitStatus.OPEN)
        self._state.opened_at = self.clock()

    def _transition(self, new_state: CircuitStatus) -> None:
        old_state = self._state.state
        self._state.state = new_state
        log = logger.warning if new_state == CircuitStatus.OPEN else logger.info
        log(
            f"Circuit {self.name}: {old_state.value} -> {new_state.value}",
            extra={"source": self.name, "consecutive_failures": self._state.consecutive_failures},
        )

    def snapshot(self) -> Dict[str, Any]:
        data = asdict(self._state)
        data["state"] = self._state.state.value
        data["name"] = self.name
        return data

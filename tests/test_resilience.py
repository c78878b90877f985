"""Tests for the circuit breaker, rate limiter and retry policy."""

import asyncio

import pytest

from conftest import FakeClock
from trendbot.core.errors import (
    ExpiredCredentialsError,
    RateLimitedError,
    SourceError,
    TransientUpstreamError,
    UpstreamTimeoutError,
)
from trendbot.resilience.circuit import CircuitBreaker, CircuitStatus
from trendbot.resilience.ratelimit import RateLimiter
from trendbot.resilience.retry import RetryPolicy


class TestCircuitBreaker:

    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker("youtube", clock=clock)

    async def _fail(self, breaker, times):
        for _ in range(times):
            assert await breaker.allow()
            await breaker.record_failure(TransientUpstreamError("503"))

    @pytest.mark.asyncio
    async def test_opens_after_five_consecutive_failures(self, breaker):
        await self._fail(breaker, 4)
        assert breaker.state == CircuitStatus.CLOSED

        assert await breaker.allow()
        opened = await breaker.record_failure(TransientUpstreamError("503"))

        assert opened
        assert breaker.state == CircuitStatus.OPEN
        assert not await breaker.allow()

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        await self._fail(breaker, 4)
        await breaker.record_success()
        await self._fail(breaker, 4)
        assert breaker.state == CircuitStatus.CLOSED

    @pytest.mark.asyncio
    async def test_recovers_after_timeout_and_two_probe_successes(self, breaker, clock):
        await self._fail(breaker, 5)

        clock.advance(59)
        assert not await breaker.allow()

        clock.advance(1)
        assert await breaker.allow()
        assert breaker.state == CircuitStatus.HALF_OPEN
        await breaker.record_success()
        assert breaker.state == CircuitStatus.HALF_OPEN

        assert await breaker.allow()
        await breaker.record_success()
        assert breaker.state == CircuitStatus.CLOSED
        assert await breaker.allow()

    @pytest.mark.asyncio
    async def test_half_open_admits_one_probe_at_a_time(self, breaker, clock):
        await self._fail(breaker, 5)
        clock.advance(60)

        assert await breaker.allow()
        assert not await breaker.allow()

        breaker.release_probe()
        assert await breaker.allow()

    @pytest.mark.asyncio
    async def test_probe_failure_reopens(self, breaker, clock):
        await self._fail(breaker, 5)
        clock.advance(60)

        assert await breaker.allow()
        assert await breaker.record_failure(SourceError("bad payload"))
        assert breaker.state == CircuitStatus.OPEN
        assert breaker.snapshot()["opened_at"] == clock.now

        clock.advance(30)
        assert not await breaker.allow()

    @pytest.mark.asyncio
    async def test_credential_failures_never_trip(self, breaker):
        for _ in range(10):
            assert await breaker.allow()
            await breaker.record_credential_failure(ExpiredCredentialsError("token expired"))

        snapshot = breaker.snapshot()
        assert breaker.state == CircuitStatus.CLOSED
        assert snapshot["consecutive_failures"] == 0
        assert snapshot["credential_failures"] == 10
        assert snapshot["last_error"] == "token expired"


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_try_acquire_within_window(self, clock):
        limiter = RateLimiter("twitter", limit=2, window_seconds=60, clock=clock, sleep=clock.sleep)

        assert (await limiter.try_acquire()).granted
        assert (await limiter.try_acquire()).granted
        decision = await limiter.try_acquire()
        assert not decision.granted
        assert decision.retry_after == 60

        clock.advance(60)
        assert (await limiter.try_acquire()).granted

    @pytest.mark.asyncio
    async def test_over_budget_requests_queued_and_granted_fifo(self, clock):
        limiter = RateLimiter("twitter", limit=1, window_seconds=10, clock=clock, sleep=clock.sleep)
        order = []

        async def request(name):
            await limiter.acquire(query=name)
            order.append((name, clock.now))

        await request("first")
        queued = [asyncio.ensure_future(request(name)) for name in ("second", "third")]
        await asyncio.gather(*queued)

        assert [name for name, _ in order] == ["first", "second", "third"]
        assert order[1][1] == 1010.0
        assert order[2][1] == 1020.0

    @pytest.mark.asyncio
    async def test_deferral_ceiling_raises_rate_limited(self, clock):
        limiter = RateLimiter(
            "tiktok", limit=1, window_seconds=10, clock=clock, sleep=clock.sleep, max_deferrals=2
        )
        await limiter.acquire()

        waiters = [asyncio.ensure_future(limiter.acquire(query=n)) for n in range(4)]
        results = await asyncio.gather(*waiters, return_exceptions=True)

        # One slot per window: two are served before the others run out of deferrals
        assert results[:2] == [None, None]
        assert all(isinstance(r, RateLimitedError) for r in results[2:])
        assert limiter.snapshot()["pending"] == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_skipped(self, clock):
        limiter = RateLimiter("twitter", limit=1, window_seconds=10, clock=clock, sleep=clock.sleep)
        await limiter.acquire()

        doomed = asyncio.ensure_future(limiter.acquire(query="doomed"))
        survivor = asyncio.ensure_future(limiter.acquire(query="survivor"))
        await asyncio.sleep(0)
        doomed.cancel()

        await survivor
        assert limiter.budget.requests_in_window == 1
        await limiter.close()


class TestRetryPolicy:

    def test_default_schedule(self):
        policy = RetryPolicy()
        assert policy.delays() == [1.0, 2.0]
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    @pytest.mark.asyncio
    async def test_exactly_three_attempts_then_terminal(self):
        clock = FakeClock()
        policy = RetryPolicy(sleep=clock.sleep)
        attempts = 0

        async def always_503():
            nonlocal attempts
            attempts += 1
            raise TransientUpstreamError("503", status_code=503)

        with pytest.raises(TransientUpstreamError):
            await policy.call(always_503)

        assert attempts == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        clock = FakeClock()
        policy = RetryPolicy(sleep=clock.sleep)
        attempts = 0

        async def flaky():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise UpstreamTimeoutError("read timeout")
            return "ok"

        assert await policy.call(flaky) == "ok"
        assert attempts == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ExpiredCredentialsError("expired"),
        SourceError("404"),
        RateLimitedError("ceiling"),
    ])
    async def test_non_transient_errors_not_retried(self, error):
        clock = FakeClock()
        policy = RetryPolicy(sleep=clock.sleep)
        attempts = 0

        async def fail():
            nonlocal attempts
            attempts += 1
            raise error

        with pytest.raises(type(error)):
            await policy.call(fail)

        assert attempts == 1
        assert clock.sleeps == []

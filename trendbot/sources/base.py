"""Source adapter base class.

One adapter per platform. It owns that platform's circuit breaker and rate
limiter and turns the platform's API (or, failing that, its public page) into
a normalized TrendData.

Primary path, per attempt:
    circuit breaker -> rate limiter -> HTTP call -> classify response

Transient failures (5xx, 429, timeouts, network errors) are retried under the
backoff policy. Expired credentials short-circuit to a reauth-required error
without retries. When the primary path is structurally unavailable (no
credentials, API cannot serve the data type, circuit open) the scraping
fallback is used if a scrape URL is configured.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import httpx

from trendbot.core.errors import (
    ExpiredCredentialsError,
    NotSupportedError,
    SourceError,
    SourceUnavailableError,
    TransientUpstreamError,
    TrendSourceError,
    UpstreamTimeoutError,
)
from trendbot.core.logging import get_logger
from trendbot.core.models import DataType, Platform, RawTrendSnapshot, TimeRange, TrendData
from trendbot.core.settings import PlatformSettings
from trendbot.resilience.circuit import CircuitBreaker
from trendbot.resilience.ratelimit import RateLimiter
from trendbot.resilience.retry import RetryPolicy
from trendbot.scraper.fallback import ScrapeTarget, ScrapingFallback
from .normalizer import merge_results, normalize_snapshot

logger = get_logger(__name__)

TIME_RANGE_DELTAS = {
    TimeRange.HOUR: timedelta(hours=1),
    TimeRange.DAY: timedelta(days=1),
    TimeRange.WEEK: timedelta(days=7),
    TimeRange.MONTH: timedelta(days=30),
}


def time_range_start(time_range: TimeRange, now: Optional[datetime] = None) -> datetime:
    """Start of the look-back window ending now."""
    now = now or datetime.now(timezone.utc)
    return now - TIME_RANGE_DELTAS[TimeRange(time_range)]


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    try:
        return max(0.0, float(value)) if value else None
    except (TypeError, ValueError):
        return None


class SourceAdapter(ABC):
    """Fetches and normalizes trends for one platform."""

    platform: Platform
    supported_data_types: FrozenSet[DataType] = frozenset(DataType)

    def __init__(
        self,
        config: PlatformSettings,
        client: httpx.AsyncClient,
        circuit: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        scraper: Optional[ScrapingFallback] = None,
    ):
        self.config = config
        self.client = client
        self.circuit = circuit or CircuitBreaker(self.platform.value)
        self.rate_limiter = rate_limiter or RateLimiter(
            self.platform.value, config.rate_limit, config.rate_window_seconds
        )
        self.retry_policy = retry_policy or RetryPolicy()
        self.scraper = scraper
        self.stats = {"requests": 0, "fallbacks": 0}

    @property
    def name(self) -> str:
        return self.platform.value

    @property
    def has_credentials(self) -> bool:
        return self.config.has_credentials

    @property
    def api_key(self) -> str:
        return self.config.api_key.get_secret_value() if self.config.api_key else ""

    @property
    def can_scrape(self) -> bool:
        return self.scraper is not None and bool(self.config.scrape_url)

    # Platform hooks

    @abstractmethod
    def build_request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> httpx.Request:
        """Build the official API request for the given data types."""

    @abstractmethod
    def parse_response(self, payload: Any, data_types: FrozenSet[DataType]) -> RawTrendSnapshot:
        """Turn a successful API payload into raw rows."""

    def classify_error(self, response: httpx.Response, payload: Any) -> Optional[TrendSourceError]:
        """
        Platform-specific reading of an error response.

        Return None to fall through to the generic status-code mapping.
        """
        if response.status_code == 401:
            return ExpiredCredentialsError(
                f"{self.name} rejected the credentials (HTTP 401)", status_code=401
            )
        return None

    # Fetching

    async def fetch(self, data_types: Iterable[DataType], time_range: TimeRange = TimeRange.DAY) -> TrendData:
        """
        Fetch trends for the requested data types.

        Returns a TrendData that may be partial when one path failed and the
        other succeeded. Raises the underlying TrendSourceError when nothing
        could be fetched.
        """
        data_types = frozenset(DataType(dt) for dt in data_types)
        api_types = data_types & self.supported_data_types if self.has_credentials else frozenset()
        scrape_types = data_types - api_types

        parts: Dict[DataType, TrendData] = {}
        errors: List[TrendSourceError] = []

        if api_types:
            try:
                snapshot = await self._fetch_primary(api_types, time_range)
                data = normalize_snapshot(snapshot, api_types)
                parts.update({dt: data for dt in api_types})
            except (SourceUnavailableError, NotSupportedError) as e:
                if self.can_scrape:
                    logger.warning(
                        f"{self.name} primary path unavailable ({e.message}), falling back to scraper",
                        extra={"platform": self.name},
                    )
                    scrape_types = scrape_types | api_types
                else:
                    self._record_failure(parts, errors, e, api_types)
            except TrendSourceError as e:
                self._record_failure(parts, errors, e, api_types)

        if scrape_types:
            try:
                data = await self._fetch_fallback(scrape_types)
                parts.update({dt: data for dt in scrape_types})
            except TrendSourceError as e:
                self._record_failure(parts, errors, e, scrape_types)

        result = merge_results(self.platform, parts)
        if errors and not result.has_any():
            raise errors[0]
        return result

    def _record_failure(
        self,
        parts: Dict[DataType, TrendData],
        errors: List[TrendSourceError],
        error: TrendSourceError,
        data_types: FrozenSet[DataType],
    ) -> None:
        errors.append(error)
        failed = TrendData.failed(self.platform, error.to_error_info(), data_types)
        parts.update({dt: failed for dt in data_types})

    async def _fetch_fallback(self, data_types: FrozenSet[DataType]) -> TrendData:
        if not self.can_scrape:
            if not self.has_credentials:
                raise ExpiredCredentialsError(f"{self.name} requires reconnection: no API credentials configured")
            missing = ", ".join(sorted(dt.value for dt in data_types))
            raise NotSupportedError(f"{self.name} API does not provide {missing} and no scrape target is configured")

        self.stats["fallbacks"] += 1
        target = ScrapeTarget(platform=self.platform, url=self.config.scrape_url, data_types=data_types)
        snapshot = await self.scraper.scrape(target)
        return normalize_snapshot(snapshot, data_types)

    async def _fetch_primary(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> RawTrendSnapshot:
        async def attempt() -> RawTrendSnapshot:
            if not await self.circuit.allow():
                raise SourceUnavailableError(f"{self.name} is unavailable (circuit open)")

            try:
                await self.rate_limiter.acquire(query=(sorted(data_types), time_range))
                snapshot = await self._request(data_types, time_range)
            except ExpiredCredentialsError as e:
                await self.circuit.record_credential_failure(e)
                logger.error(f"{self.name} credentials expired: {e.message}", extra={"platform": self.name})
                raise
            except (TransientUpstreamError, SourceError) as e:
                opened = await self.circuit.record_failure(e)
                if opened:
                    logger.warning(f"{self.name} circuit opened after: {e.message}", extra={"platform": self.name})
                raise
            except BaseException:
                # Not supported, rate-limit ceiling or cancellation: no verdict on source health
                self.circuit.release_probe()
                raise

            await self.circuit.record_success()
            return snapshot

        return await self.retry_policy.call(attempt)

    async def _request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> RawTrendSnapshot:
        request = self.build_request(data_types, time_range)
        self.stats["requests"] += 1

        try:
            response = await self.client.send(request)
        except httpx.TimeoutException as e:
            raise UpstreamTimeoutError(f"{self.name} timed out: {type(e).__name__}")
        except httpx.TransportError as e:
            raise TransientUpstreamError(f"{self.name} network error: {type(e).__name__}: {e}")

        payload = self._decode(response)
        self._raise_for_status(response, payload)

        try:
            snapshot = self.parse_response(payload, data_types)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SourceError(f"{self.name} returned an unexpected payload: {e}")

        logger.info(
            f"Fetched {self.name} trends",
            extra={"platform": self.name, "data_types": sorted(dt.value for dt in data_types)},
        )
        return snapshot

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response, payload: Any) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return

        error = self.classify_error(response, payload)
        if error is not None:
            raise error

        if status == 429:
            raise TransientUpstreamError(
                f"{self.name} rate limited upstream (HTTP 429)",
                status_code=status,
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 501:
            raise NotSupportedError(f"{self.name} does not support this request (HTTP 501)", status_code=status)
        if status >= 500:
            raise TransientUpstreamError(f"{self.name} server error (HTTP {status})", status_code=status)
        raise SourceError(f"{self.name} request failed (HTTP {status})", status_code=status)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "platform": self.name,
            "has_credentials": self.has_credentials,
            "can_scrape": self.can_scrape,
            "circuit": self.circuit.snapshot(),
            "rate_limit": self.rate_limiter.snapshot(),
            "stats": dict(self.stats),
        }

    async def close(self) -> None:
        await self.rate_limiter.close()

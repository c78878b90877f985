"""Engine assembly and lifecycle.

``build_engine`` wires settings into the shared HTTP client, the scraper, one
adapter per platform (each with its own breaker and limiter), the cache and
the aggregator. Missing credentials for a requested platform fail here, not
at query time.
"""

from typing import Any, Dict, Iterable, List, Optional

import httpx

from trendbot.cache.backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from trendbot.cache.store import TrendCache
from trendbot.core.logging import get_logger
from trendbot.core.models import Platform, TrendData, TrendQuery
from trendbot.core.ranking import Scorer
from trendbot.core.settings import Settings, get_settings
from trendbot.core.time import Clock, Sleeper, monotonic, sleep, wall_clock
from trendbot.resilience.circuit import CircuitBreaker
from trendbot.resilience.ratelimit import RateLimiter
from trendbot.resilience.retry import RetryPolicy
from trendbot.scraper.fallback import ScrapingFallback
from trendbot.sources import ADAPTERS, SourceAdapter
from .aggregator import TrendAggregator
from .predict import Predictor

logger = get_logger(__name__)


class TrendEngine:
    """Owns the engine's long-lived resources."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        adapters: Dict[Platform, SourceAdapter],
        cache: TrendCache,
        aggregator: TrendAggregator,
    ):
        self.settings = settings
        self.client = client
        self.adapters = adapters
        self.cache = cache
        self.aggregator = aggregator

    async def start(self) -> None:
        self.cache.start()
        logger.info(
            "Trend engine started",
            extra={"platforms": sorted(p.value for p in self.adapters)},
        )

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.close()
        await self.cache.close()
        await self.client.aclose()
        logger.info("Trend engine stopped")

    async def __aenter__(self) -> "TrendEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def fetch_trends(self, query: TrendQuery) -> List[TrendData]:
        return await self.aggregator.fetch_trends(query)

    def predict(self, history: Optional[Iterable[TrendData]] = None) -> List[str]:
        return self.aggregator.predict(history)

    def source_status(self) -> Dict[str, Any]:
        return self.aggregator.source_status()


def _build_backend(settings: Settings) -> CacheBackend:
    if settings.redis_url:
        logger.info("Using Redis cache backend")
        return RedisCacheBackend(settings.redis_url)
    return MemoryCacheBackend()


def build_engine(
    settings: Optional[Settings] = None,
    platforms: Optional[Iterable[Platform]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    backend: Optional[CacheBackend] = None,
    scorer: Optional[Scorer] = None,
    predictor: Optional[Predictor] = None,
    clock: Clock = monotonic,
    cache_clock: Clock = wall_clock,
    sleep: Sleeper = sleep,
) -> TrendEngine:
    """
    Build a TrendEngine.

    Args:
        settings: defaults to get_settings()
        platforms: platforms to serve; defaults to every enabled platform
        transport: httpx transport override (tests use httpx.MockTransport)
        backend: cache backend override; otherwise Redis when redis_url is set
        clock, cache_clock, sleep: time sources for resilience and cache

    Raises:
        ConfigurationError: a requested platform has neither API credentials
            nor a scrape URL
    """
    settings = settings or get_settings()
    if platforms is None:
        platforms = [p for p in Platform if settings.platform(p).enabled]
    platforms = sorted({Platform(p) for p in platforms}, key=lambda p: p.value)

    settings.require_credentials(platforms)

    client = httpx.AsyncClient(transport=transport, follow_redirects=True)
    scraper = ScrapingFallback(
        client,
        user_agent=settings.scrape_user_agent,
        min_delay=settings.scrape_min_delay_seconds,
        clock=clock,
        sleep=sleep,
    )
    retry_policy = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        initial_delay=settings.retry_initial_delay_seconds,
        multiplier=settings.retry_multiplier,
        max_delay=settings.retry_max_delay_seconds,
        sleep=sleep,
    )

    adapters: Dict[Platform, SourceAdapter] = {}
    for platform in platforms:
        config = settings.platform(platform)
        if not config.enabled:
            logger.info(f"{platform.value} is disabled, skipping", extra={"platform": platform.value})
            continue

        adapters[platform] = ADAPTERS[platform](
            config,
            client,
            circuit=CircuitBreaker(
                platform.value,
                failure_threshold=settings.circuit_failure_threshold,
                recovery_timeout=settings.circuit_recovery_seconds,
                success_threshold=settings.circuit_success_threshold,
                clock=clock,
            ),
            rate_limiter=RateLimiter(
                platform.value,
                config.rate_limit,
                config.rate_window_seconds,
                clock=clock,
                sleep=sleep,
                max_deferrals=settings.rate_limit_max_deferrals,
            ),
            retry_policy=retry_policy,
            scraper=scraper if config.scrape_url else None,
        )

    cache = TrendCache(
        backend=backend if backend is not None else _build_backend(settings),
        clock=cache_clock,
        sweep_interval=settings.cache_sweep_interval_seconds,
    )
    aggregator = TrendAggregator(adapters, cache, settings, scorer=scorer, predictor=predictor)

    return TrendEngine(settings, client, adapters, cache, aggregator)

"""Politeness-compliant scraping fallback.

Used by a source adapter when its official API path is unavailable. Before
any page request the host's robots.txt is consulted; a disallowed path is
never requested. Requests to the same host are spaced at least
``min_delay`` seconds apart (or the robots.txt Crawl-delay, if larger),
independently of API quotas.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, FrozenSet
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx

from trendbot.core.errors import ScrapingForbiddenError, SourceError
from trendbot.core.logging import get_logger
from trendbot.core.models import DataType, Platform, RawTrendSnapshot
from trendbot.core.time import Clock, Sleeper, monotonic, sleep
from .extract import extract_trend_rows

logger = get_logger(__name__)

DEFAULT_MIN_DELAY = 1.0
DEFAULT_USER_AGENT = "TrendBot/1.0 (+https://trendbot.dev/bot)"


@dataclass(frozen=True)
class ScrapeTarget:
    platform: Platform
    url: str
    data_types: FrozenSet[DataType] = field(default_factory=lambda: frozenset(DataType))


class ScrapingFallback:
    """robots.txt gate + per-host delay + HTML extraction."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        user_agent: str = DEFAULT_USER_AGENT,
        min_delay: float = DEFAULT_MIN_DELAY,
        clock: Clock = monotonic,
        sleep: Sleeper = sleep,
    ):
        self.client = client
        self.user_agent = user_agent
        self.min_delay = min_delay
        self.clock = clock
        self.sleep = sleep
        self._robots: Dict[str, RobotFileParser] = {}
        self._host_locks: Dict[str, asyncio.Lock] = {}
        self._last_request: Dict[str, float] = {}
        self.stats = {"requests": 0, "forbidden": 0, "robots_fetches": 0}

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._host_locks.get(host)
        if lock is None:
            lock = asyncio.Lock()
            self._host_locks[host] = lock
        return lock

    def _delay_for(self, host: str) -> float:
        robots = self._robots.get(host)
        crawl_delay = robots.crawl_delay(self.user_agent) if robots else None
        return max(self.min_delay, float(crawl_delay or 0))

    async def _polite_get(self, host: str, url: str) -> httpx.Response:
        """GET honouring the per-host delay; caller holds the host lock."""
        last = self._last_request.get(host)
        if last is not None:
            wait = last + self._delay_for(host) - self.clock()
            if wait > 0:
                logger.debug(f"Waiting {wait:.2f}s before next request to {host}")
                await self.sleep(wait)

        self.stats["requests"] += 1
        try:
            return await self.client.get(url, headers={"User-Agent": self.user_agent})
        finally:
            self._last_request[host] = self.clock()

    async def _robots_for(self, scheme: str, host: str) -> RobotFileParser:
        robots = self._robots.get(host)
        if robots is not None:
            return robots

        robots_url = f"{scheme}://{host}/robots.txt"
        self.stats["robots_fetches"] += 1
        try:
            response = await self._polite_get(host, robots_url)
        except httpx.HTTPError as e:
            # No verdict, no scrape; not cached so the next query asks again
            raise ScrapingForbiddenError(f"Could not read {robots_url}: {e}")

        robots = RobotFileParser(robots_url)
        if response.status_code in (401, 403):
            robots.disallow_all = True
        elif 400 <= response.status_code < 500:
            robots.allow_all = True
        elif response.status_code >= 500:
            raise ScrapingForbiddenError(f"{robots_url} returned HTTP {response.status_code}")
        else:
            robots.parse(response.text.splitlines())

        self._robots[host] = robots
        return robots

    async def scrape(self, target: ScrapeTarget) -> RawTrendSnapshot:
        """
        Fetch and extract a trend page.

        Raises:
            ScrapingForbiddenError: robots.txt disallows the target (terminal)
            SourceError: the page could not be fetched
        """
        parsed = urlparse(target.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise SourceError(f"Invalid scrape target: {target.url}")
        host = parsed.netloc.lower()

        async with self._lock_for(host):
            robots = await self._robots_for(parsed.scheme, host)
            if not robots.can_fetch(self.user_agent, target.url):
                self.stats["forbidden"] += 1
                logger.warning(
                    f"robots.txt disallows {target.url}",
                    extra={"platform": target.platform.value, "host": host},
                )
                raise ScrapingForbiddenError(f"robots.txt disallows {target.url}")

            logger.info(f"Scraping {target.url}", extra={"platform": target.platform.value})
            try:
                response = await self._polite_get(host, target.url)
            except httpx.HTTPError as e:
                raise SourceError(f"Scrape of {target.url} failed: {type(e).__name__}: {e}")

        if response.status_code != 200:
            raise SourceError(
                f"Scrape of {target.url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        rows = extract_trend_rows(response.text)
        wanted = {data_type.value for data_type in target.data_types}
        return RawTrendSnapshot(
            platform=target.platform,
            origin="scrape",
            url=target.url,
            **{name: found for name, found in rows.items() if name in wanted},
        )

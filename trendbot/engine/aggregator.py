"""
Multi-platform trend aggregation.

One task per requested platform, run concurrently under a query deadline.
Each platform task asks the cache for every requested data type, fetches
all the misses with a single adapter call and merges the answers. A failing
or slow platform never affects the others: every requested platform gets
exactly one TrendData, either populated or carrying an error.
"""

import asyncio
from collections import deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Optional

from trendbot.cache.store import TrendCache
from trendbot.core.errors import QueryTimeoutError, TrendSourceError
from trendbot.core.logging import get_logger
from trendbot.core.models import (
    CacheKey,
    DataType,
    ErrorCode,
    ErrorInfo,
    Platform,
    TimeRange,
    TrendData,
    TrendQuery,
    TrendStatus,
)
from trendbot.core.ranking import Scorer, rank_entries
from trendbot.core.settings import Settings
from trendbot.sources.base import SourceAdapter
from trendbot.sources.normalizer import DATA_TYPE_ORDER, merge_results
from .predict import MomentumPredictor, Predictor

logger = get_logger(__name__)

HISTORY_SIZE = 100


class TrendAggregator:
    """Fans a TrendQuery out to platform adapters through the cache."""

    def __init__(
        self,
        adapters: Mapping[Platform, SourceAdapter],
        cache: TrendCache,
        settings: Settings,
        scorer: Optional[Scorer] = None,
        predictor: Optional[Predictor] = None,
        query_timeout: Optional[float] = None,
    ):
        self.adapters = dict(adapters)
        self.cache = cache
        self.settings = settings
        self.scorer = scorer
        self.predictor = predictor or MomentumPredictor()
        self.query_timeout = query_timeout if query_timeout is not None else settings.query_timeout_seconds
        self.history: Deque[TrendData] = deque(maxlen=HISTORY_SIZE)

    async def fetch_trends(self, query: TrendQuery) -> List[TrendData]:
        """
        Fetch trends for every platform in the query.

        Returns one TrendData per requested platform, ordered by platform
        name. Never raises for source failures.
        """
        platforms = sorted(query.platforms, key=lambda p: p.value)
        tasks = {
            platform: asyncio.ensure_future(self._fetch_platform(platform, query))
            for platform in platforms
        }

        done, pending = await asyncio.wait(tasks.values(), timeout=self.query_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results = [self._collect(platform, task, query) for platform, task in tasks.items()]

        for data in results:
            if data.has_any():
                self.history.append(data)

        logger.info(
            f"Fetched trends for {len(results)} platforms",
            extra={
                "platforms": [p.value for p in platforms],
                "statuses": {r.platform.value: r.status.value for r in results},
                "timed_out": len(pending),
            },
        )
        return results

    def _collect(self, platform: Platform, task: asyncio.Task, query: TrendQuery) -> TrendData:
        if task.cancelled():
            error = QueryTimeoutError(f"{platform.value} did not respond within {self.query_timeout:.1f}s")
            logger.warning(error.message, extra={"platform": platform.value})
            return TrendData.failed(platform, error.to_error_info(), query.data_types)

        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Unexpected error fetching {platform.value}: {exc!r}",
                exc_info=exc,
                extra={"platform": platform.value},
            )
            return TrendData.failed(
                platform,
                ErrorInfo(code=ErrorCode.SOURCE_ERROR, message=f"Unexpected error: {type(exc).__name__}"),
                query.data_types,
            )

        return task.result()

    async def _fetch_platform(self, platform: Platform, query: TrendQuery) -> TrendData:
        adapter = self.adapters.get(platform)
        if adapter is None:
            logger.warning(f"No adapter configured for {platform.value}", extra={"platform": platform.value})
            return TrendData.failed(
                platform,
                ErrorInfo(
                    code=ErrorCode.EXPIRED_CREDENTIALS,
                    message=f"{platform.value} requires reconnection: no credentials configured",
                    reauth_required=True,
                ),
                query.data_types,
            )

        keys = [CacheKey(platform, dt, query.time_range) for dt in DATA_TYPE_ORDER if dt in query.data_types]

        async def fetch(missing: List[CacheKey]) -> TrendData:
            return await self._fetch_from_adapter(adapter, [key.data_type for key in missing], query.time_range)

        found = await self.cache.get_or_fetch_many(
            keys, fetch, lambda key: self.settings.ttl_for(key.data_type)
        )
        merged = merge_results(platform, {key.data_type: found[key] for key in keys})
        return self._rerank(merged)

    async def _fetch_from_adapter(
        self, adapter: SourceAdapter, data_types: List[DataType], time_range: TimeRange
    ) -> TrendData:
        """One upstream fetch for every data type the cache could not serve."""
        try:
            return await adapter.fetch(data_types, time_range)
        except TrendSourceError as e:
            names = [dt.value for dt in data_types]
            logger.warning(
                f"{adapter.name} {', '.join(names)} failed: {e.message}",
                extra={"platform": adapter.name, "data_types": names, "code": e.code.value},
            )
            return TrendData.failed(adapter.platform, e.to_error_info(), data_types)

    def _rerank(self, data: TrendData) -> TrendData:
        update = {
            dt.value: rank_entries(data.entries(dt), self.scorer)
            for dt in DataType
            if data.entries(dt)
        }
        return data.model_copy(update=update) if update else data

    def predict(self, history: Optional[Iterable[TrendData]] = None) -> List[str]:
        """Ranked identifiers predicted to trend, from history or recent results."""
        snapshots = list(history) if history is not None else list(self.history)
        usable = [data for data in snapshots if data.status != TrendStatus.FAILED]
        return self.predictor(usable)

    def source_status(self) -> Dict[str, Any]:
        return {
            "platforms": {
                platform.value: adapter.snapshot()
                for platform, adapter in sorted(self.adapters.items(), key=lambda item: item[0].value)
            },
            "cache": dict(self.cache.stats),
        }

"""YouTube Data API v3 adapter.

Uses the ``mostPopular`` video chart for the configured region:
- hashtags from titles and descriptions, weighted by views
- keywords from the uploader-supplied ``snippet.tags``, weighted by views
- viral content from the videos themselves
"""

from collections import defaultdict
from typing import Any, Dict, FrozenSet, Optional

import httpx

from trendbot.core.errors import (
    ExpiredCredentialsError,
    NotSupportedError,
    RateLimitedError,
    TrendSourceError,
)
from trendbot.core.models import DataType, Platform, RawTrendSnapshot, TimeRange
from trendbot.scraper.extract import find_hashtags
from .base import SourceAdapter

MAX_RESULTS = 50

# errors[].reason values that mean the key itself is bad
AUTH_REASONS = {"keyInvalid", "keyExpired", "authError", "unauthorized"}
QUOTA_REASONS = {"quotaExceeded", "dailyLimitExceeded"}
NOT_SUPPORTED_REASONS = {"accessNotConfigured", "chartNotFound"}


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class YouTubeAdapter(SourceAdapter):
    platform = Platform.YOUTUBE
    supported_data_types = frozenset(DataType)

    def build_request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> httpx.Request:
        # The chart is a rolling snapshot; it takes no time range
        return self.client.build_request(
            "GET",
            f"{self.config.base_url}/videos",
            params={
                "part": "snippet,statistics",
                "chart": "mostPopular",
                "regionCode": self.config.region,
                "maxResults": MAX_RESULTS,
                "key": self.api_key,
            },
            timeout=self.config.timeout_seconds,
        )

    def parse_response(self, payload: Any, data_types: FrozenSet[DataType]) -> RawTrendSnapshot:
        hashtag_volume: Dict[str, float] = defaultdict(float)
        keyword_volume: Dict[str, float] = defaultdict(float)
        videos = []

        for item in payload.get("items", []):
            snippet = item.get("snippet", {})
            statistics = item.get("statistics", {})
            views = _int(statistics.get("viewCount"))

            text = f"{snippet.get('title', '')} {snippet.get('description', '')}"
            for tag in set(t.lower() for t in find_hashtags(text)):
                hashtag_volume[tag] += views

            for keyword in set(t.strip().lower() for t in snippet.get("tags", []) if t.strip()):
                keyword_volume[keyword] += views

            videos.append({
                "content_id": item["id"],
                "title": snippet.get("title", ""),
                "url": f"https://www.youtube.com/watch?v={item['id']}",
                "views": views,
                "likes": _int(statistics.get("likeCount")),
                "comments": _int(statistics.get("commentCount")),
            })

        return RawTrendSnapshot(
            platform=self.platform,
            origin="api",
            hashtags=[{"tag": tag, "volume": volume} for tag, volume in hashtag_volume.items()],
            keywords=[{"keyword": kw, "volume": volume} for kw, volume in keyword_volume.items()],
            viral_content=videos,
        )

    def classify_error(self, response: httpx.Response, payload: Any) -> Optional[TrendSourceError]:
        error = payload.get("error", {}) if isinstance(payload, dict) else {}
        reasons = {e.get("reason") for e in error.get("errors", []) if isinstance(e, dict)}
        message = error.get("message", "")
        status = response.status_code

        if reasons & AUTH_REASONS or "API key expired" in message or status == 401:
            return ExpiredCredentialsError(f"youtube API key rejected: {message or status}", status_code=status)
        if reasons & QUOTA_REASONS:
            # Daily quota: retrying within this query cannot succeed
            return RateLimitedError(f"youtube quota exhausted: {message}", status_code=status)
        if reasons & NOT_SUPPORTED_REASONS:
            return NotSupportedError(f"youtube API not available: {message}", status_code=status)
        return None

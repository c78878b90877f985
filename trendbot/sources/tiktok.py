"""TikTok Research API adapter.

Queries videos for the configured region over the requested window.
Hashtags come from ``hashtag_names`` weighted by views; the videos are the
viral content. No keyword signal is exposed, keywords go to the scraper.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

import httpx

from trendbot.core.errors import (
    ExpiredCredentialsError,
    NotSupportedError,
    TransientUpstreamError,
    TrendSourceError,
)
from trendbot.core.models import DataType, Platform, RawTrendSnapshot, TimeRange
from .base import SourceAdapter, time_range_start

VIDEO_FIELDS = "id,video_description,hashtag_names,view_count,like_count,comment_count,share_count,username"
MAX_COUNT = 100

TOKEN_ERRORS = {"access_token_invalid", "access_token_expired", "invalid_token"}
THROTTLE_ERRORS = {"rate_limit_exceeded"}
NOT_SUPPORTED_ERRORS = {"scope_not_authorized", "scope_permission_missed"}


class TikTokAdapter(SourceAdapter):
    platform = Platform.TIKTOK
    supported_data_types = frozenset({DataType.HASHTAGS, DataType.VIRAL_CONTENT})

    def build_request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> httpx.Request:
        now = datetime.now(timezone.utc)
        # Research API works in whole UTC days
        start = min(time_range_start(time_range, now).date(), now.date())
        return self.client.build_request(
            "POST",
            f"{self.config.base_url}/research/video/query/",
            params={"fields": VIDEO_FIELDS},
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "query": {
                    "and": [
                        {"operation": "IN", "field_name": "region_code", "field_values": [self.config.region]}
                    ]
                },
                "start_date": start.strftime("%Y%m%d"),
                "end_date": now.strftime("%Y%m%d"),
                "max_count": MAX_COUNT,
            },
            timeout=self.config.timeout_seconds,
        )

    def parse_response(self, payload: Any, data_types: FrozenSet[DataType]) -> RawTrendSnapshot:
        hashtag_volume: Dict[str, float] = defaultdict(float)
        videos = []

        for video in payload.get("data", {}).get("videos", []):
            views = int(video.get("view_count") or 0)
            for tag in set(name.lower() for name in video.get("hashtag_names") or []):
                hashtag_volume[tag] += views

            username = video.get("username")
            videos.append({
                "content_id": str(video["id"]),
                "title": (video.get("video_description") or "")[:200],
                "url": f"https://www.tiktok.com/@{username}/video/{video['id']}" if username else None,
                "views": views,
                "likes": int(video.get("like_count") or 0),
                "comments": int(video.get("comment_count") or 0),
                "shares": int(video.get("share_count") or 0),
            })

        return RawTrendSnapshot(
            platform=self.platform,
            origin="api",
            hashtags=[{"tag": tag, "volume": volume} for tag, volume in hashtag_volume.items()],
            viral_content=videos,
        )

    def classify_error(self, response: httpx.Response, payload: Any) -> Optional[TrendSourceError]:
        error = payload.get("error", {}) if isinstance(payload, dict) else {}
        code = error.get("code")
        message = error.get("message", f"HTTP {response.status_code}")

        if code in TOKEN_ERRORS:
            return ExpiredCredentialsError(f"tiktok token rejected: {message}", status_code=response.status_code)
        if code in THROTTLE_ERRORS:
            return TransientUpstreamError(f"tiktok throttled: {message}", status_code=response.status_code)
        if code in NOT_SUPPORTED_ERRORS:
            return NotSupportedError(f"tiktok research access missing: {message}", status_code=response.status_code)
        return super().classify_error(response, payload)

"""Instagram Graph API adapter.

Reads the connected business account's recent media. Hashtags come from
captions, weighted by likes plus comments; the posts themselves are the viral
content. The Graph API has no keyword signal, so keywords always go to the
scraping fallback.
"""

from collections import defaultdict
from typing import Any, Dict, FrozenSet, Optional

import httpx

from trendbot.core.errors import ExpiredCredentialsError, TransientUpstreamError, TrendSourceError
from trendbot.core.models import DataType, Platform, RawTrendSnapshot, TimeRange
from trendbot.scraper.extract import find_hashtags
from .base import SourceAdapter, time_range_start

MEDIA_FIELDS = "id,caption,like_count,comments_count,permalink,media_type,timestamp"
MEDIA_LIMIT = 50

# OAuthException codes for invalid, expired or deprecated sessions
TOKEN_ERROR_CODES = {102, 190, 463, 467}
# Application / user / page level throttling
THROTTLE_ERROR_CODES = {4, 17, 32, 613}


class InstagramAdapter(SourceAdapter):
    platform = Platform.INSTAGRAM
    supported_data_types = frozenset({DataType.HASHTAGS, DataType.VIRAL_CONTENT})

    @property
    def has_credentials(self) -> bool:
        return self.config.has_credentials and bool(self.config.account_id)

    def build_request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> httpx.Request:
        return self.client.build_request(
            "GET",
            f"{self.config.base_url}/{self.config.account_id}/media",
            params={
                "fields": MEDIA_FIELDS,
                "limit": MEDIA_LIMIT,
                "since": int(time_range_start(time_range).timestamp()),
                "access_token": self.api_key,
            },
            timeout=self.config.timeout_seconds,
        )

    def parse_response(self, payload: Any, data_types: FrozenSet[DataType]) -> RawTrendSnapshot:
        hashtag_volume: Dict[str, float] = defaultdict(float)
        posts = []

        for media in payload.get("data", []):
            likes = int(media.get("like_count") or 0)
            comments = int(media.get("comments_count") or 0)
            caption = media.get("caption") or ""

            for tag in set(t.lower() for t in find_hashtags(caption)):
                hashtag_volume[tag] += likes + comments

            posts.append({
                "content_id": media["id"],
                "title": caption.split("\n", 1)[0][:200],
                "url": media.get("permalink"),
                "likes": likes,
                "comments": comments,
            })

        return RawTrendSnapshot(
            platform=self.platform,
            origin="api",
            hashtags=[{"tag": tag, "volume": volume} for tag, volume in hashtag_volume.items()],
            viral_content=posts,
        )

    def classify_error(self, response: httpx.Response, payload: Any) -> Optional[TrendSourceError]:
        error = payload.get("error", {}) if isinstance(payload, dict) else {}
        code = error.get("code")
        message = error.get("message", f"HTTP {response.status_code}")

        if code in TOKEN_ERROR_CODES or error.get("type") == "OAuthException" and response.status_code == 401:
            return ExpiredCredentialsError(f"instagram session invalid: {message}", status_code=response.status_code)
        if code in THROTTLE_ERROR_CODES:
            return TransientUpstreamError(f"instagram throttled: {message}", status_code=response.status_code)
        return super().classify_error(response, payload)

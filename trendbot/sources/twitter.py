"""X/Twitter trends adapter (v1.1 ``trends/place``).

Trend names starting with '#' are hashtags, the rest keywords; volume is
``tweet_volume``. The endpoint carries no post-level data, so viral content
is scraped.
"""

from typing import Any, FrozenSet, Optional

import httpx

from trendbot.core.errors import (
    ExpiredCredentialsError,
    NotSupportedError,
    TransientUpstreamError,
    TrendSourceError,
)
from trendbot.core.models import DataType, Platform, RawTrendSnapshot, TimeRange
from .base import SourceAdapter

# Yahoo WOEIDs used by the trends endpoint
REGION_WOEIDS = {
    "WORLD": 1,
    "US": 23424977,
    "GB": 23424975,
    "CA": 23424775,
    "IN": 23424848,
    "MX": 23424900,
    "BR": 23424768,
}

INVALID_TOKEN_CODES = {32, 89, 215}
RATE_LIMIT_CODES = {88}
# Access level does not include this endpoint
ACCESS_LEVEL_CODES = {453}


class TwitterAdapter(SourceAdapter):
    platform = Platform.TWITTER
    supported_data_types = frozenset({DataType.HASHTAGS, DataType.KEYWORDS})

    def build_request(self, data_types: FrozenSet[DataType], time_range: TimeRange) -> httpx.Request:
        woeid = REGION_WOEIDS.get(self.config.region.upper(), REGION_WOEIDS["WORLD"])
        return self.client.build_request(
            "GET",
            f"{self.config.base_url}/trends/place.json",
            params={"id": woeid},
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.config.timeout_seconds,
        )

    def parse_response(self, payload: Any, data_types: FrozenSet[DataType]) -> RawTrendSnapshot:
        hashtags, keywords = [], []
        for location in payload:
            for trend in location.get("trends", []):
                name = (trend.get("name") or "").strip()
                if not name:
                    continue
                volume = trend.get("tweet_volume") or 0
                if name.startswith("#"):
                    hashtags.append({"tag": name, "volume": volume})
                else:
                    keywords.append({"keyword": name, "volume": volume})

        return RawTrendSnapshot(
            platform=self.platform,
            origin="api",
            hashtags=hashtags,
            keywords=keywords,
        )

    def classify_error(self, response: httpx.Response, payload: Any) -> Optional[TrendSourceError]:
        errors = payload.get("errors", []) if isinstance(payload, dict) else []
        codes = {e.get("code") for e in errors if isinstance(e, dict)}
        message = errors[0].get("message", "") if errors and isinstance(errors[0], dict) else f"HTTP {response.status_code}"

        if codes & INVALID_TOKEN_CODES:
            return ExpiredCredentialsError(f"twitter token rejected: {message}", status_code=response.status_code)
        if codes & RATE_LIMIT_CODES:
            return TransientUpstreamError(f"twitter rate limited: {message}", status_code=response.status_code)
        if codes & ACCESS_LEVEL_CODES:
            return NotSupportedError(f"twitter trends not available at this access level: {message}", status_code=response.status_code)
        return super().classify_error(response, payload)

"""Platform source adapters.

- base: adapter contract, primary path with breaker/limiter/retry, scraper fallback
- normalizer: raw rows to ranked TrendData
- youtube / instagram / tiktok / twitter: one adapter per platform API
"""

from typing import Dict, Type

from trendbot.core.models import Platform

from .base import SourceAdapter
from .instagram import InstagramAdapter
from .tiktok import TikTokAdapter
from .twitter import TwitterAdapter
from .youtube import YouTubeAdapter

ADAPTERS: Dict[Platform, Type[SourceAdapter]] = {
    Platform.YOUTUBE: YouTubeAdapter,
    Platform.INSTAGRAM: InstagramAdapter,
    Platform.TIKTOK: TikTokAdapter,
    Platform.TWITTER: TwitterAdapter,
}

__all__ = [
    "ADAPTERS",
    "SourceAdapter",
    "YouTubeAdapter",
    "InstagramAdapter",
    "TikTokAdapter",
    "TwitterAdapter",
]

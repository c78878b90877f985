"""Shared fixtures for TrendBot tests."""

import asyncio
import json
from typing import Callable, Dict, List

import httpx
import pytest

from trendbot.core.models import HashtagEntry, Platform, TrendData
from trendbot.core.settings import PlatformSettings, Settings


class FakeClock:
    """Manually driven clock; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        # Let already-woken tasks observe the time before it moves on
        await asyncio.sleep(0)
        self.now += seconds


class RecordingTransport:
    """httpx.MockTransport wrapper that records every request it serves."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def hosts(self) -> List[str]:
        return [request.url.host for request in self.requests]

    def count(self, host: str, path_prefix: str = "") -> int:
        return sum(
            1 for request in self.requests
            if request.url.host == host and request.url.path.startswith(path_prefix)
        )


def json_response(status_code: int, payload, headers: Dict[str, str] = None) -> httpx.Response:
    return httpx.Response(
        status_code,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


def make_settings(**platforms: PlatformSettings) -> Settings:
    """Settings with every platform disabled except the ones given."""
    blocks = {p.value: PlatformSettings(enabled=False) for p in Platform}
    blocks.update(platforms)
    return Settings(
        _env_file=None,
        sources_file=None,
        retry_initial_delay_seconds=1.0,
        **blocks,
    )


def hashtag_data(platform: Platform, **volumes: float) -> TrendData:
    return TrendData(
        platform=platform,
        hashtags=[HashtagEntry(tag=tag, volume=volume) for tag, volume in volumes.items()],
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def youtube_config():
    return PlatformSettings(
        api_key="yt-key",
        base_url="https://yt.test/v3",
        rate_limit=100,
        rate_window_seconds=100.0,
    )

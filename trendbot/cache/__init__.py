"""TTL trend cache with single-flight fetching."""

from .backends import CacheBackend, MemoryCacheBackend, RedisCacheBackend
from .store import TrendCache

__all__ = ["CacheBackend", "MemoryCacheBackend", "RedisCacheBackend", "TrendCache"]

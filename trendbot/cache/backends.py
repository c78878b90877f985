"""Storage backends for the trend cache.

The cache only needs get / put / delete / delete_expired from a store. The
in-memory backend is the default; Redis is used when ``redis_url`` is set.
"""

from typing import Dict, Optional, Protocol

from trendbot.core.logging import get_logger
from trendbot.core.models import CacheEntry

logger = get_logger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[CacheEntry]: ...

    async def put(self, entry: CacheEntry, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_expired(self, now: float) -> int: ...

    async def close(self) -> None: ...


class MemoryCacheBackend:
    """In-process store. Expired entries stay until read or swept."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def put(self, entry: CacheEntry, ttl: float) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_expired(self, now: float) -> int:
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    async def close(self) -> None:
        self._entries.clear()


class RedisCacheBackend:
    """Redis store; keys carry a native expiry so sweeping is a no-op."""

    def __init__(self, redis_url: Optional[str] = None, client=None, prefix: str = "trendbot:"):
        if client is None:
            import redis.asyncio as redis

            client = redis.from_url(redis_url, decode_responses=True)
        self.redis = client
        self.prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[CacheEntry]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        return CacheEntry.model_validate_json(raw)

    async def put(self, entry: CacheEntry, ttl: float) -> None:
        # Redis wants whole seconds; round up so the key never expires before the entry
        seconds = max(1, int(ttl + 0.999))
        await self.redis.set(self._key(entry.key), entry.model_dump_json(), ex=seconds)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))

    async def delete_expired(self, now: float) -> int:
        return 0

    async def close(self) -> None:
        await self.redis.aclose()

import logging
import time
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from .errors import CacheUnavailable, ConfigurationError

logger = logging.getLogger(__name__)


class CacheStore(Protocol):
    name: str

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def incr(self, key: str, ttl_seconds: int) -> int:
        ...

    async def close(self) -> None:
        ...


class RedisCacheStore:
    """Cache store backed by Redis; TTLs are enforced by the server."""

    name = "redis"

    def __init__(self, client: redis.Redis):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 0.5) -> "RedisCacheStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except RedisError as e:
            raise CacheUnavailable(f"redis GET {key} failed: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise CacheUnavailable(f"redis SET {key} failed: {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as e:
            raise CacheUnavailable(f"redis DEL {key} failed: {e}") from e

    async def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, ttl_seconds)
                value, _ = await pipe.execute()
        except RedisError as e:
            raise CacheUnavailable(f"redis INCR {key} failed: {e}") from e
        return int(value)

    async def close(self) -> None:
        await self._client.aclose()


class MemoryCacheStore:
    """Process-local fallback used when no Redis URL is configured.

    Expired entries are dropped lazily on read.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[str, float]] = {}

    async def get(self, key: str) -> Optional[str]:
        record = self._data.get(key)
        if record is None:
            return None
        value, expires_at = record
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def incr(self, key: str, ttl_seconds: int) -> int:
        value = int(await self.get(key) or 0) + 1
        await self.set(key, str(value), ttl_seconds)
        return value

    async def close(self) -> None:
        self._data.clear()

    def __len__(self):
        return len(self._data)


def build_cache_store(redis_url: Optional[str], production: bool = False) -> CacheStore:
    if redis_url:
        return RedisCacheStore.from_url(redis_url)
    if production:
        # a process-local cache cannot be purged across instances
        raise ConfigurationError("REDIS_URL is missing in production.")
    logger.info("REDIS_URL is not set; using in-memory tag cache.")
    return MemoryCacheStore()

import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from .errors import CacheUnavailable
from .kv import CacheStore
from .schemas import TagState

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 60
# outlives any lookup that could still be in flight
GENERATION_TTL_SECONDS = 3600

_UNKNOWN = object()

Lookup = Callable[[str], Awaitable[Optional[TagState]]]


def cache_key(token: str) -> str:
    return f"hw:{token}"


def generation_key(token: str) -> str:
    return f"hw-gen:{token}"


class TagCache:
    """Cache-aside layer in front of the tag lookup service.

    Hits never reach the lookup service. Misses call it and store the result
    for ``ttl_seconds``; not-found answers are never cached, so a tag that is
    provisioned later resolves on the very next scan. Concurrent misses for
    the same token each call upstream.

    Every purge bumps a per-token generation counter kept in the store. A miss
    notes the generation before calling upstream and only writes its result
    back if no purge happened meanwhile, so a lookup that was in flight during
    a purge cannot resurrect the purged state.
    """

    def __init__(self, store: CacheStore, lookup: Lookup, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self.store = store
        self._lookup = lookup
        self.ttl_seconds = ttl_seconds

    async def get(self, token: str) -> Optional[TagState]:
        token = (token or "").strip()
        if not token:
            return None
        key = cache_key(token)

        cached = await self._read(key)
        if cached is not None:
            return cached

        generation = await self._generation(token)
        # UpstreamUnavailable propagates; the caller decides how to degrade
        state = await self._lookup(token)
        if state is None:
            return None
        if generation is _UNKNOWN or await self._generation(token) != generation:
            logger.info("Tag %s was purged during lookup; not caching the result", token)
            return state

        try:
            await self.store.set(key, state.model_dump_json(), self.ttl_seconds)
        except CacheUnavailable as e:
            logger.warning("Tag cache write skipped: %s", e)
        return state

    async def _read(self, key: str) -> Optional[TagState]:
        try:
            raw = await self.store.get(key)
        except CacheUnavailable as e:
            logger.warning("Tag cache read failed, falling back to lookup: %s", e)
            return None
        if raw is None:
            return None
        try:
            return TagState.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key)
            try:
                await self.store.delete(key)
            except CacheUnavailable as e:
                logger.warning("Could not delete cache entry %s: %s", key, e)
            return None

    async def invalidate(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            return
        await self.store.incr(generation_key(token), GENERATION_TTL_SECONDS)
        await self.store.delete(cache_key(token))

    async def _generation(self, token: str):
        try:
            return await self.store.get(generation_key(token))
        except CacheUnavailable as e:
            logger.warning("Tag cache generation read failed: %s", e)
            return _UNKNOWN

import asyncio

import pytest

from backend.tagredirect.errors import CacheUnavailable, UpstreamUnavailable
from backend.tagredirect.kv import MemoryCacheStore
from backend.tagredirect.schemas import TagState
from backend.tagredirect.tag_cache import TagCache, cache_key


class CountingLookup:
    def __init__(self, records=None, error=None):
        self.records = records or {}
        self.error = error
        self.calls = []

    async def __call__(self, token):
        self.calls.append(token)
        if self.error:
            raise self.error
        data = self.records.get(token)
        return TagState(**data) if data else None


class BrokenStore(MemoryCacheStore):
    name = "broken"

    async def get(self, key):
        raise CacheUnavailable("down")

    async def set(self, key, value, ttl_seconds):
        raise CacheUnavailable("down")

    async def delete(self, key):
        raise CacheUnavailable("down")


class FakeTime:
    def __init__(self):
        self.t = 1000.0

    def __call__(self):
        return self.t


def test_cache_key_is_prefixed():
    assert cache_key("abc123") == "hw:abc123"


@pytest.mark.asyncio
async def test_second_get_within_ttl_is_served_from_cache():
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active"}})
    cache = TagCache(MemoryCacheStore(), lookup)

    first = await cache.get("tok")
    second = await cache.get("tok")

    assert first == second
    assert first.id == "t1"
    assert lookup.calls == ["tok"]


@pytest.mark.asyncio
async def test_invalidate_forces_refetch():
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active"}})
    store = MemoryCacheStore()
    cache = TagCache(store, lookup)

    await cache.get("tok")
    await cache.invalidate("tok")
    assert await store.get("hw:tok") is None

    lookup.records["tok"] = {"id": "t1", "status": "suspended"}
    state = await cache.get("tok")
    assert state.status == "suspended"
    assert lookup.calls == ["tok", "tok"]


@pytest.mark.asyncio
async def test_invalidate_absent_key_is_a_noop():
    cache = TagCache(MemoryCacheStore(), CountingLookup())
    await cache.invalidate("never-seen")
    await cache.invalidate("")


@pytest.mark.asyncio
async def test_negative_results_are_not_cached():
    lookup = CountingLookup()
    store = MemoryCacheStore()
    cache = TagCache(store, lookup)

    assert await cache.get("missing") is None
    assert await cache.get("missing") is None
    assert lookup.calls == ["missing", "missing"]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_entries_expire_after_ttl():
    clock = FakeTime()
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active"}})
    cache = TagCache(MemoryCacheStore(clock=clock), lookup, ttl_seconds=60)

    await cache.get("tok")
    clock.t += 59
    await cache.get("tok")
    assert len(lookup.calls) == 1

    clock.t += 2
    await cache.get("tok")
    assert len(lookup.calls) == 2


@pytest.mark.asyncio
async def test_cached_entry_is_raw_state_not_a_validated_target():
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active", "target_type": "url",
                                     "target_url": "javascript:alert(1)"}})
    store = MemoryCacheStore()
    cache = TagCache(store, lookup)
    await cache.get("tok")
    assert "javascript:alert(1)" in await store.get("hw:tok")


@pytest.mark.asyncio
async def test_corrupt_entry_is_discarded():
    store = MemoryCacheStore()
    await store.set("hw:tok", "{not json", 60)
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active"}})
    cache = TagCache(store, lookup)

    state = await cache.get("tok")
    assert state.id == "t1"
    assert lookup.calls == ["tok"]


@pytest.mark.asyncio
async def test_store_outage_falls_back_to_lookup():
    lookup = CountingLookup({"tok": {"id": "t1", "status": "active"}})
    cache = TagCache(BrokenStore(), lookup)
    assert (await cache.get("tok")).id == "t1"
    assert (await cache.get("tok")).id == "t1"
    assert len(lookup.calls) == 2


@pytest.mark.asyncio
async def test_invalidate_surfaces_store_outage():
    cache = TagCache(BrokenStore(), CountingLookup())
    with pytest.raises(CacheUnavailable):
        await cache.invalidate("tok")


@pytest.mark.asyncio
async def test_upstream_errors_propagate_and_nothing_is_cached():
    store = MemoryCacheStore()
    cache = TagCache(store, CountingLookup(error=UpstreamUnavailable("timeout")))
    with pytest.raises(UpstreamUnavailable):
        await cache.get("tok")
    assert len(store) == 0


@pytest.mark.asyncio
async def test_blank_token_never_reaches_lookup():
    lookup = CountingLookup()
    cache = TagCache(MemoryCacheStore(), lookup)
    assert await cache.get("   ") is None
    assert lookup.calls == []


class BlockingLookup(CountingLookup):
    """Holds the first call open until ``release`` is set."""

    def __init__(self, records):
        super().__init__(records)
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def __call__(self, token):
        data = dict(self.records[token])
        self.calls.append(token)
        if len(self.calls) == 1:
            self.started.set()
            await self.release.wait()
        return TagState(**data)


@pytest.mark.asyncio
async def test_purge_during_lookup_is_not_overwritten():
    lookup = BlockingLookup({"tok": {"id": "t1", "status": "active", "target_type": "url",
                                     "target_url": "https://old.example"}})
    store = MemoryCacheStore()
    cache = TagCache(store, lookup)

    pending = asyncio.create_task(cache.get("tok"))
    await lookup.started.wait()
    lookup.records["tok"]["target_url"] = "https://new.example"
    await cache.invalidate("tok")
    lookup.release.set()

    # the in-flight caller still gets its answer, but it is not cached
    assert (await pending).target_url == "https://old.example"
    assert await store.get(cache_key("tok")) is None

    state = await cache.get("tok")
    assert state.target_url == "https://new.example"
    assert len(lookup.calls) == 2
    # and the fresh result is cached again
    await cache.get("tok")
    assert len(lookup.calls) == 2

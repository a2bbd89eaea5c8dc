from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from .config import Settings
from .internal_client import InternalClient
from .kv import CacheStore, build_cache_store
from .privacy import PrivacyHasher
from .recorder import EventRecorder
from .resolver import TargetResolver
from .tag_cache import TagCache


@dataclass
class Services:
    """Everything the request handlers need, built once per process."""
    settings: Settings
    cache_store: CacheStore
    client: InternalClient
    tag_cache: TagCache
    resolver: TargetResolver
    recorder: EventRecorder
    hasher: PrivacyHasher

    async def aclose(self):
        await self.recorder.stop()
        await self.client.aclose()
        await self.cache_store.close()


def build_services(settings: Settings, cache_store: Optional[CacheStore] = None,
                   transport: Optional[httpx.AsyncBaseTransport] = None,
                   hasher: Optional[PrivacyHasher] = None) -> Services:
    if cache_store is None:
        cache_store = build_cache_store(settings.redis_url, settings.is_production)
    if hasher is None:
        hasher = PrivacyHasher(settings.hash_secret, production=settings.is_production)
    client = InternalClient(
        settings.internal_api_url,
        settings.internal_secret,
        lookup_timeout=settings.lookup_timeout_seconds,
        event_timeout=settings.event_timeout_seconds,
        transport=transport,
    )
    return Services(
        settings=settings,
        cache_store=cache_store,
        client=client,
        tag_cache=TagCache(cache_store, client.lookup_tag, ttl_seconds=settings.tag_cache_ttl_seconds),
        resolver=TargetResolver(client.handle_for, settings.pages),
        recorder=EventRecorder(hasher, client.send_event,
                               queue_size=settings.event_queue_size, workers=settings.event_workers),
        hasher=hasher,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
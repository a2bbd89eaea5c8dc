import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import ValidationError

from .classify import RequestContext, classify_device, host_only
from .errors import UpstreamUnavailable
from .privacy import PrivacyHasher
from .schemas import AnalyticsEvent, EventType

logger = logging.getLogger(__name__)

Dispatch = Callable[[AnalyticsEvent], Awaitable[None]]


class EventRecorder:
    """Best-effort analytics recording.

    ``record`` only builds the event and puts it on a bounded queue; a fixed
    pool of worker tasks ships queued events to the ingestion service. Nothing
    here ever raises into the request that triggered the event: a full queue
    drops the event and a failed dispatch is logged and forgotten.
    """

    def __init__(self, hasher: PrivacyHasher, dispatch: Dispatch,
                 queue_size: int = 1000, workers: int = 4):
        self._hasher = hasher
        self._dispatch = dispatch
        self._queue_size = queue_size
        self._worker_count = workers
        self._queue: Optional[asyncio.Queue] = None
        self._workers: List[asyncio.Task] = []
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def build_event(self, tag_id: str, event_type: EventType, ctx: RequestContext,
                    metadata: Optional[Any] = None) -> AnalyticsEvent:
        return AnalyticsEvent(
            tag_id=tag_id,
            event_type=event_type,
            country=ctx.country or None,
            device=classify_device(ctx.user_agent),
            referrer=host_only(ctx.referrer)[:200],
            ip_hash=self._hasher.hash(ctx.ip),
            utm=dict(ctx.utm) if ctx.utm else None,
            metadata=metadata,
        )

    def record(self, tag_id: str, event_type: EventType, ctx: RequestContext,
               metadata: Optional[Any] = None) -> None:
        try:
            event = self.build_event(tag_id, event_type, ctx, metadata)
        except ValidationError as e:
            logger.warning("Dropping malformed %s event for tag %s: %s", event_type, tag_id, e)
            self.dropped += 1
            return
        if self._queue is None:
            logger.warning("Event recorder is not running; dropping %s event for tag %s", event_type, tag_id)
            self.dropped += 1
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Event queue full (%d); dropping %s event for tag %s",
                           self._queue_size, event_type, tag_id)

    def start(self):
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"event-recorder-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Event recorder started with %d workers", self._worker_count)

    async def stop(self, timeout: float = 5.0):
        """Drain queued events for up to ``timeout`` seconds, then stop the workers."""
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Event recorder stopped with %d events still queued", self.pending())
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Event recorder stopped (sent=%d failed=%d dropped=%d)",
                    self.sent, self.failed, self.dropped)

    async def drain(self):
        """Wait until every queued event has been dispatched or has failed."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker(self):
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
                self.sent += 1
            except UpstreamUnavailable as e:
                self.failed += 1
                logger.warning("Event dispatch failed for tag %s: %s", event.tag_id, e)
            except Exception:
                self.failed += 1
                logger.exception("Unexpected error dispatching event for tag %s", event.tag_id)
            finally:
                self._queue.task_done()

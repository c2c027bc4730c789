"""Per-session publish/subscribe fan-out of pipeline progress events."""

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Optional

from assetpin.models.progress import ProgressEvent, ProgressStage

logger = logging.getLogger(__name__)


class Subscription:
    """One consumer's view of a session topic.

    Use as an async context manager; leaving the block revokes the
    subscription. Iterating yields events in publish order.
    """

    def __init__(self, broadcaster: "ProgressBroadcaster", session_id: str, max_queue_size: int):
        self.broadcaster = broadcaster
        self.session_id = session_id
        self._queue: asyncio.Queue[ProgressEvent] = asyncio.Queue(maxsize=max_queue_size)
        self.closed = False

    def _offer(self, event: ProgressEvent) -> None:
        if self.closed:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "Subscriber queue full, dropping progress event",
                extra={"session_id": self.session_id, "stage": event.stage.value},
            )

    async def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Wait for the next event; returns None when the timeout elapses first."""
        if timeout is None:
            return await self._queue.get()
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

    def close(self) -> None:
        self.broadcaster.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        return self

    async def __anext__(self) -> ProgressEvent:
        if self.closed:
            raise StopAsyncIteration
        return await self._queue.get()


class ProgressBroadcaster:
    """Topic space of progress events keyed by session id.

    Delivery is best-effort: events published while nobody is subscribed to
    the session are dropped, and late subscribers get no replay.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    def subscribe(self, session_id: str) -> Subscription:
        subscription = Subscription(self, session_id, self.max_queue_size)
        self._subscribers[session_id].add(subscription)
        logger.debug("Progress subscriber attached", extra={"session_id": session_id})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.closed:
            return
        subscription.closed = True
        subscribers = self._subscribers.get(subscription.session_id)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscribers[subscription.session_id]
        logger.debug(
            "Progress subscriber detached", extra={"session_id": subscription.session_id}
        )

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, ()))

    def publish(self, event: ProgressEvent) -> int:
        """Deliver an event to every current subscriber of its session.

        Must be called from the event loop thread.

        Returns:
            Number of subscribers the event was offered to
        """
        subscribers = list(self._subscribers.get(event.session_id, ()))
        for subscription in subscribers:
            subscription._offer(event)
        return len(subscribers)

    def publish_threadsafe(self, loop: asyncio.AbstractEventLoop, event: ProgressEvent) -> None:
        """Publish from a worker thread by scheduling onto the subscribers' loop."""
        if loop.is_closed():
            logger.debug("Event loop closed, dropping progress event")
            return
        loop.call_soon_threadsafe(self.publish, event)

    def emit(
        self,
        session_id: str,
        stage: ProgressStage,
        file_type: Optional[str] = None,
        **payload,
    ) -> None:
        """Build and publish an event in one call."""
        self.publish(
            ProgressEvent(session_id=session_id, stage=stage, file_type=file_type, payload=payload)
        )

    def emit_error(self, session_id: str, error: BaseException, file_type: Optional[str] = None) -> None:
        self.emit(
            session_id,
            ProgressStage.ERROR,
            file_type=file_type,
            error=type(error).__name__,
            message=str(error),
        )

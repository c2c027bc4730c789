"""Server-Sent Events framing for progress subscriptions."""

from typing import AsyncIterator, Awaitable, Callable

from assetpin.models.progress import ProgressEvent
from assetpin.progress.broadcaster import ProgressBroadcaster

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def format_sse(event: ProgressEvent) -> str:
    return f"data: {event.to_json()}\n\n"


async def event_stream(
    broadcaster: ProgressBroadcaster,
    session_id: str,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Yield SSE frames for one session until the client goes away.

    The subscription is released when the generator finishes or is closed,
    which Starlette does as soon as the connection drops.
    """
    async with broadcaster.subscribe(session_id) as subscription:
        yield ": connected\n\n"
        while not await is_disconnected():
            event = await subscription.get(timeout=keepalive_seconds)
            if event is None:
                yield ": keep-alive\n\n"
                continue
            yield format_sse(event)

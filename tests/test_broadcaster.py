"""Tests for progress fan-out and SSE framing."""

import asyncio
import json

import pytest

from assetpin.models.progress import ProgressEvent, ProgressStage
from assetpin.progress.broadcaster import ProgressBroadcaster
from assetpin.progress.sse import event_stream, format_sse


def event(session_id: str, **payload) -> ProgressEvent:
    return ProgressEvent(session_id=session_id, stage=ProgressStage.UPLOADING, payload=payload)


def test_event_serializes_camel_case():
    e = ProgressEvent(
        session_id="s1", stage=ProgressStage.PACKAGING, file_type="images", payload={"rootCID": "bafy"}
    )

    assert json.loads(e.to_json()) == {
        "sessionId": "s1",
        "stage": "packaging",
        "fileType": "images",
        "payload": {"rootCID": "bafy"},
    }


def test_event_omits_missing_file_type():
    assert "fileType" not in json.loads(event("s1").to_json())


def test_format_sse():
    frame = format_sse(event("s1", percent=50))

    assert frame.startswith("data: {")
    assert frame.endswith("\n\n")
    assert json.loads(frame[len("data: "):])["payload"] == {"percent": 50}


class TestProgressBroadcaster:
    """Tests for ProgressBroadcaster."""

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, broadcaster):
        a = broadcaster.subscribe("a")
        b = broadcaster.subscribe("b")

        broadcaster.publish(event("a", n=1))

        assert (await a.get(timeout=0.1)).payload == {"n": 1}
        assert await b.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_fan_out_preserves_order(self, broadcaster):
        first = broadcaster.subscribe("s")
        second = broadcaster.subscribe("s")

        for n in range(3):
            assert broadcaster.publish(event("s", n=n)) == 2

        for subscription in (first, second):
            received = [(await subscription.get(timeout=0.1)).payload["n"] for _ in range(3)]
            assert received == [0, 1, 2]

    def test_publish_without_subscribers_drops(self, broadcaster):
        assert broadcaster.publish(event("nobody")) == 0
        assert broadcaster.subscriber_count("nobody") == 0

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, broadcaster):
        broadcaster.publish(event("s", n=1))
        late = broadcaster.subscribe("s")

        assert await late.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, broadcaster):
        async with broadcaster.subscribe("s") as subscription:
            assert broadcaster.subscriber_count("s") == 1

        assert subscription.closed
        assert broadcaster.subscriber_count("s") == 0
        assert broadcaster.publish(event("s")) == 0
        # idempotent
        subscription.close()

    @pytest.mark.asyncio
    async def test_full_queue_drops_newest(self):
        broadcaster = ProgressBroadcaster(max_queue_size=2)
        subscription = broadcaster.subscribe("s")

        for n in range(3):
            broadcaster.publish(event("s", n=n))

        assert (await subscription.get(timeout=0.1)).payload["n"] == 0
        assert (await subscription.get(timeout=0.1)).payload["n"] == 1
        assert await subscription.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_publish_threadsafe(self, broadcaster):
        subscription = broadcaster.subscribe("s")
        loop = asyncio.get_running_loop()

        await asyncio.to_thread(broadcaster.publish_threadsafe, loop, event("s", n=7))

        assert (await subscription.get(timeout=1.0)).payload == {"n": 7}

    @pytest.mark.asyncio
    async def test_emit_error(self, broadcaster):
        subscription = broadcaster.subscribe("s")

        broadcaster.emit_error("s", ValueError("bad input"), file_type="images")

        error = await subscription.get(timeout=0.1)
        assert error.stage == ProgressStage.ERROR
        assert error.file_type == "images"
        assert error.payload == {"error": "ValueError", "message": "bad input"}


class TestEventStream:
    """Tests for the SSE generator."""

    @pytest.mark.asyncio
    async def test_streams_events_until_disconnect(self, broadcaster):
        disconnected = False

        async def is_disconnected():
            return disconnected

        stream = event_stream(broadcaster, "s", is_disconnected, keepalive_seconds=0.05)

        assert await stream.__anext__() == ": connected\n\n"
        assert broadcaster.subscriber_count("s") == 1

        broadcaster.emit("s", ProgressStage.COMPLETE, folder="1")
        frame = await stream.__anext__()
        assert json.loads(frame[len("data: "):])["payload"] == {"folder": "1"}

        assert await stream.__anext__() == ": keep-alive\n\n"

        disconnected = True
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()
        assert broadcaster.subscriber_count("s") == 0

    @pytest.mark.asyncio
    async def test_closing_stream_unsubscribes(self, broadcaster):
        async def is_disconnected():
            return False

        stream = event_stream(broadcaster, "s", is_disconnected, keepalive_seconds=0.05)
        await stream.__anext__()

        await stream.aclose()

        assert broadcaster.subscriber_count("s") == 0

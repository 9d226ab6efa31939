"""Tests for the SSE broadcaster."""

import asyncio
import json

import pytest

from quotestream.services.events.bus import EventBus
from quotestream.services.events.schemas import (
    CRYPTO_TOP100,
    Quote,
    quotes_event,
    warning_event,
)
from quotestream.services.streaming import StreamBroadcaster, ping_frame


def decode(frame: str) -> dict:
    line = [part for part in frame.split("\n") if part.startswith("data: ")][0]
    return json.loads(line[len("data: "):])


class TestPingFrame:
    def test_is_comment(self):
        assert ping_frame(123) == ": ping 123\n\n"


class TestStreamBroadcaster:
    """Tests for per-connection streams."""

    @pytest.mark.asyncio
    async def test_cached_event_sent_first(self):
        bus = EventBus()
        bus.publish(quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=1)]))
        broadcaster = StreamBroadcaster(bus)

        stream = broadcaster.stream()
        first = await stream.__anext__()
        await stream.aclose()

        assert decode(first)["type"] == CRYPTO_TOP100

    @pytest.mark.asyncio
    async def test_forwards_published_events(self):
        bus = EventBus()
        broadcaster = StreamBroadcaster(bus, keepalive_seconds=5)
        stream = broadcaster.stream()

        async def next_frame() -> str:
            return await stream.__anext__()

        pending = asyncio.create_task(next_frame())
        await asyncio.sleep(0.01)
        bus.publish(warning_event("bist", "down", 30000))
        frame = await asyncio.wait_for(pending, timeout=1)
        await stream.aclose()

        assert decode(frame)["type"] == "bist_warning"

    @pytest.mark.asyncio
    async def test_ping_on_idle(self):
        bus = EventBus()
        broadcaster = StreamBroadcaster(bus, keepalive_seconds=0.01)
        stream = broadcaster.stream()

        frame = await asyncio.wait_for(stream.__anext__(), timeout=1)
        await stream.aclose()

        assert frame.startswith(": ping ")

    @pytest.mark.asyncio
    async def test_event_name_prefix(self):
        bus = EventBus()
        bus.publish(warning_event("crypto", "x", 1))
        broadcaster = StreamBroadcaster(bus, event_name="market")

        stream = broadcaster.stream()
        frame = await stream.__anext__()
        await stream.aclose()

        assert frame.startswith("event: market\n")

    @pytest.mark.asyncio
    async def test_close_unsubscribes(self):
        bus = EventBus()
        bus.publish(warning_event("crypto", "x", 1))
        broadcaster = StreamBroadcaster(bus)

        stream = broadcaster.stream()
        await stream.__anext__()
        assert bus.subscriber_count() == 1
        assert broadcaster.subscriber_count() == 1

        await stream.aclose()

        assert bus.subscriber_count() == 0
        assert broadcaster.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_disconnect_probe_ends_stream(self):
        bus = EventBus()
        broadcaster = StreamBroadcaster(bus, keepalive_seconds=0.01)

        async def disconnected() -> bool:
            return True

        frames = [frame async for frame in broadcaster.stream(is_disconnected=disconnected)]

        assert frames == []
        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_pings_continue_under_steady_traffic(self):
        bus = EventBus()
        broadcaster = StreamBroadcaster(bus, keepalive_seconds=0.2)
        stream = broadcaster.stream()
        frames = []

        async def consume():
            async for frame in stream:
                frames.append(frame)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0.01)
        for i in range(20):
            bus.publish(quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=i + 1)]))
            await asyncio.sleep(0.05)
        consumer.cancel()
        with pytest.raises(asyncio.CancelledError):
            await consumer
        await stream.aclose()

        pings = [f for f in frames if f.startswith(": ping ")]
        data = [f for f in frames if not f.startswith(": ping ")]
        assert len(data) == 20
        assert len(pings) >= 3
        assert bus.subscriber_count() == 0

    @pytest.mark.asyncio
    async def test_stalled_client_keeps_newest_events(self):
        bus = EventBus()
        bus.publish(warning_event("crypto", "x", 1))
        broadcaster = StreamBroadcaster(bus, keepalive_seconds=5, queue_size=2)
        stream = broadcaster.stream()
        await stream.__anext__()

        for i in range(5):
            bus.publish(quotes_event(CRYPTO_TOP100, [Quote(symbol="BTCUSDT", price=i + 1)]))

        first = await asyncio.wait_for(stream.__anext__(), timeout=1)
        second = await asyncio.wait_for(stream.__anext__(), timeout=1)
        await stream.aclose()

        assert [decode(f)["data"][0]["price"] for f in (first, second)] == [4, 5]

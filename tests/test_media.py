"""
미디어 스코프 / 이벤트 채널 테스트.
"""

import asyncio

import pytest

from cbt_session.errors import CapabilityUnavailable
from cbt_session.services.events import Event, EventBus, Tick
from cbt_session.services.integrity.media import (
    CAMERA,
    MICROPHONE,
    MediaScope,
    NullMediaProvider,
    PushMediaProvider,
    PushStream,
    probe,
)


class TestPushStream:
    def test_bytes_accumulate_until_read(self):
        stream = PushStream(CAMERA)
        stream.push(b"a")
        stream.push(b"b")
        assert asyncio.run(stream.read()) == b"ab"
        assert asyncio.run(stream.read()) == b""

    def test_microphone_keeps_latest_level(self):
        stream = PushStream(MICROPHONE)
        stream.push(10)
        stream.push(42.5)
        assert asyncio.run(stream.read()) == 42.5
        assert asyncio.run(stream.read()) == 0.0

    def test_closed_stream_ignores_samples(self):
        stream = PushStream(CAMERA)
        stream.close()
        stream.push(b"late")
        assert asyncio.run(stream.read()) == b""


class TestMediaScope:
    def test_close_releases_all_streams(self):
        provider = PushMediaProvider({CAMERA: True, MICROPHONE: True})

        async def scenario():
            scope = MediaScope(provider)
            camera = await scope.acquire(CAMERA)
            again = await scope.acquire(CAMERA)
            recording = await scope.acquire(CAMERA, key="recording:camera")
            mic = await scope.acquire(MICROPHONE)
            keys = scope.keys
            await scope.close()
            return camera, again, recording, mic, keys, scope.keys

        camera, again, recording, mic, keys, after = asyncio.run(scenario())
        assert camera is again
        assert recording is not camera
        assert set(keys) == {CAMERA, "recording:camera", MICROPHONE}
        assert after == ()
        assert camera.closed and recording.closed and mic.closed

    def test_unavailable_device(self):
        async def scenario():
            scope = MediaScope(PushMediaProvider({CAMERA: False}))
            with pytest.raises(CapabilityUnavailable):
                await scope.acquire(CAMERA)
            await scope.close()

        asyncio.run(scenario())

    def test_probe(self):
        assert asyncio.run(probe(PushMediaProvider({CAMERA: True}), CAMERA)) is True
        assert asyncio.run(probe(NullMediaProvider(), CAMERA)) is False

    def test_push_skips_closed_streams(self):
        provider = PushMediaProvider({CAMERA: True})

        async def scenario():
            first = await provider.acquire(CAMERA)
            await provider.acquire(CAMERA)
            first.close()
            return provider.push(CAMERA, b"frame")

        assert asyncio.run(scenario()) == 1


class TestEventBus:
    def test_subclass_events_reach_base_subscribers(self):
        bus = EventBus()
        seen = []
        bus.subscribe(Event, seen.append)
        bus.subscribe(Tick, seen.append)
        bus.publish(Tick(seconds=1))
        assert seen == [Tick(seconds=1), Tick(seconds=1)]

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(Tick, seen.append)
        unsubscribe()
        unsubscribe()
        bus.publish(Tick())
        assert seen == []

    def test_handler_errors_propagate(self):
        bus = EventBus()

        def broken(event):
            raise RuntimeError("handler failed")

        bus.subscribe(Tick, broken)
        with pytest.raises(RuntimeError):
            bus.publish(Tick())

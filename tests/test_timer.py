"""
카운트다운 타이머 테스트.
"""

import asyncio

from conftest import block_forever
from cbt_session.services.events import EventBus, Tick, TimeWarning
from cbt_session.services.timer import CountdownTimer, format_time, is_low_time


def collect(bus: EventBus, event_type) -> list:
    seen = []
    bus.subscribe(event_type, seen.append)
    return seen


class TestFormatTime:
    def test_minutes_and_seconds(self):
        assert format_time(125) == "02:05"
        assert format_time(0) == "00:00"

    def test_long_exam_keeps_total_minutes(self):
        assert format_time(3 * 3600) == "180:00"

    def test_negative_is_clamped(self):
        assert format_time(-5) == "00:00"

    def test_low_time_threshold(self):
        assert is_low_time(599) is True
        assert is_low_time(600) is False


class TestAdvance:
    def test_tick_published_per_advance(self):
        bus = EventBus()
        ticks = collect(bus, Tick)
        timer = CountdownTimer(bus, 3)

        timer.advance()
        timer.advance()

        assert len(ticks) == 2
        assert timer.remaining == 1

    def test_stops_permanently_at_zero(self):
        bus = EventBus()
        ticks = collect(bus, Tick)
        timer = CountdownTimer(bus, 2)

        for _ in range(5):
            timer.advance()

        assert len(ticks) == 2
        assert timer.remaining == 0
        assert timer.expired is True

    def test_each_warning_fires_once(self):
        bus = EventBus()
        warnings = collect(bus, TimeWarning)
        timer = CountdownTimer(bus, 10, warnings=[5, 2, 5])

        for _ in range(10):
            timer.advance()

        assert [w.threshold for w in warnings] == [5, 2]
        assert warnings[0].remaining_seconds == 5

    def test_warnings_already_passed_are_dropped(self):
        bus = EventBus()
        warnings = collect(bus, TimeWarning)
        timer = CountdownTimer(bus, 10, warnings=[300, 60, 3])

        for _ in range(10):
            timer.advance()

        assert [w.threshold for w in warnings] == [3]

    def test_zero_duration_is_already_expired(self):
        timer = CountdownTimer(EventBus(), 0)
        assert timer.expired is True


class TestRunLoop:
    def test_loop_ticks_until_expiry(self):
        async def scenario():
            bus = EventBus()
            ticks = collect(bus, Tick)
            slept = []

            async def fake_sleep(seconds):
                slept.append(seconds)
                await asyncio.sleep(0)

            timer = CountdownTimer(bus, 3, interval=1.0, sleep=fake_sleep)
            timer.start()
            for _ in range(20):
                await asyncio.sleep(0)
            return timer, ticks, slept

        timer, ticks, slept = asyncio.run(scenario())
        assert len(ticks) == 3
        assert slept == [1.0, 1.0, 1.0]
        assert timer.running is False

    def test_stop_cancels_pending_tick(self):
        async def scenario():
            bus = EventBus()
            ticks = collect(bus, Tick)
            timer = CountdownTimer(bus, 60, sleep=block_forever)
            timer.start()
            await asyncio.sleep(0)
            assert timer.running is True
            await timer.stop()
            return timer, ticks

        timer, ticks = asyncio.run(scenario())
        assert timer.running is False
        assert ticks == []
        assert timer.remaining == 60

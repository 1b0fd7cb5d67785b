"""
Tests for capture timers and time formatting.
"""

import asyncio

import pytest

from lensrelay.capture.timers import PeriodicTimer, format_recording_time, frame_interval_ms


class TestFrameInterval:
    def test_ceil(self):
        assert frame_interval_ms(2) == 500
        assert frame_interval_ms(3) == 334
        assert frame_interval_ms(0.5) == 2000
        assert frame_interval_ms(7.5) == 134

    def test_rejects_zero(self):
        with pytest.raises(ValueError):
            frame_interval_ms(0)


class TestFormatRecordingTime:
    def test_formats(self):
        assert format_recording_time(0) == "00:00.0"
        assert format_recording_time(75.3) == "01:15.3"
        assert format_recording_time(9.9) == "00:09.9"
        assert format_recording_time(600) == "10:00.0"

    def test_accumulated_ticks(self):
        seconds = 0.0
        for _ in range(7):
            seconds += 0.1
        assert format_recording_time(seconds) == "00:00.7"


class TestPeriodicTimer:
    """PeriodicTimer scheduling on the event loop."""

    def test_ticks_until_cancelled(self):
        calls = []

        async def scenario():
            timer = PeriodicTimer(20, lambda: calls.append(1), name="t")
            timer.start()
            await asyncio.sleep(0.11)
            timer.cancel()
            count = len(calls)
            await asyncio.sleep(0.06)
            return timer, count

        timer, count = asyncio.run(scenario())
        assert count >= 2
        assert len(calls) == count
        assert not timer.active

    def test_cancel_before_first_tick(self):
        calls = []

        async def scenario():
            timer = PeriodicTimer(30, lambda: calls.append(1))
            timer.start()
            timer.cancel()
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert calls == []

    def test_callback_error_does_not_stop_timer(self):
        calls = []

        def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        async def scenario():
            timer = PeriodicTimer(15, flaky)
            timer.start()
            await asyncio.sleep(0.1)
            timer.cancel()

        asyncio.run(scenario())
        assert len(calls) >= 2

    def test_async_callback(self):
        calls = []

        async def tick():
            calls.append(1)

        async def scenario():
            timer = PeriodicTimer(15, tick)
            timer.start()
            await asyncio.sleep(0.08)
            timer.cancel()

        asyncio.run(scenario())
        assert calls

    def test_double_start_rejected(self):
        async def scenario():
            timer = PeriodicTimer(50, lambda: None)
            timer.start()
            try:
                with pytest.raises(RuntimeError):
                    timer.start()
            finally:
                timer.cancel()

        asyncio.run(scenario())

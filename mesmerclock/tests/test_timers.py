"""Tests for the manual and asyncio-backed timer services."""

import asyncio
import sys

import pytest

from mesmerclock.engine import AsyncioTimerService, ManualClock, ManualTimerService


class TestManualTimers:
    def test_fires_on_interval_with_clock_at_due_time(self):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        seen = []
        timers.call_every(2.0, lambda: seen.append(clock.monotonic()))
        timers.advance(7)
        assert seen == [2.0, 4.0, 6.0]
        assert clock.monotonic() == 7.0

    def test_due_timers_fire_in_time_then_creation_order(self):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        order = []
        timers.call_every(2.0, lambda: order.append("b"))
        timers.call_every(1.0, lambda: order.append("a"))
        timers.advance(2)
        assert order == ["a", "b", "a"]

    def test_cancel_stops_firing(self):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        seen = []
        handle = timers.call_every(1.0, lambda: seen.append(1), name="ticker")
        timers.advance(2)
        handle.cancel()
        assert not handle.active
        timers.advance(5)
        assert len(seen) == 2
        assert timers.active_timers() == []

    def test_callback_may_cancel_itself(self):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        seen = []

        def once():
            seen.append(clock.monotonic())
            handle.cancel()

        handle = timers.call_every(1.0, once)
        timers.advance(5)
        assert seen == [1.0]

    def test_timer_created_inside_callback_fires_later(self):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        seen = []

        def spawn():
            spawner.cancel()
            timers.call_every(3.0, lambda: seen.append(clock.monotonic()))

        spawner = timers.call_every(1.0, spawn)
        timers.advance(10)
        assert seen == [4.0, 7.0, 10.0]

    def test_raising_callback_keeps_timer_alive(self, caplog):
        clock = ManualClock()
        timers = ManualTimerService(clock)
        calls = []

        def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        timers.call_every(1.0, flaky, name="flaky")
        timers.advance(3)
        assert len(calls) == 3
        assert "flaky" in caplog.text

    def test_rejects_non_positive_interval(self):
        timers = ManualTimerService(ManualClock())
        with pytest.raises(ValueError):
            timers.call_every(0, lambda: None)

    def test_clock_cannot_go_backwards(self):
        with pytest.raises(ValueError):
            ManualClock().advance(-1)


@pytest.mark.asyncio
async def test_asyncio_timer_service_repeats_and_cancels():
    timers = AsyncioTimerService()
    hits = []
    handle = timers.call_every(0.01, lambda: hits.append(1), name="fast")
    await asyncio.sleep(0.1)
    handle.cancel()
    count = len(hits)
    assert count >= 3
    await asyncio.sleep(0.05)
    assert len(hits) == count
    assert not handle.active


@pytest.mark.asyncio
async def test_asyncio_timer_survives_callback_error():
    timers = AsyncioTimerService()
    hits = []

    def bad():
        hits.append(1)
        raise ValueError("nope")

    handle = timers.call_every(0.01, bad)
    await asyncio.sleep(0.08)
    handle.cancel()
    assert len(hits) >= 2


@pytest.mark.integration
def test_qasync_loop_drives_timers():
    qasync = pytest.importorskip("qasync")
    qtcore = pytest.importorskip("PyQt6.QtCore")

    app = qtcore.QCoreApplication.instance() or qtcore.QCoreApplication(sys.argv[:1])
    loop = qasync.QEventLoop(app)
    try:
        timers = AsyncioTimerService(loop)
        hits = []
        timers.call_every(0.01, lambda: hits.append(1))
        loop.call_later(0.1, loop.stop)
        loop.run_forever()
        assert len(hits) >= 2
    finally:
        loop.close()

"""Tests for IntensityRamp interpolation, ceilings, completion and restore."""

import pytest
from unittest.mock import Mock

from mesmerclock.engine import InMemoryParameterStore, IntensityRamp
from mesmerclock.session import SessionEventEmitter, SessionEventType


@pytest.fixture
def ramp(store, timers, clock):
    return IntensityRamp(store, timers, clock)


def test_stop_restores_exact_baseline(store, timers, clock):
    ramp = IntensityRamp(store, timers, clock)
    assert ramp.start(["x"], duration_minutes=10, multiplier=3) is True
    timers.advance(137)
    assert store.get("x") != 10.0
    assert ramp.stop() is True
    assert store.get("x") == 10.0
    assert ramp.active is False


@pytest.mark.parametrize("elapsed", [0, 2, 61, 600, 1800])
def test_restore_at_any_elapsed_time(ramp, store, timers, elapsed):
    ramp.start(["x"], 10, 3)
    timers.advance(elapsed)
    ramp.stop()
    assert store.get("x") == 10.0


def test_restore_is_bit_exact_for_awkward_floats(timers, clock):
    baseline = 0.1 + 0.2
    store = InMemoryParameterStore({"flash_opacity": baseline})
    ramp = IntensityRamp(store, timers, clock)
    ramp.start(["flash_opacity"], 10, 2.7)
    timers.advance(90)
    ramp.stop()
    assert store.get("flash_opacity") == baseline


def test_linear_interpolation_at_half_progress(timers, clock):
    store = InMemoryParameterStore({"flash_opacity": 20.0})
    ramp = IntensityRamp(store, timers, clock)
    ramp.start(["flash_opacity"], 10, 3)
    timers.advance(300)
    assert ramp.progress() == pytest.approx(0.5)
    assert ramp.state.current_multiplier == pytest.approx(2.0)
    assert store.get("flash_opacity") == pytest.approx(40.0)


def test_values_capped_by_store_ceiling(timers, clock):
    store = InMemoryParameterStore({"spiral_opacity": 20.0, "unbounded": 20.0})
    ramp = IntensityRamp(store, timers, clock)
    ramp.start(["spiral_opacity", "unbounded"], 10, 3)
    timers.advance(600)
    assert store.get("spiral_opacity") == 50.0
    assert store.get("unbounded") == pytest.approx(60.0)


def test_progress_clamped_after_duration(ramp, store, timers):
    ramp.start(["x"], 10, 2)
    timers.advance(1200)
    assert ramp.progress() == 1.0
    assert store.get("x") == pytest.approx(20.0)


def test_no_write_before_first_tick(ramp, store):
    store.set("x", 10.0)
    ramp.start(["x"], 10, 3)
    assert store.get("x") == 10.0


def test_end_on_complete_requests_engine_stop_once(store, timers, clock):
    control = Mock()
    ramp = IntensityRamp(store, timers, clock, engine_control=control)
    ramp.start(["x"], 10, 2, end_on_complete=True)
    timers.advance(598)
    control.request_stop.assert_not_called()
    timers.advance(2)
    control.request_stop.assert_called_once()
    timers.advance(60)
    control.request_stop.assert_called_once()


def test_completion_without_end_keeps_holding(store, timers, clock):
    control = Mock()
    ramp = IntensityRamp(store, timers, clock, engine_control=control)
    ramp.start(["x"], 10, 2)
    timers.advance(700)
    control.request_stop.assert_not_called()
    assert ramp.active
    assert store.get("x") == pytest.approx(20.0)


def test_end_on_complete_without_engine_stops_itself(ramp, store, timers):
    ramp.start(["x"], 10, 2, end_on_complete=True)
    timers.advance(600)
    assert ramp.active is False
    assert store.get("x") == 10.0


def test_stop_is_idempotent(ramp):
    assert ramp.stop() is False
    ramp.start(["x"], 10, 2)
    assert ramp.stop() is True
    assert ramp.stop() is False


def test_second_start_rejected_while_active(ramp):
    assert ramp.start(["x"], 10, 2)
    assert ramp.start(["x"], 20, 3) is False
    assert ramp.state.duration_minutes == 10


@pytest.mark.parametrize("duration,multiplier", [(0, 2), (-5, 2), (10, 0)])
def test_invalid_arguments_rejected(ramp, duration, multiplier):
    assert ramp.start(["x"], duration, multiplier) is False
    assert not ramp.active


def test_unknown_parameter_skipped(ramp, store, timers):
    ramp.start(["x", "does_not_exist"], 10, 2)
    assert ramp.state.linked_parameters == ("x",)
    timers.advance(60)
    ramp.stop()
    assert store.get("x") == 10.0


def test_write_failure_does_not_stop_other_parameters(timers, clock):
    class FlakyStore(InMemoryParameterStore):
        def set(self, name, value):
            if name == "flash_opacity" and value != 30.0:
                raise RuntimeError("device busy")
            super().set(name, value)

    store = FlakyStore({"flash_opacity": 30.0, "master_volume": 40.0})
    ramp = IntensityRamp(store, timers, clock)
    ramp.start(["flash_opacity", "master_volume"], 10, 2)
    timers.advance(300)
    assert store.get("master_volume") == pytest.approx(60.0)
    ramp.stop()
    assert store.get("flash_opacity") == 30.0


def test_snapshot_and_events(store, timers, clock):
    emitter = SessionEventEmitter()
    seen = []
    emitter.subscribe_all(lambda evt: seen.append(evt.event_type))
    ramp = IntensityRamp(store, timers, clock, emitter)
    assert ramp.snapshot() is None

    ramp.start(["x"], 10, 3, end_on_complete=True)
    timers.advance(120)
    snap = ramp.snapshot()
    assert snap["progress"] == pytest.approx(0.2)
    assert snap["current_multiplier"] == pytest.approx(1.4)
    assert snap["remaining_seconds"] == pytest.approx(480)
    assert snap["values"]["x"] == pytest.approx(14.0)

    timers.advance(480)
    assert seen[0] is SessionEventType.RAMP_START
    assert SessionEventType.RAMP_PROGRESS in seen
    assert SessionEventType.RAMP_COMPLETE in seen
    assert seen[-1] is SessionEventType.RAMP_STOP

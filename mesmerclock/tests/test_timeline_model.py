"""Tests for TimelineModel editing, ordering, validation and JSON persistence."""

import json

import pytest

from mesmerclock.session import TimelineEvent, TimelineEventKind, TimelineModel


@pytest.fixture
def model():
    return TimelineModel(name="Evening", duration_minutes=30)


class TestEditing:
    def test_add_start_clamps_minute(self, model):
        late = model.add_start("flash", 45)
        early = model.add_start("spiral", -5)
        assert late.minute == 30
        assert early.minute == 0
        assert late.paired_event_id is None

    def test_add_start_rejects_non_integer_minute(self, model):
        with pytest.raises(ValueError):
            model.add_start("flash", 1.5)

    def test_add_stop_pairs_both_ways(self, model):
        start = model.add_start("flash", 5)
        stop = model.add_stop(start, 12)
        assert stop.kind is TimelineEventKind.STOP
        assert stop.feature_id == "flash"
        assert start.paired_event_id == stop.id
        assert stop.paired_event_id == start.id
        assert model.paired_stop_of(start) is stop
        assert model.paired_start_of(stop) is start

    @pytest.mark.parametrize("requested", [5, 3, 0])
    def test_add_stop_not_after_start_is_moved_one_minute_later(self, model, requested):
        start = model.add_start("flash", 5)
        stop = model.add_stop(start, requested)
        assert stop.minute == 6

    def test_add_stop_at_session_end_stays_at_duration(self, model):
        start = model.add_start("flash", 30)
        stop = model.add_stop(start, 10)
        assert stop.minute == 30

    def test_add_stop_twice_moves_existing_stop(self, model):
        start = model.add_start("flash", 5)
        first = model.add_stop(start, 10)
        second = model.add_stop(start, 20)
        assert first is second
        assert second.minute == 20
        assert len(model.events) == 2

    def test_add_stop_requires_start_from_this_model(self, model):
        foreign = TimelineModel(name="other").add_start("flash", 1)
        with pytest.raises(ValueError):
            model.add_stop(foreign, 4)

    def test_remove_start_also_removes_its_stop(self, model):
        start = model.add_start("flash", 5)
        model.add_stop(start, 10)
        other = model.add_start("spiral", 2)
        removed = model.remove_event(start)
        assert len(removed) == 2
        assert model.events == [other]

    def test_remove_stop_leaves_start_unpaired(self, model):
        start = model.add_start("flash", 5)
        stop = model.add_stop(start, 10)
        removed = model.remove_event(stop)
        assert removed == [stop]
        assert start.paired_event_id is None
        assert model.paired_stop_of(start) is None
        assert model.active_minutes(start) == 25

    def test_remove_unknown_event_is_noop(self, model):
        stray = TimelineEvent("flash", TimelineEventKind.START, 1)
        assert model.remove_event(stray) == []


class TestDuration:
    def test_shrinking_duration_clamps_but_keeps_events(self, model):
        for feature, start_min, stop_min in [("flash", 0, 10), ("spiral", 12, 28), ("bubbles", 25, 30)]:
            start = model.add_start(feature, start_min)
            model.add_stop(start, stop_min)
        count = len(model.events)

        model.set_duration(15)

        assert len(model.events) == count
        assert all(e.minute <= 15 for e in model.events)
        # stop never precedes its start after clamping
        for start in model.starts():
            stop = model.paired_stop_of(start)
            assert stop.minute >= start.minute

    def test_growing_duration_leaves_events(self, model):
        start = model.add_start("flash", 10)
        model.set_duration(60)
        assert start.minute == 10

    @pytest.mark.parametrize("bad", [0, -3, 2.5, True])
    def test_set_duration_rejects_invalid(self, model, bad):
        with pytest.raises(ValueError):
            model.set_duration(bad)


class TestOrdering:
    def test_ordered_events_stop_before_start_on_same_minute(self, model):
        a = model.add_start("flash", 0)
        a_stop = model.add_stop(a, 5)
        b = model.add_start("flash", 5)
        c = model.add_start("spiral", 2)
        ordered = model.ordered_events()
        assert ordered == [a, c, a_stop, b]

    def test_ordered_events_keeps_insertion_order_within_kind(self, model):
        first = model.add_start("flash", 3)
        second = model.add_start("spiral", 3)
        assert model.ordered_events() == [first, second]

    def test_frozen_copy_is_independent(self, model):
        start = model.add_start("flash", 3)
        copy = model.frozen_copy()
        start.minute = 9
        model.phrase_pools["subliminal"] = ["hello"]
        assert copy.events[0].minute == 3
        assert copy.phrase_pools == {}


class TestValidation:
    def test_valid_model(self, model):
        start = model.add_start("flash", 1)
        model.add_stop(start, 4)
        assert model.validate() == (True, "")

    def test_empty_name_invalid(self):
        ok, msg = TimelineModel(name=" ").validate()
        assert not ok
        assert "name" in msg

    def test_orphan_stop_invalid(self, model):
        model.events.append(TimelineEvent("flash", TimelineEventKind.STOP, 3, paired_event_id="missing"))
        ok, msg = model.validate()
        assert not ok
        assert "no start" in msg

    def test_out_of_range_minute_invalid(self, model):
        model.events.append(TimelineEvent("flash", TimelineEventKind.START, 31))
        ok, _ = model.validate()
        assert not ok


class TestPersistence:
    def test_dict_round_trip_keeps_pairs_settings_and_pools(self, model):
        start = model.add_start("flash", 2, settings={"frequency": 8}, start_value=20, end_value=60)
        model.add_stop(start, 9)
        model.icon = "*"
        model.phrase_pools["subliminal"] = ["relax", "drift"]

        restored = TimelineModel.from_dict(model.to_dict())

        assert restored.id == model.id
        assert restored.icon == "*"
        assert restored.phrase_pools == {"subliminal": ["relax", "drift"]}
        r_start = restored.starts()[0]
        assert r_start.settings == {"frequency": 8}
        assert (r_start.start_value, r_start.end_value) == (20, 60)
        assert restored.paired_stop_of(r_start).minute == 9

    def test_from_dict_rejects_bad_kind(self):
        with pytest.raises(ValueError):
            TimelineModel.from_dict({"name": "x", "events": [{"feature_id": "flash", "kind": "pause", "minute": 1}]})

    def test_from_dict_requires_name(self):
        with pytest.raises(KeyError):
            TimelineModel.from_dict({"duration_minutes": 5})

    def test_save_and_load(self, model, tmp_path):
        start = model.add_start("flash", 0)
        model.add_stop(start, 3)
        path = tmp_path / "sub" / "evening.timeline.json"
        model.save(path)
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["name"] == "Evening"
        loaded = TimelineModel.load(path)
        assert [e.minute for e in loaded.ordered_events()] == [0, 3]

    def test_save_invalid_raises(self, tmp_path):
        with pytest.raises(ValueError):
            TimelineModel(name="").save(tmp_path / "bad.json")

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            TimelineModel.load(tmp_path / "nope.json")

"""Unit tests for the event log."""
from __future__ import annotations

import threading

import pytest

from timetravel.domain.entities.event import EventKind
from timetravel.domain.exceptions import InvalidIndex, InvalidRange, LogClosed
from timetravel.engines.event_log.engine import EventLog
from timetravel.infrastructure.codec.binary import decode_events


class TestAppend:
    def test_indices_are_contiguous(self, make_event):
        log = EventLog()
        indices = [log.append(make_event(payload=bytes([i]))) for i in range(5)]
        assert indices == [0, 1, 2, 3, 4]
        assert len(log) == 5
        assert [e.index for e in log.events()] == [0, 1, 2, 3, 4]

    def test_incoming_index_is_ignored(self, make_event):
        log = EventLog()
        log.append(make_event().with_index(42))
        assert log[0].index == 0

    def test_append_after_close_fails(self, make_event):
        log = EventLog()
        log.append(make_event())
        log.close()
        assert log.closed
        with pytest.raises(LogClosed):
            log.append(make_event())
        assert len(log) == 1

    def test_appends_resume_after_truncation(self, make_event):
        log = EventLog()
        for _ in range(4):
            log.append(make_event())
        log.truncate_from(2)
        assert log.append(make_event()) == 2
        assert [e.index for e in log.events()] == [0, 1, 2]


class TestTruncate:
    def test_discards_tail(self, scenario_log):
        scenario_log.truncate_from(2)
        assert len(scenario_log) == 2
        assert [e.kind for e in scenario_log.events()] == [EventKind.INTENT, EventKind.RESULT]

    def test_truncate_at_length_is_noop(self, scenario_log):
        generation = scenario_log.generation
        scenario_log.truncate_from(5)
        assert len(scenario_log) == 5
        assert scenario_log.generation == generation

    def test_truncate_bumps_generation(self, scenario_log):
        scenario_log.truncate_from(0)
        assert scenario_log.generation == 1
        assert len(scenario_log) == 0

    def test_beyond_length_fails(self, scenario_log):
        with pytest.raises(InvalidIndex):
            scenario_log.truncate_from(6)
        assert len(scenario_log) == 5

    def test_truncate_after_close_fails(self, scenario_log):
        scenario_log.close()
        with pytest.raises(LogClosed):
            scenario_log.truncate_from(1)


class TestSlice:
    def test_returns_ordered_events(self, scenario_log):
        events = scenario_log.slice(1, 4)
        assert [e.index for e in events] == [1, 2, 3]

    def test_empty_slice(self, scenario_log):
        assert scenario_log.slice(5, 5) == []

    @pytest.mark.parametrize(("start", "end"), [(3, 2), (0, 6), (-1, 2)])
    def test_invalid_ranges(self, scenario_log, start, end):
        with pytest.raises(InvalidRange):
            scenario_log.slice(start, end)

    def test_slice_is_a_copy(self, scenario_log):
        events = scenario_log.slice(0, 5)
        events.clear()
        assert len(scenario_log) == 5


class TestSubscription:
    def test_listener_receives_new_lengths(self, make_event):
        log = EventLog()
        lengths: list[int] = []
        log.subscribe(lengths.append)
        log.append(make_event())
        log.append(make_event())
        log.truncate_from(1)
        assert lengths == [1, 2, 1]

    def test_unsubscribe(self, make_event):
        log = EventLog()
        lengths: list[int] = []
        unsubscribe = log.subscribe(lengths.append)
        unsubscribe()
        log.append(make_event())
        assert lengths == []

    def test_failing_listener_does_not_undo_append(self, make_event):
        log = EventLog()

        def bad_listener(length: int) -> None:
            raise RuntimeError("listener error")

        log.subscribe(bad_listener)
        assert log.append(make_event()) == 0
        assert len(log) == 1


class TestSerialization:
    def test_round_trip_is_byte_exact(self, scenario_log):
        data = scenario_log.serialize()
        restored = EventLog.deserialize(data)
        assert restored.events() == scenario_log.events()
        assert restored.serialize() == data

    def test_empty_log_round_trip(self):
        data = EventLog().serialize()
        assert len(EventLog.deserialize(data)) == 0

    def test_concurrent_appends_never_tear_serialization(self, make_event):
        log = EventLog()
        snapshots: list[bytes] = []
        stop = threading.Event()

        def writer() -> None:
            for i in range(500):
                log.append(make_event(payload=i.to_bytes(2, "little")))
            stop.set()

        def reader() -> None:
            while not stop.is_set():
                snapshots.append(log.serialize())

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(log) == 500
        for data in snapshots:
            events = decode_events(data)
            assert [e.index for e in events] == list(range(len(events)))

import pytest

from workunit.errors import EventSinkError
from workunit.events import DomainEvent, EventKind, EventRecorder, InMemoryEventSink


def make_event(entity_id: int, kind: EventKind = EventKind.CREATED) -> DomainEvent:
    return DomainEvent("Order", entity_id, kind, {"total": entity_id * 10})


def test_record_stamps_contiguous_sequence_numbers():
    recorder = EventRecorder()
    stamped = [recorder.record(make_event(i)) for i in (5, 6, 7)]

    assert [event.sequence_number for event in stamped] == [1, 2, 3]
    assert recorder.events == tuple(stamped)
    assert len(recorder) == 3


def test_events_are_immutable():
    event = make_event(1)
    with pytest.raises(AttributeError):
        event.kind = EventKind.DELETED


def test_flush_delivers_single_ordered_batch():
    recorder = EventRecorder()
    sink = InMemoryEventSink()
    recorder.record(make_event(1))
    recorder.record(make_event(1, EventKind.UPDATED))
    recorder.record(make_event(1, EventKind.DELETED))

    batch = recorder.flush(sink)
    assert sink.batch_count == 1
    assert [event.kind for event in sink.events] == [EventKind.CREATED, EventKind.UPDATED, EventKind.DELETED]
    assert batch == recorder.events


def test_empty_log_does_not_call_sink():
    sink = InMemoryEventSink()
    assert EventRecorder().flush(sink) == ()
    assert sink.batch_count == 0


def test_sink_failure_is_wrapped():
    class BrokenSink:
        def append(self, events):
            raise ConnectionError("down")

    recorder = EventRecorder()
    recorder.record(make_event(1))
    with pytest.raises(EventSinkError) as excinfo:
        recorder.flush(BrokenSink())
    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_to_dict_is_serializable_shape():
    recorder = EventRecorder()
    event = recorder.record(make_event(3, EventKind.UPDATED))
    data = event.to_dict()
    assert data["kind"] == "updated"
    assert data["sequence_number"] == 1
    assert data["payload"] == {"total": 30}
    assert "occurred_at" in data


def test_in_memory_sink_filters_by_kind():
    sink = InMemoryEventSink()
    sink.append([make_event(1), make_event(2, EventKind.DELETED)])
    assert [event.entity_id for event in sink.of_kind(EventKind.DELETED)] == [2]
    sink.clear()
    assert sink.events == []

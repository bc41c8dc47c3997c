from __future__ import annotations

from adfilters.core.events import Event, EventBus, EventKind
from fakes import EventRecorder


def test_observers_receive_events_in_registration_order() -> None:
    bus = EventBus()
    calls = []
    bus.subscribe(lambda event: calls.append(("first", event.kind)))
    bus.subscribe(lambda event: calls.append(("second", event.kind)))

    bus.publish(Event(EventKind.READY))

    assert calls == [("first", EventKind.READY), ("second", EventKind.READY)]


def test_kind_filter_and_unsubscribe() -> None:
    bus = EventBus()
    recorder = EventRecorder()
    token = bus.subscribe(recorder, kinds=[EventKind.UPDATE_FAILED])

    bus.publish(Event(EventKind.UPDATE_STARTED))
    bus.publish(Event(EventKind.UPDATE_FAILED, reason="offline"))
    bus.unsubscribe(token)
    bus.publish(Event(EventKind.UPDATE_FAILED))

    assert recorder.kinds == [EventKind.UPDATE_FAILED]
    assert recorder.events[0].reason == "offline"


def test_late_observer_misses_earlier_events() -> None:
    bus = EventBus()
    bus.publish(Event(EventKind.INSTALLED))
    recorder = EventRecorder()
    bus.subscribe(recorder)

    bus.publish(Event(EventKind.READY))

    assert recorder.kinds == [EventKind.READY]


def test_failing_observer_does_not_block_others(caplog) -> None:
    bus = EventBus()
    recorder = EventRecorder()

    def broken(event) -> None:
        raise RuntimeError("observer bug")

    bus.subscribe(broken)
    bus.subscribe(recorder)

    bus.publish(Event(EventKind.READY))

    assert recorder.kinds == [EventKind.READY]
    assert "Event observer failed" in caplog.text

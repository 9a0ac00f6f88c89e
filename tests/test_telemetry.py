"""Tests for the telemetry emitter."""

import logging

import pytest

from searchwire import telemetry
from searchwire.telemetry import TelemetryEmitter, TelemetryEvent

EVENT = ("app", "searchwire", "request")


def make_event(name=EVENT, **metadata):
    return TelemetryEvent(name=name, measurements={"total_time": 0.01}, metadata=metadata)


def test_handlers_receive_matching_events_in_attach_order():
    emitter = TelemetryEmitter()
    calls = []
    emitter.attach("first", EVENT, lambda event: calls.append(("first", event)))
    emitter.attach("second", EVENT, lambda event: calls.append(("second", event)))
    emitter.attach("other", ("other", "request"), lambda event: calls.append(("other", event)))

    event = make_event(path="/")
    emitter.emit(event)

    assert calls == [("first", event), ("second", event)]


def test_event_name_may_be_given_as_list():
    emitter = TelemetryEmitter()
    calls = []
    emitter.attach("listed", list(EVENT), calls.append)

    emitter.emit(make_event())

    assert len(calls) == 1
    assert emitter.handlers(EVENT) == ["listed"]


def test_duplicate_handler_id_rejected():
    emitter = TelemetryEmitter()
    emitter.attach("h", EVENT, print)
    with pytest.raises(ValueError, match="already attached"):
        emitter.attach("h", ("other",), print)


def test_detach():
    emitter = TelemetryEmitter()
    calls = []
    emitter.attach("h", EVENT, calls.append)

    assert emitter.detach("h") is True
    assert emitter.detach("h") is False

    emitter.emit(make_event())
    assert calls == []
    assert emitter.handlers() == []


def test_failing_handler_is_logged_and_detached(caplog):
    emitter = TelemetryEmitter()
    calls = []

    def broken(event):
        raise KeyError("missing")

    emitter.attach("broken", EVENT, broken)
    emitter.attach("healthy", EVENT, calls.append)

    with caplog.at_level(logging.ERROR, logger="searchwire.telemetry"):
        emitter.emit(make_event())

    assert len(calls) == 1
    assert emitter.handlers() == ["healthy"]
    assert "'broken'" in caplog.text

    emitter.emit(make_event())
    assert len(calls) == 2


def test_handler_may_detach_itself_while_emitting():
    emitter = TelemetryEmitter()
    calls = []

    def once(event):
        calls.append(event)
        emitter.detach("once")

    emitter.attach("once", EVENT, once)
    emitter.emit(make_event())
    emitter.emit(make_event())

    assert len(calls) == 1


def test_module_level_functions_use_default_emitter():
    calls = []
    telemetry.attach("module-test", EVENT, calls.append)
    try:
        telemetry.emit(make_event())
        assert "module-test" in telemetry.default_emitter.handlers(EVENT)
    finally:
        assert telemetry.detach("module-test") is True

    assert len(calls) == 1


def test_event_is_immutable():
    event = make_event()
    with pytest.raises(AttributeError):
        event.name = ("x",)

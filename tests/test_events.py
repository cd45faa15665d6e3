"""Tests for the simulator event emitter."""

from stepflow.core.events import EventEmitter, SimulationEvent
from stepflow.models import ExecutionStep, ExecutionTrace


def make_trace():
    return ExecutionTrace(id="trace-1", workflow_name="r", start_time=0)


def make_step():
    return ExecutionStep(node_id="A", step_name="A", step_type="t1")


class TestEventEmitter:

    def test_enum_and_string_names_are_interchangeable(self):
        emitter = EventEmitter()
        received = []

        emitter.on(SimulationEvent.STEP_START, lambda trace, step: received.append(step.node_id))
        emitter.emit("stepStart", make_trace(), make_step())

        assert received == ["A"]
        assert emitter.listener_count("stepStart") == 1

    def test_listeners_run_in_registration_order(self):
        emitter = EventEmitter()
        calls = []

        emitter.on(SimulationEvent.TRACE_COMPLETE, lambda trace, step: calls.append("first"))
        emitter.on(SimulationEvent.TRACE_COMPLETE, lambda trace, step: calls.append("second"))
        emitter.emit(SimulationEvent.TRACE_COMPLETE, make_trace(), None)

        assert calls == ["first", "second"]

    def test_raising_listener_does_not_stop_the_others(self):
        emitter = EventEmitter()
        calls = []

        def broken(trace, step):
            raise RuntimeError("listener bug")

        emitter.on(SimulationEvent.STEP_FAILED, broken)
        emitter.on(SimulationEvent.STEP_FAILED, lambda trace, step: calls.append(trace.id))

        emitter.emit(SimulationEvent.STEP_FAILED, make_trace(), make_step())

        assert calls == ["trace-1"]

    def test_off(self):
        emitter = EventEmitter()
        calls = []

        def listener(trace, step):
            calls.append(step)

        emitter.on(SimulationEvent.BREAKPOINT, listener)
        assert emitter.off(SimulationEvent.BREAKPOINT, listener)
        assert not emitter.off(SimulationEvent.BREAKPOINT, listener)

        emitter.emit(SimulationEvent.BREAKPOINT, make_trace(), make_step())
        assert calls == []

    def test_emit_without_listeners(self):
        emitter = EventEmitter()

        emitter.emit(SimulationEvent.STEP_COMPLETE, make_trace(), make_step())

        assert emitter.listener_count(SimulationEvent.STEP_COMPLETE) == 0

    def test_clear(self):
        emitter = EventEmitter()
        emitter.on(SimulationEvent.STEP_START, lambda trace, step: None)

        emitter.clear()

        assert emitter.listener_count(SimulationEvent.STEP_START) == 0

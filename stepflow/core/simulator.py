"""Execution Simulator producing replayable traces for workflow definitions."""

import asyncio
import random
import time
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..models.execution import (
    ExecutionStep,
    ExecutionSummary,
    ExecutionTrace,
    MockBehavior,
    SimulationOptions,
    StepStatus,
    TraceStatus,
)
from ..models.graph import FlowConfig, WorkflowDefinition, is_terminal_id
from .events import EventEmitter, EventListener, SimulationEvent
from .exceptions import (
    ConfigurationError,
    SimulationError,
    StepDefinitionError,
    StepSimulationError,
    TraceNotFoundError,
    WorkflowNotFoundError,
)
from .logging import get_logger, logging_context

logger = get_logger(__name__)

DEFAULT_MIN_PROCESSING_MS = 200
DEFAULT_MAX_PROCESSING_MS = 1200
DEFAULT_RANDOM_FAILURE_RATE = 0.2
DEFAULT_MAX_PLAN_STEPS = 100


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class RunHandle:
    """The simulator's handle on the run it is currently advancing."""

    def __init__(self, trace_id: str, options: SimulationOptions):
        self.trace_id = trace_id
        self.options = options
        self.active = True
        self.stopped = False
        self.active_ms = 0
        self.segment_started_at: Optional[int] = None

    def begin_segment(self) -> None:
        self.segment_started_at = now_ms()

    def end_segment(self) -> None:
        if self.segment_started_at is not None:
            self.active_ms += now_ms() - self.segment_started_at
            self.segment_started_at = None

    def elapsed_ms(self) -> int:
        """Time spent advancing, excluding time spent paused."""
        running = now_ms() - self.segment_started_at if self.segment_started_at is not None else 0
        return self.active_ms + running

    def budget_exceeded(self) -> bool:
        limit = self.options.max_execution_time
        return limit is not None and self.elapsed_ms() > limit


class WorkflowSimulator:
    """Walks a workflow definition and records a simulated execution trace.

    Traces are kept in memory keyed by id; any number can coexist, but only
    one run is advanced at a time per simulator instance. Pause and stop are
    cooperative and take effect at the next step boundary.
    """

    def __init__(
        self,
        min_processing_ms: int = DEFAULT_MIN_PROCESSING_MS,
        max_processing_ms: int = DEFAULT_MAX_PROCESSING_MS,
        random_failure_rate: float = DEFAULT_RANDOM_FAILURE_RATE,
        max_plan_steps: int = DEFAULT_MAX_PLAN_STEPS,
        rng: Optional[random.Random] = None
    ):
        """Initialize the simulator.

        Args:
            min_processing_ms: Lower bound of the simulated work time per step
            max_processing_ms: Upper bound of the simulated work time per step
            random_failure_rate: Failure probability for the 'random' behaviour
            max_plan_steps: Safety bound on the execution plan length
            rng: Random source, injectable for reproducible runs
        """
        if min_processing_ms < 0 or max_processing_ms < min_processing_ms:
            raise ConfigurationError(
                f"Invalid processing window: {min_processing_ms}-{max_processing_ms} ms",
                config_key="step_processing_ms"
            )
        self._min_processing_ms = min_processing_ms
        self._max_processing_ms = max_processing_ms
        self._random_failure_rate = random_failure_rate
        self._max_plan_steps = max_plan_steps
        self._rng = rng or random.Random()

        self._traces: Dict[str, ExecutionTrace] = {}
        self._events = EventEmitter()
        self._run: Optional[RunHandle] = None
        self._advancing = False
        self._reserved_trace_id: Optional[str] = None

        logger.info(
            f"WorkflowSimulator initialized with processing window "
            f"{min_processing_ms}-{max_processing_ms} ms"
        )

    @property
    def is_simulating(self) -> bool:
        """True while a run loop is advancing a trace or a start is reserved."""
        return self._advancing or self._reserved_trace_id is not None

    @property
    def current_trace_id(self) -> Optional[str]:
        return self._run.trace_id if self._run else None

    def reserve(self, trace_id: str) -> None:
        """
        Claim the simulator for ``trace_id`` ahead of a scheduled start.

        Callers that start runs in the background reserve synchronously, so a
        second request sees the simulator busy before the first run begins.
        The reservation is released when ``start_simulation`` takes it over.

        Raises:
            TraceNotFoundError: If ``trace_id`` was never created
            SimulationError: If a run is advancing or another start is reserved
        """
        if trace_id not in self._traces:
            raise TraceNotFoundError(trace_id)
        if self.is_simulating:
            busy_id = self._reserved_trace_id or self.current_trace_id
            raise SimulationError(f"Simulation of trace {busy_id} is already running", trace_id=trace_id)
        self._reserved_trace_id = trace_id
        logger.debug(f"Reserved simulator for trace {trace_id}")

    def release(self, trace_id: str) -> bool:
        """Drop a reservation that will not be followed by a start."""
        if self._reserved_trace_id != trace_id:
            return False
        self._reserved_trace_id = None
        return True

    # Trace lifecycle

    def create_trace(
        self,
        workflow_name: str,
        nodes: Optional[List[Any]] = None,
        edges: Optional[List[Any]] = None,
        options: Union[SimulationOptions, Dict[str, Any], None] = None
    ) -> str:
        """
        Register an empty running trace and return its id.

        The plan is not built until :meth:`start_simulation`. ``nodes``,
        ``edges`` and ``options`` mirror the editor's call signature and are
        not used here.
        """
        trace_id = f"trace-{now_ms()}-{uuid.uuid4().hex[:9]}"
        self._traces[trace_id] = ExecutionTrace(
            id=trace_id,
            workflow_name=workflow_name,
            start_time=now_ms(),
            status=TraceStatus.RUNNING,
            steps=[],
            current_step_index=-1,
            context={}
        )
        logger.debug(f"Created trace {trace_id} for workflow {workflow_name}")
        return trace_id

    async def start_simulation(
        self,
        trace_id: str,
        flow_config: Union[FlowConfig, Dict[str, Any]],
        request_name: str,
        options: Union[SimulationOptions, Dict[str, Any], None] = None
    ) -> None:
        """
        Build the execution plan for ``request_name`` and run it.

        Configuration problems (unknown workflow, step missing from the
        catalog, malformed config) end the trace as ``failed`` and are logged;
        they are not raised.

        A trace that is refused because another run holds the simulator is
        marked ``failed`` before the error is raised.

        Raises:
            TraceNotFoundError: If ``trace_id`` was never created
            SimulationError: If another run is already advancing or reserved
        """
        trace = self._traces.get(trace_id)
        if trace is None:
            raise TraceNotFoundError(trace_id)
        if self._advancing or self._reserved_trace_id not in (None, trace_id):
            busy_id = self._reserved_trace_id if not self._advancing else self.current_trace_id
            error = SimulationError(f"Simulation of trace {busy_id} is already running", trace_id=trace_id)
            logger.warning(f"Refused to start trace {trace_id}: {error.message}")
            self._fail(trace, error)
            raise error

        self._reserved_trace_id = None
        handle = RunHandle(trace_id, SimulationOptions())
        self._run = handle
        trace.context["requestName"] = request_name

        with logging_context(trace_id=trace_id):
            try:
                handle.options = self._coerce_options(options)
                config = flow_config if isinstance(flow_config, FlowConfig) else FlowConfig.model_validate(flow_config)
                workflow = config.find_workflow(request_name)
                if workflow is None:
                    raise WorkflowNotFoundError(request_name)

                trace.steps = self.build_execution_plan(config, workflow)
                logger.info(f"Built execution plan with {len(trace.steps)} step(s) for trace {trace_id}")
            except (WorkflowNotFoundError, StepDefinitionError, ValidationError) as e:
                logger.error(f"Simulation failed: {str(e)}")
                self._fail(trace, e)
                return

            await self._advance(handle, trace, 0)

    def build_execution_plan(
        self,
        flow_config: FlowConfig,
        workflow: WorkflowDefinition
    ) -> List[ExecutionStep]:
        """
        Derive the ordered plan of steps from the workflow root.

        The next step is always the target of the first edge leaving the
        current one. Planning stops when no edge leaves the step, when the
        target is a terminal id (never planned itself), when the target was
        already planned, or at the plan-length bound.

        Raises:
            StepDefinitionError: If a planned step is absent from the catalog
        """
        plan: List[ExecutionStep] = []
        visited = set()
        current: Optional[str] = workflow.root

        while (
            current is not None
            and not is_terminal_id(current)
            and current not in visited
            and len(plan) < self._max_plan_steps
        ):
            visited.add(current)

            step_definition = flow_config.find_step(current)
            if step_definition is None:
                raise StepDefinitionError(current)

            plan.append(ExecutionStep(
                node_id=current,
                step_name=current,
                step_type=step_definition.type,
                timestamp=0,
                status=StepStatus.PENDING
            ))

            next_edge = workflow.first_edge_from(current)
            current = next_edge.to_step if next_edge else None

        return plan

    async def _advance(self, handle: RunHandle, trace: ExecutionTrace, start_index: int) -> None:
        """Run plan entries from ``start_index`` until done, paused or stopped."""
        self._advancing = True
        handle.begin_segment()
        try:
            index = start_index
            while index < len(trace.steps) and handle.active:
                if handle.budget_exceeded():
                    self._expire(handle, trace, index)
                    return

                trace.current_step_index = index
                step = trace.steps[index]
                await self._execute_step(trace, step, handle.options)

                if handle.stopped:
                    break

                if step.node_id in handle.options.breakpoints:
                    handle.active = False
                    trace.status = TraceStatus.PAUSED
                    logger.info(f"Breakpoint hit at step {step.node_id} in trace {trace.id}")
                    self._events.emit(SimulationEvent.BREAKPOINT, trace, step)
                    break

                if handle.options.step_delay:
                    await asyncio.sleep(handle.options.step_delay / 1000)

                index += 1

            if handle.stopped or trace.status == TraceStatus.PAUSED:
                return

            trace.status = TraceStatus.FAILED if trace.has_failed_steps() else TraceStatus.SUCCESS
            trace.end_time = now_ms()
            logger.info(f"Trace {trace.id} finished with status {trace.status.value}")
            self._events.emit(SimulationEvent.TRACE_COMPLETE, trace, self._current_step(trace))

        except Exception as e:
            logger.error(f"Simulation failed: {str(e)}", exc_info=True)
            self._fail(trace, e)
        finally:
            handle.end_segment()
            self._advancing = False

    async def _execute_step(
        self,
        trace: ExecutionTrace,
        step: ExecutionStep,
        options: SimulationOptions
    ) -> None:
        step.status = StepStatus.RUNNING
        step.timestamp = now_ms()
        self._events.emit(SimulationEvent.STEP_START, trace, step)

        try:
            await self.simulate_step_behavior(step, options)

            step.status = StepStatus.SUCCESS
            step.duration = now_ms() - step.timestamp
            self._events.emit(SimulationEvent.STEP_COMPLETE, trace, step)

        except Exception as e:
            step.status = StepStatus.FAILED
            step.error = str(e) or "Unknown error"
            step.duration = now_ms() - step.timestamp
            logger.debug(f"Step {step.node_id} failed in trace {trace.id}: {step.error}")
            self._events.emit(SimulationEvent.STEP_FAILED, trace, step)

    def resolve_behavior(self, step: ExecutionStep, options: SimulationOptions) -> MockBehavior:
        """Forced behaviour by step id, then by step type, else success."""
        behaviors = options.mock_step_behavior
        return behaviors.get(step.node_id) or behaviors.get(step.step_type) or MockBehavior.SUCCESS

    async def simulate_step_behavior(self, step: ExecutionStep, options: SimulationOptions) -> None:
        """
        Emulate a step: wait a pseudo-random work time, then succeed or fail.

        Raises:
            StepSimulationError: If the resolved behaviour makes the step fail
        """
        behavior = self.resolve_behavior(step, options)

        processing_ms = self._rng.uniform(self._min_processing_ms, self._max_processing_ms)
        await asyncio.sleep(processing_ms / 1000)

        should_fail = False
        if behavior == MockBehavior.FAILURE:
            should_fail = True
        elif behavior == MockBehavior.RANDOM:
            should_fail = self._rng.random() < self._random_failure_rate

        if should_fail:
            raise StepSimulationError(f"Step {step.step_name} failed (simulated)", node_id=step.node_id)

        step.output = {
            "success": True,
            "data": f"Mock output for {step.step_name}",
            "timestamp": now_ms()
        }

    # Control

    def pause_simulation(self) -> bool:
        """Stop advancing the active trace after the current step and mark it paused."""
        handle = self._run
        if handle is None:
            logger.debug("Pause requested with no active simulation")
            return False

        handle.active = False
        trace = self._traces.get(handle.trace_id)
        if trace is None or trace.is_finished:
            return False

        trace.status = TraceStatus.PAUSED
        logger.info(f"Paused trace {trace.id} at step index {trace.current_step_index}")
        return True

    async def resume_simulation(self) -> bool:
        """
        Continue a paused trace from the step after ``current_step_index``.

        The original run's options (breakpoints, delays, forced behaviours)
        still apply. Returns False when there is nothing to resume.
        """
        handle = self._run
        trace = self._traces.get(handle.trace_id) if handle else None
        if trace is None or trace.status != TraceStatus.PAUSED:
            logger.info("No paused simulation to resume")
            return False

        trace.status = TraceStatus.RUNNING
        handle.active = True
        logger.info(f"Continuing execution of trace {trace.id} from step {trace.current_step_index}")

        if self._advancing:
            # The loop has not reached its step boundary yet and will carry on
            return True

        with logging_context(trace_id=trace.id):
            await self._advance(handle, trace, trace.current_step_index + 1)
        return True

    def stop_simulation(self) -> bool:
        """Halt the active trace and mark it failed, whatever its step outcomes."""
        handle = self._run
        if handle is None:
            logger.debug("Stop requested with no active simulation")
            return False

        handle.active = False
        handle.stopped = True
        trace = self._traces.get(handle.trace_id)
        if trace is None or trace.is_finished:
            return False

        trace.status = TraceStatus.FAILED
        trace.end_time = now_ms()
        trace.context["stopped"] = True
        logger.info(f"Stopped trace {trace.id}")
        self._events.emit(SimulationEvent.TRACE_COMPLETE, trace, self._current_step(trace))
        return True

    def _expire(self, handle: RunHandle, trace: ExecutionTrace, index: int) -> None:
        for step in trace.steps[index:]:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED

        handle.active = False
        trace.status = TraceStatus.FAILED
        trace.end_time = now_ms()
        trace.context["error"] = (
            f"Maximum execution time of {handle.options.max_execution_time} ms exceeded"
        )
        logger.warning(f"Trace {trace.id}: {trace.context['error']}")
        self._events.emit(SimulationEvent.TRACE_COMPLETE, trace, self._current_step(trace))

    def _fail(self, trace: ExecutionTrace, error: Exception) -> None:
        trace.status = TraceStatus.FAILED
        trace.end_time = now_ms()
        trace.context["error"] = str(error)
        self._events.emit(SimulationEvent.TRACE_COMPLETE, trace, self._current_step(trace))

    # Events

    def on(self, event: Union[SimulationEvent, str], callback: EventListener) -> None:
        """Subscribe to a lifecycle event (stepStart, stepComplete, stepFailed, breakpoint...)."""
        self._events.on(event, callback)

    def off(self, event: Union[SimulationEvent, str], callback: EventListener) -> bool:
        return self._events.off(event, callback)

    # Queries

    def get_trace(self, trace_id: str) -> Optional[ExecutionTrace]:
        return self._traces.get(trace_id)

    def get_all_traces(self) -> List[ExecutionTrace]:
        return list(self._traces.values())

    def clear_trace(self, trace_id: str) -> bool:
        """Forget a trace. Refused for the trace currently advancing."""
        if (self._advancing and self.current_trace_id == trace_id) or self._reserved_trace_id == trace_id:
            raise SimulationError(f"Cannot clear trace {trace_id} while it is running", trace_id=trace_id)
        if self._run is not None and self._run.trace_id == trace_id:
            self._run = None
        return self._traces.pop(trace_id, None) is not None

    def clear_all_traces(self) -> None:
        if self.is_simulating:
            raise SimulationError("Cannot clear traces while a simulation is running")
        self._traces.clear()
        self._run = None

    def get_execution_summary(self, trace_id: str) -> Optional[ExecutionSummary]:
        """
        Count steps by outcome and compute timing figures for a trace.

        Returns:
            ExecutionSummary, or None for an unknown trace id
        """
        trace = self._traces.get(trace_id)
        if trace is None:
            return None

        timed_steps = [step for step in trace.steps if step.duration is not None]
        end_time = trace.end_time if trace.end_time is not None else now_ms()

        return ExecutionSummary(
            total_steps=len(trace.steps),
            successful_steps=sum(1 for step in trace.steps if step.status == StepStatus.SUCCESS),
            failed_steps=sum(1 for step in trace.steps if step.status == StepStatus.FAILED),
            skipped_steps=sum(1 for step in trace.steps if step.status == StepStatus.SKIPPED),
            total_duration=end_time - trace.start_time,
            average_step_duration=(
                sum(step.duration for step in timed_steps) / len(timed_steps)
                if timed_steps else 0
            )
        )

    @staticmethod
    def _current_step(trace: ExecutionTrace) -> Optional[ExecutionStep]:
        if 0 <= trace.current_step_index < len(trace.steps):
            return trace.steps[trace.current_step_index]
        return None

    @staticmethod
    def _coerce_options(options: Union[SimulationOptions, Dict[str, Any], None]) -> SimulationOptions:
        if options is None:
            return SimulationOptions()
        if isinstance(options, SimulationOptions):
            return options
        return SimulationOptions.model_validate(options)

"""FastAPI REST and WebSocket endpoints for layout, validation and simulation."""

from datetime import datetime
from typing import Dict, List, Any, Optional
from fastapi import APIRouter, BackgroundTasks, HTTPException, Depends, Response, status, WebSocket, WebSocketDisconnect
from pydantic import Field
import json

from ..core.layout_engine import LayoutEngine
from ..core.simulator import WorkflowSimulator
from ..core.validation import WorkflowValidator
from ..core.websocket_manager import TraceEventBroadcaster
from ..core.exceptions import (
    SimulationError,
    TraceNotFoundError,
    WorkflowEngineError,
    create_error_response,
    http_status_for_error
)
from ..models import (
    ExecutionSummary,
    ExecutionTrace,
    FlowConfig,
    GraphEdge,
    GraphNode,
    LayoutResult,
    PerformanceAdvice,
    SimulationOptions,
    TraceStatus,
    ValidationResult,
)
from ..models.base import CamelModel
from ..core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["stepflow"])

# Global instances (initialized by the application factory)
_layout_engine: Optional[LayoutEngine] = None
_simulator: Optional[WorkflowSimulator] = None
_validator: Optional[WorkflowValidator] = None
_broadcaster: Optional[TraceEventBroadcaster] = None


def init_dependencies(
    layout_engine: LayoutEngine,
    simulator: WorkflowSimulator,
    validator: WorkflowValidator,
    broadcaster: Optional[TraceEventBroadcaster] = None
):
    """Initialize the global dependencies."""
    global _layout_engine, _simulator, _validator, _broadcaster
    _layout_engine = layout_engine
    _simulator = simulator
    _validator = validator
    _broadcaster = broadcaster


def get_layout_engine() -> LayoutEngine:
    """Dependency to get the layout engine."""
    if _layout_engine is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Layout engine not initialized"
        )
    return _layout_engine


def get_simulator() -> WorkflowSimulator:
    """Dependency to get the workflow simulator."""
    if _simulator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow simulator not initialized"
        )
    return _simulator


def get_validator() -> WorkflowValidator:
    """Dependency to get the workflow validator."""
    if _validator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow validator not initialized"
        )
    return _validator


def _http_error(error: WorkflowEngineError) -> HTTPException:
    return HTTPException(
        status_code=http_status_for_error(error),
        detail=create_error_response(error)
    )


# Request/Response models
class LayoutRequest(CamelModel):
    """Request model for computing a layout."""
    nodes: List[GraphNode] = Field(default_factory=list, description="Nodes to position")
    edges: List[GraphEdge] = Field(default_factory=list, description="Edges between nodes")
    algorithm: str = Field("hierarchical", description="Layout algorithm")
    options: Optional[Dict[str, Any]] = Field(None, description="Spacing, padding, direction and seed")


class PerformanceRequest(CamelModel):
    """Request model for rendering performance advice."""
    nodes: List[GraphNode] = Field(default_factory=list, description="Graph nodes")
    edges: List[GraphEdge] = Field(default_factory=list, description="Graph edges")


class ValidateWorkflowRequest(CamelModel):
    """Request model for validating a flow configuration."""
    flow_config: FlowConfig = Field(..., description="Step catalog plus workflows")
    request_name: Optional[str] = Field(None, description="Workflow to validate; all when omitted")


class StartSimulationRequest(CamelModel):
    """Request model for starting a simulation."""
    flow_config: FlowConfig = Field(..., description="Step catalog plus workflows")
    request_name: str = Field(..., description="Workflow to simulate")
    options: SimulationOptions = Field(default_factory=SimulationOptions, description="Simulation options")


class StartSimulationResponse(CamelModel):
    """Response model for a started simulation."""
    trace_id: str = Field(..., description="Identifier of the new trace")
    message: str = Field(..., description="Success message")
    status: TraceStatus = Field(..., description="Initial trace status")


class SimulationControlResponse(CamelModel):
    """Response model for pause, resume and stop."""
    trace_id: Optional[str] = Field(None, description="Trace the command applied to")
    status: Optional[TraceStatus] = Field(None, description="Trace status after the command")
    message: str = Field(..., description="Outcome description")


# Layout

@router.post(
    "/layout",
    response_model=LayoutResult,
    summary="Compute node positions",
    description="Position graph nodes with the hierarchical, force-directed, circular, tree or grid algorithm"
)
async def compute_layout(
    request: LayoutRequest,
    layout_engine: LayoutEngine = Depends(get_layout_engine)
) -> LayoutResult:
    """Compute a layout; malformed graphs degrade to the fallback grid."""
    logger.info(f"Computing {request.algorithm} layout for {len(request.nodes)} nodes")
    return layout_engine.apply_layout(request.nodes, request.edges, request.algorithm, request.options)


@router.post(
    "/layout/performance",
    response_model=PerformanceAdvice,
    summary="Rendering performance advice"
)
async def layout_performance(
    request: PerformanceRequest,
    layout_engine: LayoutEngine = Depends(get_layout_engine)
) -> PerformanceAdvice:
    return layout_engine.optimize_for_performance(request.nodes, request.edges)


# Validation

@router.post(
    "/workflows/validate",
    response_model=ValidationResult,
    summary="Validate a flow configuration",
    description="Run structural, configuration, logic and performance checks and return a quality score"
)
async def validate_workflow(
    request: ValidateWorkflowRequest,
    validator: WorkflowValidator = Depends(get_validator)
) -> ValidationResult:
    result = validator.validate_workflow(request.flow_config, request.request_name)
    logger.info(validator.get_validation_summary(result))
    return result


# Simulation

@router.post(
    "/simulations",
    response_model=StartSimulationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a workflow simulation",
    description="Validate the workflow, create a trace and run the simulation in the background"
)
async def start_simulation(
    request: StartSimulationRequest,
    background_tasks: BackgroundTasks,
    simulator: WorkflowSimulator = Depends(get_simulator),
    validator: WorkflowValidator = Depends(get_validator)
) -> StartSimulationResponse:
    """
    Start simulating a workflow.

    Raises:
        HTTPException: 400 on validation errors, 409 while another run is active
    """
    try:
        validator.validate_or_raise(request.flow_config, request.request_name)

        if simulator.is_simulating:
            raise SimulationError(
                f"Simulation of trace {simulator.current_trace_id} is already running",
                trace_id=simulator.current_trace_id
            )

        trace_id = simulator.create_trace(request.request_name)
        simulator.reserve(trace_id)
        background_tasks.add_task(
            simulator.start_simulation,
            trace_id,
            request.flow_config,
            request.request_name,
            request.options
        )

        logger.info(f"Scheduled simulation of '{request.request_name}' as trace {trace_id}")

        return StartSimulationResponse(
            trace_id=trace_id,
            message=f"Simulation of '{request.request_name}' started",
            status=TraceStatus.RUNNING
        )

    except WorkflowEngineError as e:
        logger.warning(f"Could not start simulation: {str(e)}")
        raise _http_error(e)


@router.get(
    "/simulations",
    response_model=List[ExecutionTrace],
    summary="List all traces"
)
async def list_traces(simulator: WorkflowSimulator = Depends(get_simulator)) -> List[ExecutionTrace]:
    return simulator.get_all_traces()


@router.post(
    "/simulations/pause",
    response_model=SimulationControlResponse,
    summary="Pause the active simulation"
)
async def pause_simulation(simulator: WorkflowSimulator = Depends(get_simulator)) -> SimulationControlResponse:
    if not simulator.pause_simulation():
        raise _http_error(SimulationError("No running simulation to pause"))

    trace = simulator.get_trace(simulator.current_trace_id)
    return SimulationControlResponse(
        trace_id=trace.id,
        status=trace.status,
        message="Simulation paused"
    )


@router.post(
    "/simulations/resume",
    response_model=SimulationControlResponse,
    summary="Resume the paused simulation"
)
async def resume_simulation(
    background_tasks: BackgroundTasks,
    simulator: WorkflowSimulator = Depends(get_simulator)
) -> SimulationControlResponse:
    trace = simulator.get_trace(simulator.current_trace_id) if simulator.current_trace_id else None
    if trace is None or trace.status != TraceStatus.PAUSED:
        raise _http_error(SimulationError("No paused simulation to resume"))

    background_tasks.add_task(simulator.resume_simulation)
    return SimulationControlResponse(
        trace_id=trace.id,
        status=TraceStatus.RUNNING,
        message=f"Resuming from step {trace.current_step_index + 1}"
    )


@router.post(
    "/simulations/stop",
    response_model=SimulationControlResponse,
    summary="Stop the active simulation"
)
async def stop_simulation(simulator: WorkflowSimulator = Depends(get_simulator)) -> SimulationControlResponse:
    if not simulator.stop_simulation():
        raise _http_error(SimulationError("No active simulation to stop"))

    trace = simulator.get_trace(simulator.current_trace_id)
    return SimulationControlResponse(
        trace_id=trace.id,
        status=trace.status,
        message="Simulation stopped"
    )


@router.get(
    "/simulations/{trace_id}",
    response_model=ExecutionTrace,
    summary="Get a trace"
)
async def get_trace(trace_id: str, simulator: WorkflowSimulator = Depends(get_simulator)) -> ExecutionTrace:
    trace = simulator.get_trace(trace_id)
    if trace is None:
        raise _http_error(TraceNotFoundError(trace_id))
    return trace


@router.get(
    "/simulations/{trace_id}/summary",
    response_model=ExecutionSummary,
    summary="Summarize a trace"
)
async def get_trace_summary(
    trace_id: str,
    simulator: WorkflowSimulator = Depends(get_simulator)
) -> ExecutionSummary:
    summary = simulator.get_execution_summary(trace_id)
    if summary is None:
        raise _http_error(TraceNotFoundError(trace_id))
    return summary


@router.delete(
    "/simulations/{trace_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a trace"
)
async def delete_trace(trace_id: str, simulator: WorkflowSimulator = Depends(get_simulator)) -> Response:
    try:
        if not simulator.clear_trace(trace_id):
            raise TraceNotFoundError(trace_id)
    except WorkflowEngineError as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete(
    "/simulations",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete all traces"
)
async def delete_all_traces(simulator: WorkflowSimulator = Depends(get_simulator)) -> Response:
    try:
        simulator.clear_all_traces()
    except WorkflowEngineError as e:
        raise _http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# WebSocket endpoint for live trace events

@router.websocket("/ws/traces/{trace_id}")
async def websocket_trace(websocket: WebSocket, trace_id: str):
    """
    Stream the lifecycle events of one trace.

    The connection is subscribed to ``trace_id`` on connect. Clients may send
    ``{"action": "ping"}`` or ``{"action": "get_status"}``.

    Server messages:
    {
        "event_type": "stepStart" | "stepComplete" | "stepFailed" | "breakpoint" | "traceComplete" | ...,
        "trace_id": "trace id",
        "timestamp": "iso_timestamp",
        "data": {"status": ..., "currentStepIndex": ..., "step": {...}}
    }
    """
    if not _broadcaster:
        await websocket.close(code=1011, reason="Trace streaming not available")
        return

    connection_id = None
    try:
        connection_id = await _broadcaster.connect(websocket)
        await _broadcaster.subscribe_to_trace(connection_id, trace_id)

        while True:
            try:
                data = await websocket.receive_text()
                message = json.loads(data)
                if not isinstance(message, dict):
                    await _broadcaster.send_to_connection(connection_id, {
                        "event_type": "error",
                        "message": "Message must be a JSON object",
                        "timestamp": datetime.utcnow().isoformat()
                    })
                    continue
                action = message.get("action")

                if action == "ping":
                    await _broadcaster.send_to_connection(connection_id, {
                        "event_type": "pong",
                        "timestamp": datetime.utcnow().isoformat()
                    })

                elif action == "get_status":
                    await _broadcaster.send_to_connection(connection_id, {
                        "event_type": "status_info",
                        "data": _broadcaster.get_connection_info(),
                        "timestamp": datetime.utcnow().isoformat()
                    })

                else:
                    await _broadcaster.send_to_connection(connection_id, {
                        "event_type": "error",
                        "message": f"Unknown action: {action}",
                        "timestamp": datetime.utcnow().isoformat()
                    })

            except WebSocketDisconnect:
                logger.info(f"WebSocket client disconnected: {connection_id}")
                break
            except json.JSONDecodeError:
                await _broadcaster.send_to_connection(connection_id, {
                    "event_type": "error",
                    "message": "Invalid JSON message format",
                    "timestamp": datetime.utcnow().isoformat()
                })

    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected: {connection_id}")
    finally:
        if connection_id:
            await _broadcaster.disconnect(connection_id)

"""Core layout, validation and simulation components."""

from .exceptions import (
    WorkflowEngineError,
    GraphValidationError,
    ConfigurationError,
    WorkflowNotFoundError,
    StepDefinitionError,
    TraceNotFoundError,
    SimulationError,
    StepSimulationError,
    APIError,
)
from .logging import setup_logging, get_logger
from .events import EventEmitter, SimulationEvent
from .layout_engine import LayoutEngine, apply_layout, optimize_for_performance
from .simulator import WorkflowSimulator
from .validation import WorkflowValidator
from .websocket_manager import TraceEventBroadcaster

__all__ = [
    "WorkflowEngineError",
    "GraphValidationError",
    "ConfigurationError",
    "WorkflowNotFoundError",
    "StepDefinitionError",
    "TraceNotFoundError",
    "SimulationError",
    "StepSimulationError",
    "APIError",
    "setup_logging",
    "get_logger",
    "EventEmitter",
    "SimulationEvent",
    "LayoutEngine",
    "apply_layout",
    "optimize_for_performance",
    "WorkflowSimulator",
    "WorkflowValidator",
    "TraceEventBroadcaster",
]

"""Execution trace models produced by the workflow simulator."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import CamelModel


class StepStatus(str, Enum):
    """Lifecycle of a single simulated step."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class TraceStatus(str, Enum):
    """Lifecycle of a simulated run."""
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    PAUSED = "paused"


class MockBehavior(str, Enum):
    """Forced outcome for a simulated step."""
    SUCCESS = "success"
    FAILURE = "failure"
    RANDOM = "random"


class ExecutionStep(CamelModel):
    """One entry of an execution plan, updated in place as it runs."""
    node_id: str = Field(..., description="Step id")
    step_name: str = Field(..., description="Display name")
    step_type: str = Field(..., description="Catalog step type")
    timestamp: int = Field(0, description="Start time in epoch milliseconds")
    status: StepStatus = Field(StepStatus.PENDING, description="Step status")
    duration: Optional[int] = Field(None, description="Run time in milliseconds")
    input: Optional[Any] = Field(None, description="Simulated input")
    output: Optional[Any] = Field(None, description="Simulated output")
    error: Optional[str] = Field(None, description="Failure message")
    retry_attempt: Optional[int] = Field(None, description="Retry attempt number")


class ExecutionTrace(CamelModel):
    """The mutable record of one simulated run."""
    id: str = Field(..., description="Trace id")
    workflow_name: str = Field(..., description="Workflow being simulated")
    start_time: int = Field(..., description="Start time in epoch milliseconds")
    end_time: Optional[int] = Field(None, description="End time in epoch milliseconds")
    status: TraceStatus = Field(TraceStatus.RUNNING, description="Trace status")
    steps: List[ExecutionStep] = Field(default_factory=list, description="Execution plan")
    current_step_index: int = Field(-1, description="Index of the step being run")
    context: Dict[str, Any] = Field(default_factory=dict, description="Free-form run context")

    @property
    def is_finished(self) -> bool:
        return self.status in (TraceStatus.SUCCESS, TraceStatus.FAILED)

    def has_failed_steps(self) -> bool:
        return any(step.status == StepStatus.FAILED for step in self.steps)


class SimulationOptions(CamelModel):
    """Knobs for a simulated run."""
    step_delay: Optional[int] = Field(None, ge=0, description="Pause between steps in ms")
    enable_retries: bool = Field(False, description="Carried for the editor; not consulted")
    enable_guards: bool = Field(False, description="Carried for the editor; not consulted")
    mock_step_behavior: Dict[str, MockBehavior] = Field(
        default_factory=dict, description="Forced outcome by step id or step type"
    )
    max_execution_time: Optional[int] = Field(None, gt=0, description="Limit on active run time in ms")
    breakpoints: List[str] = Field(default_factory=list, description="Step ids to pause after")


class ExecutionSummary(CamelModel):
    """Aggregate figures for a trace."""
    total_steps: int
    successful_steps: int
    failed_steps: int
    skipped_steps: int = 0
    total_duration: int
    average_step_duration: float

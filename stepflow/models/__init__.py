"""Data models for the workflow engine."""

from .graph import (
    SUCCESS,
    FAILURE,
    LEGACY_FAILURE,
    TERMINAL_IDS,
    is_terminal_id,
    FailureStrategy,
    EdgeKind,
    RetryPolicy,
    StepDefinition,
    OnFailure,
    EdgeDefinition,
    WorkflowDefinition,
    FlowConfig,
)
from .layout import (
    LayoutAlgorithm,
    LayoutDirection,
    Position,
    NodeSize,
    GraphNode,
    GraphEdge,
    Spacing,
    Padding,
    LayoutOptions,
    BoundingBox,
    LayoutResult,
    LayoutComplexity,
    PerformanceAdvice,
)
from .execution import (
    StepStatus,
    TraceStatus,
    MockBehavior,
    ExecutionStep,
    ExecutionTrace,
    SimulationOptions,
    ExecutionSummary,
)
from .validation import (
    IssueType,
    IssueCategory,
    ValidationIssue,
    ValidationResult,
)

__all__ = [
    "SUCCESS",
    "FAILURE",
    "LEGACY_FAILURE",
    "TERMINAL_IDS",
    "is_terminal_id",
    "FailureStrategy",
    "EdgeKind",
    "RetryPolicy",
    "StepDefinition",
    "OnFailure",
    "EdgeDefinition",
    "WorkflowDefinition",
    "FlowConfig",
    "LayoutAlgorithm",
    "LayoutDirection",
    "Position",
    "NodeSize",
    "GraphNode",
    "GraphEdge",
    "Spacing",
    "Padding",
    "LayoutOptions",
    "BoundingBox",
    "LayoutResult",
    "LayoutComplexity",
    "PerformanceAdvice",
    "StepStatus",
    "TraceStatus",
    "MockBehavior",
    "ExecutionStep",
    "ExecutionTrace",
    "SimulationOptions",
    "ExecutionSummary",
    "IssueType",
    "IssueCategory",
    "ValidationIssue",
    "ValidationResult",
]

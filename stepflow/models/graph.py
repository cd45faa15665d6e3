"""Graph model shared by the layout engine and the execution simulator."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from .base import CamelModel


SUCCESS = "SUCCESS"
FAILURE = "FAILURE"
# Older configurations terminate failure paths with FAILED instead of FAILURE.
LEGACY_FAILURE = "FAILED"

TERMINAL_IDS = frozenset({SUCCESS, FAILURE, LEGACY_FAILURE})


def is_terminal_id(step_id: Optional[str]) -> bool:
    """Return True if the id is a reserved terminal identifier."""
    return step_id in TERMINAL_IDS


class FailureStrategy(str, Enum):
    """What an edge does when its guard fails."""
    NONE = "NONE"
    RETRY = "RETRY"
    ALTERNATIVE = "ALTERNATIVE"
    # Accepted from older editor versions
    STOP = "STOP"
    SKIP = "SKIP"
    CONTINUE = "CONTINUE"


class EdgeKind(str, Enum):
    """Classification of a workflow edge."""
    NORMAL = "normal"
    TERMINAL = "terminal"


class RetryPolicy(CamelModel):
    """Engine-driven retry policy of a step."""
    max_attempts: int = Field(1, ge=1, description="Number of attempts")
    delay: int = Field(0, ge=0, description="Delay between attempts in milliseconds")
    guard: Optional[str] = Field(None, description="Guard deciding whether to retry")


class StepDefinition(CamelModel):
    """A step in the workflow's step catalog."""
    id: Optional[str] = Field(None, description="Catalog key, filled in by FlowConfig")
    type: str = Field(..., description="Implementation identifier")
    config: Dict[str, Any] = Field(default_factory=dict, description="Step configuration")
    guards: List[str] = Field(default_factory=list, description="Step-level guard names")
    retry: Optional[RetryPolicy] = Field(None, description="Retry policy")

    @field_validator('type')
    @classmethod
    def validate_type(cls, step_type):
        """Strip surrounding whitespace from the step type."""
        return step_type.strip() if step_type else step_type


class OnFailure(CamelModel):
    """Failure-handling policy attached to an edge."""
    strategy: FailureStrategy = Field(FailureStrategy.NONE, description="Failure strategy")
    retry_attempts: Optional[int] = Field(None, description="Attempts for RETRY")
    retry_delay: Optional[int] = Field(None, description="Delay in ms for RETRY")
    alternative_target: Optional[str] = Field(None, description="Step id for ALTERNATIVE")

    @model_validator(mode='after')
    def validate_strategy_fields(self):
        """Ensure the fields required by the chosen strategy are present."""
        if self.strategy == FailureStrategy.ALTERNATIVE and not self.alternative_target:
            raise ValueError("ALTERNATIVE strategy requires an alternativeTarget")
        if self.strategy == FailureStrategy.RETRY:
            if self.retry_attempts is None or self.retry_attempts < 1:
                raise ValueError("RETRY strategy requires retryAttempts >= 1")
        if self.retry_delay is not None and self.retry_delay < 0:
            raise ValueError("retryDelay cannot be negative")
        return self


class EdgeDefinition(CamelModel):
    """A transition between two steps, or from a step to a terminal id."""
    from_step: str = Field(..., alias="from", description="Source step id")
    to_step: str = Field(..., alias="to", description="Target step id or terminal id")
    guard: Optional[str] = Field(None, description="Edge-level guard name")
    condition: Optional[str] = Field(None, description="Condition expression (not evaluated)")
    kind: EdgeKind = Field(EdgeKind.NORMAL, description="Edge classification")
    on_failure: Optional[OnFailure] = Field(None, description="Guard failure policy")

    @field_validator('from_step', 'to_step')
    @classmethod
    def validate_step_ids(cls, step_id):
        """Ensure edge endpoints are non-empty."""
        if not step_id or not step_id.strip():
            raise ValueError("Edge endpoint cannot be empty")
        return step_id.strip()

    @property
    def is_terminal(self) -> bool:
        return is_terminal_id(self.to_step)


class WorkflowDefinition(CamelModel):
    """A workflow: an entry step plus edges in priority order."""
    root: str = Field(..., description="Entry step id")
    edges: List[EdgeDefinition] = Field(default_factory=list, description="Edges in priority order")

    @field_validator('root')
    @classmethod
    def validate_root(cls, root):
        """Ensure the root is non-empty."""
        if not root or not root.strip():
            raise ValueError("Workflow root cannot be empty")
        return root.strip()

    def outgoing(self, step_id: str) -> List[EdgeDefinition]:
        """Edges leaving ``step_id``, in priority order."""
        return [edge for edge in self.edges if edge.from_step == step_id]

    def first_edge_from(self, step_id: str) -> Optional[EdgeDefinition]:
        """The highest-priority edge leaving ``step_id``."""
        for edge in self.edges:
            if edge.from_step == step_id:
                return edge
        return None


class FlowConfig(CamelModel):
    """Step catalog plus named workflows.

    ``requests`` is the original key; newer files use ``workflows`` together
    with ``settings`` and ``defaults``. Both workflow maps are consulted.
    """
    steps: Dict[str, StepDefinition] = Field(default_factory=dict, description="Step catalog")
    requests: Dict[str, WorkflowDefinition] = Field(default_factory=dict, description="Named workflows")
    workflows: Dict[str, WorkflowDefinition] = Field(default_factory=dict, description="Named workflows (newer key)")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Global settings")
    defaults: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Step/guard defaults")

    @model_validator(mode='after')
    def assign_step_ids(self):
        """Fill each step's id from its catalog key."""
        for step_id, step in self.steps.items():
            if not step.id:
                step.id = step_id
        return self

    def find_workflow(self, name: str) -> Optional[WorkflowDefinition]:
        """Look a workflow up by name in ``requests`` then ``workflows``."""
        if name in self.requests:
            return self.requests[name]
        return self.workflows.get(name)

    def find_step(self, step_id: str) -> Optional[StepDefinition]:
        return self.steps.get(step_id)

    def workflow_names(self) -> List[str]:
        names = list(self.requests.keys())
        names.extend(name for name in self.workflows if name not in self.requests)
        return names

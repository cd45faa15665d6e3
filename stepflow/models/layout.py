"""Input and output shapes of the layout engine."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from .base import CamelModel


DEFAULT_NODE_WIDTH = 200.0
DEFAULT_NODE_HEIGHT = 100.0


class LayoutAlgorithm(str, Enum):
    """Available layout algorithms."""
    HIERARCHICAL = "hierarchical"
    FORCE_DIRECTED = "force-directed"
    CIRCULAR = "circular"
    TREE = "tree"
    GRID = "grid"

    @classmethod
    def parse(cls, value: Any) -> "LayoutAlgorithm":
        """Resolve a selector, falling back to HIERARCHICAL for unknown values."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            if normalized == "force":
                return cls.FORCE_DIRECTED
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.HIERARCHICAL


class LayoutDirection(str, Enum):
    """Growth direction for level-based layouts."""
    TOP_BOTTOM = "TB"
    LEFT_RIGHT = "LR"


class Position(CamelModel):
    x: float = 0.0
    y: float = 0.0


class NodeSize(CamelModel):
    width: float = DEFAULT_NODE_WIDTH
    height: float = DEFAULT_NODE_HEIGHT


class GraphNode(CamelModel):
    """A canvas node: a step, a guard, or a terminal marker."""
    id: str = Field(..., description="Node id")
    type: Optional[str] = Field(None, description="Node kind, e.g. 'step' or 'guard'")
    data: Dict[str, Any] = Field(default_factory=dict, description="Node payload")
    position: Optional[Position] = Field(None, description="Current position")
    measured: Optional[NodeSize] = Field(None, description="Measured rendering size")

    @property
    def is_root(self) -> bool:
        return bool(self.data.get("isRoot")) and self.type != "guard"

    @property
    def is_guard(self) -> bool:
        return self.type == "guard"

    @property
    def width(self) -> float:
        return self.measured.width if self.measured else DEFAULT_NODE_WIDTH

    @property
    def height(self) -> float:
        return self.measured.height if self.measured else DEFAULT_NODE_HEIGHT


class GraphEdge(CamelModel):
    """A canvas edge between two nodes."""
    id: Optional[str] = Field(None, description="Edge id")
    source: str = Field(..., description="Source node id")
    target: str = Field(..., description="Target node id")
    label: Optional[str] = Field(None, description="Display label")


class Spacing(CamelModel):
    x: float = 280.0
    y: float = 150.0


class Padding(CamelModel):
    x: float = 50.0
    y: float = 50.0


class LayoutOptions(CamelModel):
    """Layout tuning; omitted fields take the defaults."""
    spacing: Spacing = Field(default_factory=Spacing)
    padding: Padding = Field(default_factory=Padding)
    direction: LayoutDirection = Field(LayoutDirection.TOP_BOTTOM)
    seed: Optional[int] = Field(None, description="Seed for force-directed initial positions")


class BoundingBox(CamelModel):
    width: float
    height: float
    min_x: float
    min_y: float
    max_x: float
    max_y: float


class LayoutResult(CamelModel):
    nodes: List[GraphNode]
    bounds: BoundingBox


class LayoutComplexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PerformanceAdvice(CamelModel):
    """Rendering recommendations for a graph; has no effect on layout."""
    should_virtualize: bool = False
    clustering_recommended: bool = False
    layout_complexity: LayoutComplexity = LayoutComplexity.LOW
    recommendations: List[str] = Field(default_factory=list)
